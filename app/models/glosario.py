from app.extensions import db


class TerminoGlosario(db.Model):
    """
    Término de falla que el clasificador no pudo mapear.
    Un supervisor lo revisa luego desde el glosario.
    """
    __tablename__ = 'glossary_learning'

    id = db.Column(db.Integer, primary_key=True)
    termino = db.Column(db.String(500), unique=True, nullable=False)
    ocurrencias = db.Column(db.Integer, nullable=False, default=1)
    mapeado = db.Column(db.Boolean, default=False)

    def to_dict(self):
        return {
            'id': self.id,
            'termino': self.termino,
            'ocurrencias': self.ocurrencias,
            'mapeado': self.mapeado
        }

    def __repr__(self):
        return f'<TerminoGlosario {self.termino} x{self.ocurrencias}>'
