"""
Topología de planta: Áreas y Líneas de Producción.
"""
from datetime import datetime, timezone
from app.extensions import db


class Area(db.Model):
    """Zona física de la planta (ej: "SMT", "Ensamble Final")."""
    __tablename__ = 'areas'

    id = db.Column(db.Integer, primary_key=True, autoincrement=True)
    nombre = db.Column(db.String(100), unique=True, nullable=False)
    descripcion = db.Column(db.Text, nullable=True)
    fecha_creacion = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))

    lineas = db.relationship('LineaProduccion', backref='area', lazy=True,
                             cascade="all, delete-orphan", order_by='LineaProduccion.orden')

    def to_dict(self):
        return {
            'id': self.id,
            'nombre': self.nombre,
            'descripcion': self.descripcion,
            'num_lineas': len(self.lineas)
        }

    def __repr__(self):
        return f'<Area {self.nombre}>'


class LineaProduccion(db.Model):
    """
    Línea de producción dentro de un Área.
    El nombre es único dentro del área (sin distinguir mayúsculas).
    """
    __tablename__ = 'production_lines'

    id = db.Column(db.Integer, primary_key=True, autoincrement=True)
    nombre = db.Column(db.String(100), nullable=False)
    descripcion = db.Column(db.Text, nullable=True)
    area_id = db.Column(db.Integer, db.ForeignKey('areas.id', ondelete='CASCADE'), nullable=False)
    orden = db.Column(db.Integer, nullable=False, default=0)

    maquinas = db.relationship('Maquina', backref='linea', lazy=True,
                               cascade="all, delete-orphan", order_by='Maquina.orden')

    def to_dict(self):
        return {
            'id': self.id,
            'nombre': self.nombre,
            'descripcion': self.descripcion,
            'area_id': self.area_id,
            'orden': self.orden,
            'num_maquinas': len(self.maquinas)
        }

    def __repr__(self):
        return f'<LineaProduccion {self.nombre}>'
