"""
Instancias: Máquinas físicas y su esquema materializado
(SeccionMaquina -> ValorAtributo).
"""
from app.extensions import db


ESTADOS_SECCION = ('ok', 'warning', 'fault')


class Maquina(db.Model):
    """
    Equipo físico en una línea de producción.
    Su tipo_maquina apunta por nombre a TipoMaquina.nombre (puede ser vacío).
    """
    __tablename__ = 'machines'

    id = db.Column(db.Integer, primary_key=True, autoincrement=True)
    nombre = db.Column(db.String(100), nullable=False)
    tipo_maquina = db.Column(db.String(100), nullable=True, index=True)
    linea_id = db.Column(db.Integer, db.ForeignKey('production_lines.id', ondelete='CASCADE'), nullable=False)
    numero_serie = db.Column(db.String(100), nullable=True)
    imagen_url = db.Column(db.String(500), nullable=True)
    imagen_placa_url = db.Column(db.String(500), nullable=True)
    orden = db.Column(db.Integer, nullable=False, default=0)

    secciones = db.relationship('SeccionMaquina', backref='maquina', lazy=True,
                                cascade="all, delete-orphan", order_by='SeccionMaquina.orden')

    def to_dict(self, incluir_secciones=False):
        data = {
            'id': self.id,
            'nombre': self.nombre,
            'tipo_maquina': self.tipo_maquina,
            'linea_id': self.linea_id,
            'numero_serie': self.numero_serie,
            'imagen_url': self.imagen_url,
            'imagen_placa_url': self.imagen_placa_url,
            'orden': self.orden
        }
        if incluir_secciones:
            data['secciones'] = [s.to_dict(incluir_valores=True) for s in self.secciones]
        return data

    def __repr__(self):
        return f'<Maquina {self.nombre} ({self.tipo_maquina})>'


class SeccionMaquina(db.Model):
    """
    Ocurrencia materializada de una PlantillaSeccion en una Máquina.
    Nombre, descripción y orden se copian de la plantilla y se re-sincronizan al editarla.
    """
    __tablename__ = 'machine_sections'

    id = db.Column(db.Integer, primary_key=True, autoincrement=True)
    maquina_id = db.Column(db.Integer, db.ForeignKey('machines.id', ondelete='CASCADE'), nullable=False, index=True)
    plantilla_id = db.Column(db.Integer, db.ForeignKey('machine_section_templates.id', ondelete='CASCADE'),
                             nullable=True, index=True)
    nombre = db.Column(db.String(150), nullable=False)
    descripcion = db.Column(db.Text, nullable=True)
    estado = db.Column(db.String(10), nullable=False, default='ok')
    orden = db.Column(db.Integer, nullable=False, default=0)

    valores = db.relationship('ValorAtributo', backref='seccion', lazy=True, cascade="all, delete-orphan")

    # Una sola sección por (máquina, plantilla)
    __table_args__ = (
        db.UniqueConstraint('maquina_id', 'plantilla_id', name='uq_seccion_maquina_plantilla'),
    )

    def to_dict(self, incluir_valores=False):
        data = {
            'id': self.id,
            'maquina_id': self.maquina_id,
            'plantilla_id': self.plantilla_id,
            'nombre': self.nombre,
            'descripcion': self.descripcion,
            'estado': self.estado,
            'orden': self.orden
        }
        if incluir_valores:
            data['valores'] = [v.to_dict() for v in sorted(
                self.valores, key=lambda v: (v.definicion.orden if v.definicion else 0, v.id))]
        return data

    def __repr__(self):
        return f'<SeccionMaquina {self.nombre} maq={self.maquina_id}>'


class ValorAtributo(db.Model):
    """
    Ocurrencia materializada de una DefinicionAtributo en una SeccionMaquina.
    nombre_atributo es una copia desnormalizada de DefinicionAtributo.nombre_atributo.
    """
    __tablename__ = 'section_attribute_values'

    id = db.Column(db.Integer, primary_key=True, autoincrement=True)
    seccion_id = db.Column(db.Integer, db.ForeignKey('machine_sections.id', ondelete='CASCADE'),
                           nullable=False, index=True)
    definicion_id = db.Column(db.Integer, db.ForeignKey('section_attribute_definitions.id', ondelete='CASCADE'),
                              nullable=False, index=True)
    nombre_atributo = db.Column(db.String(150), nullable=False)
    valor = db.Column(db.Text, nullable=True)

    definicion = db.relationship('DefinicionAtributo', lazy='joined')

    __table_args__ = (
        db.UniqueConstraint('seccion_id', 'definicion_id', name='uq_valor_seccion_definicion'),
    )

    def to_dict(self):
        definicion = self.definicion
        return {
            'id': self.id,
            'seccion_id': self.seccion_id,
            'definicion_id': self.definicion_id,
            'nombre_atributo': self.nombre_atributo,
            'valor': self.valor,
            'tipo_atributo': definicion.tipo_atributo if definicion else None,
            'es_requerido': definicion.es_requerido if definicion else False,
            'opciones': list(definicion.opciones) if definicion and definicion.opciones else None
        }

    def __repr__(self):
        return f'<ValorAtributo {self.nombre_atributo}={self.valor!r}>'
