"""
Esquema de Tipos de Máquina: Tipo -> Plantillas de Sección -> Definiciones de Atributo.

La relación Tipo <-> Plantilla/Máquina es por NOMBRE (columna tipo_maquina),
no por id. Renombrar un tipo obliga a actualizar ambas tablas.
"""
from datetime import datetime, timezone
from enum import Enum
from app.extensions import db


class TipoAtributo(str, Enum):
    """Tipos de campo soportados por las definiciones de atributo."""
    TEXT = 'text'
    NUMBER = 'number'
    BOOLEAN = 'boolean'
    DATE = 'date'
    SELECT = 'select'
    TEXTAREA = 'textarea'

    @property
    def etiqueta(self):
        return ETIQUETAS_TIPO[self]

    @classmethod
    def desde_valor(cls, valor):
        try:
            return cls(valor)
        except ValueError:
            validos = ', '.join(t.value for t in cls)
            raise ValueError(f"Tipo de atributo inválido '{valor}'. Valores permitidos: {validos}")


ETIQUETAS_TIPO = {
    TipoAtributo.TEXT: 'Texto',
    TipoAtributo.NUMBER: 'Número',
    TipoAtributo.BOOLEAN: 'Sí/No',
    TipoAtributo.DATE: 'Fecha',
    TipoAtributo.SELECT: 'Selección',
    TipoAtributo.TEXTAREA: 'Texto largo',
}


class TipoMaquina(db.Model):
    """
    Categoría de equipo (ej: "SPI", "AOI") que define un esquema reutilizable
    de secciones y atributos.
    """
    __tablename__ = 'machine_types'

    id = db.Column(db.Integer, primary_key=True, autoincrement=True)
    nombre = db.Column(db.String(100), unique=True, nullable=False)
    secuencias = db.Column(db.JSON, nullable=False, default=list)  # ["Top", "Bottom"]
    orden = db.Column(db.Integer, nullable=False, default=0)
    fecha_creacion = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))

    @property
    def plantillas(self):
        return (PlantillaSeccion.query
                .filter_by(tipo_maquina=self.nombre)
                .order_by(PlantillaSeccion.orden, PlantillaSeccion.id)
                .all())

    def to_dict(self, incluir_plantillas=False):
        data = {
            'id': self.id,
            'nombre': self.nombre,
            'secuencias': list(self.secuencias or []),
            'orden': self.orden,
            'fecha_creacion': self.fecha_creacion.isoformat() if self.fecha_creacion else None
        }
        if incluir_plantillas:
            data['plantillas'] = [p.to_dict(incluir_atributos=True) for p in self.plantillas]
        return data

    def __repr__(self):
        return f'<TipoMaquina {self.nombre}>'


class PlantillaSeccion(db.Model):
    """
    Sub-componente de un tipo de máquina (ej: "Gantry 1").
    Cada máquina del tipo materializa una SeccionMaquina por plantilla.
    """
    __tablename__ = 'machine_section_templates'

    id = db.Column(db.Integer, primary_key=True, autoincrement=True)
    tipo_maquina = db.Column(db.String(100), nullable=False, index=True)  # TipoMaquina.nombre
    nombre_seccion = db.Column(db.String(150), nullable=False)
    descripcion = db.Column(db.Text, nullable=True)
    orden = db.Column(db.Integer, nullable=False, default=0)

    definiciones = db.relationship(
        'DefinicionAtributo', backref='plantilla', lazy=True, passive_deletes=True,
        order_by='DefinicionAtributo.orden'
    )

    def to_dict(self, incluir_atributos=False):
        data = {
            'id': self.id,
            'tipo_maquina': self.tipo_maquina,
            'nombre_seccion': self.nombre_seccion,
            'descripcion': self.descripcion,
            'orden': self.orden,
            'num_atributos': len(self.definiciones)
        }
        if incluir_atributos:
            data['atributos'] = [d.to_dict() for d in self.definiciones]
        return data

    def __repr__(self):
        return f'<PlantillaSeccion {self.tipo_maquina}/{self.nombre_seccion}>'


class DefinicionAtributo(db.Model):
    """
    Campo tipado de una plantilla. Cada sección que materializa la plantilla
    tiene exactamente un ValorAtributo por definición.
    """
    __tablename__ = 'section_attribute_definitions'

    id = db.Column(db.Integer, primary_key=True, autoincrement=True)
    plantilla_id = db.Column(db.Integer, db.ForeignKey('machine_section_templates.id', ondelete='CASCADE'),
                             nullable=False, index=True)
    nombre_atributo = db.Column(db.String(150), nullable=False)
    tipo_atributo = db.Column(db.String(20), nullable=False, default=TipoAtributo.TEXT.value)
    es_requerido = db.Column(db.Boolean, nullable=False, default=False)
    opciones = db.Column(db.JSON, nullable=True)  # Solo para tipo 'select'
    orden = db.Column(db.Integer, nullable=False, default=0)

    @property
    def tipo(self):
        return TipoAtributo(self.tipo_atributo)

    def to_dict(self):
        return {
            'id': self.id,
            'plantilla_id': self.plantilla_id,
            'nombre_atributo': self.nombre_atributo,
            'tipo_atributo': self.tipo_atributo,
            'tipo_etiqueta': self.tipo.etiqueta,
            'es_requerido': self.es_requerido,
            'opciones': list(self.opciones) if self.opciones else None,
            'orden': self.orden
        }

    def __repr__(self):
        return f'<DefinicionAtributo {self.nombre_atributo} ({self.tipo_atributo})>'
