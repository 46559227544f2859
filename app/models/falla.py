"""
Reportes de falla capturados en planta y catálogo de tipos de falla.
"""
from datetime import datetime, timezone
from app.extensions import db


# Ciclo del reporte: abierto -> en revisión -> validado -> cerrado
ESTADOS_REPORTE = ('open', 'in_review', 'validated', 'closed')

ETIQUETAS_ESTADO = {
    'open': 'Abierto',
    'in_review': 'En Revisión',
    'validated': 'Validado',
    'closed': 'Cerrado',
}


class TipoFalla(db.Model):
    """Falla estandarizada del catálogo (ej: "Puente de Soldadura")."""
    __tablename__ = 'fault_types'

    id = db.Column(db.Integer, primary_key=True, autoincrement=True)
    nombre = db.Column(db.String(150), unique=True, nullable=False)
    descripcion = db.Column(db.Text, nullable=True)
    categoria = db.Column(db.String(100), nullable=True)
    # Términos coloquiales que el clasificador asocia a esta falla
    palabras_clave = db.Column(db.JSON, nullable=False, default=list)
    activo = db.Column(db.Boolean, nullable=False, default=True)
    fecha_creacion = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))

    def to_dict(self):
        return {
            'id': self.id,
            'nombre': self.nombre,
            'descripcion': self.descripcion,
            'categoria': self.categoria,
            'palabras_clave': list(self.palabras_clave or []),
            'activo': self.activo,
            'fecha_creacion': self.fecha_creacion.isoformat() if self.fecha_creacion else None
        }

    def __repr__(self):
        return f'<TipoFalla {self.nombre}>'


class RegistroFalla(db.Model):
    """
    Reporte de una falla en un equipo.
    Area y línea se guardan junto a la máquina para filtrar sin joins;
    deben coincidir con la ubicación del equipo al momento del reporte.
    """
    __tablename__ = 'event_logs'

    id = db.Column(db.Integer, primary_key=True, autoincrement=True)
    operador = db.Column(db.String(100), nullable=False)
    area_id = db.Column(db.Integer, db.ForeignKey('areas.id', ondelete='CASCADE'), nullable=False, index=True)
    linea_id = db.Column(db.Integer, db.ForeignKey('production_lines.id', ondelete='CASCADE'),
                         nullable=False, index=True)
    maquina_id = db.Column(db.Integer, db.ForeignKey('machines.id', ondelete='CASCADE'), nullable=False, index=True)
    tipo_falla_id = db.Column(db.Integer, db.ForeignKey('fault_types.id', ondelete='SET NULL'), nullable=True)

    texto_voz = db.Column(db.Text, nullable=True)
    falla_clasificada = db.Column(db.String(200), nullable=True)
    descripcion = db.Column(db.Text, nullable=True)
    foto_url = db.Column(db.String(500), nullable=True)

    estado = db.Column(db.String(20), nullable=False, default='open', index=True)
    notas_supervisor = db.Column(db.Text, nullable=True)
    fecha_creacion = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc), index=True)
    fecha_validacion = db.Column(db.DateTime, nullable=True)

    # Borrar un equipo borra su historial de fallas
    maquina = db.relationship('Maquina', backref=db.backref('registros_falla', lazy=True,
                                                             cascade="all, delete-orphan"))
    linea = db.relationship('LineaProduccion')
    area = db.relationship('Area')
    tipo_falla = db.relationship('TipoFalla')

    def to_dict(self):
        return {
            'id': self.id,
            'operador': self.operador,
            'area_id': self.area_id,
            'area': self.area.nombre if self.area else None,
            'linea_id': self.linea_id,
            'linea': self.linea.nombre if self.linea else None,
            'maquina_id': self.maquina_id,
            'maquina': self.maquina.nombre if self.maquina else None,
            'tipo_maquina': self.maquina.tipo_maquina if self.maquina else None,
            'tipo_falla_id': self.tipo_falla_id,
            'tipo_falla': self.tipo_falla.nombre if self.tipo_falla else None,
            'texto_voz': self.texto_voz,
            'falla_clasificada': self.falla_clasificada,
            'descripcion': self.descripcion,
            'foto_url': self.foto_url,
            'estado': self.estado,
            'notas_supervisor': self.notas_supervisor,
            'fecha_creacion': self.fecha_creacion.isoformat() if self.fecha_creacion else None,
            'fecha_validacion': self.fecha_validacion.isoformat() if self.fecha_validacion else None
        }

    def __repr__(self):
        return f'<RegistroFalla {self.id} maq={self.maquina_id} {self.estado}>'
