"""
Reportes de falla y catálogo de tipos de falla.

Un reporte nace 'open' desde la captura en planta (texto dictado, foto,
clasificación) y el supervisor lo mueve por in_review -> validated -> closed.
"""
from datetime import datetime, timezone

from app.extensions import db
from app.models.falla import TipoFalla, RegistroFalla, ESTADOS_REPORTE
from app.models.maquina import Maquina
from app.services.clasificacion_service import clasificar_falla
from app.utils.error_utils import (
    ErrorValidacion, ErrorConflicto, obtener_o_404, log_operation, texto_limpio
)


# =============================================================================
# Catálogo de Tipos de Falla
# =============================================================================

def listar_tipos_falla(solo_activos=False):
    query = TipoFalla.query
    if solo_activos:
        query = query.filter_by(activo=True)
    return query.order_by(TipoFalla.categoria, TipoFalla.nombre).all()


def obtener_tipo_falla(tipo_falla_id):
    return obtener_o_404(TipoFalla, tipo_falla_id, 'Tipo de falla')


def buscar_tipo_falla_activo(nombre):
    """Tipo activo cuyo nombre coincide (sin distinguir mayúsculas) o None."""
    if not nombre:
        return None
    return TipoFalla.query.filter(TipoFalla.nombre.ilike(nombre), TipoFalla.activo.is_(True)).first()


def limpiar_palabras_clave(palabras):
    """
    Acepta lista o texto separado por comas.
    Retorna los términos recortados, sin vacíos ni repetidos.
    """
    if palabras is None:
        return []
    if isinstance(palabras, str):
        palabras = palabras.split(',')
    if not isinstance(palabras, (list, tuple)):
        raise ErrorValidacion('palabras_clave debe ser una lista de textos')
    vistas = []
    for palabra in palabras:
        termino = texto_limpio(palabra, 'palabras_clave')
        if termino and termino.lower() not in [v.lower() for v in vistas]:
            vistas.append(termino)
    return vistas


def _validar_nombre_tipo_falla(nombre, excluir_id=None):
    nombre = texto_limpio(nombre, 'nombre')
    if not nombre:
        raise ErrorValidacion('El nombre del tipo de falla es requerido')
    query = TipoFalla.query.filter(TipoFalla.nombre.ilike(nombre))
    if excluir_id is not None:
        query = query.filter(TipoFalla.id != excluir_id)
    if query.first():
        raise ErrorConflicto(f'Ya existe un tipo de falla con el nombre "{nombre}"')
    return nombre


def _exigir_booleano(valor):
    if not isinstance(valor, bool):
        raise ErrorValidacion('activo debe ser true o false')
    return valor


def crear_tipo_falla(nombre, descripcion=None, categoria=None, palabras_clave=None, activo=True):
    tipo = TipoFalla(
        nombre=_validar_nombre_tipo_falla(nombre),
        descripcion=descripcion,
        categoria=texto_limpio(categoria, 'categoria') or None,
        palabras_clave=limpiar_palabras_clave(palabras_clave),
        activo=_exigir_booleano(activo)
    )
    db.session.add(tipo)
    db.session.commit()
    log_operation('crear_tipo_falla', tipo_falla_id=tipo.id, nombre=tipo.nombre)
    return tipo


CAMPOS_TIPO_FALLA = ('nombre', 'descripcion', 'categoria', 'palabras_clave', 'activo')


def actualizar_tipo_falla(tipo_falla_id, **campos):
    tipo = obtener_tipo_falla(tipo_falla_id)
    if 'nombre' in campos:
        tipo.nombre = _validar_nombre_tipo_falla(campos['nombre'], excluir_id=tipo.id)
    if 'descripcion' in campos:
        tipo.descripcion = campos['descripcion']
    if 'categoria' in campos:
        tipo.categoria = texto_limpio(campos['categoria'], 'categoria') or None
    if 'palabras_clave' in campos:
        tipo.palabras_clave = limpiar_palabras_clave(campos['palabras_clave'])
    if 'activo' in campos:
        tipo.activo = _exigir_booleano(campos['activo'])
    db.session.commit()
    return tipo


def cambiar_activo_tipo_falla(tipo_falla_id, activo):
    """Un tipo inactivo deja de ofrecerse en la captura; los reportes previos lo conservan."""
    tipo = obtener_tipo_falla(tipo_falla_id)
    tipo.activo = _exigir_booleano(activo)
    db.session.commit()
    log_operation('cambiar_activo_tipo_falla', tipo_falla_id=tipo.id, activo=tipo.activo)
    return tipo


def eliminar_tipo_falla(tipo_falla_id):
    """
    Elimina el tipo del catálogo. Los reportes que lo usaban quedan sin
    tipo_falla_id pero conservan el texto en falla_clasificada.
    """
    tipo = obtener_tipo_falla(tipo_falla_id)
    desvinculados = (RegistroFalla.query
                     .filter_by(tipo_falla_id=tipo.id)
                     .update({'tipo_falla_id': None}, synchronize_session=False))
    db.session.delete(tipo)
    db.session.commit()
    log_operation('eliminar_tipo_falla', tipo_falla_id=tipo_falla_id, reportes=desvinculados)


# =============================================================================
# Reportes de Falla
# =============================================================================

def _validar_estado(estado):
    if estado not in ESTADOS_REPORTE:
        raise ErrorValidacion(f"Estado inválido: {estado}. Opciones: {', '.join(ESTADOS_REPORTE)}")
    return estado


def crear_registro(operador, maquina_id, descripcion=None, texto_voz=None, falla_clasificada=None,
                   tipo_falla_id=None, foto_url=None, linea_id=None, area_id=None):
    """
    Registra una falla sobre un equipo.

    Área y línea se toman del equipo; si vienen en el payload deben coincidir.
    Si hay texto dictado sin clasificación ni tipo elegido, se clasifica aquí.
    La descripción por defecto es el texto dictado o, si no hay, la falla clasificada.

    Returns:
        RegistroFalla en estado 'open'
    """
    operador = texto_limpio(operador, 'operador')
    if not operador:
        raise ErrorValidacion('El operador es requerido')

    maquina = db.session.get(Maquina, maquina_id) if maquina_id is not None else None
    if maquina is None:
        raise ErrorValidacion(f'Equipo {maquina_id} no encontrado')
    linea = maquina.linea
    if linea_id is not None and linea_id != linea.id:
        raise ErrorValidacion(f'El equipo "{maquina.nombre}" no pertenece a la línea {linea_id}')
    if area_id is not None and area_id != linea.area_id:
        raise ErrorValidacion(f'La línea "{linea.nombre}" no pertenece al área {area_id}')

    tipo_falla = None
    if tipo_falla_id is not None:
        tipo_falla = db.session.get(TipoFalla, tipo_falla_id)
        if tipo_falla is None:
            raise ErrorValidacion(f'Tipo de falla {tipo_falla_id} no encontrado')
        if not tipo_falla.activo:
            raise ErrorValidacion(f'El tipo de falla "{tipo_falla.nombre}" está inactivo')

    texto_voz = texto_limpio(texto_voz, 'texto_voz') or None
    descripcion = texto_limpio(descripcion, 'descripcion') or None
    falla_clasificada = texto_limpio(falla_clasificada, 'falla_clasificada') or None
    if not (descripcion or texto_voz or falla_clasificada or tipo_falla):
        raise ErrorValidacion('Describa la falla: se requiere descripción, texto dictado o tipo de falla')

    if texto_voz and not falla_clasificada and tipo_falla is None:
        falla_clasificada = clasificar_falla(texto_voz, maquina.tipo_maquina)['clasificacion']
    if tipo_falla is None:
        tipo_falla = buscar_tipo_falla_activo(falla_clasificada)
    if falla_clasificada is None and tipo_falla is not None:
        falla_clasificada = tipo_falla.nombre

    registro = RegistroFalla(
        operador=operador,
        area_id=linea.area_id,
        linea_id=linea.id,
        maquina_id=maquina.id,
        tipo_falla_id=tipo_falla.id if tipo_falla else None,
        texto_voz=texto_voz,
        falla_clasificada=falla_clasificada,
        descripcion=descripcion or texto_voz or falla_clasificada,
        foto_url=foto_url,
        estado='open'
    )
    db.session.add(registro)
    db.session.commit()
    log_operation('crear_registro_falla', registro_id=registro.id, maquina_id=maquina.id,
                  falla=falla_clasificada)
    return registro


def listar_registros(estado=None, maquina_id=None, linea_id=None, area_id=None, operador=None):
    """Reportes más recientes primero, con filtros opcionales."""
    query = RegistroFalla.query
    if estado:
        query = query.filter_by(estado=_validar_estado(estado))
    if maquina_id is not None:
        query = query.filter_by(maquina_id=maquina_id)
    if linea_id is not None:
        query = query.filter_by(linea_id=linea_id)
    if area_id is not None:
        query = query.filter_by(area_id=area_id)
    if operador:
        query = query.filter_by(operador=operador)
    return query.order_by(RegistroFalla.fecha_creacion.desc(), RegistroFalla.id.desc()).all()


def obtener_registro(registro_id):
    return obtener_o_404(RegistroFalla, registro_id, 'Reporte de falla')


def actualizar_estado(registro_id, estado, notas_supervisor=None):
    """
    Cambia el estado del reporte. Validarlo registra la fecha de validación;
    regresarlo a open/in_review la borra.
    """
    registro = obtener_registro(registro_id)
    anterior = registro.estado
    registro.estado = _validar_estado(estado)
    if estado == 'validated':
        registro.fecha_validacion = datetime.now(timezone.utc)
    elif estado in ('open', 'in_review'):
        registro.fecha_validacion = None
    if notas_supervisor is not None:
        registro.notas_supervisor = texto_limpio(notas_supervisor, 'notas_supervisor') or None
    db.session.commit()
    log_operation('actualizar_estado_falla', registro_id=registro.id, anterior=anterior, nuevo=estado)
    return registro
