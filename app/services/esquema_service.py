"""
Almacén de esquema: Tipos de Máquina, Plantillas de Sección y Definiciones de Atributo.
Lecturas, alta de tipos y reordenamiento. Las operaciones que deben propagarse
a las máquinas existentes viven en propagacion_service.
"""
from app.extensions import db
from app.models.tipo_maquina import TipoMaquina, PlantillaSeccion, DefinicionAtributo
from app.models.maquina import SeccionMaquina
from app.utils.error_utils import (
    ErrorValidacion, ErrorConflicto, ErrorNoEncontrado, obtener_o_404, log_operation, texto_limpio
)


# =============================================================================
# Tipos de Máquina
# =============================================================================

def listar_tipos():
    return TipoMaquina.query.order_by(TipoMaquina.orden, TipoMaquina.nombre).all()


def obtener_tipo(tipo_id):
    return obtener_o_404(TipoMaquina, tipo_id, 'Tipo de máquina')


def obtener_tipo_por_nombre(nombre):
    tipo = TipoMaquina.query.filter_by(nombre=nombre).first()
    if tipo is None:
        raise ErrorNoEncontrado(f'Tipo de máquina "{nombre}" no encontrado')
    return tipo


def nombre_tipo_disponible(nombre, excluir_id=None):
    query = TipoMaquina.query.filter(TipoMaquina.nombre == nombre)
    if excluir_id is not None:
        query = query.filter(TipoMaquina.id != excluir_id)
    return query.first() is None


def validar_nombre_tipo(nombre, excluir_id=None):
    nombre = texto_limpio(nombre, 'nombre')
    if not nombre:
        raise ErrorValidacion('El nombre del tipo de equipo es requerido')
    if not nombre_tipo_disponible(nombre, excluir_id):
        raise ErrorConflicto(f'Ya existe un tipo de equipo con el nombre "{nombre}"')
    return nombre


def limpiar_secuencias(secuencias):
    """Etiquetas de secuencia sin vacíos ni duplicados, en el orden recibido."""
    if secuencias is None:
        return []
    if not isinstance(secuencias, (list, tuple)):
        raise ErrorValidacion('secuencias debe ser una lista de textos')
    vistas = []
    for s in secuencias:
        etiqueta = str(s).strip()
        if etiqueta and etiqueta not in vistas:
            vistas.append(etiqueta)
    return vistas


def crear_tipo(nombre, secuencias=None):
    nombre = validar_nombre_tipo(nombre)
    siguiente = db.session.query(db.func.max(TipoMaquina.orden)).scalar()
    tipo = TipoMaquina(
        nombre=nombre,
        secuencias=limpiar_secuencias(secuencias),
        orden=(siguiente + 1) if siguiente is not None else 0
    )
    db.session.add(tipo)
    db.session.commit()
    log_operation('crear_tipo', tipo_id=tipo.id, nombre=nombre)
    return tipo


# =============================================================================
# Plantillas y Definiciones (lecturas)
# =============================================================================

def listar_plantillas(nombre_tipo):
    return (PlantillaSeccion.query
            .filter_by(tipo_maquina=nombre_tipo)
            .order_by(PlantillaSeccion.orden, PlantillaSeccion.id)
            .all())


def obtener_plantilla(plantilla_id):
    return obtener_o_404(PlantillaSeccion, plantilla_id, 'Plantilla de sección')


def listar_definiciones(plantilla_id):
    return (DefinicionAtributo.query
            .filter_by(plantilla_id=plantilla_id)
            .order_by(DefinicionAtributo.orden, DefinicionAtributo.id)
            .all())


def obtener_definicion(definicion_id):
    return obtener_o_404(DefinicionAtributo, definicion_id, 'Definición de atributo')


# =============================================================================
# Reordenamiento
# =============================================================================

def _hermanos(modelo, entidades):
    """Retorna la query de todos los hermanos del mismo ámbito (padre)."""
    if modelo is TipoMaquina:
        return TipoMaquina.query
    if modelo is PlantillaSeccion:
        tipos = {e.tipo_maquina for e in entidades}
        if len(tipos) != 1:
            raise ErrorValidacion('Las secciones a reordenar deben pertenecer al mismo tipo de equipo')
        return PlantillaSeccion.query.filter_by(tipo_maquina=tipos.pop())
    if modelo is DefinicionAtributo:
        plantillas = {e.plantilla_id for e in entidades}
        if len(plantillas) != 1:
            raise ErrorValidacion('Los atributos a reordenar deben pertenecer a la misma sección')
        return DefinicionAtributo.query.filter_by(plantilla_id=plantillas.pop())
    raise ValueError(f'Modelo no reordenable: {modelo.__name__}')


def reordenar(modelo, ids):
    """
    Asigna orden 0..N-1 según la lista completa de ids de un mismo ámbito.
    Todo el ámbito se escribe en un solo commit. Al reordenar plantillas,
    el nuevo orden se copia a las secciones materializadas.

    Returns:
        Lista de entidades en el nuevo orden.
    """
    if not isinstance(ids, (list, tuple)) or not ids:
        raise ErrorValidacion('Se requiere la lista ordenada de ids')
    try:
        ids = [int(i) for i in ids]
    except (TypeError, ValueError):
        raise ErrorValidacion('Los ids deben ser numéricos')
    if len(set(ids)) != len(ids):
        raise ErrorValidacion('La lista de ids contiene duplicados')

    entidades = {e.id: e for e in modelo.query.filter(modelo.id.in_(ids)).all()}
    faltantes = [i for i in ids if i not in entidades]
    if faltantes:
        raise ErrorNoEncontrado(f"Ids no encontrados: {', '.join(map(str, faltantes))}")

    ids_ambito = {e.id for e in _hermanos(modelo, entidades.values()).all()}
    if ids_ambito != set(ids):
        raise ErrorValidacion('La lista debe incluir todos los elementos del mismo ámbito')

    for posicion, entidad_id in enumerate(ids):
        entidades[entidad_id].orden = posicion
        if modelo is PlantillaSeccion:
            SeccionMaquina.query.filter_by(plantilla_id=entidad_id).update(
                {'orden': posicion}, synchronize_session=False)
    db.session.commit()

    log_operation('reordenar', modelo=modelo.__tablename__, total=len(ids))
    return [entidades[i] for i in ids]
