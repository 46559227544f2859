"""
Almacén de instancias: Áreas, Líneas de Producción, Máquinas, sus Secciones
y Valores de atributo. El alta de máquinas y el cambio de tipo pasan por
propagacion_service porque materializan secciones.
"""
from app.extensions import db
from app.models.planta import Area, LineaProduccion
from app.models.maquina import Maquina, SeccionMaquina, ValorAtributo, ESTADOS_SECCION
from app.services.formulario_service import formulario_edicion, validar_valores
from app.utils.error_utils import ErrorValidacion, ErrorConflicto, obtener_o_404, log_operation, texto_limpio


# =============================================================================
# Áreas
# =============================================================================

def listar_areas():
    return Area.query.order_by(Area.nombre).all()


def crear_area(nombre, descripcion=None):
    nombre = texto_limpio(nombre, 'nombre')
    if not nombre:
        raise ErrorValidacion('El nombre del área es requerido')
    if Area.query.filter(Area.nombre.ilike(nombre)).first():
        raise ErrorConflicto(f'Ya existe un área con el nombre "{nombre}"')

    area = Area(nombre=nombre, descripcion=descripcion)
    db.session.add(area)
    db.session.commit()
    log_operation('crear_area', area_id=area.id)
    return area


def actualizar_area(area_id, nombre=None, descripcion=None):
    area = obtener_o_404(Area, area_id, 'Área')
    if nombre is not None:
        nombre = texto_limpio(nombre, 'nombre')
        if not nombre:
            raise ErrorValidacion('El nombre del área es requerido')
        duplicada = Area.query.filter(Area.nombre.ilike(nombre), Area.id != area.id).first()
        if duplicada:
            raise ErrorConflicto(f'Ya existe un área con el nombre "{nombre}"')
        area.nombre = nombre
    if descripcion is not None:
        area.descripcion = descripcion
    db.session.commit()
    return area


def eliminar_area(area_id):
    area = obtener_o_404(Area, area_id, 'Área')
    db.session.delete(area)
    db.session.commit()
    log_operation('eliminar_area', area_id=area_id)


# =============================================================================
# Líneas de Producción
# =============================================================================

def listar_lineas(area_id=None):
    query = LineaProduccion.query
    if area_id is not None:
        query = query.filter_by(area_id=area_id)
    return query.order_by(LineaProduccion.orden, LineaProduccion.id).all()


def _validar_nombre_linea(nombre, area_id, excluir_id=None):
    nombre = texto_limpio(nombre, 'nombre')
    if not nombre:
        raise ErrorValidacion('El nombre de la línea es requerido')
    query = LineaProduccion.query.filter(LineaProduccion.area_id == area_id,
                                         LineaProduccion.nombre.ilike(nombre))
    if excluir_id is not None:
        query = query.filter(LineaProduccion.id != excluir_id)
    if query.first():
        raise ErrorConflicto(f'Ya existe una línea "{nombre}" en esta área')
    return nombre


def crear_linea(nombre, area_id, descripcion=None):
    obtener_o_404(Area, area_id, 'Área')
    nombre = _validar_nombre_linea(nombre, area_id)
    siguiente = (db.session.query(db.func.max(LineaProduccion.orden))
                 .filter(LineaProduccion.area_id == area_id).scalar())

    linea = LineaProduccion(
        nombre=nombre,
        area_id=area_id,
        descripcion=descripcion,
        orden=(siguiente + 1) if siguiente is not None else 0
    )
    db.session.add(linea)
    db.session.commit()
    log_operation('crear_linea', linea_id=linea.id, area_id=area_id)
    return linea


def actualizar_linea(linea_id, nombre=None, descripcion=None, orden=None):
    linea = obtener_o_404(LineaProduccion, linea_id, 'Línea')
    if nombre is not None:
        linea.nombre = _validar_nombre_linea(nombre, linea.area_id, excluir_id=linea.id)
    if descripcion is not None:
        linea.descripcion = descripcion
    if orden is not None:
        linea.orden = int(orden)
    db.session.commit()
    return linea


def eliminar_linea(linea_id):
    linea = obtener_o_404(LineaProduccion, linea_id, 'Línea')
    db.session.delete(linea)
    db.session.commit()
    log_operation('eliminar_linea', linea_id=linea_id)


# =============================================================================
# Máquinas
# =============================================================================

def listar_maquinas(linea_id=None, tipo_maquina=None):
    query = Maquina.query
    if linea_id is not None:
        query = query.filter_by(linea_id=linea_id)
    if tipo_maquina:
        query = query.filter_by(tipo_maquina=tipo_maquina)
    return query.order_by(Maquina.linea_id, Maquina.orden, Maquina.id).all()


def obtener_maquina(maquina_id):
    return obtener_o_404(Maquina, maquina_id, 'Equipo')


def eliminar_maquina(maquina_id):
    """Elimina la máquina con sus secciones y valores."""
    maquina = obtener_maquina(maquina_id)
    ids_secciones = [s.id for s in maquina.secciones]
    if ids_secciones:
        ValorAtributo.query.filter(ValorAtributo.seccion_id.in_(ids_secciones)).delete(synchronize_session=False)
    db.session.delete(maquina)
    db.session.commit()
    log_operation('eliminar_maquina', maquina_id=maquina_id, secciones=len(ids_secciones))


# =============================================================================
# Secciones y Valores (resolver)
# =============================================================================

def secciones_de_maquina(maquina_id):
    """Secciones materializadas de la máquina por orden ascendente."""
    obtener_maquina(maquina_id)
    return (SeccionMaquina.query
            .filter_by(maquina_id=maquina_id)
            .order_by(SeccionMaquina.orden, SeccionMaquina.id)
            .all())


def valores_de_secciones(ids_secciones):
    """
    Valores de todas las secciones pedidas en una sola consulta.

    Returns:
        {seccion_id: [ValorAtributo ordenados por orden de la definición]}
    """
    resultado = {sid: [] for sid in ids_secciones}
    if not ids_secciones:
        return resultado
    valores = ValorAtributo.query.filter(ValorAtributo.seccion_id.in_(ids_secciones)).all()
    for valor in valores:
        resultado[valor.seccion_id].append(valor)
    for lista in resultado.values():
        lista.sort(key=lambda v: (v.definicion.orden if v.definicion else 0, v.id))
    return resultado


def actualizar_estado_seccion(seccion_id, estado):
    if estado not in ESTADOS_SECCION:
        raise ErrorValidacion(f"Estado inválido '{estado}'. Valores permitidos: {', '.join(ESTADOS_SECCION)}")
    seccion = obtener_o_404(SeccionMaquina, seccion_id, 'Sección')
    seccion.estado = estado
    db.session.commit()
    log_operation('actualizar_estado_seccion', seccion_id=seccion_id, estado=estado)
    return seccion


def actualizar_valores_maquina(maquina_id, valores):
    """
    Guarda los valores editados de la máquina.

    Args:
        valores: {valor_id: nuevo_valor}. Los campos no enviados conservan su valor.

    Se valida todo el formulario antes de escribir: un requerido vacío o un
    formato inválido rechaza la edición completa. Solo se escribe la columna `valor`.
    """
    obtener_maquina(maquina_id)
    formulario = formulario_edicion(maquina_id)
    campos = formulario.campos_por_valor

    ajenos = [vid for vid in valores if vid not in campos]
    if ajenos:
        raise ErrorValidacion(
            'Valores que no pertenecen a este equipo',
            payload={'valores': ajenos}
        )
    errores = validar_valores(formulario, valores, por_valor=True)
    if errores:
        raise ErrorValidacion(
            f"Campos requeridos faltantes o inválidos: {', '.join(errores)}",
            payload={'campos': errores}
        )

    actualizados = []
    for valor_id, nuevo in valores.items():
        valor = db.session.get(ValorAtributo, valor_id)
        if valor.valor != nuevo:
            valor.valor = nuevo
            actualizados.append(valor)
    db.session.commit()

    log_operation('actualizar_valores_maquina', maquina_id=maquina_id, actualizados=len(actualizados))
    return actualizados
