"""
Motor de propagación de plantillas.

Mantiene sincronizado el esquema (Tipo -> Plantilla -> Definición) con lo
materializado en cada máquina (Máquina -> Sección -> Valor).

Reglas:
- Los fan-out recorren plantillas/secciones/definiciones por `orden` ascendente.
- Cada destino (máquina o sección) se confirma con su propio commit. Si un
  destino falla se hace rollback de ese destino, se registra el error y se
  continúa con los demás. Al terminar se lanza ErrorPropagacion con la lista
  de fallas; lo ya confirmado NO se revierte.
- Crear una sección/valor es idempotente por (maquina_id, plantilla_id) y
  (seccion_id, definicion_id). `reconciliar_tipo` repara cualquier desfase.
- Cada operación retorna ResultadoPropagacion con el conjunto de entidades afectadas.
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, NamedTuple, Optional, Set

from sqlalchemy import or_
from sqlalchemy.exc import SQLAlchemyError

from app.extensions import db
from app.models.planta import LineaProduccion
from app.models.tipo_maquina import TipoMaquina, PlantillaSeccion, DefinicionAtributo, TipoAtributo
from app.models.maquina import Maquina, SeccionMaquina, ValorAtributo
from app.services import esquema_service
from app.services.formulario_service import ClaveCampo, formulario_creacion, normalizar_valor, validar_valores
from app.utils.error_utils import (
    ErrorValidacion, ErrorConflicto, ErrorNoEncontrado, ErrorPropagacion, obtener_o_404, log_operation,
    texto_limpio
)

logger = logging.getLogger('planta')

SUFIJO_COPIA = ' (Copia)'


@dataclass
class EntidadesAfectadas:
    """Ids tocados por una operación, para que el cliente refresque solo eso."""
    tipos: Set[int] = field(default_factory=set)
    plantillas: Set[int] = field(default_factory=set)
    definiciones: Set[int] = field(default_factory=set)
    maquinas: Set[int] = field(default_factory=set)
    secciones: Set[int] = field(default_factory=set)
    valores: Set[int] = field(default_factory=set)

    def unir(self, otro: 'EntidadesAfectadas'):
        for nombre in ('tipos', 'plantillas', 'definiciones', 'maquinas', 'secciones', 'valores'):
            getattr(self, nombre).update(getattr(otro, nombre))
        return self

    def resumen(self) -> str:
        return ', '.join(f"{len(getattr(self, n))} {n}" for n in
                         ('tipos', 'plantillas', 'definiciones', 'maquinas', 'secciones', 'valores'))

    def to_dict(self) -> dict:
        return {
            'tipos': sorted(self.tipos),
            'plantillas': sorted(self.plantillas),
            'definiciones': sorted(self.definiciones),
            'maquinas': sorted(self.maquinas),
            'secciones': sorted(self.secciones),
            'valores': sorted(self.valores)
        }


@dataclass
class ResultadoPropagacion:
    entidad: Any = None
    afectados: EntidadesAfectadas = field(default_factory=EntidadesAfectadas)

    def to_dict(self) -> dict:
        return {
            'data': self.entidad.to_dict() if self.entidad is not None else None,
            'afectados': self.afectados.to_dict()
        }


class _Plantilla(NamedTuple):
    id: int
    tipo_maquina: str
    nombre: str
    descripcion: Optional[str]
    orden: int


class _Definicion(NamedTuple):
    id: int
    nombre: str


def _snapshot(plantilla: PlantillaSeccion):
    """Copia plana de la plantilla y sus definiciones (sobrevive a commits/rollbacks)."""
    datos = _Plantilla(plantilla.id, plantilla.tipo_maquina, plantilla.nombre_seccion,
                       plantilla.descripcion, plantilla.orden or 0)
    definiciones = [_Definicion(d.id, d.nombre_atributo)
                    for d in esquema_service.listar_definiciones(plantilla.id)]
    return datos, definiciones


# =============================================================================
# Ejecución por destino
# =============================================================================

def _por_destino(operacion: str, tipo_destino: str, ids: List[int], accion,
                 afectados: EntidadesAfectadas) -> List[dict]:
    """
    Ejecuta `accion(id, afectados_del_destino)` para cada destino con su propio
    commit. Un destino fallido no detiene a los demás y no suma afectados.

    Returns:
        Lista de errores [{'destino', 'id', 'error'}]
    """
    errores = []
    for destino_id in ids:
        parcial = EntidadesAfectadas()
        try:
            accion(destino_id, parcial)
            db.session.commit()
            afectados.unir(parcial)
        except SQLAlchemyError as e:
            db.session.rollback()
            logger.error(f"{operacion}: fallo en {tipo_destino} {destino_id}: {e}")
            errores.append({'destino': tipo_destino, 'id': destino_id, 'error': str(e)})
    return errores


def _finalizar(operacion: str, resultado: ResultadoPropagacion, errores: List[dict], **context):
    if errores:
        log_operation(operacion, status='error', fallidos=len(errores), **context)
        raise ErrorPropagacion(
            f"{operacion}: {len(errores)} destino(s) no se sincronizaron. Reintente la operación.",
            errores,
            resultado.afectados
        )
    log_operation(operacion, afectados=resultado.afectados.resumen(), **context)
    return resultado


def _ids_maquinas_de_tipo(nombre_tipo: str) -> List[int]:
    filas = (db.session.query(Maquina.id)
             .filter(Maquina.tipo_maquina == nombre_tipo)
             .order_by(Maquina.orden, Maquina.id)
             .all())
    return [f[0] for f in filas]


def _ids_secciones_de_plantilla(plantilla_id: int) -> List[int]:
    filas = (db.session.query(SeccionMaquina.id)
             .filter(SeccionMaquina.plantilla_id == plantilla_id)
             .order_by(SeccionMaquina.orden, SeccionMaquina.id)
             .all())
    return [f[0] for f in filas]


# =============================================================================
# Materialización
# =============================================================================

def _materializar_seccion(maquina_id: int, plantilla: _Plantilla, definiciones: List[_Definicion],
                          afectados: EntidadesAfectadas, valores: Dict[ClaveCampo, Optional[str]] = None):
    """
    Crea la sección de `plantilla` en la máquina con un valor por definición.
    No hace nada si la máquina ya tiene esa sección.
    """
    existente = SeccionMaquina.query.filter_by(maquina_id=maquina_id, plantilla_id=plantilla.id).first()
    if existente is not None:
        return None

    seccion = SeccionMaquina(
        maquina_id=maquina_id,
        plantilla_id=plantilla.id,
        nombre=plantilla.nombre,
        descripcion=plantilla.descripcion,
        orden=plantilla.orden,
        estado='ok'
    )
    db.session.add(seccion)
    db.session.flush()

    nuevos = []
    for definicion in definiciones:
        valor = (valores or {}).get(ClaveCampo(plantilla.id, definicion.id))
        nuevos.append(ValorAtributo(
            seccion_id=seccion.id,
            definicion_id=definicion.id,
            nombre_atributo=definicion.nombre,
            valor=valor
        ))
    db.session.add_all(nuevos)
    db.session.flush()

    afectados.maquinas.add(maquina_id)
    afectados.secciones.add(seccion.id)
    afectados.valores.update(v.id for v in nuevos)
    return seccion


def _materializar_valor(seccion_id: int, definicion: _Definicion, afectados: EntidadesAfectadas):
    existente = ValorAtributo.query.filter_by(seccion_id=seccion_id, definicion_id=definicion.id).first()
    if existente is not None:
        return None
    valor = ValorAtributo(seccion_id=seccion_id, definicion_id=definicion.id,
                          nombre_atributo=definicion.nombre, valor=None)
    db.session.add(valor)
    db.session.flush()
    afectados.secciones.add(seccion_id)
    afectados.valores.add(valor.id)
    return valor


def _propagar_plantilla(plantilla: PlantillaSeccion, afectados: EntidadesAfectadas, operacion: str) -> List[dict]:
    datos, definiciones = _snapshot(plantilla)
    return _por_destino(
        operacion, 'maquina', _ids_maquinas_de_tipo(datos.tipo_maquina),
        lambda maquina_id, parcial: _materializar_seccion(maquina_id, datos, definiciones, parcial),
        afectados
    )


def _propagar_definicion(definicion: DefinicionAtributo, afectados: EntidadesAfectadas, operacion: str) -> List[dict]:
    datos = _Definicion(definicion.id, definicion.nombre_atributo)
    return _por_destino(
        operacion, 'seccion', _ids_secciones_de_plantilla(definicion.plantilla_id),
        lambda seccion_id, parcial: _materializar_valor(seccion_id, datos, parcial),
        afectados
    )


def _borrar_secciones(ids_secciones: List[int]):
    if not ids_secciones:
        return
    ValorAtributo.query.filter(ValorAtributo.seccion_id.in_(ids_secciones)).delete(synchronize_session=False)
    SeccionMaquina.query.filter(SeccionMaquina.id.in_(ids_secciones)).delete(synchronize_session=False)


# =============================================================================
# Plantillas de Sección
# =============================================================================

def _exigir_tipo(nombre_tipo):
    try:
        return esquema_service.obtener_tipo_por_nombre(nombre_tipo)
    except ErrorNoEncontrado as e:
        raise ErrorValidacion(e.message)


def crear_plantilla(tipo_maquina, nombre_seccion, descripcion=None, orden=0):
    """Crea la plantilla y la agrega a todas las máquinas existentes del tipo."""
    nombre_seccion = texto_limpio(nombre_seccion, 'nombre_seccion')
    if not nombre_seccion:
        raise ErrorValidacion('El nombre de la sección es requerido')
    tipo = _exigir_tipo(tipo_maquina)

    plantilla = PlantillaSeccion(
        tipo_maquina=tipo.nombre,
        nombre_seccion=nombre_seccion,
        descripcion=descripcion,
        orden=int(orden or 0)
    )
    db.session.add(plantilla)
    db.session.commit()

    resultado = ResultadoPropagacion(entidad=plantilla)
    resultado.afectados.tipos.add(tipo.id)
    resultado.afectados.plantillas.add(plantilla.id)
    errores = _propagar_plantilla(plantilla, resultado.afectados, 'crear_plantilla')
    return _finalizar('crear_plantilla', resultado, errores, plantilla_id=plantilla.id)


def propagar_plantilla(plantilla_id):
    """
    Fan-out de una plantilla existente: agrega su sección a las máquinas del
    tipo que todavía no la tienen. Re-ejecutarlo no duplica secciones.
    """
    plantilla = esquema_service.obtener_plantilla(plantilla_id)
    resultado = ResultadoPropagacion(entidad=plantilla)
    resultado.afectados.plantillas.add(plantilla.id)
    errores = _propagar_plantilla(plantilla, resultado.afectados, 'propagar_plantilla')
    return _finalizar('propagar_plantilla', resultado, errores, plantilla_id=plantilla_id)


def actualizar_plantilla(plantilla_id, nombre_seccion=None, descripcion=None, orden=None):
    """Actualiza la plantilla y copia nombre/descripción/orden a sus secciones."""
    plantilla = esquema_service.obtener_plantilla(plantilla_id)
    if nombre_seccion is not None:
        nombre_seccion = texto_limpio(nombre_seccion, 'nombre_seccion')
        if not nombre_seccion:
            raise ErrorValidacion('El nombre de la sección es requerido')
        plantilla.nombre_seccion = nombre_seccion
    if descripcion is not None:
        plantilla.descripcion = descripcion
    if orden is not None:
        plantilla.orden = int(orden)
    db.session.commit()

    resultado = ResultadoPropagacion(entidad=plantilla)
    resultado.afectados.plantillas.add(plantilla.id)
    ids_secciones = _ids_secciones_de_plantilla(plantilla.id)
    cambios = {
        'nombre': plantilla.nombre_seccion,
        'descripcion': plantilla.descripcion,
        'orden': plantilla.orden
    }

    def sincronizar(pid, parcial):
        SeccionMaquina.query.filter_by(plantilla_id=pid).update(cambios, synchronize_session=False)
        parcial.secciones.update(ids_secciones)

    errores = _por_destino('actualizar_plantilla', 'plantilla', [plantilla.id], sincronizar,
                           resultado.afectados)
    return _finalizar('actualizar_plantilla', resultado, errores, plantilla_id=plantilla_id)


def _eliminar_plantilla_sin_commit(plantilla: PlantillaSeccion, afectados: EntidadesAfectadas):
    plantilla_id = plantilla.id
    ids_secciones = _ids_secciones_de_plantilla(plantilla_id)
    ids_definiciones = [f[0] for f in db.session.query(DefinicionAtributo.id)
                        .filter(DefinicionAtributo.plantilla_id == plantilla_id).all()]
    ids_valores = []
    if ids_secciones or ids_definiciones:
        ids_valores = [f[0] for f in db.session.query(ValorAtributo.id).filter(or_(
            ValorAtributo.seccion_id.in_(ids_secciones),
            ValorAtributo.definicion_id.in_(ids_definiciones)
        )).all()]

    _borrar_secciones(ids_secciones)
    if ids_definiciones:
        ValorAtributo.query.filter(ValorAtributo.definicion_id.in_(ids_definiciones)).delete(synchronize_session=False)
        DefinicionAtributo.query.filter(DefinicionAtributo.id.in_(ids_definiciones)).delete(synchronize_session=False)
    PlantillaSeccion.query.filter_by(id=plantilla_id).delete(synchronize_session=False)

    afectados.plantillas.add(plantilla_id)
    afectados.secciones.update(ids_secciones)
    afectados.definiciones.update(ids_definiciones)
    afectados.valores.update(ids_valores)


def eliminar_plantilla(plantilla_id):
    """Elimina la plantilla, sus definiciones y todas sus secciones en la flota."""
    plantilla = esquema_service.obtener_plantilla(plantilla_id)
    resultado = ResultadoPropagacion()
    _eliminar_plantilla_sin_commit(plantilla, resultado.afectados)
    db.session.commit()
    return _finalizar('eliminar_plantilla', resultado, [], plantilla_id=plantilla_id)


def duplicar_plantilla(plantilla_id):
    """
    Copia la plantilla como "<nombre> (Copia)" con todas sus definiciones y la
    agrega (con valores vacíos) a las máquinas del tipo. No copia valores.
    """
    original = esquema_service.obtener_plantilla(plantilla_id)
    copia = PlantillaSeccion(
        tipo_maquina=original.tipo_maquina,
        nombre_seccion=f"{original.nombre_seccion}{SUFIJO_COPIA}",
        descripcion=original.descripcion,
        orden=(original.orden or 0) + 1
    )
    db.session.add(copia)
    db.session.flush()

    resultado = ResultadoPropagacion(entidad=copia)
    for definicion in esquema_service.listar_definiciones(original.id):
        nueva = _copiar_definicion(definicion, copia.id)
        db.session.add(nueva)
        db.session.flush()
        resultado.afectados.definiciones.add(nueva.id)
    db.session.commit()

    resultado.afectados.plantillas.add(copia.id)
    errores = _propagar_plantilla(copia, resultado.afectados, 'duplicar_plantilla')
    return _finalizar('duplicar_plantilla', resultado, errores, original_id=plantilla_id, copia_id=copia.id)


# =============================================================================
# Definiciones de Atributo
# =============================================================================

def _validar_tipo_y_opciones(tipo_atributo, opciones):
    try:
        tipo = TipoAtributo.desde_valor(tipo_atributo or TipoAtributo.TEXT.value)
    except ValueError as e:
        raise ErrorValidacion(str(e))

    if tipo != TipoAtributo.SELECT:
        return tipo, None

    if opciones is not None and not isinstance(opciones, (list, tuple)):
        raise ErrorValidacion('opciones debe ser una lista de textos')
    limpias = []
    for opcion in opciones or []:
        texto = str(opcion).strip()
        if texto and texto not in limpias:
            limpias.append(texto)
    if not limpias:
        raise ErrorValidacion('Los atributos de tipo selección requieren al menos una opción')
    return tipo, limpias


def _copiar_definicion(definicion: DefinicionAtributo, plantilla_id: int, nombre=None, orden=None):
    return DefinicionAtributo(
        plantilla_id=plantilla_id,
        nombre_atributo=nombre if nombre is not None else definicion.nombre_atributo,
        tipo_atributo=definicion.tipo_atributo,
        es_requerido=definicion.es_requerido,
        opciones=list(definicion.opciones) if definicion.opciones else None,
        orden=orden if orden is not None else definicion.orden
    )


def crear_definicion(plantilla_id, nombre_atributo, tipo_atributo='text', es_requerido=False,
                     orden=0, opciones=None):
    """Crea la definición y agrega un valor vacío en cada sección de la plantilla."""
    plantilla = esquema_service.obtener_plantilla(plantilla_id)
    nombre_atributo = texto_limpio(nombre_atributo, 'nombre_atributo')
    if not nombre_atributo:
        raise ErrorValidacion('El nombre del atributo es requerido')
    tipo, opciones = _validar_tipo_y_opciones(tipo_atributo, opciones)

    definicion = DefinicionAtributo(
        plantilla_id=plantilla.id,
        nombre_atributo=nombre_atributo,
        tipo_atributo=tipo.value,
        es_requerido=bool(es_requerido),
        opciones=opciones,
        orden=int(orden or 0)
    )
    db.session.add(definicion)
    db.session.commit()

    resultado = ResultadoPropagacion(entidad=definicion)
    resultado.afectados.definiciones.add(definicion.id)
    errores = _propagar_definicion(definicion, resultado.afectados, 'crear_definicion')
    return _finalizar('crear_definicion', resultado, errores, definicion_id=definicion.id)


def actualizar_definicion(definicion_id, nombre_atributo=None, tipo_atributo=None, es_requerido=None,
                          orden=None, opciones=None):
    """
    Actualiza la definición. Si cambió el nombre, lo re-sincroniza en todos
    los valores que la materializan.
    """
    definicion = esquema_service.obtener_definicion(definicion_id)
    nombre_anterior = definicion.nombre_atributo

    if nombre_atributo is not None:
        nombre_atributo = texto_limpio(nombre_atributo, 'nombre_atributo')
        if not nombre_atributo:
            raise ErrorValidacion('El nombre del atributo es requerido')
    tipo_final = tipo_atributo if tipo_atributo is not None else definicion.tipo_atributo
    opciones_final = opciones if opciones is not None else definicion.opciones
    tipo, opciones_final = _validar_tipo_y_opciones(tipo_final, opciones_final)

    if nombre_atributo is not None:
        definicion.nombre_atributo = nombre_atributo
    definicion.tipo_atributo = tipo.value
    definicion.opciones = opciones_final
    if es_requerido is not None:
        definicion.es_requerido = bool(es_requerido)
    if orden is not None:
        definicion.orden = int(orden)
    db.session.commit()

    resultado = ResultadoPropagacion(entidad=definicion)
    resultado.afectados.definiciones.add(definicion.id)
    errores = []
    if definicion.nombre_atributo != nombre_anterior:
        nuevo_nombre = definicion.nombre_atributo
        ids_valores = [f[0] for f in db.session.query(ValorAtributo.id)
                       .filter(ValorAtributo.definicion_id == definicion.id).all()]

        def renombrar(did, parcial):
            ValorAtributo.query.filter_by(definicion_id=did).update(
                {'nombre_atributo': nuevo_nombre}, synchronize_session=False)
            parcial.valores.update(ids_valores)

        errores = _por_destino('actualizar_definicion', 'definicion', [definicion.id], renombrar,
                               resultado.afectados)
    return _finalizar('actualizar_definicion', resultado, errores, definicion_id=definicion_id)


def eliminar_definicion(definicion_id):
    """Elimina la definición y todos sus valores en la flota."""
    definicion = esquema_service.obtener_definicion(definicion_id)
    resultado = ResultadoPropagacion()
    ids_valores = [f[0] for f in db.session.query(ValorAtributo.id)
                   .filter(ValorAtributo.definicion_id == definicion.id).all()]

    ValorAtributo.query.filter_by(definicion_id=definicion_id).delete(synchronize_session=False)
    DefinicionAtributo.query.filter_by(id=definicion_id).delete(synchronize_session=False)
    db.session.commit()

    resultado.afectados.definiciones.add(definicion_id)
    resultado.afectados.valores.update(ids_valores)
    return _finalizar('eliminar_definicion', resultado, [], definicion_id=definicion_id)


def duplicar_definicion(definicion_id):
    """Copia la definición como "<nombre> (Copia)" en la misma plantilla y la propaga."""
    original = esquema_service.obtener_definicion(definicion_id)
    copia = _copiar_definicion(
        original, original.plantilla_id,
        nombre=f"{original.nombre_atributo}{SUFIJO_COPIA}",
        orden=(original.orden or 0) + 1
    )
    db.session.add(copia)
    db.session.commit()

    resultado = ResultadoPropagacion(entidad=copia)
    resultado.afectados.definiciones.add(copia.id)
    errores = _propagar_definicion(copia, resultado.afectados, 'duplicar_definicion')
    return _finalizar('duplicar_definicion', resultado, errores, original_id=definicion_id, copia_id=copia.id)


# =============================================================================
# Máquinas
# =============================================================================

def _siguiente_orden_en_linea(linea_id):
    maximo = db.session.query(db.func.max(Maquina.orden)).filter(Maquina.linea_id == linea_id).scalar()
    return (maximo + 1) if maximo is not None else 0


def crear_maquina(nombre, linea_id, tipo_maquina=None, numero_serie=None, imagen_url=None,
                  imagen_placa_url=None, orden=None, valores=None):
    """
    Crea la máquina con todas las secciones de su tipo ya materializadas.

    Args:
        valores: {ClaveCampo(plantilla_id, definicion_id): valor} capturados en
            el formulario de creación. Los campos ausentes quedan en None.

    Todo se valida antes de escribir: si falta un requerido no se persiste nada.
    """
    valores = {clave: normalizar_valor(v) for clave, v in (valores or {}).items()}
    nombre = texto_limpio(nombre, 'nombre')
    if not nombre:
        raise ErrorValidacion('El nombre del equipo es requerido')
    if linea_id is None or db.session.get(LineaProduccion, linea_id) is None:
        raise ErrorValidacion(f'Línea de producción {linea_id} no encontrada')

    tipo_maquina = texto_limpio(tipo_maquina, 'tipo_maquina') or None
    formulario = None
    if tipo_maquina:
        _exigir_tipo(tipo_maquina)
        formulario = formulario_creacion(tipo_maquina)
        campos = formulario.campos
        desconocidos = [c for c in valores if c not in campos]
        if desconocidos:
            raise ErrorValidacion(
                'Valores para campos que no pertenecen al tipo de equipo',
                payload={'campos': [list(c) for c in desconocidos]}
            )
        errores = validar_valores(formulario, valores)
        if errores:
            raise ErrorValidacion(
                f"Campos requeridos faltantes o inválidos: {', '.join(errores)}",
                payload={'campos': errores}
            )
    elif valores:
        raise ErrorValidacion('Un equipo sin tipo no admite valores de atributos')

    maquina = Maquina(
        nombre=nombre,
        tipo_maquina=tipo_maquina,
        linea_id=linea_id,
        numero_serie=numero_serie,
        imagen_url=imagen_url,
        imagen_placa_url=imagen_placa_url,
        orden=int(orden) if orden is not None else _siguiente_orden_en_linea(linea_id)
    )
    db.session.add(maquina)
    db.session.flush()

    resultado = ResultadoPropagacion(entidad=maquina)
    resultado.afectados.maquinas.add(maquina.id)
    if formulario is not None:
        for plantilla in esquema_service.listar_plantillas(tipo_maquina):
            datos, definiciones = _snapshot(plantilla)
            _materializar_seccion(maquina.id, datos, definiciones, resultado.afectados, valores)
    db.session.commit()
    return _finalizar('crear_maquina', resultado, [], maquina_id=maquina.id, tipo=tipo_maquina)


CAMPOS_MAQUINA = ('nombre', 'numero_serie', 'imagen_url', 'imagen_placa_url', 'orden', 'linea_id')


def actualizar_maquina(maquina_id, **campos):
    """
    Actualiza datos de la máquina. Si cambia su tipo, se reconcilian sus
    secciones con las plantillas del tipo nuevo (las del tipo anterior se eliminan).
    """
    maquina = obtener_o_404(Maquina, maquina_id, 'Equipo')

    if 'nombre' in campos:
        campos['nombre'] = texto_limpio(campos['nombre'], 'nombre')
        if not campos['nombre']:
            raise ErrorValidacion('El nombre del equipo es requerido')
    if 'linea_id' in campos and (campos['linea_id'] is None
                                 or db.session.get(LineaProduccion, campos['linea_id']) is None):
        raise ErrorValidacion(f"Línea de producción {campos['linea_id']} no encontrada")

    cambia_tipo = False
    if 'tipo_maquina' in campos:
        nuevo_tipo = texto_limpio(campos['tipo_maquina'], 'tipo_maquina') or None
        if nuevo_tipo:
            _exigir_tipo(nuevo_tipo)
        cambia_tipo = nuevo_tipo != maquina.tipo_maquina
        maquina.tipo_maquina = nuevo_tipo

    for nombre in CAMPOS_MAQUINA:
        if nombre in campos:
            setattr(maquina, nombre, campos[nombre])
    db.session.commit()

    resultado = ResultadoPropagacion(entidad=maquina)
    resultado.afectados.maquinas.add(maquina.id)
    if cambia_tipo:
        errores = _por_destino('actualizar_maquina', 'maquina', [maquina.id],
                               _reconciliar_maquina, resultado.afectados)
        return _finalizar('actualizar_maquina', resultado, errores, maquina_id=maquina_id)
    return _finalizar('actualizar_maquina', resultado, [], maquina_id=maquina_id)


# =============================================================================
# Tipos de Máquina
# =============================================================================

def renombrar_tipo(tipo_id, nombre_nuevo=None, secuencias=None):
    """
    Renombra el tipo y actualiza tipo_maquina en plantillas y máquinas.
    Las tres escrituras van en el mismo commit: gana el último nombre confirmado.
    """
    tipo = esquema_service.obtener_tipo(tipo_id)
    nombre_anterior = tipo.nombre
    nombre_nuevo = nombre_anterior if nombre_nuevo is None else texto_limpio(nombre_nuevo, 'nombre')
    if nombre_nuevo != nombre_anterior:
        nombre_nuevo = esquema_service.validar_nombre_tipo(nombre_nuevo, excluir_id=tipo.id)

    resultado = ResultadoPropagacion(entidad=tipo)
    resultado.afectados.tipos.add(tipo.id)

    if secuencias is not None:
        tipo.secuencias = esquema_service.limpiar_secuencias(secuencias)

    if nombre_nuevo != nombre_anterior:
        resultado.afectados.plantillas.update(
            p.id for p in esquema_service.listar_plantillas(nombre_anterior))
        resultado.afectados.maquinas.update(_ids_maquinas_de_tipo(nombre_anterior))

        tipo.nombre = nombre_nuevo
        PlantillaSeccion.query.filter_by(tipo_maquina=nombre_anterior).update(
            {'tipo_maquina': nombre_nuevo}, synchronize_session=False)
        Maquina.query.filter_by(tipo_maquina=nombre_anterior).update(
            {'tipo_maquina': nombre_nuevo}, synchronize_session=False)
    db.session.commit()

    return _finalizar('renombrar_tipo', resultado, [], anterior=nombre_anterior, nuevo=nombre_nuevo)


def duplicar_tipo(nombre_original, nombre_nuevo):
    """Copia el esquema completo (plantillas y definiciones) a un tipo nuevo. No crea máquinas."""
    original = esquema_service.obtener_tipo_por_nombre(nombre_original)
    nombre_nuevo = esquema_service.validar_nombre_tipo(nombre_nuevo)

    siguiente = db.session.query(db.func.max(TipoMaquina.orden)).scalar()
    nuevo = TipoMaquina(
        nombre=nombre_nuevo,
        secuencias=list(original.secuencias or []),
        orden=(siguiente + 1) if siguiente is not None else 0
    )
    db.session.add(nuevo)
    db.session.flush()

    resultado = ResultadoPropagacion(entidad=nuevo)
    resultado.afectados.tipos.add(nuevo.id)
    for plantilla in esquema_service.listar_plantillas(original.nombre):
        copia = PlantillaSeccion(
            tipo_maquina=nombre_nuevo,
            nombre_seccion=plantilla.nombre_seccion,
            descripcion=plantilla.descripcion,
            orden=plantilla.orden
        )
        db.session.add(copia)
        db.session.flush()
        resultado.afectados.plantillas.add(copia.id)
        for definicion in esquema_service.listar_definiciones(plantilla.id):
            nueva = _copiar_definicion(definicion, copia.id)
            db.session.add(nueva)
            db.session.flush()
            resultado.afectados.definiciones.add(nueva.id)
    db.session.commit()

    return _finalizar('duplicar_tipo', resultado, [], original=nombre_original, nuevo=nombre_nuevo)


def eliminar_tipo(tipo_id):
    """Elimina el tipo y su esquema. Rechazado si aún hay equipos de ese tipo."""
    tipo = esquema_service.obtener_tipo(tipo_id)
    en_uso = len(_ids_maquinas_de_tipo(tipo.nombre))
    if en_uso:
        raise ErrorConflicto(f'El tipo "{tipo.nombre}" está asignado a {en_uso} equipo(s)')

    resultado = ResultadoPropagacion()
    for plantilla in esquema_service.listar_plantillas(tipo.nombre):
        _eliminar_plantilla_sin_commit(plantilla, resultado.afectados)
    db.session.delete(tipo)
    db.session.commit()

    resultado.afectados.tipos.add(tipo_id)
    return _finalizar('eliminar_tipo', resultado, [], tipo_id=tipo_id)


# =============================================================================
# Reconciliación
# =============================================================================

def _reconciliar_maquina(maquina_id: int, afectados: EntidadesAfectadas):
    """
    Deja la máquina exactamente con una sección por plantilla de su tipo y un
    valor por definición. Conserva los valores existentes.
    """
    maquina = db.session.get(Maquina, maquina_id)
    if maquina is None:
        return
    plantillas = esquema_service.listar_plantillas(maquina.tipo_maquina) if maquina.tipo_maquina else []
    por_plantilla = {s.plantilla_id: s for s in
                     SeccionMaquina.query.filter_by(maquina_id=maquina_id).all()}

    # Secciones de plantillas que ya no son del tipo (las manuales sin plantilla se conservan)
    ids_plantillas = {p.id for p in plantillas}
    sobrantes = [s.id for pid, s in por_plantilla.items() if pid is not None and pid not in ids_plantillas]
    if sobrantes:
        _borrar_secciones(sobrantes)
        afectados.maquinas.add(maquina_id)
        afectados.secciones.update(sobrantes)

    for plantilla in plantillas:
        datos, definiciones = _snapshot(plantilla)
        seccion = por_plantilla.get(plantilla.id)
        if seccion is None:
            _materializar_seccion(maquina_id, datos, definiciones, afectados)
            continue

        if (seccion.nombre, seccion.descripcion, seccion.orden) != (datos.nombre, datos.descripcion, datos.orden):
            seccion.nombre = datos.nombre
            seccion.descripcion = datos.descripcion
            seccion.orden = datos.orden
            afectados.maquinas.add(maquina_id)
            afectados.secciones.add(seccion.id)

        ids_definiciones = {d.id for d in definiciones}
        existentes = {v.definicion_id: v for v in ValorAtributo.query.filter_by(seccion_id=seccion.id).all()}
        for definicion_id, valor in existentes.items():
            if definicion_id not in ids_definiciones:
                db.session.delete(valor)
                afectados.valores.add(valor.id)
        for definicion in definiciones:
            valor = existentes.get(definicion.id)
            if valor is None:
                _materializar_valor(seccion.id, definicion, afectados)
            elif valor.nombre_atributo != definicion.nombre:
                valor.nombre_atributo = definicion.nombre
                afectados.valores.add(valor.id)
        db.session.flush()


def reconciliar_maquina(maquina_id):
    """Reconcilia una sola máquina con las plantillas de su tipo."""
    maquina = obtener_o_404(Maquina, maquina_id, 'Equipo')
    resultado = ResultadoPropagacion(entidad=maquina)
    errores = _por_destino('reconciliar_maquina', 'maquina', [maquina.id],
                           _reconciliar_maquina, resultado.afectados)
    return _finalizar('reconciliar_maquina', resultado, errores, maquina_id=maquina_id)


def reconciliar_tipo(nombre_tipo):
    """
    Trabajo de reconciliación idempotente para todas las máquinas del tipo.
    Se puede re-ejecutar tras una propagación parcial: converge al mismo estado.
    """
    tipo = esquema_service.obtener_tipo_por_nombre(nombre_tipo)
    resultado = ResultadoPropagacion(entidad=tipo)
    errores = _por_destino('reconciliar_tipo', 'maquina', _ids_maquinas_de_tipo(tipo.nombre),
                           _reconciliar_maquina, resultado.afectados)
    return _finalizar('reconciliar_tipo', resultado, errores, tipo=nombre_tipo)
