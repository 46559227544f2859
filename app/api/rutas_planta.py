"""
Rutas API de la planta: Áreas, Líneas, Máquinas, sus Secciones y Valores.
"""
from flask import Blueprint, jsonify, request

from app.services import instancia_service, propagacion_service
from app.services.formulario_service import (
    formulario_edicion, parsear_valores_creacion, parsear_valores_edicion
)
from app.utils.error_utils import handle_errors, log_request, validate_required, ErrorValidacion

planta_bp = Blueprint('planta', __name__)


# =============================================================================
# Áreas y Líneas
# =============================================================================

@planta_bp.route('/areas', methods=['GET'])
@handle_errors
def listar_areas():
    return jsonify([a.to_dict() for a in instancia_service.listar_areas()])


@planta_bp.route('/areas', methods=['POST'])
@handle_errors
def crear_area():
    data = request.get_json(silent=True)
    validate_required(data, ['nombre'])
    area = instancia_service.crear_area(data['nombre'], data.get('descripcion'))
    return jsonify(area.to_dict()), 201


@planta_bp.route('/areas/<int:area_id>', methods=['PUT'])
@handle_errors
def actualizar_area(area_id):
    data = request.get_json(silent=True) or {}
    area = instancia_service.actualizar_area(area_id, data.get('nombre'), data.get('descripcion'))
    return jsonify(area.to_dict())


@planta_bp.route('/areas/<int:area_id>', methods=['DELETE'])
@handle_errors
def eliminar_area(area_id):
    log_request('eliminar_area', area_id=area_id)
    instancia_service.eliminar_area(area_id)
    return jsonify({'message': 'Área eliminada'})


@planta_bp.route('/lineas', methods=['GET'])
@handle_errors
def listar_lineas():
    """
    Query params:
        - area_id: filtrar por área
    """
    area_id = request.args.get('area_id', type=int)
    return jsonify([l.to_dict() for l in instancia_service.listar_lineas(area_id)])


@planta_bp.route('/lineas', methods=['POST'])
@handle_errors
def crear_linea():
    data = request.get_json(silent=True)
    validate_required(data, ['nombre', 'area_id'])
    linea = instancia_service.crear_linea(data['nombre'], data['area_id'], data.get('descripcion'))
    return jsonify(linea.to_dict()), 201


@planta_bp.route('/lineas/<int:linea_id>', methods=['PUT'])
@handle_errors
def actualizar_linea(linea_id):
    data = request.get_json(silent=True) or {}
    linea = instancia_service.actualizar_linea(
        linea_id, data.get('nombre'), data.get('descripcion'), data.get('orden')
    )
    return jsonify(linea.to_dict())


@planta_bp.route('/lineas/<int:linea_id>', methods=['DELETE'])
@handle_errors
def eliminar_linea(linea_id):
    log_request('eliminar_linea', linea_id=linea_id)
    instancia_service.eliminar_linea(linea_id)
    return jsonify({'message': 'Línea eliminada'})


# =============================================================================
# Máquinas
# =============================================================================

@planta_bp.route('/maquinas', methods=['GET'])
@handle_errors
def listar_maquinas():
    """
    Query params:
        - linea_id: filtrar por línea
        - tipo: filtrar por tipo de equipo
    """
    linea_id = request.args.get('linea_id', type=int)
    tipo = request.args.get('tipo', '').strip() or None
    return jsonify([m.to_dict() for m in instancia_service.listar_maquinas(linea_id, tipo)])


@planta_bp.route('/maquinas', methods=['POST'])
@handle_errors
def crear_maquina():
    """
    Crea un equipo con sus secciones ya materializadas.
    Body: {
        nombre, linea_id, tipo_maquina?, numero_serie?, imagen_url?, imagen_placa_url?, orden?,
        valores?: [{plantilla_id, definicion_id, valor}]
    }
    """
    data = request.get_json(silent=True)
    validate_required(data, ['nombre', 'linea_id'])
    log_request('crear_maquina', nombre=data['nombre'], tipo=data.get('tipo_maquina'))

    resultado = propagacion_service.crear_maquina(
        data['nombre'],
        data['linea_id'],
        tipo_maquina=data.get('tipo_maquina'),
        numero_serie=data.get('numero_serie'),
        imagen_url=data.get('imagen_url'),
        imagen_placa_url=data.get('imagen_placa_url'),
        orden=data.get('orden'),
        valores=parsear_valores_creacion(data.get('valores'))
    )
    return jsonify(resultado.to_dict()), 201


@planta_bp.route('/maquinas/<int:maquina_id>', methods=['GET'])
@handle_errors
def obtener_maquina(maquina_id):
    maquina = instancia_service.obtener_maquina(maquina_id)
    return jsonify(maquina.to_dict(incluir_secciones=True))


@planta_bp.route('/maquinas/<int:maquina_id>', methods=['PUT'])
@handle_errors
def actualizar_maquina(maquina_id):
    """Body: cualquier subconjunto de nombre, tipo_maquina, linea_id, numero_serie, imagen_url, imagen_placa_url, orden."""
    data = request.get_json(silent=True) or {}
    campos = {k: v for k, v in data.items()
              if k in propagacion_service.CAMPOS_MAQUINA or k == 'tipo_maquina'}
    log_request('actualizar_maquina', maquina_id=maquina_id, campos=sorted(campos))

    resultado = propagacion_service.actualizar_maquina(maquina_id, **campos)
    return jsonify(resultado.to_dict())


@planta_bp.route('/maquinas/<int:maquina_id>', methods=['DELETE'])
@handle_errors
def eliminar_maquina(maquina_id):
    log_request('eliminar_maquina', maquina_id=maquina_id)
    instancia_service.eliminar_maquina(maquina_id)
    return jsonify({'message': 'Equipo eliminado'})


@planta_bp.route('/maquinas/<int:maquina_id>/secciones', methods=['GET'])
@handle_errors
def secciones_maquina(maquina_id):
    """Secciones del equipo con sus valores (tipo, requerido y opciones de cada atributo)."""
    secciones = instancia_service.secciones_de_maquina(maquina_id)
    valores = instancia_service.valores_de_secciones([s.id for s in secciones])
    return jsonify([{
        **s.to_dict(),
        'valores': [v.to_dict() for v in valores[s.id]]
    } for s in secciones])


@planta_bp.route('/maquinas/<int:maquina_id>/formulario', methods=['GET'])
@handle_errors
def formulario_maquina(maquina_id):
    instancia_service.obtener_maquina(maquina_id)
    return jsonify(formulario_edicion(maquina_id).to_dict())


@planta_bp.route('/maquinas/<int:maquina_id>/valores', methods=['PUT'])
@handle_errors
def actualizar_valores(maquina_id):
    """Body: {valores: [{id, valor}]}"""
    data = request.get_json(silent=True)
    validate_required(data, ['valores'])
    if not isinstance(data['valores'], list):
        raise ErrorValidacion('valores debe ser una lista')
    log_request('actualizar_valores_maquina', maquina_id=maquina_id, total=len(data['valores']))

    actualizados = instancia_service.actualizar_valores_maquina(
        maquina_id, parsear_valores_edicion(data['valores'])
    )
    return jsonify({
        'message': f'{len(actualizados)} valor(es) actualizados',
        'valores': [v.to_dict() for v in actualizados]
    })


@planta_bp.route('/secciones/<int:seccion_id>/estado', methods=['PUT'])
@handle_errors
def actualizar_estado_seccion(seccion_id):
    """Body: {estado: 'ok' | 'warning' | 'fault'}"""
    data = request.get_json(silent=True)
    validate_required(data, ['estado'])
    seccion = instancia_service.actualizar_estado_seccion(seccion_id, data['estado'])
    return jsonify(seccion.to_dict())
