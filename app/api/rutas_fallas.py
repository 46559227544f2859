"""
Rutas API de fallas: clasificación del texto dictado por el técnico,
catálogo de tipos de falla y reportes de falla.
"""
from datetime import date

from flask import Blueprint, jsonify, request, send_file

from app.models.glosario import TerminoGlosario
from app.services import falla_service
from app.services.clasificacion_service import clasificar_falla
from app.utils.error_utils import handle_errors, log_request, validate_required

fallas_bp = Blueprint('fallas', __name__)


@fallas_bp.route('/fallas/clasificar', methods=['POST'])
@handle_errors
def clasificar():
    """
    Body: {texto, tipo_maquina?}
    Respuesta: {clasificacion, desconocida, origen, descripcion?}
    """
    data = request.get_json(silent=True)
    validate_required(data, ['texto'])
    log_request('clasificar_falla', tipo=data.get('tipo_maquina'))
    return jsonify(clasificar_falla(data['texto'], data.get('tipo_maquina')))


@fallas_bp.route('/glosario', methods=['GET'])
@handle_errors
def listar_glosario():
    """Términos no clasificados, los más frecuentes primero."""
    terminos = TerminoGlosario.query.order_by(TerminoGlosario.ocurrencias.desc(), TerminoGlosario.id).all()
    return jsonify([t.to_dict() for t in terminos])


# =============================================================================
# Catálogo de Tipos de Falla
# =============================================================================

@fallas_bp.route('/tipos-falla', methods=['GET'])
@handle_errors
def listar_tipos_falla():
    """
    Query params:
        - activos: 'true' para listar solo los que se ofrecen en la captura
    """
    solo_activos = request.args.get('activos', '').lower() == 'true'
    return jsonify([t.to_dict() for t in falla_service.listar_tipos_falla(solo_activos)])


@fallas_bp.route('/tipos-falla', methods=['POST'])
@handle_errors
def crear_tipo_falla():
    """Body: {nombre, descripcion?, categoria?, palabras_clave?: [..] | "a, b", activo?}"""
    data = request.get_json(silent=True)
    validate_required(data, ['nombre'])
    log_request('crear_tipo_falla', nombre=data['nombre'])

    tipo = falla_service.crear_tipo_falla(
        data['nombre'],
        descripcion=data.get('descripcion'),
        categoria=data.get('categoria'),
        palabras_clave=data.get('palabras_clave'),
        activo=data.get('activo', True)
    )
    return jsonify(tipo.to_dict()), 201


@fallas_bp.route('/tipos-falla/<int:tipo_falla_id>', methods=['PUT'])
@handle_errors
def actualizar_tipo_falla(tipo_falla_id):
    data = request.get_json(silent=True) or {}
    log_request('actualizar_tipo_falla', tipo_falla_id=tipo_falla_id)
    campos = {k: data[k] for k in falla_service.CAMPOS_TIPO_FALLA if k in data}
    tipo = falla_service.actualizar_tipo_falla(tipo_falla_id, **campos)
    return jsonify(tipo.to_dict())


@fallas_bp.route('/tipos-falla/<int:tipo_falla_id>/activo', methods=['PUT'])
@handle_errors
def cambiar_activo_tipo_falla(tipo_falla_id):
    """Body: {activo: bool}"""
    data = request.get_json(silent=True)
    validate_required(data, ['activo'])
    tipo = falla_service.cambiar_activo_tipo_falla(tipo_falla_id, data['activo'])
    return jsonify(tipo.to_dict())


@fallas_bp.route('/tipos-falla/<int:tipo_falla_id>', methods=['DELETE'])
@handle_errors
def eliminar_tipo_falla(tipo_falla_id):
    log_request('eliminar_tipo_falla', tipo_falla_id=tipo_falla_id)
    falla_service.eliminar_tipo_falla(tipo_falla_id)
    return jsonify({'message': 'Tipo de falla eliminado'})


# =============================================================================
# Reportes de Falla
# =============================================================================

def _filtros_reportes():
    return {
        'estado': request.args.get('estado', '').strip() or None,
        'maquina_id': request.args.get('maquina_id', type=int),
        'linea_id': request.args.get('linea_id', type=int),
        'area_id': request.args.get('area_id', type=int),
        'operador': request.args.get('operador', '').strip() or None,
    }


@fallas_bp.route('/fallas', methods=['GET'])
@handle_errors
def listar_reportes():
    """
    Query params (todos opcionales):
        - estado: open | in_review | validated | closed
        - maquina_id, linea_id, area_id, operador
    """
    registros = falla_service.listar_registros(**_filtros_reportes())
    return jsonify([r.to_dict() for r in registros])


@fallas_bp.route('/fallas', methods=['POST'])
@handle_errors
def crear_reporte():
    """
    Registra una falla capturada en planta.
    Body: {
        operador, maquina_id, linea_id?, area_id?, tipo_falla_id?,
        texto_voz?, falla_clasificada?, descripcion?, foto_url?
    }
    """
    data = request.get_json(silent=True)
    validate_required(data, ['operador', 'maquina_id'])
    log_request('crear_reporte_falla', maquina_id=data['maquina_id'], operador=data['operador'])

    registro = falla_service.crear_registro(
        data['operador'],
        data['maquina_id'],
        descripcion=data.get('descripcion'),
        texto_voz=data.get('texto_voz'),
        falla_clasificada=data.get('falla_clasificada'),
        tipo_falla_id=data.get('tipo_falla_id'),
        foto_url=data.get('foto_url'),
        linea_id=data.get('linea_id'),
        area_id=data.get('area_id')
    )
    return jsonify(registro.to_dict()), 201


@fallas_bp.route('/fallas/<int:registro_id>', methods=['GET'])
@handle_errors
def obtener_reporte(registro_id):
    return jsonify(falla_service.obtener_registro(registro_id).to_dict())


@fallas_bp.route('/fallas/<int:registro_id>/estado', methods=['PUT'])
@handle_errors
def actualizar_estado_reporte(registro_id):
    """Body: {estado, notas_supervisor?}"""
    data = request.get_json(silent=True)
    validate_required(data, ['estado'])
    log_request('actualizar_estado_falla', registro_id=registro_id, estado=data['estado'])
    registro = falla_service.actualizar_estado(registro_id, data['estado'], data.get('notas_supervisor'))
    return jsonify(registro.to_dict())


@fallas_bp.route('/fallas/exportar', methods=['GET'])
@handle_errors
def exportar_reportes():
    """Descarga en Excel los reportes con los mismos filtros que el listado."""
    from app.services.exportacion_service import generar_reporte_fallas

    registros = falla_service.listar_registros(**_filtros_reportes())
    excel_buffer = generar_reporte_fallas(registros)
    return send_file(
        excel_buffer,
        mimetype='application/vnd.openxmlformats-officedocument.spreadsheetml.sheet',
        as_attachment=True,
        download_name=f"reportes_{date.today().isoformat()}.xlsx"
    )
