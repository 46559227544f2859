"""
Rutas API del esquema de equipos: Tipos de Máquina, Plantillas de Sección y
Definiciones de Atributo. Las escrituras que afectan a las máquinas existentes
responden con {data, afectados}.
"""
from flask import Blueprint, jsonify, request, send_file

from app.models.tipo_maquina import TipoMaquina, PlantillaSeccion, DefinicionAtributo
from app.services import esquema_service, propagacion_service
from app.services.formulario_service import formulario_creacion
from app.utils.error_utils import handle_errors, log_request, validate_required

esquema_bp = Blueprint('esquema', __name__)


# =============================================================================
# Tipos de Máquina
# =============================================================================

@esquema_bp.route('/tipos-maquina', methods=['GET'])
@handle_errors
def listar_tipos():
    """
    Lista los tipos de equipo por orden.
    Query params:
        - detalle: 'true' para incluir plantillas y atributos
    """
    detalle = request.args.get('detalle', 'false').lower() == 'true'
    return jsonify([t.to_dict(incluir_plantillas=detalle) for t in esquema_service.listar_tipos()])


@esquema_bp.route('/tipos-maquina', methods=['POST'])
@handle_errors
def crear_tipo():
    data = request.get_json(silent=True)
    validate_required(data, ['nombre'])
    log_request('crear_tipo', nombre=data['nombre'])

    tipo = esquema_service.crear_tipo(data['nombre'], data.get('secuencias'))
    return jsonify(tipo.to_dict()), 201


@esquema_bp.route('/tipos-maquina/<int:tipo_id>', methods=['GET'])
@handle_errors
def obtener_tipo(tipo_id):
    tipo = esquema_service.obtener_tipo(tipo_id)
    return jsonify(tipo.to_dict(incluir_plantillas=True))


@esquema_bp.route('/tipos-maquina/<int:tipo_id>', methods=['PUT'])
@handle_errors
def renombrar_tipo(tipo_id):
    """
    Renombra el tipo (y sus plantillas/máquinas) y/o actualiza sus secuencias.
    Body: {nombre?, secuencias?}
    """
    data = request.get_json(silent=True) or {}
    log_request('renombrar_tipo', tipo_id=tipo_id, nombre=data.get('nombre'))

    resultado = propagacion_service.renombrar_tipo(tipo_id, data.get('nombre'), data.get('secuencias'))
    return jsonify(resultado.to_dict())


@esquema_bp.route('/tipos-maquina/<int:tipo_id>', methods=['DELETE'])
@handle_errors
def eliminar_tipo(tipo_id):
    log_request('eliminar_tipo', tipo_id=tipo_id)
    resultado = propagacion_service.eliminar_tipo(tipo_id)
    return jsonify(resultado.to_dict())


@esquema_bp.route('/tipos-maquina/<int:tipo_id>/duplicar', methods=['POST'])
@handle_errors
def duplicar_tipo(tipo_id):
    """Body: {nombre} con el nombre del tipo nuevo."""
    data = request.get_json(silent=True)
    validate_required(data, ['nombre'])
    original = esquema_service.obtener_tipo(tipo_id)
    log_request('duplicar_tipo', original=original.nombre, nuevo=data['nombre'])

    resultado = propagacion_service.duplicar_tipo(original.nombre, data['nombre'])
    return jsonify(resultado.to_dict()), 201


@esquema_bp.route('/tipos-maquina/reordenar', methods=['PUT'])
@handle_errors
def reordenar_tipos():
    data = request.get_json(silent=True)
    validate_required(data, ['ids'])
    tipos = esquema_service.reordenar(TipoMaquina, data['ids'])
    return jsonify([t.to_dict() for t in tipos])


@esquema_bp.route('/tipos-maquina/<int:tipo_id>/formulario', methods=['GET'])
@handle_errors
def formulario_tipo(tipo_id):
    """Formulario vacío para dar de alta un equipo de este tipo."""
    tipo = esquema_service.obtener_tipo(tipo_id)
    return jsonify(formulario_creacion(tipo.nombre).to_dict())


@esquema_bp.route('/tipos-maquina/<int:tipo_id>/reconciliar', methods=['POST'])
@handle_errors
def reconciliar_tipo(tipo_id):
    tipo = esquema_service.obtener_tipo(tipo_id)
    log_request('reconciliar_tipo', tipo=tipo.nombre)
    resultado = propagacion_service.reconciliar_tipo(tipo.nombre)
    return jsonify(resultado.to_dict())


@esquema_bp.route('/tipos-maquina/<int:tipo_id>/ficha-excel', methods=['GET'])
@handle_errors
def descargar_ficha(tipo_id):
    """Descarga la ficha técnica (Excel) de todos los equipos del tipo."""
    from app.services.exportacion_service import generar_ficha_tipo, titulo_hoja

    tipo = esquema_service.obtener_tipo(tipo_id)
    excel_buffer = generar_ficha_tipo(tipo)
    return send_file(
        excel_buffer,
        mimetype='application/vnd.openxmlformats-officedocument.spreadsheetml.sheet',
        as_attachment=True,
        download_name=f"Ficha-{titulo_hoja(tipo.nombre)}.xlsx"
    )


# =============================================================================
# Plantillas de Sección
# =============================================================================

@esquema_bp.route('/plantillas', methods=['GET'])
@handle_errors
def listar_plantillas():
    """
    Query params:
        - tipo: nombre del tipo de equipo (requerido)
    """
    tipo = request.args.get('tipo', '').strip()
    validate_required({'tipo': tipo}, ['tipo'])
    return jsonify([p.to_dict() for p in esquema_service.listar_plantillas(tipo)])


@esquema_bp.route('/plantillas', methods=['POST'])
@handle_errors
def crear_plantilla():
    """
    Crea una sección para el tipo y la agrega a todos sus equipos.
    Body: {tipo_maquina, nombre_seccion, descripcion?, orden?}
    """
    data = request.get_json(silent=True)
    validate_required(data, ['tipo_maquina', 'nombre_seccion'])
    log_request('crear_plantilla', tipo=data['tipo_maquina'], nombre=data['nombre_seccion'])

    resultado = propagacion_service.crear_plantilla(
        data['tipo_maquina'], data['nombre_seccion'], data.get('descripcion'), data.get('orden', 0)
    )
    return jsonify(resultado.to_dict()), 201


@esquema_bp.route('/plantillas/<int:plantilla_id>', methods=['GET'])
@handle_errors
def obtener_plantilla(plantilla_id):
    plantilla = esquema_service.obtener_plantilla(plantilla_id)
    return jsonify(plantilla.to_dict(incluir_atributos=True))


@esquema_bp.route('/plantillas/<int:plantilla_id>', methods=['PUT'])
@handle_errors
def actualizar_plantilla(plantilla_id):
    data = request.get_json(silent=True) or {}
    log_request('actualizar_plantilla', plantilla_id=plantilla_id)

    resultado = propagacion_service.actualizar_plantilla(
        plantilla_id, data.get('nombre_seccion'), data.get('descripcion'), data.get('orden')
    )
    return jsonify(resultado.to_dict())


@esquema_bp.route('/plantillas/<int:plantilla_id>', methods=['DELETE'])
@handle_errors
def eliminar_plantilla(plantilla_id):
    log_request('eliminar_plantilla', plantilla_id=plantilla_id)
    resultado = propagacion_service.eliminar_plantilla(plantilla_id)
    return jsonify(resultado.to_dict())


@esquema_bp.route('/plantillas/<int:plantilla_id>/duplicar', methods=['POST'])
@handle_errors
def duplicar_plantilla(plantilla_id):
    log_request('duplicar_plantilla', plantilla_id=plantilla_id)
    resultado = propagacion_service.duplicar_plantilla(plantilla_id)
    return jsonify(resultado.to_dict()), 201


@esquema_bp.route('/plantillas/reordenar', methods=['PUT'])
@handle_errors
def reordenar_plantillas():
    data = request.get_json(silent=True)
    validate_required(data, ['ids'])
    plantillas = esquema_service.reordenar(PlantillaSeccion, data['ids'])
    return jsonify([p.to_dict() for p in plantillas])


# =============================================================================
# Definiciones de Atributo
# =============================================================================

@esquema_bp.route('/plantillas/<int:plantilla_id>/atributos', methods=['GET'])
@handle_errors
def listar_atributos(plantilla_id):
    esquema_service.obtener_plantilla(plantilla_id)
    return jsonify([d.to_dict() for d in esquema_service.listar_definiciones(plantilla_id)])


@esquema_bp.route('/plantillas/<int:plantilla_id>/atributos', methods=['POST'])
@handle_errors
def crear_atributo(plantilla_id):
    """
    Body: {nombre_atributo, tipo_atributo?, es_requerido?, orden?, opciones?}
    opciones es obligatorio (al menos una) cuando tipo_atributo es 'select'.
    """
    data = request.get_json(silent=True)
    validate_required(data, ['nombre_atributo'])
    log_request('crear_definicion', plantilla_id=plantilla_id, nombre=data['nombre_atributo'])

    resultado = propagacion_service.crear_definicion(
        plantilla_id,
        data['nombre_atributo'],
        tipo_atributo=data.get('tipo_atributo', 'text'),
        es_requerido=data.get('es_requerido', False),
        orden=data.get('orden', 0),
        opciones=data.get('opciones')
    )
    return jsonify(resultado.to_dict()), 201


@esquema_bp.route('/atributos/<int:definicion_id>', methods=['PUT'])
@handle_errors
def actualizar_atributo(definicion_id):
    data = request.get_json(silent=True) or {}
    log_request('actualizar_definicion', definicion_id=definicion_id)

    resultado = propagacion_service.actualizar_definicion(
        definicion_id,
        nombre_atributo=data.get('nombre_atributo'),
        tipo_atributo=data.get('tipo_atributo'),
        es_requerido=data.get('es_requerido'),
        orden=data.get('orden'),
        opciones=data.get('opciones')
    )
    return jsonify(resultado.to_dict())


@esquema_bp.route('/atributos/<int:definicion_id>', methods=['DELETE'])
@handle_errors
def eliminar_atributo(definicion_id):
    log_request('eliminar_definicion', definicion_id=definicion_id)
    resultado = propagacion_service.eliminar_definicion(definicion_id)
    return jsonify(resultado.to_dict())


@esquema_bp.route('/atributos/<int:definicion_id>/duplicar', methods=['POST'])
@handle_errors
def duplicar_atributo(definicion_id):
    log_request('duplicar_definicion', definicion_id=definicion_id)
    resultado = propagacion_service.duplicar_definicion(definicion_id)
    return jsonify(resultado.to_dict()), 201


@esquema_bp.route('/atributos/reordenar', methods=['PUT'])
@handle_errors
def reordenar_atributos():
    data = request.get_json(silent=True)
    validate_required(data, ['ids'])
    definiciones = esquema_service.reordenar(DefinicionAtributo, data['ids'])
    return jsonify([d.to_dict() for d in definiciones])
