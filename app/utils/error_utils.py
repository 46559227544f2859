"""
Utilidades centralizadas para manejo de errores y respuestas estandarizadas.
Provee la jerarquía de errores de dominio, el decorator de rutas y logging estructurado.
"""
from flask import jsonify, current_app
from functools import wraps
import traceback
import logging
from datetime import datetime, timezone

from app.extensions import db

# Configurar logger
logger = logging.getLogger('planta')


class APIError(Exception):
    """
    Excepción personalizada para errores de API.
    Permite especificar código HTTP y mensaje.
    """
    code = None

    def __init__(self, message, status_code=400, payload=None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.payload = payload

    def to_dict(self):
        rv = dict(self.payload or ())
        rv['error'] = self.message
        rv['status'] = self.status_code
        if self.code:
            rv['code'] = self.code
        rv['timestamp'] = datetime.now(timezone.utc).isoformat()
        return rv


class ErrorValidacion(APIError):
    """Datos inválidos detectados antes de escribir en la BD."""
    code = 'VALIDATION_ERROR'

    def __init__(self, message, payload=None):
        super().__init__(message, 400, payload)


class ErrorNoEncontrado(APIError):
    code = 'NOT_FOUND'

    def __init__(self, message, payload=None):
        super().__init__(message, 404, payload)


class ErrorConflicto(APIError):
    """Nombre duplicado o entidad todavía en uso."""
    code = 'DUPLICATE'

    def __init__(self, message, payload=None):
        super().__init__(message, 409, payload)


class ErrorPropagacion(APIError):
    """
    Falló la sincronización de uno o más destinos durante un fan-out.
    Los destinos ya sincronizados quedan confirmados (no hay rollback global).
    """
    code = 'PROPAGATION_ERROR'

    def __init__(self, message, errores, afectados=None):
        payload = {
            'errores': errores,
            'afectados': afectados.to_dict() if afectados is not None else None
        }
        super().__init__(message, 500, payload)
        self.errores = errores
        self.afectados = afectados


def error_response(message, status_code=400, code=None, details=None):
    """
    Genera una respuesta de error estandarizada.

    Args:
        message: Mensaje de error para el usuario
        status_code: Código HTTP (default 400)
        code: Código de error interno (opcional)
        details: Detalles adicionales (opcional, solo en desarrollo)

    Returns:
        tuple: (response, status_code)
    """
    response = {
        'error': message,
        'status': status_code,
        'timestamp': datetime.now(timezone.utc).isoformat()
    }

    if code:
        response['code'] = code

    # Solo incluir detalles técnicos en desarrollo
    if details and current_app.debug:
        response['details'] = details

    return jsonify(response), status_code


def handle_errors(f):
    """
    Decorator para manejar errores en rutas de Flask.
    Captura excepciones y las convierte en respuestas JSON estandarizadas.

    Uso:
        @bp.route('/api/example')
        @handle_errors
        def example_route():
            ...
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        try:
            return f(*args, **kwargs)
        except APIError as e:
            if e.status_code >= 500:
                logger.error(f"APIError in {f.__name__}: {e.message}")
            else:
                logger.warning(f"APIError in {f.__name__}: {e.message}")
            return jsonify(e.to_dict()), e.status_code
        except ValueError as e:
            logger.warning(f"ValueError in {f.__name__}: {str(e)}")
            return error_response(str(e), 400, 'VALIDATION_ERROR')
        except KeyError as e:
            logger.warning(f"KeyError in {f.__name__}: Missing key {e}")
            return error_response(f"Campo requerido faltante: {e}", 400, 'MISSING_FIELD')
        except Exception as e:
            db.session.rollback()
            # Log completo del error para debugging
            logger.error(f"Unhandled error in {f.__name__}: {str(e)}")
            logger.error(traceback.format_exc())

            # Respuesta genérica al usuario
            return error_response(
                "Error interno del servidor. Por favor, intente más tarde.",
                500,
                'SERVER_ERROR',
                details=str(e) if current_app.debug else None
            )
    return decorated_function


def log_request(route_name, **context):
    """
    Registra información de una petición con contexto.

    Args:
        route_name: Nombre de la ruta/operación
        **context: Datos adicionales de contexto (tipo, plantilla_id, etc.)
    """
    log_data = {
        'route': route_name,
        'timestamp': datetime.now(timezone.utc).isoformat(),
        **context
    }
    logger.info(f"REQUEST: {log_data}")


def log_operation(operation, status='success', **context):
    """
    Registra el resultado de una operación.

    Args:
        operation: Nombre de la operación (crear_plantilla, renombrar_tipo, etc.)
        status: 'success', 'warning', 'error'
        **context: Datos adicionales
    """
    log_data = {
        'operation': operation,
        'status': status,
        'timestamp': datetime.now(timezone.utc).isoformat(),
        **context
    }

    if status == 'error':
        logger.error(f"OPERATION: {log_data}")
    elif status == 'warning':
        logger.warning(f"OPERATION: {log_data}")
    else:
        logger.info(f"OPERATION: {log_data}")


# Helper para validación
def validate_required(data, required_fields):
    """
    Valida que todos los campos requeridos estén presentes.

    Args:
        data: Dict con los datos a validar
        required_fields: Lista de campos requeridos

    Raises:
        ErrorValidacion: Si falta algún campo
    """
    if data is None:
        raise ErrorValidacion("Payload JSON requerido")
    missing = [f for f in required_fields if f not in data or data[f] is None or data[f] == '']
    if missing:
        raise ErrorValidacion(f"Campos requeridos faltantes: {', '.join(missing)}")


def obtener_o_404(modelo, id, etiqueta=None):
    """Obtiene una entidad por PK o lanza ErrorNoEncontrado."""
    entidad = db.session.get(modelo, id)
    if entidad is None:
        raise ErrorNoEncontrado(f"{etiqueta or modelo.__name__} {id} no encontrado")
    return entidad


def texto_limpio(valor, campo):
    """
    Texto recortado del payload ('' si viene None).

    Raises:
        ErrorValidacion: Si el valor no es texto (números, listas, objetos)
    """
    if valor is None:
        return ''
    if not isinstance(valor, str):
        raise ErrorValidacion(f"{campo} debe ser texto")
    return valor.strip()
