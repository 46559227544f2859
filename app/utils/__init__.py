"""Utilidades del backend"""
from .error_utils import (
    APIError,
    ErrorValidacion,
    ErrorNoEncontrado,
    ErrorConflicto,
    ErrorPropagacion,
    error_response,
    handle_errors,
    log_request,
    log_operation,
    validate_required,
    obtener_o_404,
    texto_limpio
)

__all__ = [
    'APIError',
    'ErrorValidacion',
    'ErrorNoEncontrado',
    'ErrorConflicto',
    'ErrorPropagacion',
    'error_response',
    'handle_errors',
    'log_request',
    'log_operation',
    'validate_required',
    'obtener_o_404',
    'texto_limpio'
]
