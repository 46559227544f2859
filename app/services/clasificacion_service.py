"""
Clasificación de fallas reportadas por los técnicos (texto libre / voz).
Primero las palabras clave del catálogo de tipos de falla activos, luego un
mapeo local de términos coloquiales y, si no hay coincidencia, Gemini. Los
términos que no se pudieron clasificar se guardan en el glosario.
"""
import logging

from flask import current_app
from google import genai
from google.genai import types

from app.extensions import db
from app.models.falla import TipoFalla
from app.models.glosario import TerminoGlosario
from app.utils.error_utils import ErrorValidacion, log_operation, texto_limpio

logger = logging.getLogger('planta')

FALLA_PENDIENTE = 'Falla Pendiente de Clasificación'

# Se evalúa en orden; gana la primera coincidencia
MAPEO_FALLAS = {
    'pikap': 'Error de Pick-up',
    'pick up': 'Error de Pick-up',
    'no agarra': 'Error de Pick-up',
    'no levanta': 'Error de Pick-up',
    'pasta': 'Insuficiencia de Soldadura',
    'poca pasta': 'Insuficiencia de Soldadura',
    'falta pasta': 'Insuficiencia de Soldadura',
    'puente': 'Puente de Soldadura',
    'corto': 'Puente de Soldadura',
    'bridge': 'Puente de Soldadura',
    'desplazado': 'Componente Desplazado',
    'torcido': 'Componente Desplazado',
    'movido': 'Componente Desplazado',
    'faltante': 'Componente Faltante',
    'missing': 'Componente Faltante',
    'tombstone': 'Defecto de Tombstone',
    'manhattan': 'Defecto de Tombstone',
    'parado': 'Defecto de Tombstone',
    'fria': 'Pasta Fría',
    'cold': 'Pasta Fría',
    'vision': 'Error de Visión',
    'camara': 'Error de Visión',
    'no ve': 'Error de Visión',
}

CLASIFICACION_PROMPT = (
    "Eres un clasificador de fallas de manufactura SMT. Mapea términos coloquiales o "
    "Spanglish a fallas técnicas estandarizadas. Responde SOLO con el nombre de la falla "
    "clasificada, sin explicación. Tipos comunes: Error de Pick-up, Insuficiencia de "
    "Soldadura, Puente de Soldadura, Componente Desplazado, Componente Faltante, Defecto "
    "de Tombstone, Pasta Fría, Error de Visión. Si no puedes clasificar, responde "
    f"\"{FALLA_PENDIENTE}\"."
)


def clasificar_por_catalogo(texto):
    """Tipo de falla activo con alguna palabra clave contenida en el texto, o None."""
    minusculas = texto.lower()
    for tipo in TipoFalla.query.filter_by(activo=True).order_by(TipoFalla.nombre).all():
        if any(p.lower() in minusculas for p in (tipo.palabras_clave or []) if p):
            return tipo.nombre
    return None


def clasificar_local(texto):
    """Retorna la falla del mapeo local o None."""
    minusculas = texto.lower()
    for termino, falla in MAPEO_FALLAS.items():
        if termino in minusculas:
            return falla
    return None


def clasificar_con_ia(texto, tipo_maquina=None, api_key=None, model=None):
    """
    Consulta a Gemini.

    Returns:
        Nombre de la falla, o None si no hay API key configurada.
    """
    key = api_key or current_app.config.get('GEMINI_API_KEY')
    if not key:
        return None

    client = genai.Client(api_key=key)
    response = client.models.generate_content(
        model=model or current_app.config.get('GEMINI_MODEL', 'gemini-2.0-flash'),
        contents=f'Clasifica esta falla (equipo: {tipo_maquina or "sin tipo"}): "{texto}"',
        config=types.GenerateContentConfig(system_instruction=CLASIFICACION_PROMPT)
    )
    return (response.text or '').strip() or FALLA_PENDIENTE


def registrar_termino(texto):
    """Guarda (o incrementa) un término no clasificado en el glosario."""
    termino = TerminoGlosario.query.filter_by(termino=texto).first()
    if termino is None:
        termino = TerminoGlosario(termino=texto, ocurrencias=1, mapeado=False)
        db.session.add(termino)
    else:
        termino.ocurrencias = (termino.ocurrencias or 0) + 1
    db.session.commit()
    return termino


def clasificar_falla(texto, tipo_maquina=None):
    """
    Clasifica el texto de una falla.

    Returns:
        dict {clasificacion, desconocida, origen} y, si la IA falló,
        'descripcion' con el texto original para usarlo como descripción.
    """
    texto = texto_limpio(texto, 'texto')
    if not texto:
        raise ErrorValidacion('El texto de la falla es requerido')

    falla = clasificar_por_catalogo(texto)
    if falla:
        log_operation('clasificar_falla', origen='catalogo', clasificacion=falla)
        return {'clasificacion': falla, 'desconocida': False, 'origen': 'catalogo'}

    falla = clasificar_local(texto)
    if falla:
        log_operation('clasificar_falla', origen='local', clasificacion=falla)
        return {'clasificacion': falla, 'desconocida': False, 'origen': 'local'}

    resultado = {'clasificacion': FALLA_PENDIENTE, 'desconocida': True, 'origen': 'pendiente'}
    try:
        falla = clasificar_con_ia(texto, tipo_maquina)
        if falla:
            resultado = {
                'clasificacion': falla,
                'desconocida': 'Pendiente' in falla,
                'origen': 'ia'
            }
    except Exception as e:
        logger.warning(f"Error consultando Gemini: {e}")
        resultado['descripcion'] = texto

    if resultado['desconocida']:
        registrar_termino(texto)
    log_operation('clasificar_falla', origen=resultado['origen'], clasificacion=resultado['clasificacion'])
    return resultado
