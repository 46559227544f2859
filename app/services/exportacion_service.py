"""
Exportaciones a Excel.

Ficha técnica de un tipo de máquina: una fila por equipo y una
columna por "Sección / Atributo" según las plantillas del tipo.
Reportes de falla: una fila por reporte.
"""
import re

import openpyxl
from openpyxl.styles import Font, PatternFill, Alignment
from openpyxl.utils import get_column_letter
from io import BytesIO

from app.models.falla import ETIQUETAS_ESTADO
from app.models.maquina import Maquina, SeccionMaquina
from app.services import esquema_service
from app.services.instancia_service import valores_de_secciones

COLUMNAS_FIJAS = ['Equipo', 'Línea', 'N° Serie']

# Excel no admite estos caracteres en el nombre de una hoja
CARACTERES_INVALIDOS_HOJA = re.compile(r'[\\/*?:\[\]]')


def titulo_hoja(nombre, defecto='Ficha'):
    """Nombre de hoja válido para Excel: sin \\ / * ? : [ ] y de hasta 31 caracteres."""
    return CARACTERES_INVALIDOS_HOJA.sub('-', nombre or '')[:31].strip() or defecto


def generar_ficha_tipo(tipo) -> BytesIO:
    """
    Genera la ficha técnica de todas las máquinas de `tipo`.

    Args:
        tipo: TipoMaquina

    Returns:
        BytesIO: Buffer con el archivo Excel listo para descarga
    """
    wb = openpyxl.Workbook()
    ws = wb.active
    ws.title = titulo_hoja(tipo.nombre)

    # Columnas dinámicas en el orden del esquema
    columnas = []
    for plantilla in esquema_service.listar_plantillas(tipo.nombre):
        for definicion in esquema_service.listar_definiciones(plantilla.id):
            columnas.append((plantilla.id, definicion.id,
                             f"{plantilla.nombre_seccion} / {definicion.nombre_atributo}"))

    encabezados = COLUMNAS_FIJAS + [c[2] for c in columnas]
    ws.append(encabezados)
    relleno = PatternFill(start_color='DDEBF7', end_color='DDEBF7', fill_type='solid')
    for celda in ws[1]:
        celda.font = Font(bold=True)
        celda.fill = relleno
        celda.alignment = Alignment(horizontal='center', vertical='center', wrap_text=True)

    maquinas = (Maquina.query
                .filter_by(tipo_maquina=tipo.nombre)
                .order_by(Maquina.linea_id, Maquina.orden, Maquina.id)
                .all())
    secciones = (SeccionMaquina.query
                 .filter(SeccionMaquina.maquina_id.in_([m.id for m in maquinas]))
                 .all()) if maquinas else []
    valores = valores_de_secciones([s.id for s in secciones])

    # (maquina_id, plantilla_id, definicion_id) -> valor
    celdas = {}
    for seccion in secciones:
        for valor in valores[seccion.id]:
            celdas[(seccion.maquina_id, seccion.plantilla_id, valor.definicion_id)] = valor.valor

    for maquina in maquinas:
        fila = [maquina.nombre, maquina.linea.nombre if maquina.linea else '', maquina.numero_serie or '']
        fila += [celdas.get((maquina.id, pid, did)) or '' for pid, did, _ in columnas]
        ws.append(fila)

    for indice, titulo in enumerate(encabezados, start=1):
        ws.column_dimensions[get_column_letter(indice)].width = max(12, min(40, len(titulo) + 2))
    ws.freeze_panes = 'B2'

    output = BytesIO()
    wb.save(output)
    output.seek(0)

    return output


COLUMNAS_REPORTE_FALLAS = ['Fecha', 'Área', 'Línea', 'Equipo', 'Falla', 'Descripción', 'Estado', 'Operador']


def generar_reporte_fallas(registros) -> BytesIO:
    """
    Exporta reportes de falla a Excel, una fila por reporte en el orden recibido.

    Args:
        registros: lista de RegistroFalla (ya filtrados)

    Returns:
        BytesIO: Buffer con el archivo Excel listo para descarga
    """
    wb = openpyxl.Workbook()
    ws = wb.active
    ws.title = 'Reportes'

    ws.append(COLUMNAS_REPORTE_FALLAS)
    relleno = PatternFill(start_color='FCE4D6', end_color='FCE4D6', fill_type='solid')
    for celda in ws[1]:
        celda.font = Font(bold=True)
        celda.fill = relleno
        celda.alignment = Alignment(horizontal='center', vertical='center')

    for r in registros:
        ws.append([
            r.fecha_creacion.strftime('%Y-%m-%d %H:%M') if r.fecha_creacion else '',
            r.area.nombre if r.area else '',
            r.linea.nombre if r.linea else '',
            r.maquina.nombre if r.maquina else '',
            r.falla_clasificada or (r.tipo_falla.nombre if r.tipo_falla else ''),
            r.descripcion or '',
            ETIQUETAS_ESTADO.get(r.estado, r.estado),
            r.operador
        ])

    anchos = [18, 16, 16, 20, 28, 50, 14, 18]
    for indice, ancho in enumerate(anchos, start=1):
        ws.column_dimensions[get_column_letter(indice)].width = ancho
    ws.freeze_panes = 'A2'

    output = BytesIO()
    wb.save(output)
    output.seek(0)

    return output
