"""
Tests de reportes de falla y del catálogo de tipos de falla.
"""
import openpyxl
import pytest
from io import BytesIO

from app.extensions import db
from app.models.falla import TipoFalla, RegistroFalla
from app.models.glosario import TerminoGlosario
from app.services import falla_service, instancia_service
from app.services.clasificacion_service import FALLA_PENDIENTE, clasificar_falla
from app.utils.error_utils import ErrorValidacion, ErrorConflicto, ErrorNoEncontrado


@pytest.fixture
def puente(app):
    return falla_service.crear_tipo_falla('Puente de Soldadura', categoria='Soldadura',
                                          palabras_clave='corto, bridge, Corto')


class TestCatalogoTiposFalla:

    def test_crear_con_palabras_clave_en_texto(self, app, puente):
        assert puente.palabras_clave == ['corto', 'bridge']
        assert puente.activo is True
        assert puente.categoria == 'Soldadura'

    def test_nombre_duplicado_sin_distinguir_mayusculas(self, app, puente):
        with pytest.raises(ErrorConflicto):
            falla_service.crear_tipo_falla('puente de soldadura')

    def test_nombre_requerido(self, app):
        with pytest.raises(ErrorValidacion):
            falla_service.crear_tipo_falla('   ')

    def test_desactivar_lo_saca_de_la_captura(self, app, puente):
        falla_service.crear_tipo_falla('Pasta Fría', categoria='Soldadura')
        falla_service.cambiar_activo_tipo_falla(puente.id, False)

        activos = [t.nombre for t in falla_service.listar_tipos_falla(solo_activos=True)]
        todos = [t.nombre for t in falla_service.listar_tipos_falla()]
        assert activos == ['Pasta Fría']
        assert todos == ['Pasta Fría', 'Puente de Soldadura']

    def test_activo_debe_ser_booleano(self, app, puente):
        with pytest.raises(ErrorValidacion):
            falla_service.cambiar_activo_tipo_falla(puente.id, 'no')

    def test_actualizar(self, app, puente):
        tipo = falla_service.actualizar_tipo_falla(puente.id, nombre='Puente', palabras_clave=['short'])
        assert tipo.nombre == 'Puente'
        assert tipo.palabras_clave == ['short']

    def test_eliminar_conserva_reportes(self, app, spi, puente):
        registro = falla_service.crear_registro('Ana', spi['maquinas'][0], tipo_falla_id=puente.id)
        registro_id = registro.id

        falla_service.eliminar_tipo_falla(puente.id)
        db.session.expire_all()

        registro = db.session.get(RegistroFalla, registro_id)
        assert registro.tipo_falla_id is None
        assert registro.falla_clasificada == 'Puente de Soldadura'
        assert TipoFalla.query.count() == 0


class TestRegistrarFalla:

    def test_toma_area_y_linea_del_equipo(self, app, spi, linea):
        registro = falla_service.crear_registro('Ana', spi['maquinas'][0], descripcion='Se detuvo el cabezal')

        assert registro.estado == 'open'
        assert registro.linea_id == linea
        assert registro.area.nombre == 'SMT'
        assert registro.maquina.nombre == 'SPI-1'
        assert registro.descripcion == 'Se detuvo el cabezal'
        assert registro.falla_clasificada is None

    def test_clasifica_texto_dictado(self, app, spi):
        registro = falla_service.crear_registro('Ana', spi['maquinas'][0], texto_voz='hay puente en U5')

        assert registro.falla_clasificada == 'Puente de Soldadura'
        assert registro.descripcion == 'hay puente en U5'
        assert registro.tipo_falla_id is None

    def test_clasificacion_enlaza_el_tipo_del_catalogo(self, app, spi, puente):
        registro = falla_service.crear_registro('Ana', spi['maquinas'][0], texto_voz='sale un bridge')
        assert registro.falla_clasificada == 'Puente de Soldadura'
        assert registro.tipo_falla_id == puente.id

    def test_texto_sin_clasificar_va_al_glosario(self, app, spi):
        registro = falla_service.crear_registro('Ana', spi['maquinas'][0], texto_voz='ruido raro en el riel')
        assert registro.falla_clasificada == FALLA_PENDIENTE
        assert TerminoGlosario.query.filter_by(termino='ruido raro en el riel').count() == 1

    def test_tipo_elegido_sin_texto(self, app, spi, puente):
        registro = falla_service.crear_registro('Ana', spi['maquinas'][0], tipo_falla_id=puente.id)
        assert registro.falla_clasificada == 'Puente de Soldadura'
        assert registro.descripcion == 'Puente de Soldadura'

    def test_linea_que_no_corresponde(self, app, spi, linea):
        with pytest.raises(ErrorValidacion):
            falla_service.crear_registro('Ana', spi['maquinas'][0], descripcion='x', linea_id=linea + 1)
        assert RegistroFalla.query.count() == 0

    def test_tipo_inactivo(self, app, spi, puente):
        falla_service.cambiar_activo_tipo_falla(puente.id, False)
        with pytest.raises(ErrorValidacion):
            falla_service.crear_registro('Ana', spi['maquinas'][0], tipo_falla_id=puente.id)

    def test_sin_descripcion(self, app, spi):
        with pytest.raises(ErrorValidacion):
            falla_service.crear_registro('Ana', spi['maquinas'][0], descripcion='   ')

    def test_equipo_inexistente(self, app, spi):
        with pytest.raises(ErrorValidacion):
            falla_service.crear_registro('Ana', 999, descripcion='x')

    def test_eliminar_equipo_elimina_sus_reportes(self, app, spi):
        falla_service.crear_registro('Ana', spi['maquinas'][0], descripcion='x')
        falla_service.crear_registro('Ana', spi['maquinas'][1], descripcion='y')

        instancia_service.eliminar_maquina(spi['maquinas'][0])

        assert [r.maquina_id for r in RegistroFalla.query.all()] == [spi['maquinas'][1]]


class TestEstadoReporte:

    def test_validar_y_reabrir(self, app, spi):
        registro = falla_service.crear_registro('Ana', spi['maquinas'][0], descripcion='x')

        registro = falla_service.actualizar_estado(registro.id, 'validated', 'Confirmado por turno B')
        assert registro.estado == 'validated'
        assert registro.fecha_validacion is not None
        assert registro.notas_supervisor == 'Confirmado por turno B'

        registro = falla_service.actualizar_estado(registro.id, 'in_review')
        assert registro.fecha_validacion is None
        assert registro.notas_supervisor == 'Confirmado por turno B'

    def test_estado_invalido(self, app, spi):
        registro = falla_service.crear_registro('Ana', spi['maquinas'][0], descripcion='x')
        with pytest.raises(ErrorValidacion):
            falla_service.actualizar_estado(registro.id, 'resuelto')

    def test_reporte_inexistente(self, app):
        with pytest.raises(ErrorNoEncontrado):
            falla_service.actualizar_estado(999, 'closed')

    def test_listar_por_estado(self, app, spi):
        abierto = falla_service.crear_registro('Ana', spi['maquinas'][0], descripcion='x')
        cerrado = falla_service.crear_registro('Luis', spi['maquinas'][1], descripcion='y')
        falla_service.actualizar_estado(cerrado.id, 'closed')

        assert [r.id for r in falla_service.listar_registros(estado='open')] == [abierto.id]
        assert [r.id for r in falla_service.listar_registros()] == [cerrado.id, abierto.id]
        assert [r.id for r in falla_service.listar_registros(operador='Luis')] == [cerrado.id]


class TestClasificacionConCatalogo:

    def test_palabra_clave_del_catalogo_tiene_prioridad(self, app, puente):
        falla_service.crear_tipo_falla('Soldadura Fría', palabras_clave=['pasta opaca'])
        resultado = clasificar_falla('la pasta opaca en R12')
        assert resultado == {'clasificacion': 'Soldadura Fría', 'desconocida': False, 'origen': 'catalogo'}

    def test_tipo_inactivo_no_clasifica(self, app, puente):
        falla_service.cambiar_activo_tipo_falla(puente.id, False)
        assert clasificar_falla('sale un bridge')['origen'] == 'local'


class TestRutasFallas:

    def test_crud_tipos_falla(self, client):
        response = client.post('/api/tipos-falla', json={'nombre': 'Error de Visión',
                                                          'palabras_clave': ['no ve']})
        assert response.status_code == 201
        tipo_id = response.get_json()['id']

        response = client.put(f'/api/tipos-falla/{tipo_id}/activo', json={'activo': False})
        assert response.get_json()['activo'] is False
        assert client.get('/api/tipos-falla?activos=true').get_json() == []

        response = client.put(f'/api/tipos-falla/{tipo_id}', json={'categoria': 'Visión'})
        assert response.get_json()['categoria'] == 'Visión'

        assert client.delete(f'/api/tipos-falla/{tipo_id}').status_code == 200
        assert client.get('/api/tipos-falla').get_json() == []

    def test_crear_y_filtrar_reportes(self, client, spi):
        response = client.post('/api/fallas', json={
            'operador': 'Ana',
            'maquina_id': spi['maquinas'][0],
            'texto_voz': 'el pikap no agarra'
        })
        assert response.status_code == 201
        data = response.get_json()
        assert data['estado'] == 'open'
        assert data['falla_clasificada'] == 'Error de Pick-up'
        assert data['maquina'] == 'SPI-1'
        assert data['area'] == 'SMT'

        response = client.put(f"/api/fallas/{data['id']}/estado", json={'estado': 'in_review'})
        assert response.status_code == 200

        assert client.get('/api/fallas?estado=open').get_json() == []
        assert [r['id'] for r in client.get('/api/fallas?estado=in_review').get_json()] == [data['id']]
        assert client.get('/api/fallas?estado=resuelto').status_code == 400
        assert client.get(f"/api/fallas/{data['id']}").get_json()['operador'] == 'Ana'

    def test_crear_sin_operador(self, client, spi):
        response = client.post('/api/fallas', json={'maquina_id': spi['maquinas'][0], 'descripcion': 'x'})
        assert response.status_code == 400

    def test_exportar(self, client, spi):
        client.post('/api/fallas', json={'operador': 'Ana', 'maquina_id': spi['maquinas'][0],
                                         'descripcion': 'Cabezal golpeado'})
        cerrado = client.post('/api/fallas', json={'operador': 'Luis', 'maquina_id': spi['maquinas'][1],
                                                   'descripcion': 'Cámara sin foco'}).get_json()
        client.put(f"/api/fallas/{cerrado['id']}/estado", json={'estado': 'closed'})

        response = client.get('/api/fallas/exportar?estado=open')
        assert response.status_code == 200
        assert response.mimetype == 'application/vnd.openxmlformats-officedocument.spreadsheetml.sheet'

        ws = openpyxl.load_workbook(BytesIO(response.data)).active
        assert [c.value for c in ws[1]] == ['Fecha', 'Área', 'Línea', 'Equipo', 'Falla',
                                            'Descripción', 'Estado', 'Operador']
        assert ws.max_row == 2
        fila = [c.value for c in ws[2]]
        assert fila[1:4] == ['SMT', 'Línea 1', 'SPI-1']
        assert fila[5:] == ['Cabezal golpeado', 'Abierto', 'Ana']
