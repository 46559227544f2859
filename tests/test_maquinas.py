"""
Tests de alta/edición de máquinas con secciones materializadas.
"""
import pytest

from app.extensions import db
from app.models.maquina import Maquina, SeccionMaquina, ValorAtributo
from app.services import instancia_service
from app.services.formulario_service import ClaveCampo, formulario_creacion
from app.services.propagacion_service import crear_maquina, actualizar_maquina
from app.utils.error_utils import ErrorValidacion
from tests.conftest import crear_tipo_con_esquema, secciones_de


@pytest.fixture
def aoi(app):
    tipo, plantillas = crear_tipo_con_esquema('AOI', [
        ('Cámara', [('Resolución', 'text', True, None)]),
    ])
    return plantillas[0]


class TestCrearMaquina:

    def test_aoi_con_resolucion(self, app, linea, aoi):
        definicion = aoi.definiciones[0]
        resultado = crear_maquina('AOI-1', linea, tipo_maquina='AOI',
                                  valores={ClaveCampo(aoi.id, definicion.id): '1080p'})

        secciones = secciones_de(resultado.entidad.id)
        assert len(secciones) == 1
        assert secciones[0].nombre == 'Cámara'
        assert secciones[0].plantilla_id == aoi.id
        assert [(v.nombre_atributo, v.valor) for v in secciones[0].valores] == [('Resolución', '1080p')]

    def test_requerido_faltante_no_persiste_nada(self, app, linea, aoi):
        with pytest.raises(ErrorValidacion) as exc:
            crear_maquina('AOI-1', linea, tipo_maquina='AOI')

        assert 'Cámara → Resolución' in exc.value.message
        assert Maquina.query.count() == 0
        assert SeccionMaquina.query.count() == 0
        assert ValorAtributo.query.count() == 0

    def test_requerido_en_blanco(self, app, linea, aoi):
        clave = ClaveCampo(aoi.id, aoi.definiciones[0].id)
        with pytest.raises(ErrorValidacion):
            crear_maquina('AOI-1', linea, tipo_maquina='AOI', valores={clave: '   '})
        assert Maquina.query.count() == 0

    def test_secciones_en_orden_y_valores_nulos(self, app, spi):
        maquina_id = spi['maquinas'][0]
        secciones = secciones_de(maquina_id)

        assert [s.nombre for s in secciones] == ['Cabezal', 'Cámara']
        assert len(secciones[0].valores) == 2
        assert all(v.valor is None for s in secciones for v in s.valores)

    def test_formato_de_valores(self, app, linea):
        tipo, plantillas = crear_tipo_con_esquema('Horno', [
            ('Zonas', [('Temperatura', 'number', False, None), ('Modo', 'select', False, ['N2', 'Aire'])]),
        ])
        campos = formulario_creacion('Horno').campos
        claves = list(campos)

        with pytest.raises(ErrorValidacion) as exc:
            crear_maquina('Horno-1', linea, tipo_maquina='Horno',
                          valores={claves[0]: 'caliente', claves[1]: 'Vacío'})
        assert 'Zonas → Temperatura: debe ser un número' in exc.value.payload['campos']
        assert len(exc.value.payload['campos']) == 2

        maquina = crear_maquina('Horno-1', linea, tipo_maquina='Horno',
                                valores={claves[0]: '245.5', claves[1]: 'N2'}).entidad
        valores = {v.nombre_atributo: v.valor for v in secciones_de(maquina.id)[0].valores}
        assert valores == {'Temperatura': '245.5', 'Modo': 'N2'}

    def test_sin_tipo_no_tiene_secciones(self, app, linea):
        maquina = crear_maquina('Mesa de inspección', linea).entidad
        assert maquina.tipo_maquina is None
        assert secciones_de(maquina.id) == []

    def test_tipo_sin_plantillas(self, app, linea):
        crear_tipo_con_esquema('Vacío', [])
        maquina = crear_maquina('V-1', linea, tipo_maquina='Vacío').entidad
        assert secciones_de(maquina.id) == []

    def test_linea_inexistente(self, app, aoi):
        with pytest.raises(ErrorValidacion):
            crear_maquina('AOI-1', 999, tipo_maquina='AOI')

    def test_tipo_inexistente(self, app, linea):
        with pytest.raises(ErrorValidacion):
            crear_maquina('X-1', linea, tipo_maquina='NO-EXISTE')

    def test_orden_siguiente_en_la_linea(self, app, spi, linea):
        maquina = crear_maquina('SPI-3', linea, tipo_maquina='SPI').entidad
        assert maquina.orden == 2

    def test_normaliza_valores_antes_de_guardar(self, app, linea):
        crear_tipo_con_esquema('Horno', [
            ('Zonas', [('Perfil', 'text', False, None), ('Nitrógeno', 'boolean', False, None)]),
        ])
        perfil, nitrogeno = list(formulario_creacion('Horno').campos)

        maquina = crear_maquina('Horno-1', linea, tipo_maquina='Horno',
                                valores={perfil: '   ', nitrogeno: True}).entidad

        valores = {v.nombre_atributo: v.valor for v in secciones_de(maquina.id)[0].valores}
        assert valores == {'Perfil': None, 'Nitrógeno': 'true'}

    def test_nombre_no_textual(self, app, linea):
        with pytest.raises(ErrorValidacion):
            crear_maquina(123, linea)
        assert Maquina.query.count() == 0


class TestActualizarValores:

    def test_guarda_valores(self, app, spi):
        maquina_id = spi['maquinas'][0]
        seccion = secciones_de(maquina_id)[0]
        modelo = next(v for v in seccion.valores if v.nombre_atributo == 'Modelo')

        actualizados = instancia_service.actualizar_valores_maquina(maquina_id, {modelo.id: 'DEK Horizon'})
        assert len(actualizados) == 1
        db.session.refresh(modelo)
        assert modelo.valor == 'DEK Horizon'

    def test_requerido_vacio_rechaza_todo(self, app, linea, aoi):
        clave = ClaveCampo(aoi.id, aoi.definiciones[0].id)
        maquina = crear_maquina('AOI-1', linea, tipo_maquina='AOI', valores={clave: '1080p'}).entidad
        valor = secciones_de(maquina.id)[0].valores[0]

        with pytest.raises(ErrorValidacion) as exc:
            instancia_service.actualizar_valores_maquina(maquina.id, {valor.id: ''})
        assert 'Cámara → Resolución: requerido' in exc.value.payload['campos']

        db.session.refresh(valor)
        assert valor.valor == '1080p'

    def test_valor_de_otra_maquina(self, app, spi):
        otra = secciones_de(spi['maquinas'][1])[0].valores[0]
        with pytest.raises(ErrorValidacion):
            instancia_service.actualizar_valores_maquina(spi['maquinas'][0], {otra.id: 'X'})

    def test_select_fuera_de_opciones(self, app, spi):
        maquina_id = spi['maquinas'][0]
        resolucion = secciones_de(maquina_id)[1].valores[0]
        with pytest.raises(ErrorValidacion):
            instancia_service.actualizar_valores_maquina(maquina_id, {resolucion.id: '4K'})


class TestCambioDeTipo:

    def test_reconcilia_secciones_con_el_tipo_nuevo(self, app, spi, aoi):
        maquina_id = spi['maquinas'][0]
        resultado = actualizar_maquina(maquina_id, tipo_maquina='AOI')

        secciones = secciones_de(maquina_id)
        assert [s.nombre for s in secciones] == ['Cámara']
        assert secciones[0].plantilla_id == aoi.id
        assert [v.nombre_atributo for v in secciones[0].valores] == ['Resolución']
        assert len(resultado.afectados.secciones) == 3

    def test_solo_datos_basicos(self, app, spi):
        maquina_id = spi['maquinas'][0]
        maquina = actualizar_maquina(maquina_id, nombre='SPI-1A', numero_serie='SN-77').entidad
        assert maquina.nombre == 'SPI-1A'
        assert maquina.numero_serie == 'SN-77'
        assert len(secciones_de(maquina_id)) == 2

    def test_nombre_no_textual(self, app, spi):
        with pytest.raises(ErrorValidacion):
            actualizar_maquina(spi['maquinas'][0], nombre=['SPI'])
        with pytest.raises(ErrorValidacion):
            actualizar_maquina(spi['maquinas'][0], tipo_maquina=7)
        assert db.session.get(Maquina, spi['maquinas'][0]).nombre == 'SPI-1'


class TestEliminarMaquina:

    def test_elimina_secciones_y_valores(self, app, spi):
        maquina_id = spi['maquinas'][0]
        instancia_service.eliminar_maquina(maquina_id)

        assert Maquina.query.filter_by(id=maquina_id).count() == 0
        assert SeccionMaquina.query.filter_by(maquina_id=maquina_id).count() == 0
        # Solo quedan los 3 valores de la otra máquina
        assert ValorAtributo.query.count() == 3
