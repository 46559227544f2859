"""
Tests de propagación de Definiciones de Atributo hacia las secciones materializadas.
"""
import pytest

from app.extensions import db
from app.models.tipo_maquina import DefinicionAtributo
from app.models.maquina import SeccionMaquina, ValorAtributo
from app.services.propagacion_service import (
    crear_definicion, actualizar_definicion, eliminar_definicion, duplicar_definicion
)
from app.utils.error_utils import ErrorValidacion, ErrorNoEncontrado


def valores_de_definicion(definicion_id):
    return ValorAtributo.query.filter_by(definicion_id=definicion_id).all()


class TestCrearDefinicion:

    def test_agrega_valor_nulo_en_cada_seccion(self, app, spi):
        plantilla_id = spi['plantillas'][0].id
        resultado = crear_definicion(plantilla_id, 'Serie cabezal', 'text', es_requerido=True, orden=3)
        definicion = resultado.entidad

        valores = valores_de_definicion(definicion.id)
        assert len(valores) == 2
        assert {v.seccion.maquina_id for v in valores} == set(spi['maquinas'])
        assert all(v.valor is None and v.nombre_atributo == 'Serie cabezal' for v in valores)
        assert resultado.afectados.valores == {v.id for v in valores}

    def test_select_sin_opciones_rechazado(self, app, spi):
        plantilla_id = spi['plantillas'][0].id
        with pytest.raises(ErrorValidacion) as exc:
            crear_definicion(plantilla_id, 'Modo', 'select', opciones=[])

        assert 'al menos una opción' in exc.value.message
        assert DefinicionAtributo.query.filter_by(nombre_atributo='Modo').count() == 0

    def test_select_con_opciones_en_blanco_rechazado(self, app, spi):
        with pytest.raises(ErrorValidacion):
            crear_definicion(spi['plantillas'][0].id, 'Modo', 'select', opciones=['  ', ''])

    def test_opciones_solo_para_select(self, app, spi):
        definicion = crear_definicion(spi['plantillas'][0].id, 'Notas', 'textarea', opciones=['a', 'b']).entidad
        assert definicion.opciones is None

    def test_opciones_limpias(self, app, spi):
        definicion = crear_definicion(spi['plantillas'][0].id, 'Modo', 'select',
                                      opciones=[' Auto ', 'Manual', 'Auto']).entidad
        assert definicion.opciones == ['Auto', 'Manual']

    def test_tipo_invalido(self, app, spi):
        with pytest.raises(ErrorValidacion):
            crear_definicion(spi['plantillas'][0].id, 'Color', 'color')

    def test_plantilla_inexistente(self, app):
        with pytest.raises(ErrorNoEncontrado):
            crear_definicion(999, 'Velocidad', 'number')


class TestActualizarDefinicion:

    def test_renombrar_resincroniza_valores(self, app, spi):
        definicion_id = spi['plantillas'][0].definiciones[0].id
        resultado = actualizar_definicion(definicion_id, nombre_atributo='Modelo del cabezal')

        valores = valores_de_definicion(definicion_id)
        for valor in valores:
            db.session.refresh(valor)
            assert valor.nombre_atributo == 'Modelo del cabezal'
        assert resultado.afectados.valores == {v.id for v in valores}

    def test_sin_cambio_de_nombre_no_toca_valores(self, app, spi):
        definicion_id = spi['plantillas'][0].definiciones[0].id
        resultado = actualizar_definicion(definicion_id, es_requerido=True)

        assert resultado.entidad.es_requerido is True
        assert resultado.afectados.valores == set()

    def test_cambiar_a_select_requiere_opciones(self, app, spi):
        definicion_id = spi['plantillas'][0].definiciones[0].id
        with pytest.raises(ErrorValidacion) as exc:
            actualizar_definicion(definicion_id, tipo_atributo='select')
        assert 'al menos una opción' in exc.value.message

    def test_dejar_de_ser_select_borra_opciones(self, app, spi):
        definicion_id = spi['plantillas'][1].definiciones[0].id
        definicion = actualizar_definicion(definicion_id, tipo_atributo='text').entidad
        assert definicion.opciones is None


class TestEliminarDefinicion:

    def test_elimina_valores_de_la_flota(self, app, spi):
        definicion_id = spi['plantillas'][0].definiciones[0].id
        resultado = eliminar_definicion(definicion_id)

        assert valores_de_definicion(definicion_id) == []
        assert DefinicionAtributo.query.filter_by(id=definicion_id).count() == 0
        assert len(resultado.afectados.valores) == 2
        # Las secciones siguen existiendo con el atributo restante
        for seccion in SeccionMaquina.query.filter_by(plantilla_id=spi['plantillas'][0].id).all():
            assert [v.nombre_atributo for v in seccion.valores] == ['Presión']


class TestDuplicarDefinicion:

    def test_copia_y_propaga(self, app, spi):
        original = spi['plantillas'][1].definiciones[0]
        original.es_requerido = True
        db.session.commit()

        copia = duplicar_definicion(original.id).entidad

        assert copia.nombre_atributo == 'Resolución (Copia)'
        assert copia.tipo_atributo == 'select'
        assert copia.es_requerido is True
        assert copia.opciones == ['720p', '1080p']
        assert copia.plantilla_id == original.plantilla_id
        assert copia.orden == original.orden + 1

        secciones = SeccionMaquina.query.filter_by(plantilla_id=original.plantilla_id).all()
        assert len(secciones) == 2
        for seccion in secciones:
            copias = [v for v in seccion.valores if v.definicion_id == copia.id]
            assert len(copias) == 1
            assert copias[0].valor is None
