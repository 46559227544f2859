"""
Tests de propagación de Plantillas de Sección hacia las máquinas existentes.
"""
import pytest
from sqlalchemy.exc import SQLAlchemyError

from app.extensions import db
from app.models.tipo_maquina import PlantillaSeccion, DefinicionAtributo
from app.models.maquina import SeccionMaquina, ValorAtributo
from app.services import propagacion_service
from app.services.propagacion_service import (
    crear_plantilla, actualizar_plantilla, eliminar_plantilla, duplicar_plantilla,
    propagar_plantilla, crear_definicion
)
from app.utils.error_utils import ErrorValidacion, ErrorNoEncontrado, ErrorPropagacion
from tests.conftest import secciones_de


class TestCrearPlantilla:

    def test_agrega_seccion_a_cada_maquina_del_tipo(self, app, spi):
        resultado = crear_plantilla('SPI', 'Transportador', descripcion='Banda', orden=2)
        plantilla = resultado.entidad

        for maquina_id in spi['maquinas']:
            secciones = SeccionMaquina.query.filter_by(maquina_id=maquina_id, plantilla_id=plantilla.id).all()
            assert len(secciones) == 1
            assert secciones[0].nombre == 'Transportador'
            assert secciones[0].descripcion == 'Banda'
            assert secciones[0].orden == 2
            assert secciones[0].estado == 'ok'
            # Sin definiciones todavía: sin valores
            assert secciones[0].valores == []

        assert resultado.afectados.maquinas == set(spi['maquinas'])
        assert len(resultado.afectados.secciones) == 2
        # 2 máquinas x 2 definiciones
        assert resultado.afectados.valores == ids_valores
        assert len(ids_valores) == 4

    def test_crea_un_valor_nulo_por_definicion(self, app, spi, linea):
        plantilla = crear_plantilla('SPI', 'Transportador').entidad
        crear_definicion(plantilla.id, 'Velocidad', 'number')
        crear_definicion(plantilla.id, 'Ancho', 'number')

        # Una máquina nueva recibe la plantilla con sus dos valores
        maquina = propagacion_service.crear_maquina('SPI-3', linea, tipo_maquina='SPI').entidad
        seccion = SeccionMaquina.query.filter_by(maquina_id=maquina.id, plantilla_id=plantilla.id).one()
        assert sorted(v.nombre_atributo for v in seccion.valores) == ['Ancho', 'Velocidad']
        assert all(v.valor is None for v in seccion.valores)

    def test_no_afecta_maquinas_de_otro_tipo(self, app, spi, linea):
        from tests.conftest import crear_tipo_con_esquema
        crear_tipo_con_esquema('AOI', [])
        aoi = propagacion_service.crear_maquina('AOI-1', linea, tipo_maquina='AOI').entidad

        crear_plantilla('SPI', 'Transportador')
        assert secciones_de(aoi.id) == []

    def test_tipo_inexistente(self, app):
        with pytest.raises(ErrorValidacion):
            crear_plantilla('NO-EXISTE', 'Cabezal')
        assert PlantillaSeccion.query.count() == 0

    def test_nombre_requerido(self, app, spi):
        with pytest.raises(ErrorValidacion):
            crear_plantilla('SPI', '   ')

    def test_fan_out_repetido_no_duplica(self, app, spi):
        plantilla = crear_plantilla('SPI', 'Transportador').entidad
        resultado = propagar_plantilla(plantilla.id)

        assert resultado.afectados.secciones == set()
        for maquina_id in spi['maquinas']:
            assert SeccionMaquina.query.filter_by(maquina_id=maquina_id, plantilla_id=plantilla.id).count() == 1

    def test_fallo_en_una_maquina_no_detiene_las_demas(self, app, spi, monkeypatch):
        fallida = spi['maquinas'][0]
        original = propagacion_service._materializar_seccion

        def materializar(maquina_id, *args, **kwargs):
            if maquina_id == fallida:
                raise SQLAlchemyError('conexión perdida')
            return original(maquina_id, *args, **kwargs)

        monkeypatch.setattr(propagacion_service, '_materializar_seccion', materializar)

        with pytest.raises(ErrorPropagacion) as exc:
            crear_plantilla('SPI', 'Transportador')

        assert exc.value.status_code == 500
        assert exc.value.errores[0]['id'] == fallida
        assert exc.value.afectados.maquinas == {spi['maquinas'][1]}

        # La plantilla y la máquina sana quedaron confirmadas
        plantilla = PlantillaSeccion.query.filter_by(nombre_seccion='Transportador').one()
        assert SeccionMaquina.query.filter_by(plantilla_id=plantilla.id).count() == 1

        # Reintentar completa la máquina que faltaba
        monkeypatch.setattr(propagacion_service, '_materializar_seccion', original)
        propagar_plantilla(plantilla.id)
        assert SeccionMaquina.query.filter_by(plantilla_id=plantilla.id).count() == 2


class TestActualizarPlantilla:

    def test_sincroniza_nombre_descripcion_y_orden(self, app, spi):
        plantilla = spi['plantillas'][0]
        resultado = actualizar_plantilla(plantilla.id, nombre_seccion='Cabezal Principal',
                                         descripcion='Cabezal de impresión', orden=5)

        secciones = SeccionMaquina.query.filter_by(plantilla_id=plantilla.id).all()
        assert len(secciones) == 2
        for seccion in secciones:
            db.session.refresh(seccion)
            assert seccion.nombre == 'Cabezal Principal'
            assert seccion.descripcion == 'Cabezal de impresión'
            assert seccion.orden == 5
        assert resultado.afectados.secciones == {s.id for s in secciones}

    def test_no_toca_valores(self, app, spi):
        plantilla = spi['plantillas'][0]
        valor = (ValorAtributo.query.join(SeccionMaquina)
                 .filter(SeccionMaquina.plantilla_id == plantilla.id).first())
        valor.valor = 'DEK'
        db.session.commit()

        actualizar_plantilla(plantilla.id, nombre_seccion='Otro nombre')
        db.session.refresh(valor)
        assert valor.valor == 'DEK'

    def test_plantilla_inexistente(self, app):
        with pytest.raises(ErrorNoEncontrado):
            actualizar_plantilla(999, nombre_seccion='X')


class TestEliminarPlantilla:

    def test_elimina_secciones_y_valores_de_la_flota(self, app, spi):
        plantilla_id = spi['plantillas'][0].id
        ids_definiciones = [d.id for d in spi['plantillas'][0].definiciones]

        ids_valores = {v.id for v in ValorAtributo.query.filter(
            ValorAtributo.definicion_id.in_(ids_definiciones)).all()}

        resultado = eliminar_plantilla(plantilla_id)

        assert SeccionMaquina.query.filter_by(plantilla_id=plantilla_id).count() == 0
        assert ValorAtributo.query.filter(ValorAtributo.definicion_id.in_(ids_definiciones)).count() == 0
        assert DefinicionAtributo.query.filter(DefinicionAtributo.id.in_(ids_definiciones)).count() == 0
        assert PlantillaSeccion.query.filter_by(id=plantilla_id).count() == 0
        assert plantilla_id in resultado.afectados.plantillas
        assert len(resultado.afectados.secciones) == 2
        # 2 máquinas x 2 definiciones
        assert resultado.afectados.valores == ids_valores
        assert len(ids_valores) == 4

    def test_conserva_las_otras_secciones(self, app, spi):
        eliminar_plantilla(spi['plantillas'][0].id)
        for maquina_id in spi['maquinas']:
            assert [s.nombre for s in secciones_de(maquina_id)] == ['Cámara']


class TestDuplicarPlantilla:

    def test_copia_definiciones_y_propaga_sin_valores(self, app, spi):
        original = spi['plantillas'][0]
        # Valor cargado en la original: no debe copiarse
        valor = (ValorAtributo.query.join(SeccionMaquina)
                 .filter(SeccionMaquina.plantilla_id == original.id).first())
        valor.valor = 'DEK'
        db.session.commit()

        copia = duplicar_plantilla(original.id).entidad

        assert copia.nombre_seccion == 'Cabezal (Copia)'
        assert copia.orden == original.orden + 1
        assert copia.tipo_maquina == 'SPI'
        assert [(d.nombre_atributo, d.tipo_atributo) for d in copia.definiciones] == \
            [('Modelo', 'text'), ('Presión', 'number')]

        secciones = SeccionMaquina.query.filter_by(plantilla_id=copia.id).all()
        assert len(secciones) == 2
        for seccion in secciones:
            assert len(seccion.valores) == 2
            assert all(v.valor is None for v in seccion.valores)
