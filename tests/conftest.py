import os
# Force SQLite for tests -> MUST be done before importing app.config
os.environ["DATABASE_URL"] = "sqlite:///:memory:"
os.environ.pop("GEMINI_API_KEY", None)

import pytest
from app import create_app
from app.extensions import db


@pytest.fixture
def app():
    app = create_app()
    app.config.update({
        "TESTING": True,
        "SQLALCHEMY_DATABASE_URI": "sqlite:///:memory:",
        "GEMINI_API_KEY": None
    })

    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def runner(app):
    return app.test_cli_runner()


@pytest.fixture
def linea(app):
    """Área SMT con una línea; retorna el id de la línea (FK requerida por Maquina)."""
    from app.models.planta import Area, LineaProduccion
    area = Area(nombre='SMT')
    db.session.add(area)
    db.session.flush()
    linea = LineaProduccion(nombre='Línea 1', area_id=area.id, orden=0)
    db.session.add(linea)
    db.session.commit()
    return linea.id


def crear_tipo_con_esquema(nombre, secciones):
    """
    Crea un tipo con sus plantillas y definiciones sin propagar.

    Args:
        secciones: [(nombre_seccion, [(nombre_atributo, tipo, requerido, opciones)])]

    Returns:
        (tipo, [plantillas])
    """
    from app.models.tipo_maquina import TipoMaquina, PlantillaSeccion, DefinicionAtributo

    tipo = TipoMaquina(nombre=nombre, secuencias=[])
    db.session.add(tipo)
    plantillas = []
    for orden_seccion, (nombre_seccion, atributos) in enumerate(secciones):
        plantilla = PlantillaSeccion(tipo_maquina=nombre, nombre_seccion=nombre_seccion, orden=orden_seccion)
        db.session.add(plantilla)
        db.session.flush()
        for orden_attr, (nombre_attr, tipo_attr, requerido, opciones) in enumerate(atributos):
            db.session.add(DefinicionAtributo(
                plantilla_id=plantilla.id,
                nombre_atributo=nombre_attr,
                tipo_atributo=tipo_attr,
                es_requerido=requerido,
                opciones=opciones,
                orden=orden_attr
            ))
        plantillas.append(plantilla)
    db.session.commit()
    return tipo, plantillas


def secciones_de(maquina_id):
    from app.models.maquina import SeccionMaquina
    return (SeccionMaquina.query
            .filter_by(maquina_id=maquina_id)
            .order_by(SeccionMaquina.orden, SeccionMaquina.id)
            .all())


@pytest.fixture
def spi(app, linea):
    """
    Tipo SPI con dos secciones y dos máquinas ya materializadas.
    Retorna dict con tipo, plantillas y maquinas.
    """
    from app.services.propagacion_service import crear_maquina

    tipo, plantillas = crear_tipo_con_esquema('SPI', [
        ('Cabezal', [('Modelo', 'text', False, None), ('Presión', 'number', False, None)]),
        ('Cámara', [('Resolución', 'select', False, ['720p', '1080p'])]),
    ])
    maquinas = [
        crear_maquina('SPI-1', linea, tipo_maquina='SPI').entidad,
        crear_maquina('SPI-2', linea, tipo_maquina='SPI').entidad,
    ]
    return {
        'tipo': tipo,
        'plantillas': plantillas,
        'maquinas': [m.id for m in maquinas]
    }
