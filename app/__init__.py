import logging

import click
from flask import Flask
from app.config import Config
from app.extensions import db, cors

def create_app():
    app = Flask(__name__)
    app.config.from_object(Config)

    logging.basicConfig(
        level=app.config.get('LOG_LEVEL', 'INFO'),
        format='%(asctime)s %(levelname)s [%(name)s] %(message)s'
    )

    db.init_app(app)
    cors.init_app(app) # Importante para que el Frontend pueda llamar al Backend

    # --- IMPORTAR MODELOS ---
    # Es crucial importar los modelos aquí para que SQLAlchemy los registre
    # antes de que cualquier blueprint intente usarlos.
    from app.models import planta, tipo_maquina, maquina, glosario, falla

    # --- REGISTRO DE RUTAS ---
    from app.api.rutas_esquema import esquema_bp
    from app.api.rutas_planta import planta_bp
    from app.api.rutas_fallas import fallas_bp
    # Todo lo que esté en esos archivos empezará con /api
    app.register_blueprint(esquema_bp, url_prefix='/api')
    app.register_blueprint(planta_bp, url_prefix='/api')
    app.register_blueprint(fallas_bp, url_prefix='/api')

    @app.cli.command('reconciliar')
    @click.argument('tipo', required=False)
    def reconciliar_command(tipo):
        """Sincroniza secciones y atributos de las máquinas con sus plantillas."""
        from app.models.tipo_maquina import TipoMaquina
        from app.services import propagacion_service
        from app.utils.error_utils import ErrorPropagacion

        nombres = [tipo] if tipo else [t.nombre for t in TipoMaquina.query.order_by(TipoMaquina.orden).all()]
        fallidos = []
        for nombre in nombres:
            try:
                resultado = propagacion_service.reconciliar_tipo(nombre)
            except ErrorPropagacion as e:
                # Los demás tipos se reconcilian igual; lo confirmado no se revierte
                fallidos.append(nombre)
                click.echo(f"{nombre}: {e.message} ({len(e.errores)} destinos con error)", err=True)
                continue
            click.echo(f"{nombre}: {resultado.afectados.resumen()}")
        if fallidos:
            raise click.ClickException(f"Reconciliación incompleta en: {', '.join(fallidos)}")

    return app
