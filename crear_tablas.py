from app import create_app
from app.extensions import db

# create_app registra todos los modelos antes de create_all
from app.models.planta import Area, LineaProduccion
from app.models.tipo_maquina import TipoMaquina
from app.models.maquina import Maquina
from app.models.falla import TipoFalla, RegistroFalla
from app.services.falla_service import crear_tipo_falla, crear_registro
from app.services.formulario_service import formulario_creacion
from app.services.propagacion_service import crear_plantilla, crear_definicion, crear_maquina

app = create_app()


def inicializar_bd():
    with app.app_context():
        print("🗑️  Borrando base de datos antigua...")
        try:
            db.drop_all()
            print("🏗️  Creando tablas nuevas con la estructura actualizada...")
            db.create_all()
        except UnicodeDecodeError as e:
            print("\n❌ ERROR DE CODIFICACIÓN EN LA CONEXIÓN A LA BASE DE DATOS")
            print("   Parece que tu contraseña o usuario en '.env' tiene caracteres especiales (tildes, ñ, etc).")
            print("   Por favor, reemplaza esos caracteres con su código URL (ej: 'ó' -> '%C3%B3').")
            print(f"   Detalle del error: {e}")
            return

        print("🌱 Insertando datos semilla (Seed Data)...")

        # ---------------------------------------------------------
        # 1. TOPOLOGÍA DE PLANTA
        # ---------------------------------------------------------
        area_smt = Area(nombre="SMT", descripcion="Montaje superficial")
        db.session.add(area_smt)
        db.session.flush()

        linea_1 = LineaProduccion(nombre="Línea 1", area_id=area_smt.id, orden=0)
        linea_2 = LineaProduccion(nombre="Línea 2", area_id=area_smt.id, orden=1)
        db.session.add_all([linea_1, linea_2])
        db.session.commit()

        # ---------------------------------------------------------
        # 2. TIPOS DE EQUIPO Y SU ESQUEMA
        # ---------------------------------------------------------
        db.session.add_all([
            TipoMaquina(nombre="SPI", secuencias=["Top", "Bottom"], orden=0),
            TipoMaquina(nombre="AOI", secuencias=["Top", "Bottom"], orden=1),
        ])
        db.session.commit()

        cabezal = crear_plantilla("SPI", "Cabezal", "Cabezal de medición 3D", orden=0).entidad
        crear_definicion(cabezal.id, "Modelo", "text", es_requerido=True, orden=0)
        crear_definicion(cabezal.id, "Última calibración", "date", orden=1)

        camara = crear_plantilla("AOI", "Cámara", "Cámara superior", orden=0).entidad
        crear_definicion(camara.id, "Resolución", "select", es_requerido=True, orden=0,
                         opciones=["720p", "1080p", "4K"])
        crear_definicion(camara.id, "Iluminación RGB", "boolean", orden=1)

        # ---------------------------------------------------------
        # 3. EQUIPOS (materializa secciones y valores)
        # ---------------------------------------------------------
        def valores_para(tipo, datos):
            """{nombre_atributo: valor} -> {ClaveCampo: valor} según el formulario del tipo."""
            return {clave: datos[campo.nombre]
                    for clave, campo in formulario_creacion(tipo).campos.items() if campo.nombre in datos}

        crear_maquina("SPI-01", linea_1.id, tipo_maquina="SPI", numero_serie="KY-8030-01",
                      valores=valores_para("SPI", {"Modelo": "Koh Young 8030"}))
        crear_maquina("AOI-01", linea_1.id, tipo_maquina="AOI", numero_serie="OM-VT-01",
                      valores=valores_para("AOI", {"Resolución": "1080p", "Iluminación RGB": "true"}))
        crear_maquina("SPI-02", linea_2.id, tipo_maquina="SPI",
                      valores=valores_para("SPI", {"Modelo": "Koh Young 8030"}))

        # ---------------------------------------------------------
        # 4. CATÁLOGO DE FALLAS Y UN REPORTE DE EJEMPLO
        # ---------------------------------------------------------
        catalogo = [
            ("Error de Pick-up", "Colocación", ["pikap", "no agarra", "no levanta"]),
            ("Insuficiencia de Soldadura", "Soldadura", ["poca pasta", "falta pasta"]),
            ("Puente de Soldadura", "Soldadura", ["puente", "corto", "bridge"]),
            ("Componente Desplazado", "Colocación", ["desplazado", "torcido", "movido"]),
            ("Error de Visión", "Inspección", ["vision", "camara", "no ve"]),
        ]
        for nombre, categoria, palabras in catalogo:
            crear_tipo_falla(nombre, categoria=categoria, palabras_clave=palabras)

        spi_01 = Maquina.query.filter_by(nombre="SPI-01").first()
        crear_registro("Operador Turno A", spi_01.id, texto_voz="sale puente en el U7 del lado top")

        print("✅ ¡Base de datos inicializada con éxito!")
        print(f"   - Áreas: {Area.query.count()}")
        print(f"   - Líneas: {LineaProduccion.query.count()}")
        print(f"   - Tipos de equipo: {TipoMaquina.query.count()}")
        print(f"   - Tipos de falla: {TipoFalla.query.count()}")
        print(f"   - Reportes: {RegistroFalla.query.count()}")


if __name__ == "__main__":
    inicializar_bd()
