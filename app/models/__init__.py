# Importar todos los modelos para facilitar acceso
from app.models.planta import Area, LineaProduccion
from app.models.tipo_maquina import TipoMaquina, PlantillaSeccion, DefinicionAtributo, TipoAtributo
from app.models.maquina import Maquina, SeccionMaquina, ValorAtributo
from app.models.glosario import TerminoGlosario
from app.models.falla import TipoFalla, RegistroFalla, ESTADOS_REPORTE
