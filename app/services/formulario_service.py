"""
Construcción del formulario dinámico de atributos a partir de las plantillas.

- Creación de máquina: campos vacíos, identificados por ClaveCampo(plantilla_id, definicion_id).
- Edición de máquina: campos con el valor actual, identificados por el id del ValorAtributo.
"""
from dataclasses import dataclass, field
from datetime import date
from typing import Dict, List, NamedTuple, Optional

from app.models.tipo_maquina import PlantillaSeccion, DefinicionAtributo, TipoAtributo
from app.models.maquina import SeccionMaquina, ValorAtributo
from app.utils.error_utils import ErrorValidacion


class ClaveCampo(NamedTuple):
    """Identifica un campo del formulario de creación."""
    plantilla_id: int
    definicion_id: int


@dataclass
class CampoAtributo:
    """Descriptor de un campo del formulario."""
    plantilla_id: int
    definicion_id: int
    nombre: str
    tipo: TipoAtributo
    requerido: bool = False
    opciones: List[str] = field(default_factory=list)
    orden: int = 0
    valor_actual: Optional[str] = None
    valor_id: Optional[int] = None

    @property
    def clave(self) -> ClaveCampo:
        return ClaveCampo(self.plantilla_id, self.definicion_id)

    @classmethod
    def desde_definicion(cls, definicion: DefinicionAtributo, valor: ValorAtributo = None) -> 'CampoAtributo':
        return cls(
            plantilla_id=definicion.plantilla_id,
            definicion_id=definicion.id,
            nombre=definicion.nombre_atributo,
            tipo=TipoAtributo.desde_valor(definicion.tipo_atributo),
            requerido=bool(definicion.es_requerido),
            opciones=list(definicion.opciones or []),
            orden=definicion.orden or 0,
            valor_actual=valor.valor if valor is not None else None,
            valor_id=valor.id if valor is not None else None,
        )

    def to_dict(self) -> dict:
        return {
            'plantilla_id': self.plantilla_id,
            'definicion_id': self.definicion_id,
            'valor_id': self.valor_id,
            'nombre': self.nombre,
            'tipo': self.tipo.value,
            'requerido': self.requerido,
            'opciones': self.opciones if self.tipo == TipoAtributo.SELECT else None,
            'orden': self.orden,
            'valor_actual': self.valor_actual
        }


@dataclass
class SeccionFormulario:
    plantilla_id: Optional[int]
    nombre: str
    descripcion: Optional[str] = None
    orden: int = 0
    seccion_id: Optional[int] = None
    campos: List[CampoAtributo] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            'plantilla_id': self.plantilla_id,
            'seccion_id': self.seccion_id,
            'nombre': self.nombre,
            'descripcion': self.descripcion,
            'orden': self.orden,
            'campos': [c.to_dict() for c in self.campos]
        }


@dataclass
class Formulario:
    secciones: List[SeccionFormulario] = field(default_factory=list)

    @property
    def campos(self) -> Dict[ClaveCampo, CampoAtributo]:
        return {c.clave: c for s in self.secciones for c in s.campos}

    @property
    def campos_por_valor(self) -> Dict[int, CampoAtributo]:
        return {c.valor_id: c for s in self.secciones for c in s.campos if c.valor_id is not None}

    def to_dict(self) -> dict:
        return {'secciones': [s.to_dict() for s in self.secciones]}


def formulario_creacion(nombre_tipo: str) -> Formulario:
    """Formulario vacío con todas las plantillas y definiciones del tipo."""
    plantillas = (PlantillaSeccion.query
                  .filter_by(tipo_maquina=nombre_tipo)
                  .order_by(PlantillaSeccion.orden, PlantillaSeccion.id)
                  .all())

    formulario = Formulario()
    for plantilla in plantillas:
        definiciones = (DefinicionAtributo.query
                        .filter_by(plantilla_id=plantilla.id)
                        .order_by(DefinicionAtributo.orden, DefinicionAtributo.id)
                        .all())
        formulario.secciones.append(SeccionFormulario(
            plantilla_id=plantilla.id,
            nombre=plantilla.nombre_seccion,
            descripcion=plantilla.descripcion,
            orden=plantilla.orden,
            campos=[CampoAtributo.desde_definicion(d) for d in definiciones]
        ))
    return formulario


def formulario_edicion(maquina_id: int) -> Formulario:
    """Formulario con los valores ya materializados en las secciones de la máquina."""
    secciones = (SeccionMaquina.query
                 .filter_by(maquina_id=maquina_id)
                 .order_by(SeccionMaquina.orden, SeccionMaquina.id)
                 .all())
    if not secciones:
        return Formulario()

    valores = (ValorAtributo.query
               .filter(ValorAtributo.seccion_id.in_([s.id for s in secciones]))
               .all())
    por_seccion: Dict[int, List[ValorAtributo]] = {}
    for valor in valores:
        por_seccion.setdefault(valor.seccion_id, []).append(valor)

    formulario = Formulario()
    for seccion in secciones:
        campos = [CampoAtributo.desde_definicion(v.definicion, v)
                  for v in por_seccion.get(seccion.id, []) if v.definicion is not None]
        campos.sort(key=lambda c: (c.orden, c.definicion_id))
        formulario.secciones.append(SeccionFormulario(
            plantilla_id=seccion.plantilla_id,
            seccion_id=seccion.id,
            nombre=seccion.nombre,
            descripcion=seccion.descripcion,
            orden=seccion.orden,
            campos=campos
        ))
    return formulario


# =============================================================================
# Validación y normalización de valores
# =============================================================================

def normalizar_valor(valor) -> Optional[str]:
    """Los valores se guardan como texto; vacío equivale a None."""
    if valor is None:
        return None
    if isinstance(valor, bool):
        return 'true' if valor else 'false'
    texto = str(valor)
    if texto.strip() == '':
        return None
    return texto


def error_de_formato(campo: CampoAtributo, valor: Optional[str]) -> Optional[str]:
    """Retorna el motivo por el que `valor` no es válido para el campo, o None."""
    if valor is None:
        return None
    texto = valor.strip()
    if campo.tipo == TipoAtributo.NUMBER:
        try:
            float(texto)
        except ValueError:
            return 'debe ser un número'
    elif campo.tipo == TipoAtributo.BOOLEAN:
        if texto.lower() not in ('true', 'false'):
            return "debe ser 'true' o 'false'"
    elif campo.tipo == TipoAtributo.DATE:
        try:
            date.fromisoformat(texto)
        except ValueError:
            return 'debe ser una fecha YYYY-MM-DD'
    elif campo.tipo == TipoAtributo.SELECT:
        if texto not in campo.opciones:
            return f"debe ser una de: {', '.join(campo.opciones)}"
    return None


def validar_valores(formulario: Formulario, valores: dict, por_valor: bool = False) -> List[str]:
    """
    Valida requeridos y formato de todos los campos del formulario.

    Args:
        formulario: Formulario de creación o edición
        valores: {ClaveCampo: valor} (creación) o {valor_id: valor} (edición)
        por_valor: True si `valores` está indexado por id de ValorAtributo.
            En edición, los campos no enviados conservan su valor actual.

    Returns:
        Lista de mensajes "Sección → Atributo: motivo". Vacía si todo es válido.
    """
    errores = []
    for seccion in formulario.secciones:
        for campo in seccion.campos:
            llave = campo.valor_id if por_valor else campo.clave
            if llave in valores:
                valor = normalizar_valor(valores[llave])
            else:
                valor = campo.valor_actual if por_valor else None

            etiqueta = f"{seccion.nombre} → {campo.nombre}"
            if campo.requerido and valor is None:
                errores.append(f"{etiqueta}: requerido")
                continue
            motivo = error_de_formato(campo, valor)
            if motivo:
                errores.append(f"{etiqueta}: {motivo}")
    return errores


def parsear_valores_creacion(items) -> Dict[ClaveCampo, Optional[str]]:
    """
    Convierte el payload [{"plantilla_id", "definicion_id", "valor"}] en {ClaveCampo: valor}.
    """
    resultado = {}
    for item in items or []:
        try:
            clave = ClaveCampo(int(item['plantilla_id']), int(item['definicion_id']))
        except (KeyError, TypeError, ValueError):
            raise ErrorValidacion("Cada valor requiere plantilla_id y definicion_id numéricos")
        resultado[clave] = normalizar_valor(item.get('valor'))
    return resultado


def parsear_valores_edicion(items) -> Dict[int, Optional[str]]:
    """Convierte el payload [{"id", "valor"}] en {valor_id: valor}."""
    resultado = {}
    for item in items or []:
        try:
            valor_id = int(item['id'])
        except (KeyError, TypeError, ValueError):
            raise ErrorValidacion("Cada valor requiere un id numérico")
        resultado[valor_id] = normalizar_valor(item.get('valor'))
    return resultado
