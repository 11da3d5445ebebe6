# fiscal/services/resultados.py
"""
Tipos de resultado del motor de comprobantes.

Los comandos del ciclo de vida nunca lanzan excepciones hacia la vista:
devuelven un ResultadoOperacion cuyo `error` clasifica la falla.
"""

from __future__ import annotations

import enum
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional


class TipoError(str, enum.Enum):
    PRECONDICION = "PRECONDICION"
    VALIDACION = "VALIDACION"
    TRANSITORIO = "TRANSITORIO"
    PERMANENTE = "PERMANENTE"
    CERTIFICADO = "CERTIFICADO"
    NO_ENCONTRADO = "NO_ENCONTRADO"


@dataclass
class MensajeSri:
    """
    Mensaje devuelto por el SRI (o sintetizado ante fallas de red).
    """

    identificador: str = ""
    mensaje: str = ""
    informacion_adicional: str = ""
    tipo: str = ""

    def as_dict(self) -> Dict[str, str]:
        return asdict(self)

    def __str__(self) -> str:
        texto = f"[{self.identificador}] {self.mensaje}" if self.identificador else self.mensaje
        if self.informacion_adicional:
            texto = f"{texto}: {self.informacion_adicional}"
        return texto


@dataclass
class ResultadoOperacion:
    ok: bool
    error: Optional[TipoError] = None
    detalle: str = ""
    documento: Any = None
    datos: Dict[str, Any] = field(default_factory=dict)
    mensajes: List[MensajeSri] = field(default_factory=list)

    @classmethod
    def exito(cls, documento=None, detalle: str = "", datos=None, mensajes=None) -> "ResultadoOperacion":
        return cls(
            ok=True,
            documento=documento,
            detalle=detalle,
            datos=datos or {},
            mensajes=list(mensajes or []),
        )

    @classmethod
    def falla(
        cls,
        error: TipoError,
        detalle: str,
        documento=None,
        datos=None,
        mensajes=None,
    ) -> "ResultadoOperacion":
        return cls(
            ok=False,
            error=error,
            detalle=detalle,
            documento=documento,
            datos=datos or {},
            mensajes=list(mensajes or []),
        )

    @property
    def estado(self) -> Optional[str]:
        return getattr(self.documento, "estado", None)

    def as_dict(self) -> Dict[str, Any]:
        return {
            "ok": self.ok,
            "error": self.error.value if self.error else None,
            "detail": self.detalle,
            "estado": self.estado,
            "mensajes": [m.as_dict() for m in self.mensajes],
            **self.datos,
        }
