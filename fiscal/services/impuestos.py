# fiscal/services/impuestos.py
"""
Cálculo de IVA y totales de comprobantes.

Todo redondeo se hace a 2 decimales con ROUND_HALF_EVEN, en cada paso:
subtotal de línea, impuesto de línea y cada agregación.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_EVEN, Decimal, InvalidOperation
from typing import Any, Dict, Iterable, List

DOS_DECIMALES = Decimal("0.01")
CIEN = Decimal("100")

# Código SRI del impuesto IVA
CODIGO_IVA = "2"

# Tarifa (%) -> codigoPorcentaje del catálogo SRI de IVA
CODIGOS_PORCENTAJE_IVA = {
    Decimal("0"): "0",
    Decimal("5"): "5",
    Decimal("12"): "2",
    Decimal("13"): "10",
    Decimal("14"): "3",
    Decimal("15"): "4",
}


@dataclass(frozen=True)
class TotalesLinea:
    subtotal: Decimal
    impuesto: Decimal
    total: Decimal


def redondear(valor: Any) -> Decimal:
    return _decimal(valor).quantize(DOS_DECIMALES, rounding=ROUND_HALF_EVEN)


def _decimal(valor: Any) -> Decimal:
    if isinstance(valor, Decimal):
        return valor
    try:
        return Decimal(str(valor))
    except (InvalidOperation, TypeError, ValueError) as exc:
        raise ValueError(f"Valor numérico inválido: {valor!r}") from exc


def _attr(obj: Any, nombre: str) -> Any:
    if isinstance(obj, dict):
        return obj[nombre]
    return getattr(obj, nombre)


def tasa_desde_tarifa(tarifa: Any) -> Decimal:
    """
    Convierte una tarifa porcentual (15.00) en fracción (0.15).
    """
    return _decimal(tarifa) / CIEN


def codigo_porcentaje_iva(tarifa: Any) -> str:
    """
    Código de porcentaje SRI para una tarifa de IVA expresada en porcentaje.

    :raises ValueError: tarifa fuera del catálogo.
    """
    codigo = CODIGOS_PORCENTAJE_IVA.get(_decimal(tarifa).normalize())
    if codigo is None:
        raise ValueError(f"Tarifa de IVA no soportada por el SRI: {tarifa}%")
    return codigo


def totales_linea(cantidad: Any, precio_unitario: Any, tasa: Any, descuento: Any = 0) -> TotalesLinea:
    """
    Totales de una línea. `tasa` es una fracción (0.15 para 15 %).
    """
    cantidad = _decimal(cantidad)
    precio_unitario = _decimal(precio_unitario)
    tasa = _decimal(tasa)
    descuento = _decimal(descuento)

    if cantidad <= 0:
        raise ValueError("La cantidad debe ser mayor a cero.")
    if precio_unitario < 0:
        raise ValueError("El precio unitario no puede ser negativo.")
    if tasa < 0:
        raise ValueError("La tasa de impuesto no puede ser negativa.")
    if descuento < 0:
        raise ValueError("El descuento no puede ser negativo.")

    subtotal = redondear(cantidad * precio_unitario - descuento)
    if subtotal < 0:
        raise ValueError("El descuento no puede superar el valor de la línea.")
    impuesto = redondear(subtotal * tasa)
    return TotalesLinea(subtotal=subtotal, impuesto=impuesto, total=redondear(subtotal + impuesto))


def totales_documento(lineas: Iterable[Any]) -> TotalesLinea:
    """
    Suma los totales de las líneas (TotalesLinea, DocumentLine o dicts).
    """
    subtotal = Decimal("0")
    impuesto = Decimal("0")
    for linea in lineas:
        subtotal += _decimal(_attr(linea, "subtotal"))
        impuesto += _decimal(_attr(linea, "impuesto"))
    subtotal = redondear(subtotal)
    impuesto = redondear(impuesto)
    return TotalesLinea(subtotal=subtotal, impuesto=impuesto, total=redondear(subtotal + impuesto))


def agrupar_por_tarifa(lineas: Iterable[Any]) -> List[Dict[str, Any]]:
    """
    Agrupa base imponible e IVA por codigoPorcentaje para <totalConImpuestos>.
    """
    grupos: Dict[str, Dict[str, Any]] = {}
    for linea in lineas:
        codigo_porcentaje = str(_attr(linea, "codigo_porcentaje"))
        grupo = grupos.setdefault(
            codigo_porcentaje,
            {
                "codigo": CODIGO_IVA,
                "codigo_porcentaje": codigo_porcentaje,
                "tarifa": _decimal(_attr(linea, "tarifa_iva")),
                "base_imponible": Decimal("0"),
                "valor": Decimal("0"),
            },
        )
        grupo["base_imponible"] += _decimal(_attr(linea, "subtotal"))
        grupo["valor"] += _decimal(_attr(linea, "impuesto"))

    resultado = []
    for codigo in sorted(grupos, key=int):
        grupo = grupos[codigo]
        grupo["base_imponible"] = redondear(grupo["base_imponible"])
        grupo["valor"] = redondear(grupo["valor"])
        resultado.append(grupo)
    return resultado
