# fiscal/services/sri/clave_acceso.py
"""
Clave de acceso SRI (49 dígitos):

- Campo 1: Fecha de emisión (ddmmaaaa)                     -> 8 dígitos
- Campo 2: Tipo de comprobante (01, 04, 05, 07)            -> 2 dígitos
- Campo 3: RUC                                             -> 13 dígitos
- Campo 4: Tipo de ambiente (1=pruebas, 2=producción)      -> 1 dígito
- Campo 5: Establecimiento                                 -> 3 dígitos
- Campo 6: Punto de emisión                                -> 3 dígitos
- Campo 7: Secuencial                                      -> 9 dígitos
- Campo 8: Código numérico                                 -> 8 dígitos
- Campo 9: Tipo de emisión (1=normal)                      -> 1 dígito
- Campo 10: Dígito verificador (Módulo 11)                 -> 1 dígito

Estas funciones no dependen de Django.
"""

from __future__ import annotations

import random
import re
from datetime import date, datetime
from typing import Union

FechaTipo = Union[date, datetime]

LONGITUD_CLAVE = 49

_FACTORES = (2, 3, 4, 5, 6, 7)

# Solo dígitos ASCII: str.isdigit() acepta "²" y otros dígitos Unicode
_DIGITOS_RE = re.compile(r"[0-9]+")


def generar_codigo_numerico(longitud: int = 8) -> str:
    """
    Genera un código numérico aleatorio de `longitud` dígitos.
    """
    if longitud <= 0:
        raise ValueError("La longitud del código numérico debe ser mayor a 0.")
    return "".join(str(random.randint(0, 9)) for _ in range(longitud))


def modulo11(numero: str) -> int:
    """
    Dígito verificador Módulo 11 del SRI.

    Los dígitos se recorren de derecha a izquierda multiplicándolos por
    2, 3, 4, 5, 6, 7 (y se repite). DV = 11 - (suma % 11), con 11 -> 0 y 10 -> 1.
    """
    if not numero or not _DIGITOS_RE.fullmatch(numero):
        raise ValueError("El número para módulo 11 debe contener solo dígitos.")

    suma = 0
    for i, digito_char in enumerate(reversed(numero)):
        suma += int(digito_char) * _FACTORES[i % len(_FACTORES)]

    dv = 11 - (suma % 11)
    if dv == 11:
        return 0
    if dv == 10:
        return 1
    return dv


def _validar_codigo(nombre: str, valor: str) -> str:
    valor = str(valor).strip()
    if not re.fullmatch(r"[0-9]{3}", valor) or valor == "000":
        raise ValueError(f"{nombre} debe tener 3 dígitos entre 001 y 999.")
    return valor


def generar_clave_acceso(
    fecha_emision: FechaTipo,
    tipo_comprobante: str,
    ruc: str,
    ambiente: str,
    establecimiento: str,
    punto_emision: str,
    secuencial: int | str,
    codigo_numerico: str | None = None,
    tipo_emision: str = "1",
) -> str:
    """
    Genera la clave de acceso SRI de 49 dígitos.

    :param secuencial: 1..999999999 (se formatea a 9 dígitos).
    :param codigo_numerico: 8 dígitos; si no se envía se genera aleatoriamente.
    :raises ValueError: cuando algún componente es inválido.
    """
    if fecha_emision is None:
        raise ValueError("fecha_emision es obligatoria.")
    if isinstance(fecha_emision, datetime):
        fecha_emision = fecha_emision.date()

    tipo_comprobante = str(tipo_comprobante).strip()
    ruc = str(ruc).strip()
    ambiente = str(ambiente).strip()
    tipo_emision = str(tipo_emision).strip()

    if not re.fullmatch(r"[0-9]{2}", tipo_comprobante):
        raise ValueError("tipo_comprobante debe tener exactamente 2 dígitos.")
    if not re.fullmatch(r"[0-9]{13}", ruc):
        raise ValueError("ruc debe tener exactamente 13 dígitos.")
    if ambiente not in ("1", "2"):
        raise ValueError("ambiente debe ser '1' (pruebas) o '2' (producción).")
    establecimiento = _validar_codigo("establecimiento", establecimiento)
    punto_emision = _validar_codigo("punto_emision", punto_emision)

    secuencial_str = str(secuencial).strip()
    if not _DIGITOS_RE.fullmatch(secuencial_str) or not 1 <= int(secuencial_str) <= 999_999_999:
        raise ValueError("secuencial debe estar entre 1 y 999999999.")

    if codigo_numerico is None:
        codigo_numerico = generar_codigo_numerico()
    codigo_numerico = str(codigo_numerico).strip()
    if not re.fullmatch(r"[0-9]{8}", codigo_numerico):
        raise ValueError("codigo_numerico debe tener exactamente 8 dígitos.")

    if not re.fullmatch(r"[0-9]", tipo_emision):
        raise ValueError("tipo_emision debe ser un dígito (ej. '1').")

    cuerpo = (
        fecha_emision.strftime("%d%m%Y")
        + tipo_comprobante
        + ruc
        + ambiente
        + establecimiento
        + punto_emision
        + f"{int(secuencial_str):09d}"
        + codigo_numerico
        + tipo_emision
    )
    return cuerpo + str(modulo11(cuerpo))


def validar_clave_acceso(clave: str) -> bool:
    """
    True si la clave tiene exactamente 49 dígitos y el dígito verificador cuadra.
    """
    if not isinstance(clave, str) or not re.fullmatch(r"[0-9]{49}", clave):
        return False
    return modulo11(clave[:-1]) == int(clave[-1])


def descomponer_clave_acceso(clave: str) -> dict:
    """
    Separa una clave de acceso en sus componentes (útil para diagnóstico).
    """
    if not validar_clave_acceso(clave):
        raise ValueError("Clave de acceso inválida.")

    return {
        "fecha": datetime.strptime(clave[0:8], "%d%m%Y").date(),
        "tipo_comprobante": clave[8:10],
        "ruc": clave[10:23],
        "ambiente": clave[23],
        "establecimiento": clave[24:27],
        "punto_emision": clave[27:30],
        "secuencial": clave[30:39],
        "codigo_numerico": clave[39:47],
        "tipo_emision": clave[47],
        "digito_verificador": clave[48],
    }
