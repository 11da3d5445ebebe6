# fiscal/services/secuenciales.py
"""
Asignación de secuenciales por punto de emisión.

Cada PuntoEmision guarda, por tipo de comprobante, el PRÓXIMO secuencial a
entregar. La asignación bloquea la fila del punto (select_for_update) dentro de
una transacción, de modo que dos emisiones concurrentes sobre el mismo punto
quedan serializadas y puntos distintos nunca compiten entre sí.

Si la llamada ocurre dentro de una transacción mayor (creación del documento),
el incremento se confirma o revierte junto con ella.
"""

from __future__ import annotations

import logging
import re

from django.db import transaction

from fiscal.models import PuntoEmision

logger = logging.getLogger("fiscal.secuenciales")

# Tipo de comprobante SRI -> campo contador en PuntoEmision
CONTADORES = {
    "01": "siguiente_factura",
    "04": "siguiente_nota_credito",
    "05": "siguiente_nota_debito",
    "07": "siguiente_retencion",
}

SECUENCIAL_MAXIMO = 999_999_999

_NUMERO_LEGAL_RE = re.compile(r"^[0-9]{3}-[0-9]{3}-[0-9]{9}$")


def _campo_contador(tipo_documento: str) -> str:
    campo = CONTADORES.get(str(tipo_documento))
    if campo is None:
        raise ValueError(f"Tipo de comprobante no soportado: {tipo_documento!r}")
    return campo


def asignar_secuencial(punto_emision_id: int, tipo_documento: str) -> int:
    """
    Entrega el siguiente secuencial del punto de emisión para el tipo indicado
    y deja el contador apuntando al siguiente.

    :raises ValueError: tipo no soportado o secuencial agotado.
    :raises PuntoEmision.DoesNotExist: punto inexistente.
    """
    campo = _campo_contador(tipo_documento)

    with transaction.atomic():
        pe = PuntoEmision.objects.select_for_update().get(pk=punto_emision_id)
        valor = getattr(pe, campo)
        if valor > SECUENCIAL_MAXIMO:
            raise ValueError(
                f"El punto de emisión {pe} agotó los secuenciales para el tipo {tipo_documento}."
            )
        setattr(pe, campo, valor + 1)
        pe.save(update_fields=[campo, "updated_at"])

    logger.debug(
        "Secuencial asignado punto_emision=%s tipo=%s secuencial=%s",
        punto_emision_id,
        tipo_documento,
        valor,
    )
    return valor


def secuencial_actual(punto_emision_id: int, tipo_documento: str) -> int:
    """
    Retorna el próximo secuencial que se entregaría, sin modificar el contador.
    """
    campo = _campo_contador(tipo_documento)
    return (
        PuntoEmision.objects.filter(pk=punto_emision_id)
        .values_list(campo, flat=True)
        .get()
    )


def formatear_secuencial(secuencial: int | str) -> str:
    return f"{int(secuencial):09d}"


def numero_legal(establecimiento: str, punto_emision: str, secuencial: int | str) -> str:
    """
    Número legal del comprobante en formato EEE-PPP-SSSSSSSSS.
    """
    return f"{establecimiento}-{punto_emision}-{formatear_secuencial(secuencial)}"


def es_numero_legal(valor: str) -> bool:
    return bool(valor) and bool(_NUMERO_LEGAL_RE.match(valor))
