# fiscal/services/bitacora.py
"""
Bitácora de errores SRI (SriErrorLog).

Solo se agregan filas. La única actualización es marcar, sobre filas ya
registradas, que la operación se reintentó y con qué resultado.
"""

from __future__ import annotations

import logging
from typing import Iterable, List

from fiscal.models import ElectronicDocument, SriErrorLog
from fiscal.services.resultados import MensajeSri

logger = logging.getLogger("fiscal.sri")


def registrar_errores(
    documento: ElectronicDocument,
    operacion: str,
    mensajes: Iterable[MensajeSri],
    reintentable: bool = False,
) -> List[SriErrorLog]:
    """
    Registra una fila por cada mensaje del SRI.
    """
    filas = [
        SriErrorLog(
            empresa_id=documento.empresa_id,
            documento=documento,
            operacion=operacion,
            codigo=(m.identificador or "")[:50],
            mensaje=m.mensaje or "(sin mensaje)",
            informacion_adicional=m.informacion_adicional or "",
            reintentable=reintentable,
        )
        for m in mensajes
    ]
    if filas:
        SriErrorLog.objects.bulk_create(filas)
        logger.warning(
            "Registrados %s errores SRI documento=%s operacion=%s",
            len(filas),
            documento.pk,
            operacion,
        )
    return filas


def registrar_excepcion(
    documento: ElectronicDocument,
    operacion: str,
    exc: BaseException,
    reintentable: bool = False,
) -> SriErrorLog:
    return SriErrorLog.objects.create(
        empresa_id=documento.empresa_id,
        documento=documento,
        operacion=operacion,
        codigo=type(exc).__name__[:50],
        mensaje=str(exc) or repr(exc),
        reintentable=reintentable,
    )


def marcar_reintento(documento: ElectronicDocument, operacion: str, exitoso: bool) -> int:
    """
    Marca como reintentadas las filas previas pendientes de la operación.
    Retorna el número de filas actualizadas.
    """
    return SriErrorLog.objects.filter(
        documento=documento,
        operacion=operacion,
        reintentado=False,
    ).update(reintentado=True, reintento_exitoso=exitoso)


def motivos_rechazo(documento: ElectronicDocument) -> List[str]:
    """
    Motivos registrados para un documento rechazado (más antiguos primero).
    """
    filas = SriErrorLog.objects.filter(
        documento=documento,
        reintentable=False,
    ).order_by("ocurrido_at", "id")
    motivos = []
    for fila in filas:
        texto = f"[{fila.codigo}] {fila.mensaje}" if fila.codigo else fila.mensaje
        if fila.informacion_adicional:
            texto = f"{texto}: {fila.informacion_adicional}"
        motivos.append(texto)
    return motivos
