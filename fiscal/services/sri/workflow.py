# fiscal/services/sri/workflow.py
# -*- coding: utf-8 -*-
"""
Comandos del ciclo de vida de un comprobante electrónico:

BORRADOR --generar_xml--> PENDIENTE_FIRMA --firmar--> PENDIENTE_AUTORIZACION
PENDIENTE_AUTORIZACION --enviar--> igual (RECIBIDA o DEVUELTA)
PENDIENTE_AUTORIZACION --consultar_autorizacion--> AUTORIZADO | RECHAZADO | igual
BORRADOR --eliminar--> eliminado lógico
BORRADOR --anular--> ANULADO

Cada comando recibe la empresa (tenant) y el id del documento, vuelve a validar
pertenencia y estado, y devuelve un ResultadoOperacion. Las fallas de
comunicación con el SRI no cambian el estado ni escriben en la bitácora.
"""
from __future__ import annotations

import logging
from datetime import timedelta
from pathlib import Path
from typing import Any, Dict, List, Optional

from django.conf import settings
from django.db import transaction
from django.utils import timezone
from django.utils.dateparse import parse_datetime
from lxml import etree

from fiscal.models import ElectronicDocument, Empresa, SriErrorLog
from fiscal.services import bitacora
from fiscal.services.resultados import MensajeSri, ResultadoOperacion, TipoError
from fiscal.services.sri.client import SRIClient, TipoRespuesta
from fiscal.services.sri.signer import CertificateError, firmar_archivo
from fiscal.services.sri.xml_builder import construir_xml

logger = logging.getLogger("fiscal.sri")

Estado = ElectronicDocument.Estado
Operacion = SriErrorLog.Operacion


class WorkflowError(Exception):
    """Errores de orquestación SRI que se traducen a un ResultadoOperacion."""

    def __init__(self, error: TipoError, detalle: str):
        super().__init__(detalle)
        self.error = error
        self.detalle = detalle


def _obtener_documento(
    empresa: Empresa,
    documento_id: Any,
    lock: bool = False,
) -> ElectronicDocument:
    qs = ElectronicDocument.objects.select_related(
        "empresa", "establecimiento", "punto_emision"
    )
    if lock:
        qs = qs.select_for_update()
    try:
        return qs.get(pk=documento_id, empresa=empresa)
    except (ElectronicDocument.DoesNotExist, ValueError, TypeError):
        raise WorkflowError(
            TipoError.NO_ENCONTRADO,
            f"Comprobante {documento_id} no encontrado.",
        )


def _exigir_estado(documento: ElectronicDocument, *permitidos: str, accion: str) -> None:
    if documento.estado not in permitidos:
        raise WorkflowError(
            TipoError.PRECONDICION,
            f"No se puede {accion} un comprobante en estado {documento.estado}.",
        )


def _actualizar_estado(
    documento: ElectronicDocument,
    estado: str,
    mensajes: List[MensajeSri] | None = None,
    extra_updates: Dict[str, Any] | None = None,
) -> ElectronicDocument:
    """
    Actualiza estado, mensajes SRI (se agregan a los previos) y campos extra.
    """
    mensajes = mensajes or []
    extra_updates = extra_updates or {}

    mensajes_existentes = documento.mensajes_sri or []
    if not isinstance(mensajes_existentes, list):
        mensajes_existentes = [mensajes_existentes]
    documento.mensajes_sri = mensajes_existentes + [m.as_dict() for m in mensajes]
    documento.estado = estado

    for campo, valor in extra_updates.items():
        setattr(documento, campo, valor)

    documento.save(
        update_fields=["estado", "mensajes_sri", "updated_at", *extra_updates.keys()]
    )

    logger.info(
        "Comprobante %s actualizado a estado=%s (mensajes+=%s)",
        documento.pk,
        documento.estado,
        len(mensajes),
    )
    return documento


def _falla_interna(documento: ElectronicDocument, operacion: str, exc: Exception) -> ResultadoOperacion:
    """
    Error inesperado al generar o firmar: se registra en bitácora y se tipifica.
    """
    logger.exception(
        "Error en %s para comprobante %s: %s",
        operacion,
        documento.pk,
        exc,
    )
    bitacora.registrar_excepcion(documento, operacion, exc, reintentable=isinstance(exc, OSError))
    if isinstance(exc, OSError):
        return ResultadoOperacion.falla(
            TipoError.TRANSITORIO,
            f"Error de almacenamiento: {exc}",
            documento=documento,
        )
    return ResultadoOperacion.falla(
        TipoError.VALIDACION,
        f"Error en {operacion}: {exc}",
        documento=documento,
    )


# =========================
# Generar XML
# =========================


def generar_xml(empresa: Empresa, documento_id: Any) -> ResultadoOperacion:
    """
    Genera la clave de acceso y el XML sin firma. BORRADOR -> PENDIENTE_FIRMA.
    """
    try:
        with transaction.atomic():
            documento = _obtener_documento(empresa, documento_id, lock=True)
            _exigir_estado(documento, Estado.BORRADOR, accion="generar el XML de")
            if not documento.lineas.exists():
                raise WorkflowError(TipoError.VALIDACION, "El comprobante no tiene líneas.")

            try:
                xml_bytes, clave_acceso, ruta = construir_xml(documento)
            except (ValueError, TypeError, OSError, etree.Error) as exc:
                # La clave solo queda asignada si el XML se generó
                documento.clave_acceso = None
                return _falla_interna(documento, Operacion.GENERAR_XML, exc)

            bitacora.marcar_reintento(documento, Operacion.GENERAR_XML, exitoso=True)
            _actualizar_estado(
                documento,
                Estado.PENDIENTE_FIRMA,
                extra_updates={
                    "clave_acceso": clave_acceso,
                    "ambiente": documento.ambiente,
                    "xml_path": str(ruta),
                },
            )
    except WorkflowError as exc:
        return ResultadoOperacion.falla(exc.error, exc.detalle)

    return ResultadoOperacion.exito(
        documento=documento,
        detalle="XML generado.",
        datos={"clave_acceso": clave_acceso, "xml_path": str(ruta)},
    )


# =========================
# Firmar
# =========================


def _leer_certificado(empresa: Empresa) -> bytes:
    """
    Valida la configuración de firma de la empresa y devuelve el .p12.
    """
    if not empresa.certificado:
        raise WorkflowError(
            TipoError.CERTIFICADO,
            "La empresa no tiene certificado de firma electrónica cargado.",
        )
    if not empresa.certificado_password:
        raise WorkflowError(
            TipoError.CERTIFICADO,
            "No se configuró la contraseña del certificado.",
        )

    ahora = timezone.now()
    vence = empresa.certificado_vence
    if vence is not None:
        if vence <= ahora:
            raise WorkflowError(
                TipoError.CERTIFICADO,
                f"El certificado venció el {vence:%Y-%m-%d}. Cargue uno nuevo.",
            )
        dias_aviso = getattr(settings, "SRI_CERTIFICADO_AVISO_DIAS", 30)
        if vence < ahora + timedelta(days=dias_aviso):
            logger.warning(
                "Certificado de empresa %s vence pronto (%s)",
                empresa.ruc,
                vence,
            )

    try:
        with empresa.certificado.open("rb") as fh:
            return fh.read()
    except OSError as exc:
        raise WorkflowError(
            TipoError.CERTIFICADO,
            f"No se pudo leer el archivo del certificado: {exc}",
        )


def firmar(empresa: Empresa, documento_id: Any) -> ResultadoOperacion:
    """
    Firma el XML generado (XAdES-BES). PENDIENTE_FIRMA -> PENDIENTE_AUTORIZACION.
    """
    try:
        documento = _obtener_documento(empresa, documento_id)
        if documento.estado == Estado.BORRADOR:
            raise WorkflowError(
                TipoError.PRECONDICION,
                "Debe generar el XML antes de firmar el comprobante.",
            )
        _exigir_estado(documento, Estado.PENDIENTE_FIRMA, accion="firmar")

        if not documento.xml_path or not Path(documento.xml_path).is_file():
            raise WorkflowError(
                TipoError.PRECONDICION,
                "No se encuentra el XML sin firma en disco. Vuelva a generarlo.",
            )

        certificado = _leer_certificado(documento.empresa)
    except WorkflowError as exc:
        return ResultadoOperacion.falla(exc.error, exc.detalle)

    try:
        ruta_firmada = firmar_archivo(
            documento.xml_path,
            certificado,
            documento.empresa.certificado_password,
        )
    except CertificateError as exc:
        logger.warning("Certificado inválido al firmar comprobante %s: %s", documento.pk, exc)
        bitacora.registrar_excepcion(documento, Operacion.FIRMAR, exc)
        return ResultadoOperacion.falla(TipoError.CERTIFICADO, str(exc), documento=documento)
    except (ValueError, OSError, etree.Error) as exc:
        return _falla_interna(documento, Operacion.FIRMAR, exc)

    bitacora.marcar_reintento(documento, Operacion.FIRMAR, exitoso=True)
    _actualizar_estado(
        documento,
        Estado.PENDIENTE_AUTORIZACION,
        extra_updates={"xml_firmado_path": str(ruta_firmada)},
    )
    return ResultadoOperacion.exito(
        documento=documento,
        detalle="Comprobante firmado.",
        datos={"xml_firmado_path": str(ruta_firmada)},
    )


# =========================
# Enviar (Recepción SRI)
# =========================


def enviar(empresa: Empresa, documento_id: Any, client: Optional[SRIClient] = None) -> ResultadoOperacion:
    """
    Envía el XML firmado a Recepción.

    - RECIBIDA: el estado no cambia (queda pendiente de autorización).
    - DEVUELTA: falla PERMANENTE, el estado no cambia y se escribe una fila
      de bitácora por mensaje. Solo la consulta de autorización rechaza.
    - falla de comunicación: sin cambios y sin bitácora.
    """
    try:
        documento = _obtener_documento(empresa, documento_id)
        if documento.estado == Estado.RECHAZADO:
            motivos = bitacora.motivos_rechazo(documento)
            raise WorkflowError(
                TipoError.PRECONDICION,
                "El comprobante fue rechazado por el SRI y no puede reenviarse sin corrección."
                + (f" Motivos: {'; '.join(motivos)}" if motivos else ""),
            )
        _exigir_estado(documento, Estado.PENDIENTE_AUTORIZACION, accion="enviar")

        if not documento.xml_firmado_path or not Path(documento.xml_firmado_path).is_file():
            raise WorkflowError(
                TipoError.PRECONDICION,
                "No se encuentra el XML firmado en disco. Vuelva a firmar el comprobante.",
            )
    except WorkflowError as exc:
        return ResultadoOperacion.falla(exc.error, exc.detalle)

    logger.info("Enviando comprobante id=%s clave=%s a Recepción", documento.pk, documento.clave_acceso)

    try:
        xml_firmado = Path(documento.xml_firmado_path).read_bytes()
    except OSError as exc:
        logger.warning("No se pudo leer el XML firmado de %s: %s", documento.pk, exc)
        return ResultadoOperacion.falla(
            TipoError.PRECONDICION,
            f"No se pudo leer el XML firmado: {exc}. Vuelva a firmar el comprobante.",
            documento=documento,
        )

    client = client or SRIClient(documento.empresa)
    respuesta = client.enviar_comprobante(xml_firmado)
    datos = {"estado_sri": respuesta.estado}

    if respuesta.tipo == TipoRespuesta.TRANSITORIO:
        logger.warning(
            "Falla transitoria enviando comprobante %s: %s",
            documento.pk,
            [str(m) for m in respuesta.mensajes],
        )
        return ResultadoOperacion.falla(
            TipoError.TRANSITORIO,
            "No fue posible comunicarse con el SRI. Intente nuevamente.",
            documento=documento,
            datos=datos,
            mensajes=respuesta.mensajes,
        )

    if respuesta.tipo == TipoRespuesta.PERMANENTE:
        with transaction.atomic():
            _actualizar_estado(documento, documento.estado, mensajes=respuesta.mensajes)
            bitacora.registrar_errores(documento, Operacion.ENVIAR, respuesta.mensajes)
        return ResultadoOperacion.falla(
            TipoError.PERMANENTE,
            "El SRI devolvió el comprobante.",
            documento=documento,
            datos=datos,
            mensajes=respuesta.mensajes,
        )

    with transaction.atomic():
        bitacora.marcar_reintento(documento, Operacion.ENVIAR, exitoso=True)
        _actualizar_estado(documento, documento.estado, mensajes=respuesta.mensajes)
    return ResultadoOperacion.exito(
        documento=documento,
        detalle="Comprobante recibido por el SRI.",
        datos=datos,
        mensajes=respuesta.mensajes,
    )


# =========================
# Consultar autorización
# =========================


def _normalizar_fecha_autorizacion(valor: Any):
    if not valor:
        return timezone.now()
    if hasattr(valor, "isoformat"):
        fecha = valor
    else:
        fecha = parse_datetime(str(valor))
        if fecha is None:
            logger.warning("fechaAutorizacion no reconocida: %r", valor)
            return timezone.now()
    if timezone.is_naive(fecha):
        fecha = timezone.make_aware(fecha)
    return fecha


def _datos_autorizacion(documento: ElectronicDocument) -> Dict[str, Any]:
    return {
        "numero_autorizacion": documento.numero_autorizacion,
        "fecha_autorizacion": (
            documento.fecha_autorizacion.isoformat() if documento.fecha_autorizacion else None
        ),
    }


def consultar_autorizacion(
    empresa: Empresa,
    documento_id: Any,
    client: Optional[SRIClient] = None,
) -> ResultadoOperacion:
    """
    Consulta el estado de autorización en el SRI.

    - AUTORIZADO: guarda número/fecha de autorización y el XML autorizado.
    - NO AUTORIZADO: RECHAZADO + una fila de bitácora por mensaje.
    - EN PROCESAMIENTO o falla de comunicación: sin cambios.
    Sobre un comprobante ya AUTORIZADO responde con lo almacenado, sin llamar al SRI.
    """
    try:
        documento = _obtener_documento(empresa, documento_id)
        if documento.estado == Estado.AUTORIZADO:
            return ResultadoOperacion.exito(
                documento=documento,
                detalle="El comprobante ya está autorizado.",
                datos={"estado_sri": "AUTORIZADO", **_datos_autorizacion(documento)},
            )
        _exigir_estado(documento, Estado.PENDIENTE_AUTORIZACION, accion="consultar la autorización de")
        if not documento.clave_acceso:
            raise WorkflowError(
                TipoError.PRECONDICION,
                "El comprobante no tiene clave de acceso. Genere el XML primero.",
            )
    except WorkflowError as exc:
        return ResultadoOperacion.falla(exc.error, exc.detalle)

    logger.info(
        "Consultando autorización de comprobante id=%s clave=%s",
        documento.pk,
        documento.clave_acceso,
    )

    client = client or SRIClient(documento.empresa)
    respuesta = client.consultar_autorizacion(documento.clave_acceso)
    datos: Dict[str, Any] = {"estado_sri": respuesta.estado}

    if respuesta.tipo == TipoRespuesta.TRANSITORIO:
        return ResultadoOperacion.falla(
            TipoError.TRANSITORIO,
            "No fue posible consultar la autorización en el SRI. Intente nuevamente.",
            documento=documento,
            datos=datos,
            mensajes=respuesta.mensajes,
        )

    if respuesta.tipo == TipoRespuesta.EN_PROCESO:
        logger.info("Comprobante %s aún en procesamiento en el SRI", documento.pk)
        datos["estado_sri"] = respuesta.estado or "EN PROCESAMIENTO"
        return ResultadoOperacion.exito(
            documento=documento,
            detalle="El comprobante sigue en procesamiento en el SRI.",
            datos=datos,
            mensajes=respuesta.mensajes,
        )

    if respuesta.tipo == TipoRespuesta.PERMANENTE:
        with transaction.atomic():
            _actualizar_estado(documento, Estado.RECHAZADO, mensajes=respuesta.mensajes)
            bitacora.registrar_errores(documento, Operacion.AUTORIZAR, respuesta.mensajes)
        logger.error(
            "Comprobante %s NO AUTORIZADO por el SRI: %s",
            documento.pk,
            [str(m) for m in respuesta.mensajes],
        )
        return ResultadoOperacion.falla(
            TipoError.PERMANENTE,
            "El SRI no autorizó el comprobante.",
            documento=documento,
            datos=datos,
            mensajes=respuesta.mensajes,
        )

    with transaction.atomic():
        bitacora.marcar_reintento(documento, Operacion.AUTORIZAR, exitoso=True)
        _actualizar_estado(
            documento,
            Estado.AUTORIZADO,
            mensajes=respuesta.mensajes,
            extra_updates={
                "numero_autorizacion": respuesta.numero_autorizacion or documento.clave_acceso,
                "fecha_autorizacion": _normalizar_fecha_autorizacion(respuesta.fecha_autorizacion),
                "xml_autorizado": respuesta.comprobante,
            },
        )
    datos.update(_datos_autorizacion(documento))
    return ResultadoOperacion.exito(
        documento=documento,
        detalle="Comprobante autorizado por el SRI.",
        datos=datos,
        mensajes=respuesta.mensajes,
    )


# =========================
# Eliminar / anular borradores
# =========================


def eliminar(empresa: Empresa, documento_id: Any) -> ResultadoOperacion:
    """
    Eliminación lógica. Solo BORRADOR; el secuencial no se reutiliza.
    """
    try:
        with transaction.atomic():
            documento = _obtener_documento(empresa, documento_id, lock=True)
            _exigir_estado(documento, Estado.BORRADOR, accion="eliminar")
            documento.marcar_eliminado()
    except WorkflowError as exc:
        return ResultadoOperacion.falla(exc.error, exc.detalle)

    logger.info("Comprobante %s eliminado (lógico)", documento.pk)
    return ResultadoOperacion.exito(documento=documento, detalle="Comprobante eliminado.")


def anular(empresa: Empresa, documento_id: Any) -> ResultadoOperacion:
    """
    Anula un BORRADOR. El secuencial queda consumido.
    """
    try:
        with transaction.atomic():
            documento = _obtener_documento(empresa, documento_id, lock=True)
            _exigir_estado(documento, Estado.BORRADOR, accion="anular")
            _actualizar_estado(documento, Estado.ANULADO)
    except WorkflowError as exc:
        return ResultadoOperacion.falla(exc.error, exc.detalle)

    return ResultadoOperacion.exito(documento=documento, detalle="Comprobante anulado.")
