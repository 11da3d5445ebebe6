# fiscal/services/sri/client.py
# -*- coding: utf-8 -*-
from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import requests
from django.conf import settings
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry
from zeep import Client
from zeep.exceptions import Fault
from zeep.helpers import serialize_object
from zeep.transports import Transport

from fiscal.models import Empresa
from fiscal.services.resultados import MensajeSri

logger = logging.getLogger("fiscal.sri")


# =========================
# Configuración de endpoints SRI (tomados desde settings)
# =========================

SRI_TEST_RECEPCION_WSDL = getattr(
    settings,
    "SRI_TEST_RECEPCION_WSDL",
    "https://celcer.sri.gob.ec/comprobantes-electronicos-ws/RecepcionComprobantesOffline?wsdl",
)
SRI_TEST_AUTORIZACION_WSDL = getattr(
    settings,
    "SRI_TEST_AUTORIZACION_WSDL",
    "https://celcer.sri.gob.ec/comprobantes-electronicos-ws/AutorizacionComprobantesOffline?wsdl",
)
SRI_PROD_RECEPCION_WSDL = getattr(
    settings,
    "SRI_PROD_RECEPCION_WSDL",
    "https://cel.sri.gob.ec/comprobantes-electronicos-ws/RecepcionComprobantesOffline?wsdl",
)
SRI_PROD_AUTORIZACION_WSDL = getattr(
    settings,
    "SRI_PROD_AUTORIZACION_WSDL",
    "https://cel.sri.gob.ec/comprobantes-electronicos-ws/AutorizacionComprobantesOffline?wsdl",
)

SRI_SSL_VERIFY = getattr(settings, "SRI_SSL_VERIFY", True)
SRI_REQUEST_TIMEOUT = getattr(settings, "SRI_REQUEST_TIMEOUT", 120)  # segundos

# Mensaje de recepción que indica que el SRI ya tiene registrada la clave
CODIGO_CLAVE_REGISTRADA = "43"


class TipoRespuesta(str, enum.Enum):
    ACEPTADO = "ACEPTADO"
    AUTORIZADO = "AUTORIZADO"
    EN_PROCESO = "EN_PROCESO"
    PERMANENTE = "PERMANENTE"
    TRANSITORIO = "TRANSITORIO"


@dataclass
class ResultadoRecepcion:
    estado: Optional[str]
    tipo: TipoRespuesta
    mensajes: List[MensajeSri] = field(default_factory=list)
    raw: Dict[str, Any] = field(default_factory=dict)


@dataclass
class ResultadoAutorizacion:
    estado: Optional[str]
    tipo: TipoRespuesta
    numero_autorizacion: Optional[str] = None
    fecha_autorizacion: Any = None
    comprobante: Optional[str] = None
    mensajes: List[MensajeSri] = field(default_factory=list)
    raw: Dict[str, Any] = field(default_factory=dict)


def normalizar_estado(estado: Any) -> Optional[str]:
    """
    'no_autorizado', 'NO AUTORIZADO ' -> 'NO AUTORIZADO'
    """
    if estado is None:
        return None
    return str(estado).strip().upper().replace("_", " ")


def _como_lista(valor: Any) -> List[Any]:
    if not valor:
        return []
    if isinstance(valor, dict):
        return [valor]
    return list(valor)


def _mensajes_de(nodo: Dict[str, Any]) -> List[MensajeSri]:
    mensajes = nodo.get("mensajes") or {}
    return [
        MensajeSri(
            identificador=str(m.get("identificador") or ""),
            mensaje=m.get("mensaje") or "",
            informacion_adicional=m.get("informacionAdicional") or "",
            tipo=m.get("tipo") or "",
        )
        for m in _como_lista(mensajes.get("mensaje"))
    ]


def crear_session() -> requests.Session:
    """
    Session HTTP sin reintentos automáticos: un reintento lo decide el usuario.
    """
    session = requests.Session()
    session.verify = SRI_SSL_VERIFY
    session.headers.update({"User-Agent": "FiscalSRI/1.0 (Python/Zeep)"})

    retry = Retry(total=None, connect=0, read=0, status=0, other=0, redirect=5)
    adapter = HTTPAdapter(max_retries=retry)
    session.mount("http://", adapter)
    session.mount("https://", adapter)
    return session


class SRIClient:
    """
    Cliente SOAP para los Web Services Offline del SRI:

    - RecepcionComprobantesOffline: validarComprobante(xml)
    - AutorizacionComprobantesOffline: autorizacionComprobante(claveAccesoComprobante)

    El ambiente (Pruebas/Producción) se decide con empresa.ambiente_efectivo.
    Los clientes zeep se crean al primer uso, de modo que un WSDL caído se
    reporta como falla transitoria de la operación y no como excepción.
    """

    def __init__(self, empresa: Empresa, timeout: Optional[int] = None):
        self.empresa = empresa
        self.timeout = timeout or SRI_REQUEST_TIMEOUT

        if empresa.ambiente_efectivo == Empresa.AMBIENTE_PRODUCCION:
            self.recepcion_wsdl = SRI_PROD_RECEPCION_WSDL
            self.autorizacion_wsdl = SRI_PROD_AUTORIZACION_WSDL
        else:
            self.recepcion_wsdl = SRI_TEST_RECEPCION_WSDL
            self.autorizacion_wsdl = SRI_TEST_AUTORIZACION_WSDL

        self.transport = Transport(
            session=crear_session(),
            timeout=self.timeout,
            operation_timeout=self.timeout,
        )
        self._clientes: Dict[str, Client] = {}

        logger.info(
            "Inicializando SRIClient para empresa %s ambiente=%s "
            "[RecepcionWSDL=%s, AutorizacionWSDL=%s, verify_ssl=%s, timeout=%s]",
            empresa.ruc,
            empresa.ambiente_efectivo,
            self.recepcion_wsdl,
            self.autorizacion_wsdl,
            SRI_SSL_VERIFY,
            self.timeout,
        )

    def _cliente(self, wsdl: str) -> Client:
        if wsdl not in self._clientes:
            self._clientes[wsdl] = Client(wsdl=wsdl, transport=self.transport)
        return self._clientes[wsdl]

    def _llamar(self, origen: str, wsdl: str, operacion: str, *args, **kwargs):
        """
        Ejecuta la operación SOAP. Devuelve (data, None) o (None, MensajeSri)
        cuando la falla es de comunicación.
        """
        try:
            servicio = self._cliente(wsdl).service
            respuesta = getattr(servicio, operacion)(*args, **kwargs)
            data = serialize_object(respuesta)
            if not isinstance(data, dict):
                data = {"value": data}
            return data, None
        except Fault as exc:
            logger.exception("Error SOAP al llamar a %s: %s", operacion, exc)
            codigo = f"{origen}_FAULT"
            error = str(exc)
            detalle = "El Web Service del SRI devolvió un error SOAP. Intente más tarde."
        except requests.RequestException as exc:
            logger.exception("Error de red/timeout al llamar a %s: %s", operacion, exc)
            codigo = f"{origen}_NETWORK"
            error = str(exc)
            detalle = "No fue posible conectarse al Web Service del SRI."
        except Exception as exc:  # noqa: BLE001
            # WSDL inválido, respuesta no parseable, etc.
            logger.exception("Error inesperado al llamar a %s: %s", operacion, exc)
            codigo = f"{origen}_UNEXPECTED"
            error = str(exc)
            detalle = "Error inesperado al comunicarse con el SRI."

        return None, MensajeSri(
            identificador=codigo,
            mensaje=detalle,
            informacion_adicional=error,
            tipo="ERROR",
        )

    # -------------------------
    # Recepción: validarComprobante
    # -------------------------

    def enviar_comprobante(self, xml_firmado: bytes | str) -> ResultadoRecepcion:
        """
        Envía el comprobante firmado al WS de recepción.

        - RECIBIDA -> ACEPTADO
        - DEVUELTA -> PERMANENTE, salvo que todos los mensajes sean
          '43 CLAVE ACCESO REGISTRADA' (el SRI ya lo tiene) -> ACEPTADO
        - falla de comunicación -> TRANSITORIO
        """
        if isinstance(xml_firmado, str):
            xml_firmado = xml_firmado.encode("utf-8")

        data, falla = self._llamar(
            "RECEPCION", self.recepcion_wsdl, "validarComprobante", xml_firmado
        )
        if falla is not None:
            return ResultadoRecepcion(estado=None, tipo=TipoRespuesta.TRANSITORIO, mensajes=[falla])

        estado = normalizar_estado(data.get("estado"))
        mensajes: List[MensajeSri] = []
        comprobantes = data.get("comprobantes") or {}
        for comp in _como_lista(comprobantes.get("comprobante")):
            mensajes.extend(_mensajes_de(comp))

        if estado == "RECIBIDA":
            tipo = TipoRespuesta.ACEPTADO
        elif estado == "DEVUELTA":
            if mensajes and all(m.identificador == CODIGO_CLAVE_REGISTRADA for m in mensajes):
                tipo = TipoRespuesta.ACEPTADO
            else:
                tipo = TipoRespuesta.PERMANENTE
        else:
            tipo = TipoRespuesta.TRANSITORIO
            mensajes.append(
                MensajeSri(
                    identificador="RECEPCION_INVALID_RESPONSE",
                    mensaje=f"Estado de recepción no reconocido: {estado!r}",
                    tipo="ERROR",
                )
            )

        logger.info(
            "Respuesta RecepcionComprobantesOffline estado=%s tipo=%s mensajes=%s",
            estado,
            tipo.value,
            [str(m) for m in mensajes],
        )
        return ResultadoRecepcion(estado=estado, tipo=tipo, mensajes=mensajes, raw=data)

    # -------------------------
    # Autorización: autorizacionComprobante
    # -------------------------

    def consultar_autorizacion(self, clave_acceso: str) -> ResultadoAutorizacion:
        """
        Consulta la autorización de un comprobante por su clave de acceso.

        - AUTORIZADO -> AUTORIZADO
        - NO AUTORIZADO -> PERMANENTE
        - EN PROCESAMIENTO o sin nodo <autorizacion> -> EN_PROCESO
        - falla de comunicación -> TRANSITORIO
        """
        data, falla = self._llamar(
            "AUTORIZACION",
            self.autorizacion_wsdl,
            "autorizacionComprobante",
            claveAccesoComprobante=clave_acceso,
        )
        if falla is not None:
            return ResultadoAutorizacion(estado=None, tipo=TipoRespuesta.TRANSITORIO, mensajes=[falla])

        autorizaciones = _como_lista((data.get("autorizaciones") or {}).get("autorizacion"))
        if not autorizaciones:
            logger.info("Autorización sin resultados para clave=%s (en procesamiento)", clave_acceso)
            return ResultadoAutorizacion(estado=None, tipo=TipoRespuesta.EN_PROCESO, raw=data)

        # El SRI devuelve primero el intento más reciente
        autorizacion = autorizaciones[0]
        estado = normalizar_estado(autorizacion.get("estado"))
        mensajes = _mensajes_de(autorizacion)

        if estado == "AUTORIZADO":
            tipo = TipoRespuesta.AUTORIZADO
        elif estado == "NO AUTORIZADO":
            tipo = TipoRespuesta.PERMANENTE
        else:
            tipo = TipoRespuesta.EN_PROCESO

        logger.info(
            "Respuesta AutorizacionComprobantesOffline clave=%s estado=%s tipo=%s mensajes=%s",
            clave_acceso,
            estado,
            tipo.value,
            [str(m) for m in mensajes],
        )
        return ResultadoAutorizacion(
            estado=estado,
            tipo=tipo,
            numero_autorizacion=autorizacion.get("numeroAutorizacion"),
            fecha_autorizacion=autorizacion.get("fechaAutorizacion"),
            comprobante=autorizacion.get("comprobante"),
            mensajes=mensajes,
            raw=data,
        )
