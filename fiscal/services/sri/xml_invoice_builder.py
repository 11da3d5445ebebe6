# fiscal/services/sri/xml_invoice_builder.py
# -*- coding: utf-8 -*-
from __future__ import annotations

import logging
from decimal import Decimal

from django.conf import settings
from lxml import etree

from fiscal.services.sri.xml_comun import (
    append_contabilidad,
    build_detalles,
    build_info_adicional,
    build_info_tributaria,
    build_total_con_impuestos,
    dir_establecimiento,
    format_decimal,
    format_fecha,
    serializar,
)

logger = logging.getLogger("fiscal.sri")


def _build_info_factura(documento, lineas) -> etree._Element:
    """
    Construye el nodo <infoFactura>.
    """
    info = etree.Element("infoFactura")

    etree.SubElement(info, "fechaEmision").text = format_fecha(documento.fecha_emision)
    etree.SubElement(info, "dirEstablecimiento").text = dir_establecimiento(documento)
    append_contabilidad(info, documento.empresa)

    etree.SubElement(info, "tipoIdentificacionComprador").text = (
        documento.tipo_identificacion_comprador
    )
    etree.SubElement(info, "razonSocialComprador").text = documento.razon_social_comprador
    etree.SubElement(info, "identificacionComprador").text = documento.identificacion_comprador
    if documento.direccion_comprador:
        etree.SubElement(info, "direccionComprador").text = documento.direccion_comprador

    total_descuento = sum((linea.descuento for linea in lineas), Decimal("0.00"))
    etree.SubElement(info, "totalSinImpuestos").text = format_decimal(documento.subtotal)
    etree.SubElement(info, "totalDescuento").text = format_decimal(total_descuento)

    info.append(build_total_con_impuestos(lineas))

    etree.SubElement(info, "propina").text = format_decimal(Decimal("0.00"))
    etree.SubElement(info, "importeTotal").text = format_decimal(documento.total)
    etree.SubElement(info, "moneda").text = documento.moneda or "DOLAR"

    # Un solo pago por el total, con la forma de pago SRI del comprobante
    pagos = etree.SubElement(info, "pagos")
    pago = etree.SubElement(pagos, "pago")
    etree.SubElement(pago, "formaPago").text = str(documento.forma_pago or "01").zfill(2)
    etree.SubElement(pago, "total").text = format_decimal(documento.total)
    etree.SubElement(pago, "plazo").text = str(max(int(documento.plazo_pago or 0), 0))
    etree.SubElement(pago, "unidadTiempo").text = "dias"

    return info


def build_invoice_xml(documento) -> bytes:
    """
    Construye el XML de factura SRI (versión configurable, default 2.1.0).
    El documento debe tener ya asignada su clave de acceso.
    """
    if not documento.clave_acceso:
        raise ValueError(f"La factura {documento.pk} no tiene clave de acceso.")

    logger.info(
        "Construyendo XML para factura id=%s, clave=%s",
        documento.pk,
        documento.clave_acceso,
    )

    lineas = list(documento.lineas.all())

    factura = etree.Element(
        "factura",
        id="comprobante",
        version=getattr(settings, "SRI_SCHEMA_VERSION", "2.1.0"),
    )
    factura.append(build_info_tributaria(documento))
    factura.append(_build_info_factura(documento, lineas))
    factura.append(build_detalles(lineas, tag_codigo="codigoPrincipal"))

    info_adicional = build_info_adicional(documento)
    if info_adicional is not None:
        factura.append(info_adicional)

    return serializar(factura)
