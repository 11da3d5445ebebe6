# fiscal/services/sri/xml_credit_note_builder.py
# -*- coding: utf-8 -*-
from __future__ import annotations

import logging

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


def _build_info_nota_credito(documento, detalle_nc, lineas) -> etree._Element:
    """
    Construye el nodo <infoNotaCredito> en el orden del XSD NotaCredito v1.1.0.
    """
    info = etree.Element("infoNotaCredito")

    etree.SubElement(info, "fechaEmision").text = format_fecha(documento.fecha_emision)
    etree.SubElement(info, "dirEstablecimiento").text = dir_establecimiento(documento)
    etree.SubElement(info, "tipoIdentificacionComprador").text = (
        documento.tipo_identificacion_comprador
    )
    etree.SubElement(info, "razonSocialComprador").text = documento.razon_social_comprador
    etree.SubElement(info, "identificacionComprador").text = documento.identificacion_comprador
    append_contabilidad(info, documento.empresa)

    # Documento modificado (sustento)
    etree.SubElement(info, "codDocModificado").text = detalle_nc.cod_doc_modificado
    etree.SubElement(info, "numDocModificado").text = detalle_nc.num_doc_modificado
    etree.SubElement(info, "fechaEmisionDocSustento").text = format_fecha(
        detalle_nc.fecha_emision_doc_sustento
    )

    etree.SubElement(info, "totalSinImpuestos").text = format_decimal(documento.subtotal)
    etree.SubElement(info, "valorModificacion").text = format_decimal(
        detalle_nc.valor_modificacion
    )
    etree.SubElement(info, "moneda").text = documento.moneda or "DOLAR"

    info.append(build_total_con_impuestos(lineas, incluir_tarifa=False))

    etree.SubElement(info, "motivo").text = detalle_nc.motivo
    return info


def build_credit_note_xml(documento) -> bytes:
    """
    Construye el XML de nota de crédito SRI (versión 1.1.0 por defecto).

    Requisitos:
    - clave de acceso ya asignada.
    - detalle de nota de crédito (factura modificada, motivo, valor).
    """
    if not documento.clave_acceso:
        raise ValueError(f"La nota de crédito {documento.pk} no tiene clave de acceso.")

    detalle_nc = documento.nota_credito

    logger.info(
        "Construyendo XML para nota de crédito id=%s, clave=%s",
        documento.pk,
        documento.clave_acceso,
    )

    lineas = list(documento.lineas.all())

    nota_credito = etree.Element(
        "notaCredito",
        id="comprobante",
        version=getattr(settings, "SRI_CREDIT_NOTE_SCHEMA_VERSION", "1.1.0"),
    )
    nota_credito.append(build_info_tributaria(documento))
    nota_credito.append(_build_info_nota_credito(documento, detalle_nc, lineas))
    nota_credito.append(build_detalles(lineas, tag_codigo="codigoInterno"))

    info_adicional = build_info_adicional(
        documento,
        extra=[{"nombre": "FacturaOrigen", "valor": detalle_nc.num_doc_modificado}],
    )
    if info_adicional is not None:
        nota_credito.append(info_adicional)

    return serializar(nota_credito)
