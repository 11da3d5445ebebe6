# fiscal/services/sri/xml_builder.py
# -*- coding: utf-8 -*-
"""
Punto de entrada para generar el XML de cualquier comprobante soportado:
deriva la clave de acceso, arma el XML según el tipo y lo guarda en disco.
"""
from __future__ import annotations

import logging
from decimal import Decimal
from pathlib import Path
from typing import Tuple

from lxml import etree

from fiscal.services.almacenamiento import guardar_xml, ruta_xml
from fiscal.services.sri.clave_acceso import generar_clave_acceso
from fiscal.services.sri.xml_credit_note_builder import build_credit_note_xml
from fiscal.services.sri.xml_invoice_builder import build_invoice_xml

logger = logging.getLogger("fiscal.sri")

BUILDERS = {
    "01": build_invoice_xml,
    "04": build_credit_note_xml,
}


def construir_xml(documento) -> Tuple[bytes, str, Path]:
    """
    Genera el XML sin firma del comprobante.

    Asigna en memoria `clave_acceso` y `ambiente` al documento (el llamador
    decide cuándo persistirlos) y escribe el archivo en disco.

    :return: (xml_bytes, clave_acceso, ruta del archivo)
    :raises ValueError: tipo no soportado o datos inválidos para la clave.
    """
    builder = BUILDERS.get(documento.tipo)
    if builder is None:
        raise ValueError(f"Tipo de comprobante no soportado: {documento.tipo}")

    empresa = documento.empresa
    ambiente = empresa.ambiente_efectivo

    clave_acceso = generar_clave_acceso(
        fecha_emision=documento.fecha_emision,
        tipo_comprobante=documento.tipo,
        ruc=empresa.ruc,
        ambiente=ambiente,
        establecimiento=documento.establecimiento.codigo,
        punto_emision=documento.punto_emision.codigo,
        secuencial=documento.secuencial,
    )
    documento.clave_acceso = clave_acceso
    documento.ambiente = ambiente

    xml_bytes = builder(documento)
    ruta = guardar_xml(ruta_xml(documento, clave_acceso), xml_bytes)

    logger.info(
        "XML generado documento=%s tipo=%s clave=%s ruta=%s",
        documento.pk,
        documento.tipo,
        clave_acceso,
        ruta,
    )
    return xml_bytes, clave_acceso, ruta


def leer_resumen_xml(xml_bytes: bytes) -> dict:
    """
    Lee los datos clave de un XML de comprobante (firmado o no).
    """
    root = etree.fromstring(xml_bytes)
    info_tributaria = root.find("infoTributaria")
    if info_tributaria is None:
        raise ValueError("El XML no contiene <infoTributaria>.")

    if root.tag == "factura":
        importe = root.findtext("infoFactura/importeTotal")
    elif root.tag == "notaCredito":
        importe = root.findtext("infoNotaCredito/valorModificacion")
    else:
        raise ValueError(f"Raíz de comprobante no soportada: {root.tag}")

    return {
        "tipo": root.tag,
        "version": root.get("version"),
        "clave_acceso": info_tributaria.findtext("claveAcceso"),
        "cod_doc": info_tributaria.findtext("codDoc"),
        "secuencial": info_tributaria.findtext("secuencial"),
        "numero_lineas": len(root.findall("detalles/detalle")),
        "importe_total": Decimal(importe) if importe is not None else None,
    }
