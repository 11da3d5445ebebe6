# fiscal/services/sri/xml_comun.py
# -*- coding: utf-8 -*-
"""
Nodos compartidos entre el XML de factura y el de nota de crédito:
infoTributaria, impuestos por línea, totalConImpuestos e infoAdicional.
"""
from __future__ import annotations

import logging
from datetime import date, datetime
from decimal import Decimal
from typing import Dict, List

from lxml import etree

from fiscal.services.impuestos import agrupar_por_tarifa

logger = logging.getLogger("fiscal.sri")


def format_decimal(value: Decimal | float | int | None, pattern: str = "0.00") -> str:
    """
    Formatea un número según el patrón SRI:
    - montos: 2 decimales (pattern="0.00")
    - cantidades y precios unitarios: 6 decimales (pattern="0.000000")
    """
    if value is None:
        value = Decimal("0.00")
    if not isinstance(value, Decimal):
        value = Decimal(str(value))

    if pattern == "0.00":
        return f"{value.quantize(Decimal('0.01')):.2f}"
    if pattern == "0.000000":
        return f"{value.quantize(Decimal('0.000001')):.6f}"
    return str(value)


def format_fecha(fecha: date | datetime) -> str:
    """
    Fecha en formato dd/mm/yyyy, sin ajustes de zona horaria: el XML debe
    llevar la misma fecha usada en la clave de acceso.
    """
    if fecha is None:
        raise ValueError("La fecha no puede ser None al construir el XML.")
    if isinstance(fecha, datetime):
        fecha = fecha.date()
    if not isinstance(fecha, date):
        raise TypeError(f"Se esperaba date o datetime, no {type(fecha)!r}")
    return fecha.strftime("%d/%m/%Y")


def build_info_tributaria(documento) -> etree._Element:
    """
    Construye el nodo <infoTributaria>. El documento debe tener clave de acceso.
    """
    empresa = documento.empresa
    if not documento.clave_acceso:
        raise ValueError(f"El comprobante {documento.pk} no tiene clave de acceso.")

    info = etree.Element("infoTributaria")
    etree.SubElement(info, "ambiente").text = documento.ambiente or empresa.ambiente_efectivo
    etree.SubElement(info, "tipoEmision").text = "1"  # normal
    etree.SubElement(info, "razonSocial").text = empresa.razon_social
    etree.SubElement(info, "nombreComercial").text = empresa.nombre_comercial or empresa.razon_social
    etree.SubElement(info, "ruc").text = empresa.ruc
    etree.SubElement(info, "claveAcceso").text = documento.clave_acceso
    etree.SubElement(info, "codDoc").text = documento.tipo
    etree.SubElement(info, "estab").text = documento.establecimiento.codigo.zfill(3)
    etree.SubElement(info, "ptoEmi").text = documento.punto_emision.codigo.zfill(3)
    etree.SubElement(info, "secuencial").text = f"{int(documento.secuencial):09d}"
    etree.SubElement(info, "dirMatriz").text = empresa.direccion_matriz or ""
    return info


def dir_establecimiento(documento) -> str:
    return documento.establecimiento.direccion or documento.empresa.direccion_matriz or ""


def append_contabilidad(info: etree._Element, empresa) -> None:
    """
    contribuyenteEspecial (solo si existe) y obligadoContabilidad.
    """
    if empresa.contribuyente_especial:
        etree.SubElement(info, "contribuyenteEspecial").text = empresa.contribuyente_especial
    etree.SubElement(info, "obligadoContabilidad").text = empresa.obligado_contabilidad_str


def build_total_con_impuestos(lineas, incluir_tarifa: bool = True) -> etree._Element:
    """
    Construye <totalConImpuestos> agrupando las líneas por codigoPorcentaje.

    En la nota de crédito el XSD de totalImpuesto no lleva <tarifa>.
    """
    total_con_impuestos = etree.Element("totalConImpuestos")
    for grupo in agrupar_por_tarifa(lineas):
        total_impuesto = etree.SubElement(total_con_impuestos, "totalImpuesto")
        etree.SubElement(total_impuesto, "codigo").text = grupo["codigo"]
        etree.SubElement(total_impuesto, "codigoPorcentaje").text = grupo["codigo_porcentaje"]
        etree.SubElement(total_impuesto, "baseImponible").text = format_decimal(grupo["base_imponible"])
        if incluir_tarifa:
            etree.SubElement(total_impuesto, "tarifa").text = format_decimal(grupo["tarifa"])
        etree.SubElement(total_impuesto, "valor").text = format_decimal(grupo["valor"])
    return total_con_impuestos


def build_detalles(lineas, tag_codigo: str = "codigoPrincipal") -> etree._Element:
    """
    Construye <detalles>. La factura usa codigoPrincipal y la nota de crédito codigoInterno.
    """
    detalles = etree.Element("detalles")
    for linea in lineas:
        detalle = etree.SubElement(detalles, "detalle")
        etree.SubElement(detalle, tag_codigo).text = linea.codigo_principal
        etree.SubElement(detalle, "descripcion").text = linea.descripcion
        etree.SubElement(detalle, "cantidad").text = format_decimal(linea.cantidad, "0.000000")
        etree.SubElement(detalle, "precioUnitario").text = format_decimal(
            linea.precio_unitario, "0.000000"
        )
        etree.SubElement(detalle, "descuento").text = format_decimal(linea.descuento)
        etree.SubElement(detalle, "precioTotalSinImpuesto").text = format_decimal(linea.subtotal)

        impuestos = etree.SubElement(detalle, "impuestos")
        impuesto = etree.SubElement(impuestos, "impuesto")
        etree.SubElement(impuesto, "codigo").text = "2"  # IVA
        etree.SubElement(impuesto, "codigoPorcentaje").text = linea.codigo_porcentaje
        etree.SubElement(impuesto, "tarifa").text = format_decimal(linea.tarifa_iva)
        etree.SubElement(impuesto, "baseImponible").text = format_decimal(linea.subtotal)
        etree.SubElement(impuesto, "valor").text = format_decimal(linea.impuesto)
    return detalles


def build_info_adicional(documento, extra: List[Dict[str, str]] | None = None) -> etree._Element | None:
    """
    Construye <infoAdicional> con Email, Telefono y Observaciones del comprobante.
    Cada campo vacío se omite y, si no queda ninguno, no se genera el nodo.
    """
    campos: List[Dict[str, str]] = []

    if documento.email_comprador:
        campos.append({"nombre": "Email", "valor": documento.email_comprador})
    if documento.telefono_comprador:
        campos.append({"nombre": "Telefono", "valor": documento.telefono_comprador})
    if documento.observaciones:
        campos.append({"nombre": "Observaciones", "valor": documento.observaciones[:300]})
    campos.extend(c for c in (extra or []) if c.get("valor"))

    if not campos:
        return None

    info_adicional = etree.Element("infoAdicional")
    for campo in campos:
        campo_adic = etree.SubElement(info_adicional, "campoAdicional")
        campo_adic.set("nombre", campo["nombre"])
        campo_adic.text = campo["valor"]
    return info_adicional


def serializar(root: etree._Element) -> bytes:
    return etree.tostring(
        root,
        encoding="UTF-8",
        xml_declaration=True,
        pretty_print=False,
    )
