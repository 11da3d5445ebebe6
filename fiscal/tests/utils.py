# fiscal/tests/utils.py
# -*- coding: utf-8 -*-
"""
Datos de prueba compartidos: empresa con establecimiento/punto de emisión,
facturas en borrador y un certificado .p12 autofirmado.
"""
from __future__ import annotations

import datetime as dt
import threading
from decimal import Decimal
from functools import lru_cache

from cryptography import x509
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.hazmat.primitives.serialization import BestAvailableEncryption, pkcs12
from cryptography.x509.oid import NameOID
from django.core.files.base import ContentFile
from django.db import connection

from fiscal.models import (
    CreditNoteDetail,
    DocumentLine,
    ElectronicDocument,
    Empresa,
    Establecimiento,
    PuntoEmision,
)
from fiscal.services.documentos import crear_factura
from fiscal.services.secuenciales import numero_legal

PASSWORD_P12 = "clave-prueba"
FECHA_EMISION = dt.date(2024, 3, 15)


def crear_empresa(ruc: str = "1790012345001", **extra) -> Empresa:
    datos = {
        "razon_social": "COMERCIAL PRUEBAS S.A.",
        "nombre_comercial": "Comercial Pruebas",
        "direccion_matriz": "Av. Amazonas N34-12, Quito",
        "obligado_llevar_contabilidad": True,
    }
    datos.update(extra)
    return Empresa.objects.create(ruc=ruc, **datos)


def crear_punto_emision(empresa: Empresa, estab: str = "001", pto: str = "001", **extra) -> PuntoEmision:
    establecimiento, _ = Establecimiento.objects.get_or_create(
        empresa=empresa,
        codigo=estab,
        defaults={"nombre": "Matriz", "direccion": "Av. Amazonas N34-12"},
    )
    return PuntoEmision.objects.create(establecimiento=establecimiento, codigo=pto, **extra)


def linea(cantidad="2", precio="100.00", tarifa="15", **extra) -> dict:
    datos = {
        "codigo_principal": "SERV-01",
        "descripcion": "Mantenimiento preventivo",
        "cantidad": Decimal(cantidad),
        "precio_unitario": Decimal(precio),
        "tarifa_iva": Decimal(tarifa),
    }
    datos.update(extra)
    return datos


def datos_factura(punto: PuntoEmision, **extra) -> dict:
    datos = {
        "punto_emision": punto.pk,
        "fecha_emision": FECHA_EMISION,
        "tipo_identificacion_comprador": "05",
        "identificacion_comprador": "1712345678",
        "razon_social_comprador": "JUAN PEREZ",
        "direccion_comprador": "Calle Larga 123",
        "email_comprador": "cliente@example.com",
        "lineas": [linea()],
    }
    datos.update(extra)
    return datos


def crear_documento(
    punto: PuntoEmision,
    secuencial: int = 1,
    tipo: str = ElectronicDocument.Tipo.FACTURA,
    estado: str = ElectronicDocument.Estado.BORRADOR,
    **extra,
) -> ElectronicDocument:
    """
    Crea un comprobante directamente (sin pasar por el servicio) con una línea
    de 2 x 100.00 al 15 %.
    """
    establecimiento = punto.establecimiento
    datos = {
        "tipo": tipo,
        "estado": estado,
        "empresa": establecimiento.empresa,
        "establecimiento": establecimiento,
        "punto_emision": punto,
        "secuencial": f"{secuencial:09d}",
        "numero": numero_legal(establecimiento.codigo, punto.codigo, secuencial),
        "fecha_emision": FECHA_EMISION,
        "tipo_identificacion_comprador": "05",
        "identificacion_comprador": "1712345678",
        "razon_social_comprador": "JUAN PEREZ",
        "email_comprador": "cliente@example.com",
        "subtotal": Decimal("200.00"),
        "impuesto": Decimal("30.00"),
        "total": Decimal("230.00"),
    }
    datos.update(extra)
    documento = ElectronicDocument.objects.create(**datos)
    DocumentLine.objects.create(
        documento=documento,
        codigo_principal="SERV-01",
        descripcion="Mantenimiento preventivo",
        cantidad=Decimal("2"),
        precio_unitario=Decimal("100.00"),
        tarifa_iva=Decimal("15.00"),
        codigo_porcentaje="4",
        subtotal=Decimal("200.00"),
        impuesto=Decimal("30.00"),
        total=Decimal("230.00"),
    )
    return documento


def crear_nota_credito_borrador(punto: PuntoEmision, factura: ElectronicDocument, secuencial: int = 1):
    documento = crear_documento(punto, secuencial=secuencial, tipo=ElectronicDocument.Tipo.NOTA_CREDITO)
    CreditNoteDetail.objects.create(
        documento=documento,
        factura=factura,
        num_doc_modificado=factura.numero,
        fecha_emision_doc_sustento=factura.fecha_emision,
        motivo="Devolución de mercadería",
        valor_modificacion=documento.total,
    )
    return documento


@lru_cache(maxsize=None)
def generar_p12(password: str = PASSWORD_P12, vencido: bool = False) -> bytes:
    """
    Certificado RSA autofirmado empaquetado en PKCS12.
    """
    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    nombre = x509.Name(
        [
            x509.NameAttribute(NameOID.COUNTRY_NAME, "EC"),
            x509.NameAttribute(NameOID.COMMON_NAME, "FIRMA DE PRUEBAS"),
        ]
    )
    ahora = dt.datetime.now(dt.timezone.utc)
    if vencido:
        inicio, fin = ahora - dt.timedelta(days=60), ahora - dt.timedelta(days=1)
    else:
        inicio, fin = ahora - dt.timedelta(days=1), ahora + dt.timedelta(days=365)

    cert = (
        x509.CertificateBuilder()
        .subject_name(nombre)
        .issuer_name(nombre)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(inicio)
        .not_valid_after(fin)
        .sign(key, hashes.SHA256())
    )
    return pkcs12.serialize_key_and_certificates(
        b"firma",
        key,
        cert,
        None,
        BestAvailableEncryption(password.encode("utf-8")),
    )


def cargar_certificado_empresa(empresa: Empresa, vencido: bool = False) -> None:
    empresa.certificado.save("firma.p12", ContentFile(generar_p12(vencido=vencido)), save=False)
    empresa.certificado_password = PASSWORD_P12
    empresa.save()


def crear_factura_via_servicio(punto: PuntoEmision, **extra) -> ElectronicDocument:
    resultado = crear_factura(punto.establecimiento.empresa, datos_factura(punto, **extra))
    assert resultado.ok, resultado.detalle
    return resultado.documento


def ejecutar_en_hilos(cantidad: int, funcion):
    """
    Ejecuta `funcion` en `cantidad` hilos que arrancan a la vez. Cada hilo usa
    su propia conexión a la base. Retorna (resultados, excepciones).
    """
    resultados, errores = [], []
    barrera = threading.Barrier(cantidad)

    def trabajo():
        try:
            barrera.wait(timeout=10)
            resultados.append(funcion())
        except Exception as exc:  # noqa: BLE001
            errores.append(exc)
        finally:
            connection.close()

    hilos = [threading.Thread(target=trabajo) for _ in range(cantidad)]
    for hilo in hilos:
        hilo.start()
    for hilo in hilos:
        hilo.join(timeout=30)
    return resultados, errores
