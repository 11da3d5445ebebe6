# fiscal/tests/test_signer.py
# -*- coding: utf-8 -*-
from __future__ import annotations

import tempfile
from pathlib import Path
from unittest.mock import patch

from django.test import SimpleTestCase
from lxml import etree

from fiscal.services.sri.signer import (
    NAMESPACES,
    CertificateError,
    cargar_certificado,
    fecha_vencimiento,
    firmar_archivo,
    firmar_xml,
    validar_firma,
)
from fiscal.tests.utils import PASSWORD_P12, generar_p12

XML_FACTURA = (
    b'<?xml version="1.0" encoding="UTF-8"?>'
    b'<factura id="comprobante" version="2.1.0">'
    b"<infoTributaria><claveAcceso>1503202401179001234500110010010000000071234567815</claveAcceso></infoTributaria>"
    b"<infoFactura><importeTotal>230.00</importeTotal></infoFactura>"
    b"</factura>"
)


class CargarCertificadoTests(SimpleTestCase):
    def test_carga_certificado_vigente(self):
        key, cert, extra = cargar_certificado(generar_p12(), PASSWORD_P12)

        self.assertIsNotNone(key)
        self.assertIn("FIRMA DE PRUEBAS", cert.subject.rfc4514_string())
        self.assertEqual(extra, [])
        self.assertEqual(fecha_vencimiento(generar_p12(), PASSWORD_P12), cert.not_valid_after_utc)

    def test_password_incorrecta(self):
        with self.assertRaises(CertificateError):
            cargar_certificado(generar_p12(), "otra-clave")

    def test_certificado_vencido(self):
        with self.assertRaises(CertificateError):
            cargar_certificado(generar_p12(vencido=True), PASSWORD_P12)

    def test_certificado_no_vale_en_el_instante_de_vencimiento(self):
        _, cert, _ = cargar_certificado(generar_p12(), PASSWORD_P12)

        with patch("fiscal.services.sri.signer.timezone.now", return_value=cert.not_valid_after_utc):
            with self.assertRaises(CertificateError):
                cargar_certificado(generar_p12(), PASSWORD_P12)

    def test_datos_vacios(self):
        with self.assertRaises(CertificateError):
            cargar_certificado(b"", PASSWORD_P12)
        with self.assertRaises(CertificateError):
            cargar_certificado(generar_p12(), "")


class FirmaXadesTests(SimpleTestCase):
    def setUp(self) -> None:
        self.key, self.cert, _ = cargar_certificado(generar_p12(), PASSWORD_P12)

    def test_estructura_de_la_firma(self):
        firmado = firmar_xml(XML_FACTURA, self.key, self.cert)
        root = etree.fromstring(firmado)
        ds = NAMESPACES["ds"]
        xades = NAMESPACES["xades"]

        signature = root.find(f"{{{ds}}}Signature")
        self.assertIsNotNone(signature)
        self.assertEqual(
            [etree.QName(hijo).localname for hijo in signature],
            ["SignedInfo", "SignatureValue", "KeyInfo", "Object"],
        )
        referencias = signature.findall(f"{{{ds}}}SignedInfo/{{{ds}}}Reference")
        self.assertEqual(
            [r.get("URI") for r in referencias],
            ["#comprobante", "#Signature-comprobante-SignedProperties"],
        )
        self.assertIsNotNone(root.find(f".//{{{xades}}}SigningCertificate"))

    def test_firma_valida(self):
        self.assertTrue(validar_firma(firmar_xml(XML_FACTURA, self.key, self.cert)))

    def test_alteracion_del_comprobante_se_detecta(self):
        firmado = firmar_xml(XML_FACTURA, self.key, self.cert)
        alterado = firmado.replace(b"<importeTotal>230.00<", b"<importeTotal>1.00<")

        self.assertNotEqual(firmado, alterado)
        self.assertFalse(validar_firma(alterado))

    def test_xml_sin_firma(self):
        self.assertFalse(validar_firma(XML_FACTURA))

    def test_xml_vacio_o_mal_formado(self):
        with self.assertRaises(ValueError):
            firmar_xml(b"", self.key, self.cert)
        with self.assertRaises(ValueError):
            firmar_xml(b"<factura>", self.key, self.cert)

    def test_validar_firma_ilegible_devuelve_false(self):
        with self.assertLogs("fiscal.sri", level="WARNING"):
            self.assertFalse(validar_firma(b"<factura"))
        with self.assertLogs("fiscal.sri", level="WARNING"):
            self.assertFalse(validar_firma(b""))

        ds = NAMESPACES["ds"]
        firmado = firmar_xml(XML_FACTURA, self.key, self.cert)
        for ruta, basura in (
            (f".//{{{ds}}}X509Certificate", "bm8tZXMtdW4tY2VydGlmaWNhZG8="),
            (f".//{{{ds}}}X509Certificate", "***no-es-base64***"),
            (f".//{{{ds}}}SignatureValue", "A"),
        ):
            with self.subTest(ruta=ruta, basura=basura):
                root = etree.fromstring(firmado)
                root.find(ruta).text = basura
                with self.assertLogs("fiscal.sri", level="WARNING"):
                    self.assertFalse(validar_firma(etree.tostring(root)))


class FirmarArchivoTests(SimpleTestCase):
    def test_escribe_archivo_signed_junto_al_original(self):
        with tempfile.TemporaryDirectory() as tmp:
            origen = Path(tmp) / "1503202401.xml"
            origen.write_bytes(XML_FACTURA)

            destino = firmar_archivo(origen, generar_p12(), PASSWORD_P12)

            self.assertEqual(destino, Path(tmp) / "1503202401-signed.xml")
            self.assertTrue(validar_firma(destino))
            # El original queda intacto
            self.assertEqual(origen.read_bytes(), XML_FACTURA)

    def test_certificado_vencido_no_escribe_nada(self):
        with tempfile.TemporaryDirectory() as tmp:
            origen = Path(tmp) / "comprobante.xml"
            origen.write_bytes(XML_FACTURA)

            with self.assertRaises(CertificateError):
                firmar_archivo(origen, generar_p12(vencido=True), PASSWORD_P12)

            self.assertEqual(list(Path(tmp).iterdir()), [origen])
