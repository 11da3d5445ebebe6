# fiscal/services/sri/signer.py
# -*- coding: utf-8 -*-
from __future__ import annotations

import base64
import binascii
import hashlib
import logging
from datetime import datetime
from pathlib import Path
from typing import List, Tuple

from cryptography import x509
from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.backends import default_backend
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import padding
from cryptography.hazmat.primitives.serialization import Encoding, pkcs12
from django.utils import timezone
from lxml import etree

from fiscal.services.almacenamiento import ruta_firmada

logger = logging.getLogger("fiscal.sri")

# Namespaces requeridos
NAMESPACES = {
    "ds": "http://www.w3.org/2000/09/xmldsig#",
    "xades": "http://uri.etsi.org/01903/v1.3.2#",
}

ALG_C14N = "http://www.w3.org/TR/2001/REC-xml-c14n-20010315"
ALG_RSA_SHA1 = "http://www.w3.org/2000/09/xmldsig#rsa-sha1"
ALG_SHA1 = "http://www.w3.org/2000/09/xmldsig#sha1"
ALG_ENVELOPED = "http://www.w3.org/2000/09/xmldsig#enveloped-signature"
TYPE_SIGNED_PROPERTIES = "http://uri.etsi.org/01903#SignedProperties"


class CertificateError(Exception):
    """Errores relacionados con certificado/carga de PKCS12."""


def cargar_certificado(
    pkcs12_data: bytes,
    password: str,
) -> Tuple[object, x509.Certificate, List[x509.Certificate]]:
    """
    Carga un certificado PKCS12 (.p12) y devuelve:
    - private_key
    - certificate (x509.Certificate)
    - additional_certs (lista)

    :raises CertificateError: archivo ilegible, sin clave privada o fuera de vigencia.
    """
    if not pkcs12_data:
        raise CertificateError("El certificado .p12 está vacío.")
    if not password:
        raise CertificateError("No se configuró la contraseña del certificado.")

    try:
        private_key, cert, additional_certs = pkcs12.load_key_and_certificates(
            pkcs12_data,
            password.encode("utf-8"),
            backend=default_backend(),
        )
    except ValueError as exc:
        logger.warning("Error cargando PKCS12: %s", exc)
        raise CertificateError(f"Error al cargar el archivo PKCS12: {exc}") from exc

    if private_key is None or cert is None:
        raise CertificateError(
            "No se pudo extraer clave privada/certificado desde el archivo PKCS12."
        )

    now = timezone.now()
    cert_start = cert.not_valid_before_utc
    cert_end = cert.not_valid_after_utc
    if now < cert_start or now >= cert_end:
        logger.warning(
            "Certificado fuera de vigencia. Válido: %s hasta %s. Ahora: %s",
            cert_start,
            cert_end,
            now,
        )
        raise CertificateError(
            f"Certificado fuera de vigencia. Válido desde {cert_start} hasta {cert_end}"
        )

    logger.debug("Certificado válido hasta %s", cert_end)
    return private_key, cert, list(additional_certs or [])


def fecha_vencimiento(pkcs12_data: bytes, password: str) -> datetime:
    """
    Fecha de caducidad del certificado (se usa al cargar el .p12 en la empresa).
    """
    _, cert, _ = cargar_certificado(pkcs12_data, password)
    return cert.not_valid_after_utc


def _canonicalize(element: etree._Element) -> bytes:
    """
    Canonicalización C14N INCLUSIVA (no exclusiva).
    """
    return etree.tostring(
        element,
        method="c14n",
        exclusive=False,
        with_comments=False,
    )


def _sha1_b64(data: bytes) -> str:
    return base64.b64encode(hashlib.sha1(data).digest()).decode("ascii")


def _cert_b64(cert: x509.Certificate) -> str:
    pem = cert.public_bytes(Encoding.PEM).decode("ascii")
    return (
        pem.replace("-----BEGIN CERTIFICATE-----", "")
        .replace("-----END CERTIFICATE-----", "")
        .strip()
    )


def _create_xades_signed_properties(cert: x509.Certificate, signature_id: str) -> etree._Element:
    """
    Crea el nodo <xades:SignedProperties> requerido por XAdES-BES.
    """
    xades_ns = NAMESPACES["xades"]
    ds_ns = NAMESPACES["ds"]

    signed_props = etree.Element(
        f"{{{xades_ns}}}SignedProperties",
        Id=f"{signature_id}-SignedProperties",
        nsmap={"xades": xades_ns, "ds": ds_ns},
    )
    signed_sig_props = etree.SubElement(signed_props, f"{{{xades_ns}}}SignedSignatureProperties")

    etree.SubElement(signed_sig_props, f"{{{xades_ns}}}SigningTime").text = (
        timezone.now().isoformat()
    )

    signing_cert = etree.SubElement(signed_sig_props, f"{{{xades_ns}}}SigningCertificate")
    cert_elem = etree.SubElement(signing_cert, f"{{{xades_ns}}}Cert")

    # CertDigest (SHA1 del certificado DER)
    cert_digest = etree.SubElement(cert_elem, f"{{{xades_ns}}}CertDigest")
    etree.SubElement(cert_digest, f"{{{ds_ns}}}DigestMethod", Algorithm=ALG_SHA1)
    etree.SubElement(cert_digest, f"{{{ds_ns}}}DigestValue").text = _sha1_b64(
        cert.public_bytes(Encoding.DER)
    )

    issuer_serial = etree.SubElement(cert_elem, f"{{{xades_ns}}}IssuerSerial")
    etree.SubElement(issuer_serial, f"{{{ds_ns}}}X509IssuerName").text = (
        cert.issuer.rfc4514_string()
    )
    etree.SubElement(issuer_serial, f"{{{ds_ns}}}X509SerialNumber").text = str(
        cert.serial_number
    )
    return signed_props


def firmar_xml(xml_bytes: bytes, private_key, cert: x509.Certificate, additional_certs=None) -> bytes:
    """
    Firma un XML de comprobante electrónico con XAdES-BES (enveloped).

    - CanonicalizationMethod: C14N inclusivo
    - SignatureMethod: RSA-SHA1
    - DigestMethod (referencias): SHA1
    - Orden en <ds:Signature>: SignedInfo, SignatureValue, KeyInfo, Object.

    El digest de SignedProperties se calcula sobre el nodo tal como queda en el
    documento final (serializar + reparsear).
    """
    if not xml_bytes:
        raise ValueError("El XML a firmar no puede estar vacío.")

    try:
        root = etree.fromstring(xml_bytes)
    except etree.XMLSyntaxError as exc:
        raise ValueError(f"XML mal formado al intentar firmar: {exc}") from exc

    node_id = root.get("id") or "comprobante"
    if root.get("id") is None:
        root.set("id", node_id)

    signature_id = f"Signature-{node_id}"
    ds_ns = NAMESPACES["ds"]
    xades_ns = NAMESPACES["xades"]

    signature = etree.Element(
        f"{{{ds_ns}}}Signature",
        Id=signature_id,
        nsmap={"ds": ds_ns, "xades": xades_ns},
    )

    signed_info = etree.SubElement(signature, f"{{{ds_ns}}}SignedInfo")
    etree.SubElement(signed_info, f"{{{ds_ns}}}CanonicalizationMethod", Algorithm=ALG_C14N)
    etree.SubElement(signed_info, f"{{{ds_ns}}}SignatureMethod", Algorithm=ALG_RSA_SHA1)

    # Reference al documento raíz (#comprobante), digest del documento SIN firma
    reference_root = etree.SubElement(signed_info, f"{{{ds_ns}}}Reference", URI=f"#{node_id}")
    transforms_root = etree.SubElement(reference_root, f"{{{ds_ns}}}Transforms")
    etree.SubElement(transforms_root, f"{{{ds_ns}}}Transform", Algorithm=ALG_ENVELOPED)
    etree.SubElement(reference_root, f"{{{ds_ns}}}DigestMethod", Algorithm=ALG_SHA1)
    etree.SubElement(reference_root, f"{{{ds_ns}}}DigestValue").text = _sha1_b64(
        _canonicalize(root)
    )

    signature_value_elem = etree.SubElement(signature, f"{{{ds_ns}}}SignatureValue")
    signature_value_elem.text = "PLACEHOLDER"

    key_info = etree.SubElement(signature, f"{{{ds_ns}}}KeyInfo")
    x509_data = etree.SubElement(key_info, f"{{{ds_ns}}}X509Data")
    for c in [cert, *(additional_certs or [])]:
        etree.SubElement(x509_data, f"{{{ds_ns}}}X509Certificate").text = _cert_b64(c)

    ds_object = etree.SubElement(signature, f"{{{ds_ns}}}Object")
    qualifying_props = etree.SubElement(
        ds_object,
        f"{{{xades_ns}}}QualifyingProperties",
        Target=f"#{signature_id}",
    )
    signed_props = _create_xades_signed_properties(cert, signature_id)
    signed_props_id = signed_props.get("Id")
    qualifying_props.append(signed_props)

    root.append(signature)

    # Serializar + reparsear para un digest estable de SignedProperties
    root_reparsed = etree.fromstring(etree.tostring(root, encoding="UTF-8"))
    signed_props_in_doc = root_reparsed.find(
        f".//{{{xades_ns}}}SignedProperties[@Id='{signed_props_id}']"
    )
    if signed_props_in_doc is None:
        raise CertificateError(
            "No se encontró SignedProperties después de re-parsear el XML firmado."
        )

    reference_props = etree.SubElement(
        signed_info,
        f"{{{ds_ns}}}Reference",
        Type=TYPE_SIGNED_PROPERTIES,
        URI=f"#{signed_props_id}",
    )
    etree.SubElement(reference_props, f"{{{ds_ns}}}DigestMethod", Algorithm=ALG_SHA1)
    etree.SubElement(reference_props, f"{{{ds_ns}}}DigestValue").text = _sha1_b64(
        _canonicalize(signed_props_in_doc)
    )

    # SignatureValue: RSA-SHA1 sobre SignedInfo canonicalizado
    signature_value = private_key.sign(
        _canonicalize(signed_info),
        padding.PKCS1v15(),
        hashes.SHA1(),
    )
    signature_value_elem.text = base64.b64encode(signature_value).decode("ascii")

    return etree.tostring(
        root,
        encoding="UTF-8",
        xml_declaration=True,
        pretty_print=False,
    )


def firmar_archivo(xml_path: str | Path, certificado: bytes, password: str) -> Path:
    """
    Firma el XML en disco y escribe `<clave>-signed.xml` junto al original.

    :raises CertificateError: certificado inválido o vencido.
    :raises FileNotFoundError: no existe el XML sin firma.
    """
    xml_path = Path(xml_path)
    private_key, cert, additional_certs = cargar_certificado(certificado, password)

    xml_firmado = firmar_xml(xml_path.read_bytes(), private_key, cert, additional_certs)

    destino = ruta_firmada(xml_path)
    destino.write_bytes(xml_firmado)

    logger.info(
        "XML firmado con XAdES-BES (RSA-SHA1): %s (certificado %s)",
        destino,
        cert.subject.rfc4514_string(),
    )
    return destino


def validar_firma(xml_firmado: str | Path | bytes) -> bool:
    """
    Verifica un XML firmado por firmar_xml:
    - digest del comprobante (sin la firma),
    - digest de SignedProperties,
    - SignatureValue con la clave pública del certificado embebido.

    Nunca lanza por contenido inválido: un XML mal formado o un certificado
    ilegible devuelven False.
    """
    if isinstance(xml_firmado, bytes):
        data = xml_firmado
    else:
        data = Path(xml_firmado).read_bytes()

    ds = NAMESPACES["ds"]
    try:
        root = etree.fromstring(data)
    except (etree.XMLSyntaxError, ValueError) as exc:
        logger.warning("XML firmado mal formado: %s", exc)
        return False

    signature = root.find(f"{{{ds}}}Signature")
    if signature is None:
        logger.warning("El XML no contiene ds:Signature.")
        return False

    signed_info = signature.find(f"{{{ds}}}SignedInfo")
    signature_value = signature.findtext(f"{{{ds}}}SignatureValue")
    cert_b64 = signature.findtext(f"{{{ds}}}KeyInfo/{{{ds}}}X509Data/{{{ds}}}X509Certificate")
    if signed_info is None or not signature_value or not cert_b64:
        return False

    digests = {
        ref.get("URI"): ref.findtext(f"{{{ds}}}DigestValue")
        for ref in signed_info.findall(f"{{{ds}}}Reference")
    }
    if any(not uri or not uri.startswith("#") for uri in digests):
        logger.warning("Referencia sin URI local en SignedInfo.")
        return False

    # SignedProperties se canoniza en su contexto dentro del documento firmado
    for uri, esperado in digests.items():
        if uri == f"#{root.get('id')}":
            continue
        nodos = [n for n in root.iter() if n.get("Id") == uri[1:]]
        if len(nodos) != 1 or _sha1_b64(_canonicalize(nodos[0])) != esperado:
            logger.warning("Digest no coincide para la referencia %s", uri)
            return False

    try:
        cert = x509.load_der_x509_certificate(base64.b64decode(cert_b64, validate=False))
        cert.public_key().verify(
            base64.b64decode(signature_value),
            _canonicalize(signed_info),
            padding.PKCS1v15(),
            hashes.SHA1(),
        )
    except InvalidSignature:
        logger.warning("SignatureValue inválido.")
        return False
    except (binascii.Error, ValueError, TypeError) as exc:
        logger.warning("Certificado o SignatureValue ilegible: %s", exc)
        return False

    # Transformación enveloped: el comprobante se digiere sin la firma
    root.remove(signature)
    if digests.get(f"#{root.get('id')}") != _sha1_b64(_canonicalize(root)):
        logger.warning("Digest del comprobante no coincide.")
        return False

    return True
