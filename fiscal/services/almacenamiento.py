# fiscal/services/almacenamiento.py
"""
Ubicación en disco de los XML de comprobantes:

<SRI_XML_ROOT>/<ruc>/<facturas|notas-credito>/<yyyy>/<mm>/<clave>.xml
<SRI_XML_ROOT>/<ruc>/<facturas|notas-credito>/<yyyy>/<mm>/<clave>-signed.xml
"""

from __future__ import annotations

from pathlib import Path

from django.conf import settings

CARPETAS = {
    "01": "facturas",
    "04": "notas-credito",
}


def raiz_xml() -> Path:
    return Path(getattr(settings, "SRI_XML_ROOT", Path(settings.BASE_DIR) / "storage" / "comprobantes"))


def ruta_xml(documento, clave_acceso: str) -> Path:
    carpeta = CARPETAS.get(documento.tipo)
    if carpeta is None:
        raise ValueError(f"Tipo de comprobante sin carpeta de almacenamiento: {documento.tipo}")
    fecha = documento.fecha_emision
    return (
        raiz_xml()
        / documento.empresa.ruc
        / carpeta
        / f"{fecha.year:04d}"
        / f"{fecha.month:02d}"
        / f"{clave_acceso}.xml"
    )


def ruta_firmada(ruta: str | Path) -> Path:
    ruta = Path(ruta)
    return ruta.with_name(f"{ruta.stem}-signed{ruta.suffix}")


def guardar_xml(ruta: Path, contenido: bytes) -> Path:
    ruta.parent.mkdir(parents=True, exist_ok=True)
    ruta.write_bytes(contenido)
    return ruta
