# fiscal/services/__init__.py
"""
Servicios de dominio del motor de comprobantes electrónicos:

- Asignación de secuenciales por punto de emisión.
- Cálculo de impuestos (IVA) y totales.
- Creación / edición de borradores (facturas y notas de crédito).
- Bitácora de errores SRI.
- Almacenamiento de XML en disco.

La integración con el SRI (clave de acceso, XML, firma, SOAP y flujo de estados)
vive en fiscal/services/sri/.
"""
