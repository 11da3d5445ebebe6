# fiscal/services/sri/__init__.py
"""
Servicios relacionados con SRI:

- clave_acceso: generación y validación de la clave de acceso (módulo 11).
- xml_invoice_builder / xml_credit_note_builder: XML de factura y nota de crédito.
- signer: firma electrónica XAdES-BES.
- client: cliente SOAP para Recepción/Autorización.
- workflow: comandos del ciclo de vida (generar, firmar, enviar, autorizar).
"""
