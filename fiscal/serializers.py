# fiscal/serializers.py
from __future__ import annotations

from typing import Any, Dict

from rest_framework import serializers

from fiscal.models import (
    CreditNoteDetail,
    DocumentLine,
    ElectronicDocument,
    Empresa,
    Establecimiento,
    PuntoEmision,
    SriErrorLog,
)
from fiscal.services.secuenciales import CONTADORES
from fiscal.services.sri.signer import CertificateError, fecha_vencimiento
from fiscal.tenancy import empresas_del_usuario


def _usuario(serializer):
    request = serializer.context.get("request")
    return getattr(request, "user", None)


# =========================
# Serializers de configuración
# =========================


class EmpresaSerializer(serializers.ModelSerializer):
    """
    Emisor SRI. La contraseña del certificado nunca se devuelve y la fecha de
    caducidad se lee del .p12 al cargarlo.
    """

    certificado_password = serializers.CharField(
        write_only=True, required=False, allow_blank=True, allow_null=True
    )
    certificado_nombre = serializers.SerializerMethodField(read_only=True)
    ambiente_efectivo = serializers.CharField(read_only=True)

    class Meta:
        model = Empresa
        fields = [
            "id",
            # Datos fiscales básicos
            "ruc",
            "razon_social",
            "nombre_comercial",
            "direccion_matriz",
            # Contacto
            "telefono",
            "email_contacto",
            # Parámetros tributarios SRI
            "contribuyente_especial",
            "obligado_llevar_contabilidad",
            # Ambiente
            "ambiente",
            "ambiente_forzado",
            "ambiente_efectivo",
            # Firma electrónica
            "certificado",
            "certificado_password",
            "certificado_nombre",
            "certificado_vence",
            # Estado
            "is_active",
            # Auditoría
            "created_at",
            "updated_at",
        ]
        read_only_fields = [
            "id",
            "certificado_vence",
            "created_at",
            "updated_at",
        ]

    def get_certificado_nombre(self, obj: Empresa) -> str | None:
        if obj.certificado:
            return obj.certificado.name.rsplit("/", 1)[-1]
        return None

    def validate_ruc(self, value: str) -> str:
        v = (value or "").strip()
        if len(v) != 13 or not (v.isascii() and v.isdigit()):
            raise serializers.ValidationError(
                "El RUC debe tener exactamente 13 dígitos numéricos."
            )
        return v

    def validate(self, attrs: Dict[str, Any]) -> Dict[str, Any]:
        archivo = attrs.get("certificado")
        if not archivo:
            return attrs

        password = attrs.get("certificado_password")
        if password is None and self.instance is not None:
            password = self.instance.certificado_password
        if not password:
            raise serializers.ValidationError(
                {"certificado_password": "Debe indicar la contraseña del certificado."}
            )

        contenido = archivo.read()
        archivo.seek(0)
        try:
            attrs["certificado_vence"] = fecha_vencimiento(contenido, password)
        except CertificateError as exc:
            raise serializers.ValidationError({"certificado": str(exc)})
        return attrs


class EstablecimientoSerializer(serializers.ModelSerializer):
    empresa = serializers.PrimaryKeyRelatedField(queryset=Empresa.objects.all())

    class Meta:
        model = Establecimiento
        fields = [
            "id",
            "empresa",
            "codigo",
            "nombre",
            "direccion",
            "telefono",
            "is_active",
            "created_at",
            "updated_at",
        ]
        read_only_fields = ["id", "created_at", "updated_at"]

    def validate_empresa(self, value: Empresa) -> Empresa:
        if not empresas_del_usuario(_usuario(self)).filter(pk=value.pk).exists():
            raise serializers.ValidationError("No pertenece a esta empresa.")
        return value


class PuntoEmisionSerializer(serializers.ModelSerializer):
    """
    Los contadores son de solo lectura: solo los modifica la asignación de
    secuenciales al crear comprobantes.
    """

    establecimiento = serializers.PrimaryKeyRelatedField(
        queryset=Establecimiento.objects.select_related("empresa")
    )
    serie = serializers.CharField(read_only=True)

    class Meta:
        model = PuntoEmision
        fields = [
            "id",
            "establecimiento",
            "codigo",
            "nombre",
            "serie",
            "siguiente_factura",
            "siguiente_nota_credito",
            "siguiente_nota_debito",
            "siguiente_retencion",
            "is_active",
            "created_at",
            "updated_at",
        ]
        read_only_fields = [
            "id",
            "siguiente_factura",
            "siguiente_nota_credito",
            "siguiente_nota_debito",
            "siguiente_retencion",
            "created_at",
            "updated_at",
        ]

    def validate_establecimiento(self, value: Establecimiento) -> Establecimiento:
        if not empresas_del_usuario(_usuario(self)).filter(pk=value.empresa_id).exists():
            raise serializers.ValidationError("No pertenece a esta empresa.")
        return value


class SecuencialesSerializer(serializers.Serializer):
    """
    Último secuencial emitido y el próximo, por tipo de comprobante.
    """

    def to_representation(self, punto: PuntoEmision) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "punto_emision": punto.pk,
            "serie": f"{punto.establecimiento.codigo}-{punto.codigo}",
            "secuenciales": {},
        }
        for tipo, campo in CONTADORES.items():
            siguiente = getattr(punto, campo)
            data["secuenciales"][tipo] = {
                "ultimo": siguiente - 1 if siguiente > 1 else None,
                "siguiente": siguiente,
            }
        return data


# =========================
# Comprobantes (lectura)
# =========================


class DocumentLineSerializer(serializers.ModelSerializer):
    class Meta:
        model = DocumentLine
        fields = [
            "id",
            "codigo_principal",
            "descripcion",
            "cantidad",
            "precio_unitario",
            "descuento",
            "tarifa_iva",
            "codigo_porcentaje",
            "subtotal",
            "impuesto",
            "total",
        ]
        read_only_fields = fields


class CreditNoteDetailSerializer(serializers.ModelSerializer):
    class Meta:
        model = CreditNoteDetail
        fields = [
            "factura",
            "cod_doc_modificado",
            "num_doc_modificado",
            "fecha_emision_doc_sustento",
            "motivo",
            "devolucion_fisica",
            "valor_modificacion",
        ]
        read_only_fields = fields


class DocumentoSerializer(serializers.ModelSerializer):
    tipo_display = serializers.CharField(source="get_tipo_display", read_only=True)
    estado_display = serializers.CharField(source="get_estado_display", read_only=True)
    lineas = DocumentLineSerializer(many=True, read_only=True)
    nota_credito = serializers.SerializerMethodField(read_only=True)

    class Meta:
        model = ElectronicDocument
        fields = [
            "id",
            "tipo",
            "tipo_display",
            "estado",
            "estado_display",
            "empresa",
            "establecimiento",
            "punto_emision",
            "secuencial",
            "numero",
            "fecha_emision",
            "tipo_identificacion_comprador",
            "identificacion_comprador",
            "razon_social_comprador",
            "direccion_comprador",
            "email_comprador",
            "telefono_comprador",
            "subtotal",
            "impuesto",
            "total",
            "moneda",
            "forma_pago",
            "plazo_pago",
            "ambiente",
            "clave_acceso",
            "numero_autorizacion",
            "fecha_autorizacion",
            "xml_path",
            "xml_firmado_path",
            "ride_path",
            "mensajes_sri",
            "observaciones",
            "lineas",
            "nota_credito",
            "created_at",
            "updated_at",
            "created_by",
        ]
        read_only_fields = fields

    def get_nota_credito(self, obj: ElectronicDocument):
        if not obj.es_nota_credito:
            return None
        try:
            detalle = obj.nota_credito
        except CreditNoteDetail.DoesNotExist:
            return None
        return CreditNoteDetailSerializer(detalle).data


# =========================
# Comprobantes (entrada)
# =========================


class LineaEntradaSerializer(serializers.Serializer):
    codigo_principal = serializers.CharField(max_length=25, required=False, allow_blank=True)
    descripcion = serializers.CharField(max_length=300)
    cantidad = serializers.DecimalField(max_digits=18, decimal_places=6)
    precio_unitario = serializers.DecimalField(max_digits=18, decimal_places=6)
    descuento = serializers.DecimalField(
        max_digits=14, decimal_places=2, required=False, default=0
    )
    tarifa_iva = serializers.DecimalField(max_digits=5, decimal_places=2)


class ComprobanteEntradaSerializer(serializers.Serializer):
    """
    Campos comunes de cabecera. Los totales, el secuencial y el número legal
    los calcula el servicio.
    """

    punto_emision = serializers.IntegerField()
    fecha_emision = serializers.DateField(required=False)
    forma_pago = serializers.ChoiceField(
        choices=ElectronicDocument.FORMA_PAGO_CHOICES, required=False
    )
    plazo_pago = serializers.IntegerField(min_value=0, required=False, allow_null=True)
    observaciones = serializers.CharField(required=False, allow_blank=True)
    lineas = LineaEntradaSerializer(many=True)

    def validate_lineas(self, value):
        if not value:
            raise serializers.ValidationError("Debe incluir al menos una línea.")
        return value


class FacturaEntradaSerializer(ComprobanteEntradaSerializer):
    tipo_identificacion_comprador = serializers.ChoiceField(
        choices=ElectronicDocument.TIPO_IDENT_CHOICES
    )
    identificacion_comprador = serializers.CharField(max_length=20)
    razon_social_comprador = serializers.CharField(max_length=255)
    direccion_comprador = serializers.CharField(max_length=255, required=False, allow_blank=True)
    email_comprador = serializers.EmailField(required=False, allow_blank=True)
    telefono_comprador = serializers.CharField(max_length=32, required=False, allow_blank=True)


class NotaCreditoEntradaSerializer(ComprobanteEntradaSerializer):
    factura = serializers.IntegerField()
    identificacion_comprador = serializers.CharField(max_length=20, required=False)
    motivo = serializers.CharField(max_length=300)
    devolucion_fisica = serializers.BooleanField(required=False, default=False)


# =========================
# Bitácora
# =========================


class SriErrorLogSerializer(serializers.ModelSerializer):
    numero = serializers.CharField(source="documento.numero", read_only=True)

    class Meta:
        model = SriErrorLog
        fields = [
            "id",
            "documento",
            "numero",
            "operacion",
            "codigo",
            "mensaje",
            "informacion_adicional",
            "reintentable",
            "reintentado",
            "reintento_exitoso",
            "ocurrido_at",
        ]
        read_only_fields = fields
