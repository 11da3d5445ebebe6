# fiscal/admin.py
from __future__ import annotations

from django.contrib import admin

from fiscal.models import (
    CreditNoteDetail,
    DocumentLine,
    ElectronicDocument,
    Empresa,
    Establecimiento,
    PuntoEmision,
    SriErrorLog,
)


@admin.register(Empresa)
class EmpresaAdmin(admin.ModelAdmin):
    list_display = (
        "ruc",
        "razon_social",
        "nombre_comercial",
        "ambiente",
        "ambiente_forzado",
        "certificado_vence",
        "is_active",
    )
    list_filter = ("ambiente", "ambiente_forzado", "is_active")
    search_fields = ("ruc", "razon_social", "nombre_comercial")
    readonly_fields = ("certificado_vence", "created_at", "updated_at")
    filter_horizontal = ("usuarios",)
    fieldsets = (
        (
            "Datos generales",
            {
                "fields": (
                    "ruc",
                    "razon_social",
                    "nombre_comercial",
                    "direccion_matriz",
                    "telefono",
                    "email_contacto",
                    "contribuyente_especial",
                    "obligado_llevar_contabilidad",
                    "is_active",
                )
            },
        ),
        ("Ambiente SRI", {"fields": ("ambiente", "ambiente_forzado")}),
        (
            "Certificado de firma",
            {"fields": ("certificado", "certificado_password", "certificado_vence")},
        ),
        ("Usuarios", {"fields": ("usuarios",)}),
        ("Auditoría", {"fields": ("created_at", "updated_at")}),
    )


@admin.register(Establecimiento)
class EstablecimientoAdmin(admin.ModelAdmin):
    list_display = ("empresa", "codigo", "nombre", "direccion", "is_active")
    list_filter = ("empresa", "is_active")
    search_fields = ("codigo", "nombre", "direccion", "empresa__razon_social")


@admin.register(PuntoEmision)
class PuntoEmisionAdmin(admin.ModelAdmin):
    list_display = (
        "establecimiento",
        "codigo",
        "nombre",
        "siguiente_factura",
        "siguiente_nota_credito",
        "is_active",
    )
    list_filter = ("establecimiento__empresa", "is_active")
    search_fields = ("codigo", "nombre", "establecimiento__codigo")
    # Los contadores solo los mueve la asignación de secuenciales
    readonly_fields = (
        "siguiente_factura",
        "siguiente_nota_credito",
        "siguiente_nota_debito",
        "siguiente_retencion",
    )


class DocumentLineInline(admin.TabularInline):
    model = DocumentLine
    extra = 0
    can_delete = False
    readonly_fields = (
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
    )


class CreditNoteDetailInline(admin.StackedInline):
    model = CreditNoteDetail
    fk_name = "documento"
    extra = 0
    can_delete = False
    readonly_fields = (
        "factura",
        "num_doc_modificado",
        "fecha_emision_doc_sustento",
        "motivo",
        "devolucion_fisica",
        "valor_modificacion",
    )


@admin.register(ElectronicDocument)
class ElectronicDocumentAdmin(admin.ModelAdmin):
    list_display = (
        "numero",
        "tipo",
        "empresa",
        "fecha_emision",
        "razon_social_comprador",
        "total",
        "estado",
        "is_deleted",
    )
    list_filter = ("tipo", "estado", "empresa", "is_deleted")
    search_fields = (
        "numero",
        "clave_acceso",
        "numero_autorizacion",
        "identificacion_comprador",
        "razon_social_comprador",
    )
    date_hierarchy = "fecha_emision"
    inlines = [DocumentLineInline, CreditNoteDetailInline]
    readonly_fields = (
        "estado",
        "secuencial",
        "numero",
        "clave_acceso",
        "numero_autorizacion",
        "fecha_autorizacion",
        "xml_path",
        "xml_firmado_path",
        "mensajes_sri",
        "subtotal",
        "impuesto",
        "total",
        "created_at",
        "updated_at",
    )

    def get_queryset(self, request):
        return ElectronicDocument.all_objects.select_related("empresa")


@admin.register(SriErrorLog)
class SriErrorLogAdmin(admin.ModelAdmin):
    list_display = (
        "ocurrido_at",
        "empresa",
        "documento",
        "operacion",
        "codigo",
        "reintentable",
        "reintentado",
        "reintento_exitoso",
    )
    list_filter = ("operacion", "reintentable", "reintentado", "empresa")
    search_fields = ("codigo", "mensaje", "documento__numero")

    def has_change_permission(self, request, obj=None):
        return False
