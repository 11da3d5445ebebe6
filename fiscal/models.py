# fiscal/models.py
from __future__ import annotations

from decimal import Decimal

from django.conf import settings
from django.core.validators import RegexValidator
from django.db import models
from django.utils import timezone


codigo_sri_validator = RegexValidator(
    regex=r"^(?!000)[0-9]{3}$",
    message="El código debe tener 3 dígitos entre 001 y 999.",
)
ruc_validator = RegexValidator(
    regex=r"^[0-9]{13}$",
    message="El RUC debe tener exactamente 13 dígitos numéricos.",
)


class Empresa(models.Model):
    """
    Representa un emisor SRI (RUC) y, a la vez, el tenant del sistema.
    Contiene la configuración SRI: ambiente y certificado de firma electrónica.
    """

    AMBIENTE_PRUEBAS = "1"
    AMBIENTE_PRODUCCION = "2"
    AMBIENTE_CHOICES = (
        (AMBIENTE_PRUEBAS, "Pruebas"),
        (AMBIENTE_PRODUCCION, "Producción"),
    )

    # ----- Datos obligatorios SRI -----
    ruc = models.CharField(max_length=13, unique=True, validators=[ruc_validator])
    razon_social = models.CharField(max_length=255)
    nombre_comercial = models.CharField(max_length=255, blank=True)
    direccion_matriz = models.CharField(max_length=255, blank=True)

    telefono = models.CharField(max_length=32, blank=True)
    email_contacto = models.EmailField(blank=True)

    contribuyente_especial = models.CharField(
        max_length=64,
        blank=True,
        help_text=(
            "Número de resolución de contribuyente especial. "
            "Si se define se enviará en el campo <contribuyenteEspecial>."
        ),
    )
    obligado_llevar_contabilidad = models.BooleanField(
        default=False,
        help_text="Se envía como 'SI' o 'NO' en el campo <obligadoContabilidad>.",
    )

    # ----- Ambiente SRI -----
    ambiente = models.CharField(
        max_length=1,
        choices=AMBIENTE_CHOICES,
        default=AMBIENTE_PRUEBAS,
    )
    ambiente_forzado = models.CharField(
        max_length=1,
        choices=AMBIENTE_CHOICES,
        null=True,
        blank=True,
        help_text="Si se define, tiene prioridad sobre 'ambiente' al enviar al SRI.",
    )

    # ----- Certificado de firma electrónica -----
    certificado = models.FileField(
        upload_to="fiscal/certificados/",
        null=True,
        blank=True,
        help_text="Archivo .p12/.pfx con el certificado de firma electrónica.",
    )
    certificado_password = models.CharField(max_length=255, null=True, blank=True)
    certificado_vence = models.DateTimeField(
        null=True,
        blank=True,
        help_text="Fecha de caducidad del certificado (se lee del .p12 al cargarlo).",
    )

    # Usuarios que pueden operar con esta empresa
    usuarios = models.ManyToManyField(
        settings.AUTH_USER_MODEL,
        related_name="empresas_fiscales",
        blank=True,
    )

    is_active = models.BooleanField(default=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = "Empresa emisora"
        verbose_name_plural = "Empresas emisoras"

    def __str__(self) -> str:
        return f"{self.razon_social} ({self.ruc})"

    @property
    def ambiente_efectivo(self) -> str:
        return self.ambiente_forzado or self.ambiente

    @property
    def obligado_contabilidad_str(self) -> str:
        return "SI" if self.obligado_llevar_contabilidad else "NO"


class Establecimiento(models.Model):
    """
    Establecimiento SRI (3 dígitos).
    """

    empresa = models.ForeignKey(
        Empresa,
        related_name="establecimientos",
        on_delete=models.CASCADE,
    )
    codigo = models.CharField(max_length=3, validators=[codigo_sri_validator])
    nombre = models.CharField(max_length=255, blank=True)
    direccion = models.CharField(max_length=255, blank=True)
    telefono = models.CharField(max_length=32, blank=True)
    is_active = models.BooleanField(default=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = "Establecimiento"
        verbose_name_plural = "Establecimientos"
        unique_together = (("empresa", "codigo"),)

    def __str__(self) -> str:
        return f"{self.empresa.ruc} - {self.codigo} - {self.nombre or self.direccion}"


class PuntoEmision(models.Model):
    """
    Punto de emisión SRI (3 dígitos) asociado a un establecimiento.

    Cada contador guarda el PRÓXIMO secuencial a entregar (empieza en 1).
    Solo fiscal.services.secuenciales.asignar_secuencial los modifica.
    """

    establecimiento = models.ForeignKey(
        Establecimiento,
        related_name="puntos_emision",
        on_delete=models.CASCADE,
    )
    codigo = models.CharField(max_length=3, validators=[codigo_sri_validator])
    nombre = models.CharField(max_length=255, blank=True)

    siguiente_factura = models.PositiveIntegerField(default=1)
    siguiente_nota_credito = models.PositiveIntegerField(default=1)
    siguiente_nota_debito = models.PositiveIntegerField(default=1)
    siguiente_retencion = models.PositiveIntegerField(default=1)

    is_active = models.BooleanField(default=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = "Punto de emisión"
        verbose_name_plural = "Puntos de emisión"
        unique_together = (("establecimiento", "codigo"),)

    def __str__(self) -> str:
        return (
            f"{self.establecimiento.empresa.ruc} - "
            f"{self.establecimiento.codigo}-{self.codigo}"
        )

    @property
    def serie(self) -> str:
        """
        Serie concatenada establecimiento + punto (ej. '001002').
        """
        return f"{self.establecimiento.codigo}{self.codigo}"


class DocumentoQuerySet(models.QuerySet):
    def de_empresa(self, empresa):
        return self.filter(empresa=empresa)

    def facturas(self):
        return self.filter(tipo=ElectronicDocument.Tipo.FACTURA)

    def notas_credito(self):
        return self.filter(tipo=ElectronicDocument.Tipo.NOTA_CREDITO)


class DocumentoManager(models.Manager.from_queryset(DocumentoQuerySet)):
    """
    Manager por defecto: oculta los documentos eliminados lógicamente.
    """

    def get_queryset(self):
        return super().get_queryset().filter(is_deleted=False)


class ElectronicDocument(models.Model):
    """
    Comprobante electrónico SRI (factura o nota de crédito).

    Un único registro por comprobante, diferenciado por `tipo`; los datos
    propios de la nota de crédito viven en CreditNoteDetail (1:1).
    """

    class Tipo(models.TextChoices):
        FACTURA = "01", "Factura"
        NOTA_CREDITO = "04", "Nota de crédito"

    class Estado(models.TextChoices):
        BORRADOR = "BORRADOR", "Borrador"
        PENDIENTE_FIRMA = "PENDIENTE_FIRMA", "Pendiente de firma"
        PENDIENTE_AUTORIZACION = "PENDIENTE_AUTORIZACION", "Pendiente de autorización"
        AUTORIZADO = "AUTORIZADO", "Autorizado"
        RECHAZADO = "RECHAZADO", "Rechazado"
        ANULADO = "ANULADO", "Anulado"

    ESTADOS_TERMINALES = (Estado.AUTORIZADO, Estado.RECHAZADO, Estado.ANULADO)

    TIPO_IDENT_CHOICES = (
        ("04", "RUC"),
        ("05", "Cédula"),
        ("06", "Pasaporte"),
        ("07", "Consumidor final"),
        ("08", "Identificación del exterior"),
    )

    # Catálogo SRI (formaPago) resumido a los códigos más usados.
    FORMA_PAGO_CHOICES = (
        ("01", "Sin utilización del sistema financiero"),
        ("15", "Compensación de deudas"),
        ("16", "Tarjeta de débito"),
        ("17", "Dinero electrónico"),
        ("18", "Tarjeta prepago"),
        ("19", "Tarjeta de crédito"),
        ("20", "Otros con utilización del sistema financiero"),
        ("21", "Endoso de títulos"),
    )

    tipo = models.CharField(max_length=2, choices=Tipo.choices, db_index=True)
    estado = models.CharField(
        max_length=30,
        choices=Estado.choices,
        default=Estado.BORRADOR,
        db_index=True,
    )

    # Relaciones principales
    empresa = models.ForeignKey(
        Empresa,
        related_name="documentos",
        on_delete=models.PROTECT,
    )
    establecimiento = models.ForeignKey(
        Establecimiento,
        related_name="documentos",
        on_delete=models.PROTECT,
    )
    punto_emision = models.ForeignKey(
        PuntoEmision,
        related_name="documentos",
        on_delete=models.PROTECT,
    )

    # Numeración
    secuencial = models.CharField(max_length=9, help_text="Secuencial a 9 dígitos.")
    numero = models.CharField(
        max_length=17,
        db_index=True,
        help_text="Número legal EEE-PPP-SSSSSSSSS.",
    )

    fecha_emision = models.DateField()

    # Datos del comprador (snapshot)
    tipo_identificacion_comprador = models.CharField(
        max_length=2,
        choices=TIPO_IDENT_CHOICES,
    )
    identificacion_comprador = models.CharField(max_length=20)
    razon_social_comprador = models.CharField(max_length=255)
    direccion_comprador = models.CharField(max_length=255, blank=True)
    email_comprador = models.EmailField(blank=True)
    telefono_comprador = models.CharField(max_length=32, blank=True)

    # Totales
    subtotal = models.DecimalField(max_digits=14, decimal_places=2, default=Decimal("0.00"))
    impuesto = models.DecimalField(max_digits=14, decimal_places=2, default=Decimal("0.00"))
    total = models.DecimalField(max_digits=14, decimal_places=2, default=Decimal("0.00"))
    moneda = models.CharField(max_length=10, default="DOLAR")

    forma_pago = models.CharField(
        max_length=2,
        choices=FORMA_PAGO_CHOICES,
        default="01",
        help_text="Código SRI de forma de pago (campo <formaPago> en XML).",
    )
    plazo_pago = models.PositiveIntegerField(null=True, blank=True)

    # SRI
    ambiente = models.CharField(max_length=1, blank=True)
    clave_acceso = models.CharField(max_length=49, unique=True, null=True, blank=True)
    numero_autorizacion = models.CharField(max_length=49, null=True, blank=True)
    fecha_autorizacion = models.DateTimeField(null=True, blank=True)

    # Artefactos en disco
    xml_path = models.CharField(max_length=500, blank=True)
    xml_firmado_path = models.CharField(max_length=500, blank=True)
    ride_path = models.CharField(
        max_length=500,
        blank=True,
        help_text="Ruta del RIDE (lo completa el generador externo de PDF).",
    )
    xml_autorizado = models.TextField(null=True, blank=True)

    # Mensajes de respuesta del SRI (JSON serializable)
    mensajes_sri = models.JSONField(default=list, blank=True)

    observaciones = models.TextField(blank=True)

    # Eliminación lógica
    is_deleted = models.BooleanField(default=False, db_index=True)
    deleted_at = models.DateTimeField(null=True, blank=True)

    # Auditoría
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)
    created_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        related_name="documentos_fiscales",
        null=True,
        blank=True,
        on_delete=models.SET_NULL,
    )

    objects = DocumentoManager()
    all_objects = models.Manager()

    class Meta:
        verbose_name = "Comprobante electrónico"
        verbose_name_plural = "Comprobantes electrónicos"
        ordering = ("-fecha_emision", "-id")
        constraints = [
            models.UniqueConstraint(
                fields=("punto_emision", "tipo", "secuencial"),
                name="fiscal_documento_secuencial_unico",
            ),
        ]

    def __str__(self) -> str:
        return f"{self.get_tipo_display()} {self.numero} - {self.razon_social_comprador}"

    @property
    def es_editable(self) -> bool:
        return self.estado == self.Estado.BORRADOR and not self.is_deleted

    @property
    def es_factura(self) -> bool:
        return self.tipo == self.Tipo.FACTURA

    @property
    def es_nota_credito(self) -> bool:
        return self.tipo == self.Tipo.NOTA_CREDITO

    def marcar_eliminado(self) -> None:
        self.is_deleted = True
        self.deleted_at = timezone.now()
        self.save(update_fields=["is_deleted", "deleted_at", "updated_at"])


class CreditNoteDetail(models.Model):
    """
    Datos propios de la nota de crédito (codDoc 04).
    La factura modificada no cambia una vez creada la nota.
    """

    documento = models.OneToOneField(
        ElectronicDocument,
        related_name="nota_credito",
        on_delete=models.CASCADE,
    )
    factura = models.ForeignKey(
        ElectronicDocument,
        related_name="notas_credito_emitidas",
        on_delete=models.PROTECT,
    )
    cod_doc_modificado = models.CharField(max_length=2, default="01")
    num_doc_modificado = models.CharField(max_length=17)
    fecha_emision_doc_sustento = models.DateField()
    motivo = models.CharField(max_length=300)
    devolucion_fisica = models.BooleanField(default=False)
    valor_modificacion = models.DecimalField(max_digits=14, decimal_places=2)

    class Meta:
        verbose_name = "Detalle de nota de crédito"
        verbose_name_plural = "Detalles de notas de crédito"

    def __str__(self) -> str:
        return f"NC {self.documento.numero} -> {self.num_doc_modificado}"


class DocumentLine(models.Model):
    """
    Línea de detalle de un comprobante (factura o nota de crédito).
    """

    documento = models.ForeignKey(
        ElectronicDocument,
        related_name="lineas",
        on_delete=models.CASCADE,
    )
    codigo_principal = models.CharField(max_length=25)
    descripcion = models.CharField(max_length=300)
    cantidad = models.DecimalField(max_digits=18, decimal_places=6)
    precio_unitario = models.DecimalField(max_digits=18, decimal_places=6)
    descuento = models.DecimalField(max_digits=14, decimal_places=2, default=Decimal("0.00"))
    tarifa_iva = models.DecimalField(
        max_digits=5,
        decimal_places=2,
        help_text="Porcentaje de IVA de la línea (ej. 15.00).",
    )
    codigo_porcentaje = models.CharField(max_length=4)
    subtotal = models.DecimalField(max_digits=14, decimal_places=2)
    impuesto = models.DecimalField(max_digits=14, decimal_places=2)
    total = models.DecimalField(max_digits=14, decimal_places=2)

    class Meta:
        verbose_name = "Línea de comprobante"
        verbose_name_plural = "Líneas de comprobante"
        ordering = ("id",)

    def __str__(self) -> str:
        return f"{self.codigo_principal} x {self.cantidad}"


class SriErrorLog(models.Model):
    """
    Bitácora de errores SRI por comprobante. Solo se agregan filas; la única
    actualización permitida es registrar el resultado de un reintento posterior.
    """

    class Operacion(models.TextChoices):
        GENERAR_XML = "GENERAR_XML", "Generar XML"
        FIRMAR = "FIRMAR", "Firmar"
        ENVIAR = "ENVIAR", "Enviar"
        AUTORIZAR = "AUTORIZAR", "Autorizar"

    empresa = models.ForeignKey(
        Empresa,
        related_name="errores_sri",
        on_delete=models.CASCADE,
    )
    documento = models.ForeignKey(
        ElectronicDocument,
        related_name="errores_sri",
        on_delete=models.CASCADE,
    )
    operacion = models.CharField(max_length=20, choices=Operacion.choices)
    codigo = models.CharField(max_length=50, blank=True)
    mensaje = models.TextField()
    informacion_adicional = models.TextField(blank=True)
    reintentable = models.BooleanField(default=False)
    reintentado = models.BooleanField(default=False)
    reintento_exitoso = models.BooleanField(null=True, blank=True)
    ocurrido_at = models.DateTimeField(default=timezone.now, db_index=True)

    class Meta:
        verbose_name = "Error SRI"
        verbose_name_plural = "Errores SRI"
        ordering = ("-ocurrido_at", "-id")

    def __str__(self) -> str:
        return f"[{self.operacion}] {self.codigo} {self.mensaje[:60]}"
