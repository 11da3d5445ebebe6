# fiscal/viewsets.py
from __future__ import annotations

import logging
from typing import Any, Callable, Optional

from django.http import Http404
from rest_framework import mixins, status, viewsets
from rest_framework.decorators import action
from rest_framework.response import Response

from fiscal.filters import DocumentoFilter, SriErrorLogFilter
from fiscal.models import (
    ElectronicDocument,
    Empresa,
    Establecimiento,
    PuntoEmision,
    SriErrorLog,
)
from fiscal.pagination import FiscalPagination
from fiscal.permissions import CanEmitirComprobante, IsCompanyAdmin, IsEmpresaMember
from fiscal.serializers import (
    DocumentoSerializer,
    EmpresaSerializer,
    EstablecimientoSerializer,
    FacturaEntradaSerializer,
    NotaCreditoEntradaSerializer,
    PuntoEmisionSerializer,
    SecuencialesSerializer,
    SriErrorLogSerializer,
)
from fiscal.services import documentos
from fiscal.services.resultados import ResultadoOperacion, TipoError
from fiscal.services.sri import workflow
from fiscal.tenancy import empresas_del_usuario, resolver_empresa

logger = logging.getLogger(__name__)

HTTP_POR_ERROR = {
    TipoError.NO_ENCONTRADO: status.HTTP_404_NOT_FOUND,
    TipoError.PRECONDICION: status.HTTP_400_BAD_REQUEST,
    TipoError.VALIDACION: status.HTTP_400_BAD_REQUEST,
    TipoError.CERTIFICADO: status.HTTP_400_BAD_REQUEST,
    TipoError.TRANSITORIO: status.HTTP_503_SERVICE_UNAVAILABLE,
    TipoError.PERMANENTE: status.HTTP_422_UNPROCESSABLE_ENTITY,
}


# =========================
# ViewSets de configuración
# =========================


class EmpresaViewSet(viewsets.ModelViewSet):
    """
    CRUD de empresas emisoras. Cada usuario ve las empresas de las que es miembro.
    """

    serializer_class = EmpresaSerializer
    permission_classes = [IsCompanyAdmin]

    def get_queryset(self):
        user = self.request.user
        qs = Empresa.objects.all().order_by("razon_social")
        if user.is_superuser:
            return qs
        return qs.filter(usuarios=user)

    def perform_create(self, serializer):
        empresa = serializer.save()
        empresa.usuarios.add(self.request.user)
        logger.info("Empresa %s creada por %s", empresa.ruc, self.request.user)


class EstablecimientoViewSet(viewsets.ModelViewSet):
    serializer_class = EstablecimientoSerializer
    permission_classes = [IsCompanyAdmin]

    def get_queryset(self):
        qs = (
            Establecimiento.objects.select_related("empresa")
            .filter(empresa__in=empresas_del_usuario(self.request.user))
            .order_by("empresa__razon_social", "codigo")
        )
        empresa_id = self.request.query_params.get("empresa")
        if empresa_id:
            qs = qs.filter(empresa_id=empresa_id)
        return qs


class PuntoEmisionViewSet(viewsets.ModelViewSet):
    """
    CRUD de puntos de emisión + consulta de secuenciales.
    """

    serializer_class = PuntoEmisionSerializer
    permission_classes = [IsCompanyAdmin]

    def get_queryset(self):
        qs = (
            PuntoEmision.objects.select_related("establecimiento__empresa")
            .filter(establecimiento__empresa__in=empresas_del_usuario(self.request.user))
            .order_by(
                "establecimiento__empresa__razon_social",
                "establecimiento__codigo",
                "codigo",
            )
        )
        empresa_id = self.request.query_params.get("empresa")
        establecimiento_id = self.request.query_params.get("establecimiento")
        if empresa_id:
            qs = qs.filter(establecimiento__empresa_id=empresa_id)
        if establecimiento_id:
            qs = qs.filter(establecimiento_id=establecimiento_id)
        return qs

    @action(detail=True, methods=["get"], url_path="secuenciales")
    def secuenciales(self, request, pk: Optional[str] = None):
        punto = self.get_object()
        return Response(SecuencialesSerializer(punto).data)


# =========================
# Comprobantes electrónicos
# =========================


class ComprobanteViewSet(
    mixins.ListModelMixin,
    mixins.RetrieveModelMixin,
    viewsets.GenericViewSet,
):
    """
    Base de facturas y notas de crédito.

    - list/retrieve: comprobantes de la empresa activa (X-Empresa-Id).
    - create/update: delegan en fiscal.services.documentos.
    - destroy: eliminación lógica (solo BORRADOR).
    - acciones: generar-xml, firmar, enviar, autorizar, anular, errores-sri.

    Todas las respuestas de escritura llevan detail, estado y mensajes; el
    código HTTP sale del tipo de error del resultado.
    """

    tipo: str = ""
    entrada_serializer_class: Any = None
    crear: Callable[..., ResultadoOperacion]

    serializer_class = DocumentoSerializer
    pagination_class = FiscalPagination
    filterset_class = DocumentoFilter
    permission_classes = [IsEmpresaMember, CanEmitirComprobante]
    search_fields = ["numero", "clave_acceso", "identificacion_comprador", "razon_social_comprador"]
    ordering_fields = ["fecha_emision", "numero", "total", "created_at"]

    @property
    def empresa(self) -> Optional[Empresa]:
        return resolver_empresa(self.request)

    def get_queryset(self):
        if self.empresa is None:
            return ElectronicDocument.objects.none()
        return (
            ElectronicDocument.objects.de_empresa(self.empresa)
            .filter(tipo=self.tipo)
            .select_related("empresa", "establecimiento", "punto_emision", "nota_credito")
            .prefetch_related("lineas")
        )

    # -------------------------
    # Helpers
    # -------------------------

    def _documento(self, pk) -> ElectronicDocument:
        try:
            return self.get_queryset().get(pk=pk)
        except (ElectronicDocument.DoesNotExist, ValueError, TypeError):
            raise Http404("Comprobante no encontrado.")

    def _respuesta(self, resultado: ResultadoOperacion, pk=None, status_ok: int = status.HTTP_200_OK) -> Response:
        data = resultado.as_dict()

        documento = resultado.documento
        if documento is None and pk is not None:
            documento = self.get_queryset().filter(pk=pk).first()
        elif documento is not None and documento.pk is not None:
            documento = self.get_queryset().filter(pk=documento.pk).first() or documento
        if documento is not None:
            data["estado"] = documento.estado
            data["documento"] = DocumentoSerializer(documento, context=self.get_serializer_context()).data

        if resultado.ok:
            return Response(data, status=status_ok)

        http_status = HTTP_POR_ERROR.get(resultado.error, status.HTTP_400_BAD_REQUEST)
        if http_status >= 500:
            logger.warning("Operación fallida (%s): %s", resultado.error, resultado.detalle)
        return Response(data, status=http_status)

    # -------------------------
    # Escritura
    # -------------------------

    def create(self, request, *args, **kwargs):
        serializer = self.entrada_serializer_class(data=request.data, context=self.get_serializer_context())
        serializer.is_valid(raise_exception=True)
        resultado = type(self).crear(self.empresa, dict(serializer.validated_data), request.user)
        return self._respuesta(resultado, status_ok=status.HTTP_201_CREATED)

    def update(self, request, *args, **kwargs):
        partial = kwargs.pop("partial", False)
        documento = self._documento(kwargs.get("pk"))
        serializer = self.entrada_serializer_class(
            data=request.data,
            partial=partial,
            context=self.get_serializer_context(),
        )
        serializer.is_valid(raise_exception=True)
        resultado = documentos.actualizar_borrador(self.empresa, documento.pk, dict(serializer.validated_data))
        return self._respuesta(resultado, pk=documento.pk)

    def partial_update(self, request, *args, **kwargs):
        kwargs["partial"] = True
        return self.update(request, *args, **kwargs)

    def destroy(self, request, *args, **kwargs):
        documento = self._documento(kwargs.get("pk"))
        resultado = workflow.eliminar(self.empresa, documento.pk)
        data = resultado.as_dict()
        if resultado.ok:
            data["estado"] = documento.estado
            return Response(data, status=status.HTTP_200_OK)
        return self._respuesta(resultado, pk=documento.pk)

    # -------------------------
    # Ciclo de vida SRI
    # -------------------------

    @action(detail=True, methods=["post"], url_path="generar-xml")
    def generar_xml(self, request, pk: Optional[str] = None):
        documento = self._documento(pk)
        return self._respuesta(workflow.generar_xml(self.empresa, documento.pk), pk=documento.pk)

    @action(detail=True, methods=["post"], url_path="firmar")
    def firmar(self, request, pk: Optional[str] = None):
        documento = self._documento(pk)
        return self._respuesta(workflow.firmar(self.empresa, documento.pk), pk=documento.pk)

    @action(detail=True, methods=["post"], url_path="enviar")
    def enviar(self, request, pk: Optional[str] = None):
        documento = self._documento(pk)
        return self._respuesta(workflow.enviar(self.empresa, documento.pk), pk=documento.pk)

    @action(detail=True, methods=["post"], url_path="autorizar")
    def autorizar(self, request, pk: Optional[str] = None):
        documento = self._documento(pk)
        return self._respuesta(
            workflow.consultar_autorizacion(self.empresa, documento.pk),
            pk=documento.pk,
        )

    @action(detail=True, methods=["post"], url_path="anular")
    def anular(self, request, pk: Optional[str] = None):
        documento = self._documento(pk)
        return self._respuesta(workflow.anular(self.empresa, documento.pk), pk=documento.pk)

    @action(detail=True, methods=["get"], url_path="errores-sri")
    def errores_sri(self, request, pk: Optional[str] = None):
        documento = self._documento(pk)
        errores = documento.errores_sri.all()
        return Response(SriErrorLogSerializer(errores, many=True).data)


class FacturaViewSet(ComprobanteViewSet):
    tipo = ElectronicDocument.Tipo.FACTURA
    entrada_serializer_class = FacturaEntradaSerializer
    crear = staticmethod(documentos.crear_factura)


class NotaCreditoViewSet(ComprobanteViewSet):
    tipo = ElectronicDocument.Tipo.NOTA_CREDITO
    entrada_serializer_class = NotaCreditoEntradaSerializer
    crear = staticmethod(documentos.crear_nota_credito)


class SriErrorLogViewSet(viewsets.ReadOnlyModelViewSet):
    """
    Bitácora de errores SRI de la empresa activa (solo lectura).
    """

    serializer_class = SriErrorLogSerializer
    pagination_class = FiscalPagination
    filterset_class = SriErrorLogFilter
    permission_classes = [IsEmpresaMember]
    ordering_fields = ["ocurrido_at"]

    def get_queryset(self):
        empresa = resolver_empresa(self.request)
        if empresa is None:
            return SriErrorLog.objects.none()
        return SriErrorLog.objects.filter(empresa=empresa).select_related("documento")
