# fiscal/filters.py
from __future__ import annotations

import django_filters
from django.db.models import Q

from fiscal.models import ElectronicDocument, SriErrorLog


class DocumentoFilter(django_filters.FilterSet):
    """
    Filtros para listar comprobantes electrónicos.

    - q: búsqueda por número, clave de acceso, autorización, identificación o razón social.
    - fecha_desde / fecha_hasta: por fecha_emision.
    - estado: estado del ciclo de vida.
    - punto_emision: por id de punto de emisión.
    - monto_min / monto_max: rango de total.
    """

    q = django_filters.CharFilter(method="filter_q", label="Búsqueda general")
    fecha_desde = django_filters.DateFilter(field_name="fecha_emision", lookup_expr="gte")
    fecha_hasta = django_filters.DateFilter(field_name="fecha_emision", lookup_expr="lte")
    estado = django_filters.CharFilter(field_name="estado", lookup_expr="iexact")
    punto_emision = django_filters.NumberFilter(field_name="punto_emision_id")
    monto_min = django_filters.NumberFilter(field_name="total", lookup_expr="gte")
    monto_max = django_filters.NumberFilter(field_name="total", lookup_expr="lte")

    class Meta:
        model = ElectronicDocument
        fields = [
            "q",
            "fecha_desde",
            "fecha_hasta",
            "estado",
            "punto_emision",
            "monto_min",
            "monto_max",
        ]

    def filter_q(self, queryset, name, value):
        if not value:
            return queryset

        value = value.strip()
        return queryset.filter(
            Q(numero__icontains=value)
            | Q(clave_acceso__icontains=value)
            | Q(numero_autorizacion__icontains=value)
            | Q(identificacion_comprador__icontains=value)
            | Q(razon_social_comprador__icontains=value)
        )


class SriErrorLogFilter(django_filters.FilterSet):
    documento = django_filters.NumberFilter(field_name="documento_id")
    operacion = django_filters.CharFilter(field_name="operacion", lookup_expr="iexact")
    reintentable = django_filters.BooleanFilter(field_name="reintentable")

    class Meta:
        model = SriErrorLog
        fields = ["documento", "operacion", "reintentable"]
