# fiscal/urls.py
# -*- coding: utf-8 -*-
"""
Rutas REST del módulo fiscal. En el urls.py del proyecto:
    path("api/fiscal/", include("fiscal.urls", namespace="fiscal"))
"""

from __future__ import annotations

from django.urls import include, path
from rest_framework.routers import DefaultRouter

from fiscal.viewsets import (
    EmpresaViewSet,
    EstablecimientoViewSet,
    FacturaViewSet,
    NotaCreditoViewSet,
    PuntoEmisionViewSet,
    SriErrorLogViewSet,
)

app_name = "fiscal"

router = DefaultRouter()

# =========================
# Configuración SRI / Empresa
# =========================
router.register(r"empresas", EmpresaViewSet, basename="empresa")
router.register(r"establecimientos", EstablecimientoViewSet, basename="establecimiento")
router.register(r"puntos-emision", PuntoEmisionViewSet, basename="punto-emision")

# =========================
# Comprobantes electrónicos
# =========================
router.register(r"facturas", FacturaViewSet, basename="factura")
router.register(r"notas-credito", NotaCreditoViewSet, basename="nota-credito")

# =========================
# Bitácora SRI
# =========================
router.register(r"errores-sri", SriErrorLogViewSet, basename="error-sri")

urlpatterns = [
    path("", include(router.urls)),
]
