# fiscal/tenancy.py
# -*- coding: utf-8 -*-
"""
Resolución de la empresa (tenant) de la petición.

El frontend envía la empresa activa en la cabecera X-Empresa-Id; como
alternativa se acepta ?empresa=<id>. Solo se resuelven empresas activas de
las que el usuario es miembro (el superusuario ve todas).
"""
from __future__ import annotations

from typing import Optional

from fiscal.models import Empresa

HEADER_EMPRESA = "HTTP_X_EMPRESA_ID"


def empresas_del_usuario(user):
    qs = Empresa.objects.filter(is_active=True)
    if not user or not user.is_authenticated:
        return qs.none()
    if user.is_superuser:
        return qs
    return qs.filter(usuarios=user)


def empresa_id_solicitada(request) -> Optional[str]:
    valor = request.META.get(HEADER_EMPRESA)
    if not valor:
        query_params = getattr(request, "query_params", request.GET)
        valor = query_params.get("empresa")
    return (valor or "").strip() or None


def resolver_empresa(request) -> Optional[Empresa]:
    """
    Devuelve la empresa de la petición o None si no se indicó, no existe o el
    usuario no es miembro. El resultado se cachea en la request.
    """
    if hasattr(request, "_empresa_fiscal"):
        return request._empresa_fiscal

    empresa = None
    empresa_id = empresa_id_solicitada(request)
    if empresa_id and empresa_id.isascii() and empresa_id.isdigit():
        empresa = empresas_del_usuario(request.user).filter(pk=int(empresa_id)).first()

    request._empresa_fiscal = empresa
    return empresa
