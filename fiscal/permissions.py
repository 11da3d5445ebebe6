# fiscal/permissions.py
from __future__ import annotations

from rest_framework.permissions import SAFE_METHODS, BasePermission

from fiscal.tenancy import resolver_empresa

GRUPOS_ADMIN = ["ADMIN", "Admin", "Administrador"]


class IsEmpresaMember(BasePermission):
    """
    El usuario debe estar autenticado y pertenecer a la empresa indicada
    en la cabecera X-Empresa-Id (o ?empresa=). El superusuario pertenece a todas.
    """

    message = "Debe indicar una empresa válida de la que sea miembro (cabecera X-Empresa-Id)."

    def has_permission(self, request, view) -> bool:
        user = request.user
        if not user or not user.is_authenticated:
            return False
        return resolver_empresa(request) is not None


class IsCompanyAdmin(BasePermission):
    """
    Operaciones de configuración (empresas, establecimientos, puntos de emisión).

    - Lectura: cualquier usuario autenticado (el queryset ya filtra por membresía).
    - Escritura: superusuario, staff o grupo ADMIN.
    """

    message = "No tienes permisos de administrador de empresa para esta operación."

    def has_permission(self, request, view) -> bool:
        user = request.user
        if not user or not user.is_authenticated:
            return False

        if request.method in SAFE_METHODS:
            return True

        if user.is_superuser or getattr(user, "is_staff", False):
            return True

        return user.groups.filter(name__in=GRUPOS_ADMIN).exists()


class CanEmitirComprobante(BasePermission):
    """
    Acciones del ciclo de vida (generar XML, firmar, enviar, autorizar, anular)
    y escritura de comprobantes.

    Regla:
    - user.is_superuser
    - user.has_perm('fiscal.add_electronicdocument')
    - grupo 'ADMIN' o 'VENDEDOR'
    """

    message = "No tienes permisos para emitir comprobantes electrónicos."

    def has_permission(self, request, view) -> bool:
        user = request.user
        if not user or not user.is_authenticated:
            return False

        if request.method in SAFE_METHODS:
            return True

        if user.is_superuser:
            return True

        if user.has_perm("fiscal.add_electronicdocument"):
            return True

        return user.groups.filter(name__in=GRUPOS_ADMIN + ["VENDEDOR"]).exists()
