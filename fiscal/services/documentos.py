# fiscal/services/documentos.py
# -*- coding: utf-8 -*-
"""
Creación y edición de borradores (facturas y notas de crédito).

La asignación del secuencial comparte la transacción de la creación: si alguna
validación falla después de asignarlo, se revierte todo (contador incluido).
"""
from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional

from django.db import transaction
from django.db.models import Sum
from django.utils import timezone

from fiscal.models import (
    CreditNoteDetail,
    DocumentLine,
    ElectronicDocument,
    Empresa,
    PuntoEmision,
)
from fiscal.services.impuestos import (
    codigo_porcentaje_iva,
    redondear,
    tasa_desde_tarifa,
    totales_documento,
    totales_linea,
)
from fiscal.services.resultados import ResultadoOperacion, TipoError
from fiscal.services.secuenciales import asignar_secuencial, formatear_secuencial, numero_legal
from fiscal.services.sri.workflow import WorkflowError

logger = logging.getLogger("fiscal.documentos")

Estado = ElectronicDocument.Estado
Tipo = ElectronicDocument.Tipo

CAMPOS_COMPRADOR = (
    "tipo_identificacion_comprador",
    "identificacion_comprador",
    "razon_social_comprador",
    "direccion_comprador",
    "email_comprador",
    "telefono_comprador",
)
CAMPOS_CABECERA = CAMPOS_COMPRADOR + (
    "fecha_emision",
    "forma_pago",
    "plazo_pago",
    "observaciones",
)


def _validacion(detalle: str) -> WorkflowError:
    return WorkflowError(TipoError.VALIDACION, detalle)


def _pk(valor: Any) -> Any:
    return getattr(valor, "pk", valor)


def _resolver_punto_emision(empresa: Empresa, punto_emision: Any) -> PuntoEmision:
    if punto_emision in (None, ""):
        raise _validacion("Es obligatorio seleccionar un punto de emisión.")
    try:
        pe = PuntoEmision.objects.select_related("establecimiento__empresa").get(
            pk=_pk(punto_emision),
            establecimiento__empresa=empresa,
        )
    except (PuntoEmision.DoesNotExist, ValueError, TypeError):
        raise _validacion("El punto de emisión no existe o no pertenece a la empresa.")
    if not pe.is_active or not pe.establecimiento.is_active:
        raise _validacion(f"El punto de emisión {pe} no está activo.")
    return pe


def _calcular_lineas(lineas: Iterable[Dict[str, Any]]) -> List[DocumentLine]:
    """
    Construye (sin guardar) las líneas con sus totales calculados.
    """
    resultado: List[DocumentLine] = []
    for idx, datos in enumerate(lineas or [], start=1):
        try:
            tarifa = Decimal(str(datos.get("tarifa_iva", "0")))
            codigo_porcentaje = codigo_porcentaje_iva(tarifa)
            totales = totales_linea(
                datos["cantidad"],
                datos["precio_unitario"],
                tasa_desde_tarifa(tarifa),
                datos.get("descuento") or 0,
            )
        except KeyError as exc:
            raise _validacion(f"Línea {idx}: falta el campo {exc.args[0]}.")
        except (ValueError, ArithmeticError) as exc:
            raise _validacion(f"Línea {idx}: {exc}")

        resultado.append(
            DocumentLine(
                codigo_principal=str(datos.get("codigo_principal") or f"ITEM{idx}")[:25],
                descripcion=datos.get("descripcion") or "",
                cantidad=Decimal(str(datos["cantidad"])),
                precio_unitario=Decimal(str(datos["precio_unitario"])),
                descuento=redondear(datos.get("descuento") or 0),
                tarifa_iva=tarifa,
                codigo_porcentaje=codigo_porcentaje,
                subtotal=totales.subtotal,
                impuesto=totales.impuesto,
                total=totales.total,
            )
        )

    if not resultado:
        raise _validacion("El comprobante debe tener al menos una línea.")
    return resultado


def _validar_fecha(fecha_emision) -> None:
    if fecha_emision is None:
        raise _validacion("La fecha de emisión es obligatoria.")
    if fecha_emision > timezone.localdate():
        raise _validacion("La fecha de emisión no puede ser futura.")


def _guardar_lineas(documento: ElectronicDocument, lineas: List[DocumentLine]) -> None:
    for linea in lineas:
        linea.documento = documento
    DocumentLine.objects.bulk_create(lineas)

    totales = totales_documento(lineas)
    documento.subtotal = totales.subtotal
    documento.impuesto = totales.impuesto
    documento.total = totales.total
    documento.save(update_fields=["subtotal", "impuesto", "total", "updated_at"])


def _crear_documento(
    empresa: Empresa,
    tipo: str,
    datos: Dict[str, Any],
    usuario,
    lineas: List[DocumentLine],
    comprador: Dict[str, Any],
) -> ElectronicDocument:
    """
    Asigna secuencial y persiste cabecera + líneas. Debe llamarse dentro de
    transaction.atomic().
    """
    pe = _resolver_punto_emision(empresa, datos.get("punto_emision"))
    fecha_emision = datos.get("fecha_emision") or timezone.localdate()
    _validar_fecha(fecha_emision)

    try:
        secuencial = asignar_secuencial(pe.pk, tipo)
    except ValueError as exc:
        raise _validacion(str(exc))

    documento = ElectronicDocument.objects.create(
        tipo=tipo,
        estado=Estado.BORRADOR,
        empresa=empresa,
        establecimiento=pe.establecimiento,
        punto_emision=pe,
        secuencial=formatear_secuencial(secuencial),
        numero=numero_legal(pe.establecimiento.codigo, pe.codigo, secuencial),
        fecha_emision=fecha_emision,
        forma_pago=datos.get("forma_pago") or "01",
        plazo_pago=datos.get("plazo_pago"),
        observaciones=datos.get("observaciones") or "",
        created_by=usuario if getattr(usuario, "is_authenticated", False) else None,
        **comprador,
    )
    _guardar_lineas(documento, lineas)
    return documento


def _comprador(datos: Dict[str, Any]) -> Dict[str, Any]:
    comprador = {campo: datos.get(campo) or "" for campo in CAMPOS_COMPRADOR}
    for campo in ("tipo_identificacion_comprador", "identificacion_comprador", "razon_social_comprador"):
        if not comprador[campo]:
            raise _validacion(f"El campo {campo} es obligatorio.")
    return comprador


# =========================
# Factura
# =========================


def crear_factura(empresa: Empresa, datos: Dict[str, Any], usuario=None) -> ResultadoOperacion:
    """
    Crea una factura en BORRADOR con su secuencial y totales.
    """
    try:
        with transaction.atomic():
            comprador = _comprador(datos)
            lineas = _calcular_lineas(datos.get("lineas"))
            documento = _crear_documento(empresa, Tipo.FACTURA, datos, usuario, lineas, comprador)
    except WorkflowError as exc:
        logger.info("Factura no creada para empresa %s: %s", empresa.ruc, exc.detalle)
        return ResultadoOperacion.falla(exc.error, exc.detalle)

    logger.info("Factura %s creada (id=%s) empresa=%s", documento.numero, documento.pk, empresa.ruc)
    return ResultadoOperacion.exito(documento=documento, detalle="Factura creada.")


# =========================
# Nota de crédito
# =========================


def _factura_original(empresa: Empresa, factura: Any) -> ElectronicDocument:
    if factura in (None, ""):
        raise _validacion("Debe indicar la factura que modifica la nota de crédito.")
    try:
        # Bloqueo de la factura: serializa el cálculo de saldo entre notas de crédito
        original = ElectronicDocument.objects.select_for_update().get(
            pk=_pk(factura),
            empresa=empresa,
            tipo=Tipo.FACTURA,
        )
    except (ElectronicDocument.DoesNotExist, ValueError, TypeError):
        raise _validacion("La factura original no existe o no pertenece a la empresa.")
    if original.estado != Estado.AUTORIZADO:
        raise _validacion("Solo se pueden emitir notas de crédito sobre facturas AUTORIZADAS.")
    return original


def _saldo_acreditable(factura: ElectronicDocument, excluir_id: Optional[int] = None) -> Decimal:
    """
    Total de la factura menos las notas de crédito vigentes emitidas sobre ella.
    """
    qs = CreditNoteDetail.objects.filter(
        factura=factura,
        documento__is_deleted=False,
    ).exclude(documento__estado__in=[Estado.ANULADO, Estado.RECHAZADO])
    if excluir_id is not None:
        qs = qs.exclude(documento_id=excluir_id)
    acreditado = qs.aggregate(total=Sum("valor_modificacion"))["total"] or Decimal("0.00")
    return factura.total - acreditado


def _validar_valor_modificacion(factura: ElectronicDocument, total: Decimal, excluir_id=None) -> None:
    saldo = _saldo_acreditable(factura, excluir_id=excluir_id)
    if total > saldo:
        raise _validacion(
            f"El valor de la nota de crédito ({total}) supera el saldo de la factura ({saldo})."
        )


def crear_nota_credito(empresa: Empresa, datos: Dict[str, Any], usuario=None) -> ResultadoOperacion:
    """
    Crea una nota de crédito en BORRADOR sobre una factura AUTORIZADA del
    mismo comprador. Copia número y fecha de la factura; valorModificacion = total.
    """
    try:
        with transaction.atomic():
            factura = _factura_original(empresa, datos.get("factura"))

            identificacion = datos.get("identificacion_comprador")
            if identificacion and identificacion != factura.identificacion_comprador:
                raise _validacion("El comprador no coincide con el de la factura original.")
            comprador = {campo: getattr(factura, campo) for campo in CAMPOS_COMPRADOR}

            motivo = (datos.get("motivo") or "").strip()
            if not motivo:
                raise _validacion("El motivo de la nota de crédito es obligatorio.")

            fecha_emision = datos.get("fecha_emision") or timezone.localdate()
            if fecha_emision < factura.fecha_emision:
                raise _validacion("La nota de crédito no puede ser anterior a la factura.")

            lineas = _calcular_lineas(datos.get("lineas"))
            total = totales_documento(lineas).total
            _validar_valor_modificacion(factura, total)

            datos_nc = {
                **datos,
                "fecha_emision": fecha_emision,
                "forma_pago": datos.get("forma_pago") or factura.forma_pago,
            }
            documento = _crear_documento(
                empresa, Tipo.NOTA_CREDITO, datos_nc, usuario, lineas, comprador
            )
            CreditNoteDetail.objects.create(
                documento=documento,
                factura=factura,
                num_doc_modificado=factura.numero,
                fecha_emision_doc_sustento=factura.fecha_emision,
                motivo=motivo[:300],
                devolucion_fisica=bool(datos.get("devolucion_fisica")),
                valor_modificacion=documento.total,
            )
    except WorkflowError as exc:
        logger.info("Nota de crédito no creada para empresa %s: %s", empresa.ruc, exc.detalle)
        return ResultadoOperacion.falla(exc.error, exc.detalle)

    logger.info(
        "Nota de crédito %s creada (id=%s) sobre factura %s",
        documento.numero,
        documento.pk,
        factura.numero,
    )
    return ResultadoOperacion.exito(documento=documento, detalle="Nota de crédito creada.")


# =========================
# Edición de borradores
# =========================


def actualizar_borrador(empresa: Empresa, documento_id: Any, datos: Dict[str, Any]) -> ResultadoOperacion:
    """
    Reemplaza cabecera y/o líneas de un BORRADOR y recalcula totales.
    El punto de emisión y el secuencial no cambian.
    """
    try:
        with transaction.atomic():
            try:
                documento = (
                    ElectronicDocument.objects.select_for_update()
                    .get(pk=documento_id, empresa=empresa)
                )
            except (ElectronicDocument.DoesNotExist, ValueError, TypeError):
                raise WorkflowError(TipoError.NO_ENCONTRADO, f"Comprobante {documento_id} no encontrado.")

            if not documento.es_editable:
                raise WorkflowError(
                    TipoError.PRECONDICION,
                    f"Solo se pueden editar borradores (estado actual: {documento.estado}).",
                )

            campos = CAMPOS_CABECERA
            if documento.es_nota_credito:
                # El comprador de la nota de crédito es el de la factura
                campos = tuple(c for c in CAMPOS_CABECERA if c not in CAMPOS_COMPRADOR)
                if datos.get("identificacion_comprador") not in (None, documento.identificacion_comprador):
                    raise _validacion("El comprador no coincide con el de la factura original.")

            for campo in campos:
                if campo in datos:
                    valor = datos[campo]
                    if valor is None and campo != "plazo_pago":
                        valor = ""
                    setattr(documento, campo, valor)
            _validar_fecha(documento.fecha_emision)
            documento.save()

            if "lineas" in datos:
                lineas = _calcular_lineas(datos["lineas"])
                documento.lineas.all().delete()
                _guardar_lineas(documento, lineas)

            if documento.es_nota_credito:
                detalle_nc = documento.nota_credito
                if documento.fecha_emision < detalle_nc.fecha_emision_doc_sustento:
                    raise _validacion("La nota de crédito no puede ser anterior a la factura.")
                factura = ElectronicDocument.objects.select_for_update().get(pk=detalle_nc.factura_id)
                _validar_valor_modificacion(factura, documento.total, excluir_id=documento.pk)
                if datos.get("motivo"):
                    detalle_nc.motivo = datos["motivo"][:300]
                if "devolucion_fisica" in datos:
                    detalle_nc.devolucion_fisica = bool(datos["devolucion_fisica"])
                detalle_nc.valor_modificacion = documento.total
                detalle_nc.save()
    except WorkflowError as exc:
        return ResultadoOperacion.falla(exc.error, exc.detalle)

    logger.info("Borrador %s actualizado (id=%s)", documento.numero, documento.pk)
    return ResultadoOperacion.exito(documento=documento, detalle="Comprobante actualizado.")
