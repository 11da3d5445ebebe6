# fiscal/tests/test_viewsets.py
# -*- coding: utf-8 -*-
from __future__ import annotations

import tempfile
from pathlib import Path
from unittest.mock import patch

from django.contrib.auth import get_user_model
from django.contrib.auth.models import Group
from django.test import TestCase, override_settings
from rest_framework.test import APIRequestFactory, force_authenticate

from fiscal.models import ElectronicDocument, PuntoEmision, SriErrorLog
from fiscal.serializers import SecuencialesSerializer
from fiscal.services import bitacora
from fiscal.services.resultados import MensajeSri
from fiscal.services.sri.client import ResultadoRecepcion, TipoRespuesta
from fiscal.tests.utils import (
    crear_documento,
    crear_empresa,
    crear_factura_via_servicio,
    crear_punto_emision,
)
from fiscal.viewsets import FacturaViewSet, NotaCreditoViewSet, PuntoEmisionViewSet

Estado = ElectronicDocument.Estado


class FacturaViewSetSinPermisos(FacturaViewSet):
    """
    FacturaViewSet sin permisos, para probar la lógica sin depender de grupos.
    La empresa se sigue resolviendo desde la cabecera.
    """

    permission_classes: list = []


def _payload_factura(punto, **extra) -> dict:
    payload = {
        "punto_emision": punto.pk,
        "fecha_emision": "2024-03-15",
        "tipo_identificacion_comprador": "05",
        "identificacion_comprador": "1712345678",
        "razon_social_comprador": "JUAN PEREZ",
        "email_comprador": "cliente@example.com",
        "lineas": [
            {
                "codigo_principal": "SERV-01",
                "descripcion": "Mantenimiento preventivo",
                "cantidad": "2",
                "precio_unitario": "100.00",
                "tarifa_iva": "15.00",
            }
        ],
    }
    payload.update(extra)
    return payload


class ComprobanteViewSetTestCase(TestCase):
    def setUp(self) -> None:
        tmp = tempfile.TemporaryDirectory()
        self.addCleanup(tmp.cleanup)
        self.tmp = Path(tmp.name)
        override = override_settings(SRI_XML_ROOT=self.tmp, MEDIA_ROOT=str(self.tmp / "media"))
        override.enable()
        self.addCleanup(override.disable)

        self.factory = APIRequestFactory()
        User = get_user_model()
        self.admin = User.objects.create_superuser(
            username="admin",
            email="admin@example.com",
            password="pass1234",
        )

        self.empresa = crear_empresa()
        self.punto = crear_punto_emision(self.empresa)

    def _llamar(self, viewset, acciones, metodo="get", data=None, user=None, empresa=None, **kwargs):
        cabeceras = {}
        empresa = self.empresa if empresa is None else empresa
        if empresa is not False:
            cabeceras["HTTP_X_EMPRESA_ID"] = str(empresa.pk)
        if metodo == "get":
            request = self.factory.get("/api/fiscal/", data, **cabeceras)
        else:
            request = getattr(self.factory, metodo)("/api/fiscal/", data, format="json", **cabeceras)
        force_authenticate(request, user=user or self.admin)
        view = viewset.as_view(acciones)
        return view(request, **kwargs)


class FacturaCrudTests(ComprobanteViewSetTestCase):
    def test_crear_factura(self):
        resp = self._llamar(
            FacturaViewSetSinPermisos,
            {"post": "create"},
            metodo="post",
            data=_payload_factura(self.punto),
        )

        self.assertEqual(resp.status_code, 201, resp.data)
        self.assertTrue(resp.data["ok"])
        self.assertEqual(resp.data["estado"], Estado.BORRADOR)
        self.assertEqual(resp.data["documento"]["numero"], "001-001-000000001")
        self.assertEqual(resp.data["documento"]["total"], "230.00")

    def test_crear_factura_tarifa_invalida(self):
        payload = _payload_factura(self.punto)
        payload["lineas"][0]["tarifa_iva"] = "7.00"

        resp = self._llamar(FacturaViewSetSinPermisos, {"post": "create"}, metodo="post", data=payload)

        self.assertEqual(resp.status_code, 400)
        self.assertEqual(resp.data["error"], "VALIDACION")
        self.assertFalse(ElectronicDocument.all_objects.exists())

    def test_entrada_invalida_la_rechaza_el_serializer(self):
        resp = self._llamar(
            FacturaViewSetSinPermisos,
            {"post": "create"},
            metodo="post",
            data=_payload_factura(self.punto, lineas=[]),
        )

        self.assertEqual(resp.status_code, 400)
        self.assertIn("lineas", resp.data)

    def test_listado_solo_de_la_empresa_activa(self):
        crear_documento(self.punto, secuencial=1)
        otra = crear_empresa(ruc="0990012345001")
        crear_documento(crear_punto_emision(otra), secuencial=1)

        resp = self._llamar(FacturaViewSetSinPermisos, {"get": "list"})

        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.data["count"], 1)
        self.assertEqual(resp.data["results"][0]["empresa"], self.empresa.pk)

    def test_editar_borrador(self):
        documento = crear_factura_via_servicio(self.punto)

        resp = self._llamar(
            FacturaViewSetSinPermisos,
            {"patch": "partial_update"},
            metodo="patch",
            data={"razon_social_comprador": "MARIA LOPEZ"},
            pk=documento.pk,
        )

        self.assertEqual(resp.status_code, 200, resp.data)
        documento.refresh_from_db()
        self.assertEqual(documento.razon_social_comprador, "MARIA LOPEZ")

    def test_eliminar_borrador(self):
        documento = crear_documento(self.punto)

        resp = self._llamar(FacturaViewSetSinPermisos, {"delete": "destroy"}, metodo="delete", pk=documento.pk)

        self.assertEqual(resp.status_code, 200)
        self.assertTrue(resp.data["ok"])
        self.assertTrue(ElectronicDocument.all_objects.get(pk=documento.pk).is_deleted)

        resp = self._llamar(FacturaViewSetSinPermisos, {"get": "retrieve"}, pk=documento.pk)
        self.assertEqual(resp.status_code, 404)

    def test_eliminar_no_borrador(self):
        documento = crear_documento(self.punto, estado=Estado.PENDIENTE_FIRMA)

        resp = self._llamar(FacturaViewSetSinPermisos, {"delete": "destroy"}, metodo="delete", pk=documento.pk)

        self.assertEqual(resp.status_code, 400)
        self.assertEqual(resp.data["error"], "PRECONDICION")
        self.assertEqual(resp.data["estado"], Estado.PENDIENTE_FIRMA)


class FacturaCicloVidaTests(ComprobanteViewSetTestCase):
    def test_generar_xml(self):
        documento = crear_documento(self.punto)

        resp = self._llamar(
            FacturaViewSetSinPermisos, {"post": "generar_xml"}, metodo="post", pk=documento.pk
        )

        self.assertEqual(resp.status_code, 200, resp.data)
        self.assertEqual(resp.data["estado"], Estado.PENDIENTE_FIRMA)
        self.assertEqual(len(resp.data["clave_acceso"]), 49)

    def test_firmar_borrador_es_precondicion(self):
        documento = crear_documento(self.punto)

        resp = self._llamar(FacturaViewSetSinPermisos, {"post": "firmar"}, metodo="post", pk=documento.pk)

        self.assertEqual(resp.status_code, 400)
        self.assertEqual(resp.data["error"], "PRECONDICION")
        self.assertEqual(resp.data["estado"], Estado.BORRADOR)

    def test_comprobante_de_otra_empresa_es_404(self):
        otra = crear_empresa(ruc="0990012345001")
        ajeno = crear_documento(crear_punto_emision(otra))

        resp = self._llamar(FacturaViewSetSinPermisos, {"post": "generar_xml"}, metodo="post", pk=ajeno.pk)

        self.assertEqual(resp.status_code, 404)
        ajeno.refresh_from_db()
        self.assertEqual(ajeno.estado, Estado.BORRADOR)

    def _firmado(self) -> ElectronicDocument:
        firmado = self.tmp / "firmado-signed.xml"
        firmado.write_bytes(b"<factura id='comprobante'/>")
        return crear_documento(
            self.punto,
            estado=Estado.PENDIENTE_AUTORIZACION,
            clave_acceso="1503202401179001234500110010010000000011234567811",
            xml_firmado_path=str(firmado),
        )

    @patch("fiscal.services.sri.workflow.SRIClient")
    def test_enviar_sin_conexion_es_503(self, client_cls):
        documento = self._firmado()
        client_cls.return_value.enviar_comprobante.return_value = ResultadoRecepcion(
            estado=None,
            tipo=TipoRespuesta.TRANSITORIO,
            mensajes=[MensajeSri("RECEPCION_NETWORK", "Sin conexión")],
        )

        resp = self._llamar(FacturaViewSetSinPermisos, {"post": "enviar"}, metodo="post", pk=documento.pk)

        self.assertEqual(resp.status_code, 503)
        self.assertEqual(resp.data["error"], "TRANSITORIO")
        self.assertEqual(resp.data["estado"], Estado.PENDIENTE_AUTORIZACION)
        self.assertEqual(resp.data["mensajes"][0]["identificador"], "RECEPCION_NETWORK")

    @patch("fiscal.services.sri.workflow.SRIClient")
    def test_enviar_devuelta_es_422(self, client_cls):
        documento = self._firmado()
        client_cls.return_value.enviar_comprobante.return_value = ResultadoRecepcion(
            estado="DEVUELTA",
            tipo=TipoRespuesta.PERMANENTE,
            mensajes=[MensajeSri("35", "ARCHIVO NO CUMPLE ESTRUCTURA XML")],
        )

        resp = self._llamar(FacturaViewSetSinPermisos, {"post": "enviar"}, metodo="post", pk=documento.pk)

        self.assertEqual(resp.status_code, 422)
        self.assertEqual(resp.data["estado"], Estado.PENDIENTE_AUTORIZACION)

        resp = self._llamar(FacturaViewSetSinPermisos, {"get": "errores_sri"}, pk=documento.pk)
        self.assertEqual(resp.status_code, 200)
        self.assertEqual([e["codigo"] for e in resp.data], ["35"])

    def test_anular_borrador(self):
        documento = crear_documento(self.punto)

        resp = self._llamar(FacturaViewSetSinPermisos, {"post": "anular"}, metodo="post", pk=documento.pk)

        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.data["estado"], Estado.ANULADO)


class NotaCreditoViewSetTests(ComprobanteViewSetTestCase):
    def test_crear_nota_credito(self):
        factura = crear_documento(self.punto, estado=Estado.AUTORIZADO, clave_acceso="1" * 49)
        payload = {
            "factura": factura.pk,
            "punto_emision": self.punto.pk,
            "fecha_emision": "2024-03-20",
            "motivo": "Devolución",
            "lineas": [
                {"descripcion": "Mantenimiento", "cantidad": "1", "precio_unitario": "100.00", "tarifa_iva": "15"}
            ],
        }

        resp = self._llamar(NotaCreditoViewSet, {"post": "create"}, metodo="post", data=payload)

        self.assertEqual(resp.status_code, 201, resp.data)
        nota = resp.data["documento"]
        self.assertEqual(nota["tipo"], ElectronicDocument.Tipo.NOTA_CREDITO)
        self.assertEqual(nota["nota_credito"]["num_doc_modificado"], factura.numero)
        self.assertEqual(nota["nota_credito"]["valor_modificacion"], "115.00")


class PermisosTests(ComprobanteViewSetTestCase):
    def setUp(self) -> None:
        super().setUp()
        User = get_user_model()
        self.miembro = User.objects.create_user(username="miembro", password="pass1234")
        self.empresa.usuarios.add(self.miembro)
        self.ajeno = User.objects.create_user(username="ajeno", password="pass1234")

    def test_sin_cabecera_de_empresa(self):
        resp = self._llamar(FacturaViewSet, {"get": "list"}, empresa=False)

        self.assertEqual(resp.status_code, 403)

    def test_empresa_de_la_que_no_es_miembro(self):
        resp = self._llamar(FacturaViewSet, {"get": "list"}, user=self.ajeno)

        self.assertEqual(resp.status_code, 403)

    def test_miembro_sin_grupo_solo_lee(self):
        documento = crear_documento(self.punto)

        resp = self._llamar(FacturaViewSet, {"get": "list"}, user=self.miembro)
        self.assertEqual(resp.status_code, 200)

        resp = self._llamar(
            FacturaViewSet, {"post": "generar_xml"}, metodo="post", user=self.miembro, pk=documento.pk
        )
        self.assertEqual(resp.status_code, 403)

    def test_vendedor_puede_emitir(self):
        documento = crear_documento(self.punto)
        self.miembro.groups.add(Group.objects.create(name="VENDEDOR"))

        resp = self._llamar(
            FacturaViewSet, {"post": "generar_xml"}, metodo="post", user=self.miembro, pk=documento.pk
        )

        self.assertEqual(resp.status_code, 200, resp.data)


class PuntoEmisionViewSetTests(ComprobanteViewSetTestCase):
    def test_secuenciales(self):
        crear_factura_via_servicio(self.punto)

        resp = self._llamar(PuntoEmisionViewSet, {"get": "secuenciales"}, pk=self.punto.pk)

        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.data["serie"], "001-001")
        self.assertEqual(resp.data["secuenciales"]["01"], {"ultimo": 1, "siguiente": 2})
        self.assertEqual(resp.data["secuenciales"]["04"], {"ultimo": None, "siguiente": 1})

    def test_secuenciales_se_leen_del_punto_sin_consultas_extra(self):
        PuntoEmision.objects.filter(pk=self.punto.pk).update(
            siguiente_factura=42, siguiente_nota_debito=3, siguiente_retencion=7
        )
        punto = PuntoEmision.objects.select_related("establecimiento").get(pk=self.punto.pk)

        with self.assertNumQueries(0):
            data = SecuencialesSerializer(punto).data

        self.assertEqual(
            data["secuenciales"],
            {
                "01": {"ultimo": 41, "siguiente": 42},
                "04": {"ultimo": None, "siguiente": 1},
                "05": {"ultimo": 2, "siguiente": 3},
                "07": {"ultimo": 6, "siguiente": 7},
            },
        )


class BitacoraViewTests(ComprobanteViewSetTestCase):
    def test_errores_sri_del_comprobante(self):
        documento = crear_documento(self.punto, estado=Estado.RECHAZADO)
        bitacora.registrar_errores(
            documento,
            SriErrorLog.Operacion.AUTORIZAR,
            [MensajeSri("56", "ERROR ESTABLECIMIENTO CERRADO"), MensajeSri("65", "FECHA EXTEMPORANEA")],
        )

        resp = self._llamar(FacturaViewSetSinPermisos, {"get": "errores_sri"}, pk=documento.pk)

        self.assertEqual(resp.status_code, 200)
        self.assertEqual(sorted(e["codigo"] for e in resp.data), ["56", "65"])
