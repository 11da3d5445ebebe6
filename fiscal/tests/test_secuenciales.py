# fiscal/tests/test_secuenciales.py
# -*- coding: utf-8 -*-
from __future__ import annotations

from unittest.mock import patch

from django.db import transaction
from django.db.models import QuerySet
from django.test import TestCase, TransactionTestCase, skipUnlessDBFeature

from fiscal.models import PuntoEmision
from fiscal.services.secuenciales import (
    SECUENCIAL_MAXIMO,
    asignar_secuencial,
    es_numero_legal,
    numero_legal,
    secuencial_actual,
)
from fiscal.tests.utils import crear_empresa, crear_punto_emision, ejecutar_en_hilos


class AsignarSecuencialTests(TestCase):
    def setUp(self) -> None:
        self.empresa = crear_empresa()
        self.punto = crear_punto_emision(self.empresa)

    def test_secuenciales_contiguos_desde_uno(self):
        valores = [asignar_secuencial(self.punto.pk, "01") for _ in range(5)]

        self.assertEqual(valores, [1, 2, 3, 4, 5])
        self.assertEqual(secuencial_actual(self.punto.pk, "01"), 6)

    def test_contadores_independientes_por_tipo_y_punto(self):
        otro_punto = crear_punto_emision(self.empresa, pto="002")

        self.assertEqual(asignar_secuencial(self.punto.pk, "01"), 1)
        self.assertEqual(asignar_secuencial(self.punto.pk, "04"), 1)
        self.assertEqual(asignar_secuencial(otro_punto.pk, "01"), 1)
        self.assertEqual(asignar_secuencial(self.punto.pk, "01"), 2)

        self.punto.refresh_from_db()
        self.assertEqual(self.punto.siguiente_factura, 3)
        self.assertEqual(self.punto.siguiente_nota_credito, 2)
        self.assertEqual(self.punto.siguiente_nota_debito, 1)

    def test_rollback_de_la_transaccion_externa_revierte_el_contador(self):
        asignar_secuencial(self.punto.pk, "01")

        with self.assertRaises(RuntimeError):
            with transaction.atomic():
                asignar_secuencial(self.punto.pk, "01")
                raise RuntimeError("falla posterior")

        self.assertEqual(asignar_secuencial(self.punto.pk, "01"), 2)

    def test_tipo_no_soportado(self):
        with self.assertRaises(ValueError):
            asignar_secuencial(self.punto.pk, "99")

    def test_secuencial_agotado(self):
        PuntoEmision.objects.filter(pk=self.punto.pk).update(siguiente_factura=SECUENCIAL_MAXIMO)

        self.assertEqual(asignar_secuencial(self.punto.pk, "01"), SECUENCIAL_MAXIMO)
        with self.assertRaises(ValueError):
            asignar_secuencial(self.punto.pk, "01")

    def test_punto_inexistente(self):
        with self.assertRaises(PuntoEmision.DoesNotExist):
            asignar_secuencial(999999, "01")


class NumeroLegalTests(TestCase):
    def test_formato(self):
        numero = numero_legal("001", "002", 45)

        self.assertEqual(numero, "001-002-000000045")
        self.assertTrue(es_numero_legal(numero))
        self.assertFalse(es_numero_legal("001-002-45"))
        self.assertFalse(es_numero_legal(""))


class AsignacionConcurrenteTests(TransactionTestCase):
    def test_bloquea_la_fila_del_punto_de_emision(self):
        punto = crear_punto_emision(crear_empresa())

        with patch.object(
            QuerySet, "select_for_update", autospec=True, side_effect=QuerySet.select_for_update
        ) as bloqueo:
            asignar_secuencial(punto.pk, "01")

        self.assertEqual([llamada.args[0].model for llamada in bloqueo.call_args_list], [PuntoEmision])

    @skipUnlessDBFeature("has_select_for_update")
    def test_hilos_simultaneos_reciben_secuenciales_contiguos_sin_repetir(self):
        punto = crear_punto_emision(crear_empresa())
        otro_punto = crear_punto_emision(punto.establecimiento.empresa, pto="002")
        hilos = 8

        resultados, errores = ejecutar_en_hilos(hilos, lambda: asignar_secuencial(punto.pk, "01"))

        self.assertEqual(errores, [])
        self.assertEqual(sorted(resultados), list(range(1, hilos + 1)))
        self.assertEqual(secuencial_actual(punto.pk, "01"), hilos + 1)
        # Los demás contadores no se tocan
        self.assertEqual(secuencial_actual(punto.pk, "04"), 1)
        self.assertEqual(secuencial_actual(otro_punto.pk, "01"), 1)
