# fiscal/tests/test_clave_acceso.py
# -*- coding: utf-8 -*-
from __future__ import annotations

import datetime as dt

from django.test import SimpleTestCase

from fiscal.services.sri.clave_acceso import (
    descomponer_clave_acceso,
    generar_clave_acceso,
    modulo11,
    validar_clave_acceso,
)


def _clave(**extra) -> str:
    datos = {
        "fecha_emision": dt.date(2024, 3, 15),
        "tipo_comprobante": "01",
        "ruc": "1790012345001",
        "ambiente": "1",
        "establecimiento": "001",
        "punto_emision": "002",
        "secuencial": 123,
        "codigo_numerico": "12345678",
    }
    datos.update(extra)
    return generar_clave_acceso(**datos)


class ClaveAccesoTests(SimpleTestCase):
    def test_estructura_de_49_digitos(self):
        clave = _clave()

        self.assertEqual(len(clave), 49)
        self.assertTrue(clave.isdigit())
        self.assertTrue(clave.startswith("15032024" + "01" + "1790012345001" + "1" + "001" + "002"))
        self.assertEqual(clave[30:39], "000000123")
        self.assertEqual(clave[39:47], "12345678")
        self.assertEqual(clave[47], "1")

    def test_clave_generada_es_valida(self):
        self.assertTrue(validar_clave_acceso(_clave()))
        # Con código numérico aleatorio también
        self.assertTrue(validar_clave_acceso(_clave(codigo_numerico=None)))

    def test_cambio_de_un_digito_se_detecta(self):
        """
        Un cambio en el dígito verificador siempre se detecta. En el cuerpo,
        los residuos 1 y 10 comparten DV (1), así que por posición puede
        escaparse como máximo una de las nueve alteraciones posibles.
        """
        clave = _clave()
        total = detectadas = 0
        for posicion in range(49):
            escapadas = 0
            for nuevo in "0123456789":
                if nuevo == clave[posicion]:
                    continue
                alterada = clave[:posicion] + nuevo + clave[posicion + 1:]
                total += 1
                if validar_clave_acceso(alterada):
                    escapadas += 1
                else:
                    detectadas += 1
            if posicion == 48:
                self.assertEqual(escapadas, 0)
            self.assertLessEqual(escapadas, 1, f"posición {posicion}")

        self.assertGreaterEqual(detectadas / total, 8 / 9)

    def test_modulo11_casos_limite(self):
        # 11 -> 0 y 10 -> 1
        self.assertEqual(modulo11("0"), 0)
        self.assertIn(modulo11("41261533"), range(10))
        with self.assertRaises(ValueError):
            modulo11("12a4")

    def test_validar_rechaza_longitud_o_caracteres(self):
        clave = _clave()
        self.assertFalse(validar_clave_acceso(clave[:-1]))
        self.assertFalse(validar_clave_acceso(clave + "0"))
        self.assertFalse(validar_clave_acceso("A" + clave[1:]))
        self.assertFalse(validar_clave_acceso(""))

    def test_digitos_unicode_no_son_validos(self):
        clave = _clave()

        self.assertFalse(validar_clave_acceso("²" * 49))
        self.assertFalse(validar_clave_acceso("٣" + clave[1:]))
        self.assertFalse(validar_clave_acceso(clave[:-1] + "\n"))
        self.assertFalse(validar_clave_acceso(None))
        with self.assertRaises(ValueError):
            modulo11("²" * 48)
        with self.assertRaises(ValueError):
            _clave(secuencial="¹²³")
        with self.assertRaises(ValueError):
            _clave(ruc="١٧٩٠٠١٢٣٤٥٠٠١")

    def test_componentes_invalidos(self):
        with self.assertRaises(ValueError):
            _clave(ruc="179001234500")
        with self.assertRaises(ValueError):
            _clave(ambiente="3")
        with self.assertRaises(ValueError):
            _clave(establecimiento="000")
        with self.assertRaises(ValueError):
            _clave(secuencial=0)
        with self.assertRaises(ValueError):
            _clave(secuencial=1_000_000_000)
        with self.assertRaises(ValueError):
            _clave(codigo_numerico="1234")

    def test_descomponer(self):
        partes = descomponer_clave_acceso(_clave(ambiente="2"))

        self.assertEqual(partes["fecha"], dt.date(2024, 3, 15))
        self.assertEqual(partes["ruc"], "1790012345001")
        self.assertEqual(partes["ambiente"], "2")
        self.assertEqual(partes["secuencial"], "000000123")

        with self.assertRaises(ValueError):
            descomponer_clave_acceso("123")
