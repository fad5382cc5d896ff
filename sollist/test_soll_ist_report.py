from __future__ import annotations

import json
import tempfile
from io import StringIO
from pathlib import Path

from django.core.management import call_command
from django.core.management.base import CommandError
from django.test import SimpleTestCase


class SollIstReportCommandTests(SimpleTestCase):
    def setUp(self):
        self._tmpdir = tempfile.TemporaryDirectory()
        self.addCleanup(self._tmpdir.cleanup)
        self.input_file = self._write_input(
            {
                "properties": [{"id": "p1", "name": "Objekt Soll"}],
                "units": [
                    {"id": "u1", "property_id": "p1", "top_nummer": "Top 1"},
                    {"id": "u2", "property_id": "p1", "top_nummer": "Top 2"},
                ],
                "tenants": [
                    {
                        "id": "t1",
                        "unit_id": "u1",
                        "first_name": "Anna",
                        "last_name": "Berger",
                        "grundmiete": "800.00",
                        "betriebskosten_vorschuss": "150.00",
                        "heizungskosten_vorschuss": "100.00",
                        "mietbeginn": "2024-01-01",
                    }
                ],
                "invoices": [
                    {
                        "id": "v1",
                        "unit_id": "u2",
                        "year": 2025,
                        "month": 1,
                        "betriebskosten": "100.00",
                        "gesamtbetrag": "110.00",
                        "is_vacancy": True,
                        "paid_amount": "110.00",
                    }
                ],
                "payments": [
                    {"id": "z1", "tenant_id": "t1", "amount": "1000.00", "payment_date": "2025-02-05"},
                ],
            }
        )

    def _write_input(self, payload, name="input.json") -> Path:
        path = Path(self._tmpdir.name) / name
        path.write_text(json.dumps(payload), encoding="utf-8")
        return path

    def _run(self, **options):
        output = StringIO()
        call_command("soll_ist_report", stdout=output, **options)
        return output.getvalue()

    def test_json_output_uses_contract_field_names(self):
        payload = json.loads(
            self._run(
                input=str(self.input_file),
                jahr=2025,
                von_monat=1,
                bis_monat=3,
                liegenschaft_id="p1",
                json=True,
            )
        )

        self.assertEqual(payload["meta"]["month_count"], 3)
        self.assertEqual([row["tenantId"] for row in payload["results"]], ["t1", "vacancy-u2"])
        tenant_row = payload["results"][0]
        self.assertEqual(tenant_row["sollBetrag"], "3495.00")
        self.assertEqual(tenant_row["istBk"], "495.00")
        self.assertEqual(tenant_row["istHk"], "360.00")
        self.assertEqual(tenant_row["istMiete"], "145.00")
        self.assertEqual(tenant_row["saldo"], "2495.00")
        self.assertEqual(tenant_row["status"], "teilbezahlt")
        self.assertTrue(payload["results"][1]["isVacancy"])
        self.assertEqual(payload["totals"]["sollGesamt"], "3605.00")
        self.assertEqual(payload["totals"]["habenBetrag"], "1110.00")

    def test_text_output_lists_results_and_totals(self):
        output = self._run(input=str(self.input_file), jahr=2025, von_monat=1, bis_monat=3)

        self.assertIn("SOLL/IST 01-03.2025: 1 Mieter, 1 Leerstände.", output)
        self.assertIn("Objekt Soll · Top 1 · Anna Berger", output)
        self.assertIn("Summe", output)
        self.assertIn("3605.00", output)

    def test_missing_input_file_raises_command_error(self):
        with self.assertRaisesMessage(CommandError, "Eingabedatei nicht gefunden"):
            self._run(input=str(Path(self._tmpdir.name) / "fehlt.json"), jahr=2025)

    def test_invalid_json_raises_command_error(self):
        broken = Path(self._tmpdir.name) / "broken.json"
        broken.write_text("{nicht json", encoding="utf-8")

        with self.assertRaisesMessage(CommandError, "Ungültiges JSON"):
            self._run(input=str(broken), jahr=2025)

    def test_collection_must_be_a_list(self):
        path = self._write_input({"tenants": {"id": "t1"}}, name="wrong.json")

        with self.assertRaisesMessage(CommandError, "Feld 'tenants' muss eine Liste sein."):
            self._run(input=str(path), jahr=2025)

    def test_invalid_period_raises_command_error(self):
        with self.assertRaisesMessage(CommandError, "Ungültiger Zeitraum"):
            self._run(input=str(self.input_file), jahr=2025, von_monat=6, bis_monat=2)

    def test_record_without_id_raises_command_error(self):
        path = self._write_input({"payments": [{"tenant_id": "t1", "amount": 10}]}, name="no-id.json")

        with self.assertRaisesMessage(CommandError, "Ungültiger Datensatz"):
            self._run(input=str(path), jahr=2025)
