from __future__ import annotations

import json
import logging
from pathlib import Path

from django.core.management.base import BaseCommand, CommandError
from django.utils import timezone

from sollist.records import InvalidRecordError
from sollist.services.period_filter import Period
from sollist.services.soll_ist_service import SollIstReport, SollIstService

logger = logging.getLogger(__name__)

COLLECTION_KEYS = ("tenants", "units", "properties", "invoices", "payments")


class Command(BaseCommand):
    help = "Berechnet den SOLL/IST-Abgleich (MRG-Zuordnung) aus einem JSON-Datenexport."

    def add_arguments(self, parser):
        parser.add_argument(
            "--input",
            type=str,
            required=True,
            help="JSON-Datei mit tenants, units, properties, invoices und payments.",
        )
        parser.add_argument("--jahr", type=int, help="Berichtsjahr (Default: aktuelles Jahr).")
        parser.add_argument("--von-monat", type=int, default=1, help="Erster Monat (Default: 1).")
        parser.add_argument("--bis-monat", type=int, default=12, help="Letzter Monat (Default: 12).")
        parser.add_argument(
            "--liegenschaft-id",
            type=str,
            help="Nur Einheiten dieser Liegenschaft berücksichtigen.",
        )
        parser.add_argument(
            "--json",
            action="store_true",
            help="Ausgabe als JSON.",
        )

    def handle(self, *args, **options):
        payload = self._load_payload(options["input"])
        year = options.get("jahr") or timezone.localdate().year

        try:
            period = Period(
                year=int(year),
                start_month=int(options["von_monat"]),
                end_month=int(options["bis_monat"]),
            )
        except ValueError as exc:
            raise CommandError(f"Ungültiger Zeitraum: {exc}") from exc

        service = SollIstService(period, property_id=options.get("liegenschaft_id"))
        try:
            report = service.calculate(**{key: payload.get(key) or [] for key in COLLECTION_KEYS})
        except InvalidRecordError as exc:
            raise CommandError(f"Ungültiger Datensatz: {exc}") from exc

        logger.info(
            "SOLL/IST-Bericht %s: %s Mieter, %s Leerstände.",
            period.label,
            report.totals.tenant_count,
            report.totals.vacancy_count,
        )

        if options["json"]:
            self.stdout.write(json.dumps(report.as_dict(), ensure_ascii=False, indent=2))
            return
        self._write_table(report)

    @staticmethod
    def _load_payload(raw_path: str) -> dict:
        path = Path((raw_path or "").strip()).expanduser()
        if not path.is_file():
            raise CommandError(f"Eingabedatei nicht gefunden: {path}")
        try:
            payload = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, UnicodeDecodeError) as exc:
            raise CommandError(f"Eingabedatei nicht lesbar: {path}") from exc
        except json.JSONDecodeError as exc:
            raise CommandError(f"Ungültiges JSON in {path}: {exc}") from exc
        if not isinstance(payload, dict):
            raise CommandError("JSON-Objekt mit den Listen tenants, units, properties, invoices, payments erwartet.")
        for key in COLLECTION_KEYS:
            value = payload.get(key)
            if value is not None and not isinstance(value, list):
                raise CommandError(f"Feld '{key}' muss eine Liste sein.")
        return payload

    def _write_table(self, report: SollIstReport) -> None:
        self.stdout.write(
            self.style.SUCCESS(
                f"SOLL/IST {report.period.label}: "
                f"{report.totals.tenant_count} Mieter, {report.totals.vacancy_count} Leerstände."
            )
        )
        header = f"{'Mieter':<40} {'SOLL':>12} {'IST':>12} {'Saldo':>12}  Status"
        self.stdout.write(header)
        self.stdout.write("-" * len(header))
        for result in report.results:
            self.stdout.write(
                f"{result.label[:40]:<40} {result.soll_betrag:>12.2f} "
                f"{result.haben_betrag:>12.2f} {result.saldo:>12.2f}  {result.status}"
            )
        totals = report.totals
        self.stdout.write("-" * len(header))
        self.stdout.write(
            f"{'Summe':<40} {totals.soll_gesamt:>12.2f} {totals.haben_betrag:>12.2f} {totals.saldo:>12.2f}"
        )
        self.stdout.write(
            f"BK {totals.ist_bk:.2f}/{totals.soll_bk:.2f} | "
            f"HK {totals.ist_hk:.2f}/{totals.soll_hk:.2f} | "
            f"Miete {totals.ist_miete:.2f}/{totals.soll_miete:.2f} | "
            f"Überzahlung {totals.ueberzahlung:.2f}"
        )
