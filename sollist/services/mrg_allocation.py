"""Zahlungszuordnung nach MRG: Betriebskosten vor Heizkosten vor Hauptmietzins.

Bei Unterzahlung werden zuerst die Betriebskosten, dann die Heizkosten und
erst zuletzt die Miete bedient. Überzahlungen werden nie auf Töpfe verteilt.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Iterable

from ..conf import TOLERANCE
from .money import CENT, ZERO, quantize_cent

BK_GROSS_FACTOR = Decimal("1.10")
HK_GROSS_FACTOR = Decimal("1.20")


@dataclass(frozen=True, slots=True)
class MrgAllocation:
    ist_bk: Decimal
    ist_hk: Decimal
    ist_miete: Decimal

    @property
    def ist_gesamt(self) -> Decimal:
        return self.ist_bk + self.ist_hk + self.ist_miete


def allocate_mrg(
    *,
    soll_bk: Decimal,
    soll_hk: Decimal,
    soll_miete: Decimal,
    soll_betrag: Decimal,
    haben_betrag: Decimal,
) -> MrgAllocation:
    if haben_betrag >= soll_betrag - TOLERANCE:
        return MrgAllocation(ist_bk=soll_bk, ist_hk=soll_hk, ist_miete=soll_miete)
    if haben_betrag < TOLERANCE:
        return MrgAllocation(ist_bk=ZERO, ist_hk=ZERO, ist_miete=ZERO)

    remaining = haben_betrag
    ist_bk = min(remaining, soll_bk)
    remaining -= ist_bk
    ist_hk = min(remaining, soll_hk)
    remaining -= ist_hk
    ist_miete = min(remaining, soll_miete)
    return MrgAllocation(ist_bk=ist_bk, ist_hk=ist_hk, ist_miete=ist_miete)


@dataclass(frozen=True, slots=True)
class PaymentAllocation:
    betriebskosten_anteil: Decimal
    heizung_anteil: Decimal
    miete_anteil: Decimal
    ust_anteil: Decimal
    ueberzahlung: Decimal
    unterzahlung: Decimal
    vollstaendig_bezahlt: bool
    status: str
    beschreibung: str

    def display_lines(self) -> list[str]:
        lines: list[str] = []
        if self.betriebskosten_anteil > ZERO:
            lines.append(f"Betriebskosten: {self.betriebskosten_anteil:.2f} €")
        if self.heizung_anteil > ZERO:
            lines.append(f"Heizung: {self.heizung_anteil:.2f} €")
        if self.miete_anteil > ZERO:
            lines.append(f"Miete: {self.miete_anteil:.2f} €")
        if self.ust_anteil > ZERO:
            lines.append(f"davon USt: {self.ust_anteil:.2f} €")
        if self.ueberzahlung > ZERO:
            lines.append(f"Überzahlung: +{self.ueberzahlung:.2f} €")
        if self.unterzahlung > ZERO:
            lines.append(f"Offen: -{self.unterzahlung:.2f} €")
        return lines


def allocate_payment(
    zahlungsbetrag: Decimal,
    *,
    grundmiete: Decimal,
    betriebskosten: Decimal,
    heizungskosten: Decimal,
    mit_ust: bool = True,
) -> PaymentAllocation:
    """Teilt eine einzelne Zahlung auf die Posten einer Vorschreibung auf.

    BK werden mit 10 %, HK mit 20 % USt brutto gerechnet, die Miete wie
    übergeben. Die Reihenfolge folgt ``allocate_mrg``.
    """
    bk_brutto = betriebskosten * BK_GROSS_FACTOR if mit_ust else betriebskosten
    hk_brutto = heizungskosten * HK_GROSS_FACTOR if mit_ust else heizungskosten
    miete_brutto = grundmiete
    gesamt_soll = bk_brutto + hk_brutto + miete_brutto

    remaining = zahlungsbetrag
    bk_zuordnung = min(remaining, bk_brutto)
    remaining -= bk_zuordnung
    hk_zuordnung = min(remaining, hk_brutto)
    remaining -= hk_zuordnung
    miete_zuordnung = min(remaining, miete_brutto)
    remaining -= miete_zuordnung

    ust_bk = bk_zuordnung - bk_zuordnung / BK_GROSS_FACTOR if mit_ust and bk_zuordnung > ZERO else ZERO
    ust_hk = hk_zuordnung - hk_zuordnung / HK_GROSS_FACTOR if mit_ust and hk_zuordnung > ZERO else ZERO

    ueberzahlung = quantize_cent(remaining) if remaining > ZERO else ZERO
    unterzahlung = quantize_cent(gesamt_soll - zahlungsbetrag) if zahlungsbetrag < gesamt_soll else ZERO
    vollstaendig = (zahlungsbetrag - gesamt_soll).copy_abs() < CENT

    if vollstaendig:
        status = "vollstaendig"
        beschreibung = "Rechnung vollständig bezahlt"
    elif remaining > ZERO:
        status = "ueberzahlt"
        beschreibung = f"Überzahlung: {ueberzahlung:.2f} €"
    else:
        status = "teilbezahlt"
        details: list[str] = []
        if bk_zuordnung < bk_brutto:
            details.append(f"BK: {bk_zuordnung:.2f}/{bk_brutto:.2f} €")
        if hk_zuordnung < hk_brutto and bk_zuordnung >= bk_brutto:
            details.append(f"Heizung: {hk_zuordnung:.2f}/{hk_brutto:.2f} €")
        if miete_zuordnung < miete_brutto and hk_zuordnung >= hk_brutto:
            details.append(f"Miete: {miete_zuordnung:.2f}/{miete_brutto:.2f} €")
        beschreibung = f"Teilzahlung - Offen: {unterzahlung:.2f} € ({', '.join(details)})"

    return PaymentAllocation(
        betriebskosten_anteil=quantize_cent(bk_zuordnung),
        heizung_anteil=quantize_cent(hk_zuordnung),
        miete_anteil=quantize_cent(miete_zuordnung),
        ust_anteil=quantize_cent(ust_bk + ust_hk),
        ueberzahlung=ueberzahlung,
        unterzahlung=unterzahlung,
        vollstaendig_bezahlt=vollstaendig,
        status=status,
        beschreibung=beschreibung,
    )


@dataclass(frozen=True, slots=True)
class InvoicePaymentRun:
    einzelzuordnungen: list[tuple[date, Decimal, PaymentAllocation]]
    gesamtstatus: str
    gesamtbezahlt: Decimal
    restbetrag: Decimal


def allocate_payments(
    zahlungen: Iterable[tuple[date, Decimal]],
    *,
    grundmiete: Decimal,
    betriebskosten: Decimal,
    heizungskosten: Decimal,
    gesamtbetrag: Decimal,
) -> InvoicePaymentRun:
    """Bucht mehrere Zahlungen in Datumsreihenfolge gegen eine Vorschreibung."""
    open_miete = grundmiete
    open_bk = betriebskosten
    open_hk = heizungskosten
    gesamtbezahlt = ZERO
    einzelzuordnungen: list[tuple[date, Decimal, PaymentAllocation]] = []

    for datum, betrag in sorted(zahlungen, key=lambda item: item[0]):
        allocation = allocate_payment(
            betrag,
            grundmiete=open_miete,
            betriebskosten=open_bk,
            heizungskosten=open_hk,
        )
        einzelzuordnungen.append((datum, betrag, allocation))
        gesamtbezahlt += betrag

        open_bk = max(ZERO, open_bk - allocation.betriebskosten_anteil / BK_GROSS_FACTOR)
        open_hk = max(ZERO, open_hk - allocation.heizung_anteil / HK_GROSS_FACTOR)
        open_miete = max(ZERO, open_miete - allocation.miete_anteil)

    restbetrag = gesamtbetrag - gesamtbezahlt
    if gesamtbezahlt == ZERO:
        gesamtstatus = "offen"
    elif restbetrag > CENT:
        gesamtstatus = "teilbezahlt"
    elif restbetrag < -CENT:
        gesamtstatus = "ueberzahlt"
    else:
        gesamtstatus = "bezahlt"

    return InvoicePaymentRun(
        einzelzuordnungen=einzelzuordnungen,
        gesamtstatus=gesamtstatus,
        gesamtbezahlt=quantize_cent(gesamtbezahlt),
        restbetrag=quantize_cent(restbetrag),
    )
