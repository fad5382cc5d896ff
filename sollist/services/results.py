from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

from .money import CENT, ZERO, quantize_cent

STATUS_OFFEN = "offen"
STATUS_TEILBEZAHLT = "teilbezahlt"
STATUS_VOLLSTAENDIG = "vollstaendig"
STATUS_UEBERZAHLT = "ueberzahlt"


def _money_str(value: Decimal | None) -> str:
    return str(quantize_cent(value))


@dataclass(frozen=True, slots=True)
class TenantSollIstResult:
    """SOLL/IST eines Mieters (oder eines Leerstands) im Berichtszeitraum."""

    tenant_id: str
    tenant_name: str
    unit_id: str
    unit_name: str
    property_id: str
    property_name: str
    soll_bk: Decimal
    soll_hk: Decimal
    soll_miete: Decimal
    soll_betrag: Decimal
    ist_bk: Decimal
    ist_hk: Decimal
    ist_miete: Decimal
    haben_betrag: Decimal
    payment_count: int = 0
    is_vacancy: bool = False
    soll_source: str = ""

    @property
    def ist_gesamt(self) -> Decimal:
        return self.ist_bk + self.ist_hk + self.ist_miete

    @property
    def saldo(self) -> Decimal:
        return self.soll_betrag - self.haben_betrag

    @property
    def ueberzahlung(self) -> Decimal:
        saldo = self.saldo
        return -saldo if saldo < ZERO else ZERO

    @property
    def diff_bk(self) -> Decimal:
        return self.soll_bk - self.ist_bk

    @property
    def diff_hk(self) -> Decimal:
        return self.soll_hk - self.ist_hk

    @property
    def diff_miete(self) -> Decimal:
        return self.soll_miete - self.ist_miete

    @property
    def diff_gesamt(self) -> Decimal:
        return self.soll_betrag - self.ist_gesamt

    @property
    def unterzahlung(self) -> Decimal:
        return self.diff_bk + self.diff_hk + self.diff_miete

    @property
    def status(self) -> str:
        saldo = self.saldo
        if saldo < -CENT:
            return STATUS_UEBERZAHLT
        if saldo.copy_abs() <= CENT and (self.haben_betrag > ZERO or self.soll_betrag == ZERO):
            return STATUS_VOLLSTAENDIG
        if self.haben_betrag > ZERO and saldo > CENT:
            return STATUS_TEILBEZAHLT
        return STATUS_OFFEN

    @property
    def label(self) -> str:
        parts = [part for part in (self.property_name, self.unit_name) if part and part not in ("N/A", "-")]
        location = " · ".join(parts)
        if location:
            return f"{location} · {self.tenant_name}"
        return self.tenant_name

    def as_dict(self) -> dict[str, object]:
        return {
            "tenantId": self.tenant_id,
            "tenantName": self.tenant_name,
            "unitId": self.unit_id,
            "unitName": self.unit_name,
            "unitNummer": self.unit_name,
            "propertyId": self.property_id,
            "propertyName": self.property_name,
            "sollBk": _money_str(self.soll_bk),
            "sollHk": _money_str(self.soll_hk),
            "sollMiete": _money_str(self.soll_miete),
            "sollBetrag": _money_str(self.soll_betrag),
            "sollGesamt": _money_str(self.soll_betrag),
            "istBk": _money_str(self.ist_bk),
            "istHk": _money_str(self.ist_hk),
            "istMiete": _money_str(self.ist_miete),
            "habenBetrag": _money_str(self.haben_betrag),
            "istGesamt": _money_str(self.ist_gesamt),
            "saldo": _money_str(self.saldo),
            "diffBk": _money_str(self.diff_bk),
            "diffHk": _money_str(self.diff_hk),
            "diffMiete": _money_str(self.diff_miete),
            "diffGesamt": _money_str(self.diff_gesamt),
            "ueberzahlung": _money_str(self.ueberzahlung),
            "unterzahlung": _money_str(self.unterzahlung),
            "paymentCount": self.payment_count,
            "status": self.status,
            "isVacancy": self.is_vacancy,
        }


@dataclass(frozen=True, slots=True)
class SollIstTotals:
    soll_bk: Decimal = ZERO
    soll_hk: Decimal = ZERO
    soll_miete: Decimal = ZERO
    soll_gesamt: Decimal = ZERO
    ist_bk: Decimal = ZERO
    ist_hk: Decimal = ZERO
    ist_miete: Decimal = ZERO
    ist_gesamt: Decimal = ZERO
    diff_bk: Decimal = ZERO
    diff_hk: Decimal = ZERO
    diff_miete: Decimal = ZERO
    diff_gesamt: Decimal = ZERO
    haben_betrag: Decimal = ZERO
    saldo: Decimal = ZERO
    ueberzahlung: Decimal = ZERO
    unterzahlung: Decimal = ZERO
    payment_count: int = 0
    tenant_count: int = 0
    vacancy_count: int = 0

    def as_dict(self) -> dict[str, object]:
        return {
            "sollBk": _money_str(self.soll_bk),
            "sollHk": _money_str(self.soll_hk),
            "sollMiete": _money_str(self.soll_miete),
            "sollGesamt": _money_str(self.soll_gesamt),
            "istBk": _money_str(self.ist_bk),
            "istHk": _money_str(self.ist_hk),
            "istMiete": _money_str(self.ist_miete),
            "istGesamt": _money_str(self.ist_gesamt),
            "diffBk": _money_str(self.diff_bk),
            "diffHk": _money_str(self.diff_hk),
            "diffMiete": _money_str(self.diff_miete),
            "diffGesamt": _money_str(self.diff_gesamt),
            "habenBetrag": _money_str(self.haben_betrag),
            "saldo": _money_str(self.saldo),
            "ueberzahlung": _money_str(self.ueberzahlung),
            "unterzahlung": _money_str(self.unterzahlung),
            "paymentCount": self.payment_count,
            "tenantCount": self.tenant_count,
            "vacancyCount": self.vacancy_count,
        }
