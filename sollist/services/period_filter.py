from __future__ import annotations

from calendar import monthrange
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Iterable

from ..records import PaymentRecord, TenantRecord, UnitRecord
from .money import ZERO

ALL_PROPERTIES = "all"


@dataclass(frozen=True, slots=True)
class Period:
    """Monatsfenster innerhalb eines Kalenderjahres, beide Grenzen inklusive."""

    year: int
    start_month: int = 1
    end_month: int = 12

    def __post_init__(self) -> None:
        if not 1 <= self.start_month <= 12 or not 1 <= self.end_month <= 12:
            raise ValueError(
                f"Monate müssen zwischen 1 und 12 liegen (von={self.start_month}, bis={self.end_month})."
            )
        if self.start_month > self.end_month:
            raise ValueError(
                f"Startmonat {self.start_month} liegt nach Endmonat {self.end_month}."
            )
        if not 1 <= self.year <= 9999:
            raise ValueError(f"Ungültiges Jahr: {self.year}")

    @classmethod
    def full_year(cls, year: int) -> "Period":
        return cls(year=int(year), start_month=1, end_month=12)

    @classmethod
    def single_month(cls, year: int, month: int) -> "Period":
        return cls(year=int(year), start_month=int(month), end_month=int(month))

    @property
    def month_count(self) -> int:
        return self.end_month - self.start_month + 1

    @property
    def period_start(self) -> date:
        return date(self.year, self.start_month, 1)

    @property
    def period_end(self) -> date:
        last_day = monthrange(self.year, self.end_month)[1]
        return date(self.year, self.end_month, last_day)

    def contains(self, value: date | None) -> bool:
        if value is None:
            return False
        return self.period_start <= value <= self.period_end

    def contains_month(self, year: int, month: int) -> bool:
        return year == self.year and self.start_month <= month <= self.end_month

    @property
    def label(self) -> str:
        if self.month_count == 1:
            return f"{self.start_month:02d}.{self.year}"
        return f"{self.start_month:02d}-{self.end_month:02d}.{self.year}"


@dataclass(frozen=True, slots=True)
class PaymentAggregate:
    total: Decimal = ZERO
    count: int = 0


def target_units(
    units: Iterable[UnitRecord],
    property_id: str | None = None,
) -> dict[str, UnitRecord]:
    scope = (property_id or "").strip()
    index: dict[str, UnitRecord] = {}
    for unit in units:
        if scope and scope != ALL_PROPERTIES and unit.property_id != scope:
            continue
        index.setdefault(unit.id, unit)
    return index


def is_active_in_period(tenant: TenantRecord, period: Period) -> bool:
    if tenant.is_deleted:
        return False
    if tenant.mietbeginn and tenant.mietbeginn > period.period_end:
        return False
    if tenant.mietende and tenant.mietende < period.period_start:
        return False
    return True


def eligible_tenants(
    tenants: Iterable[TenantRecord],
    units_by_id: dict[str, UnitRecord],
    period: Period,
) -> list[TenantRecord]:
    return [
        tenant
        for tenant in tenants
        if tenant.unit_id and tenant.unit_id in units_by_id and is_active_in_period(tenant, period)
    ]


def aggregate_payments(
    payments: Iterable[PaymentRecord],
    period: Period,
) -> dict[str, PaymentAggregate]:
    totals: dict[str, Decimal] = {}
    counts: dict[str, int] = {}
    for payment in payments:
        if not payment.tenant_id or not period.contains(payment.payment_date):
            continue
        totals[payment.tenant_id] = totals.get(payment.tenant_id, ZERO) + payment.amount
        counts[payment.tenant_id] = counts.get(payment.tenant_id, 0) + 1
    return {
        tenant_id: PaymentAggregate(total=total, count=counts[tenant_id])
        for tenant_id, total in totals.items()
    }
