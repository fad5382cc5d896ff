from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Iterable, Mapping

from ..conf import SollIstConfig
from ..records import (
    InvoiceRecord,
    PaymentRecord,
    PropertyRecord,
    TenantRecord,
    UnitRecord,
    normalize_collections,
)
from .money import ZERO
from .mrg_allocation import allocate_mrg
from .period_filter import (
    ALL_PROPERTIES,
    PaymentAggregate,
    Period,
    aggregate_payments,
    eligible_tenants,
    target_units,
)
from .results import SollIstTotals, TenantSollIstResult
from .soll_service import compute_tenant_soll
from .vacancy_service import compute_vacancies


@dataclass(frozen=True, slots=True)
class SollIstReport:
    period: Period
    property_id: str | None
    results: tuple[TenantSollIstResult, ...]
    totals: SollIstTotals

    @property
    def tenant_results(self) -> list[TenantSollIstResult]:
        return [result for result in self.results if not result.is_vacancy]

    @property
    def vacancy_results(self) -> list[TenantSollIstResult]:
        return [result for result in self.results if result.is_vacancy]

    def as_dict(self) -> dict[str, object]:
        return {
            "meta": {
                "year": self.period.year,
                "period_start_month": self.period.start_month,
                "period_end_month": self.period.end_month,
                "period_start": self.period.period_start.isoformat(),
                "period_end": self.period.period_end.isoformat(),
                "month_count": self.period.month_count,
                "property_id": self.property_id or ALL_PROPERTIES,
            },
            "results": [result.as_dict() for result in self.results],
            "totals": self.totals.as_dict(),
        }


def calculate_totals(results: Iterable[TenantSollIstResult]) -> SollIstTotals:
    fields = {
        "soll_bk": ZERO,
        "soll_hk": ZERO,
        "soll_miete": ZERO,
        "soll_gesamt": ZERO,
        "ist_bk": ZERO,
        "ist_hk": ZERO,
        "ist_miete": ZERO,
        "ist_gesamt": ZERO,
        "diff_bk": ZERO,
        "diff_hk": ZERO,
        "diff_miete": ZERO,
        "diff_gesamt": ZERO,
        "haben_betrag": ZERO,
        "saldo": ZERO,
        "ueberzahlung": ZERO,
        "unterzahlung": ZERO,
    }
    payment_count = 0
    tenant_count = 0
    vacancy_count = 0
    for result in results:
        fields["soll_bk"] += result.soll_bk
        fields["soll_hk"] += result.soll_hk
        fields["soll_miete"] += result.soll_miete
        fields["soll_gesamt"] += result.soll_betrag
        fields["ist_bk"] += result.ist_bk
        fields["ist_hk"] += result.ist_hk
        fields["ist_miete"] += result.ist_miete
        fields["ist_gesamt"] += result.ist_gesamt
        fields["diff_bk"] += result.diff_bk
        fields["diff_hk"] += result.diff_hk
        fields["diff_miete"] += result.diff_miete
        fields["diff_gesamt"] += result.diff_gesamt
        fields["haben_betrag"] += result.haben_betrag
        fields["saldo"] += result.saldo
        fields["ueberzahlung"] += result.ueberzahlung
        fields["unterzahlung"] += result.unterzahlung
        payment_count += result.payment_count
        if result.is_vacancy:
            vacancy_count += 1
        else:
            tenant_count += 1
    return SollIstTotals(
        **fields,
        payment_count=payment_count,
        tenant_count=tenant_count,
        vacancy_count=vacancy_count,
    )


class SollIstService:
    """Berechnet SOLL/IST je Mieter und Leerstand für eine Liegenschaft und einen Zeitraum."""

    logger = logging.getLogger(__name__)

    def __init__(
        self,
        period: Period,
        property_id: str | None = None,
        config: SollIstConfig | None = None,
    ) -> None:
        self.period = period
        scope = str(property_id).strip() if property_id is not None else ""
        self.property_id = scope if scope and scope != ALL_PROPERTIES else None
        self.config = config or SollIstConfig.from_settings()

    def calculate(
        self,
        *,
        tenants: Iterable[Mapping[str, Any] | TenantRecord] = (),
        units: Iterable[Mapping[str, Any] | UnitRecord] = (),
        properties: Iterable[Mapping[str, Any] | PropertyRecord] = (),
        invoices: Iterable[Mapping[str, Any] | InvoiceRecord] = (),
        payments: Iterable[Mapping[str, Any] | PaymentRecord] = (),
    ) -> SollIstReport:
        data = normalize_collections(
            tenants=tenants,
            units=units,
            properties=properties,
            invoices=invoices,
            payments=payments,
        )

        units_by_id = target_units(data.units, self.property_id)
        properties_by_id: dict[str, PropertyRecord] = {}
        for property_record in data.properties:
            properties_by_id.setdefault(property_record.id, property_record)

        active_tenants = eligible_tenants(data.tenants, units_by_id, self.period)
        invoices_by_tenant: dict[str, list[InvoiceRecord]] = {}
        for invoice in data.invoices:
            if invoice.tenant_id and not invoice.is_vacancy:
                invoices_by_tenant.setdefault(invoice.tenant_id, []).append(invoice)
        payments_by_tenant = aggregate_payments(data.payments, self.period)

        self.logger.debug(
            "SOLL/IST %s (Liegenschaft %s): %s Mieter aktiv, %s Vorschreibungen, %s Zahlungen.",
            self.period.label,
            self.property_id or ALL_PROPERTIES,
            len(active_tenants),
            len(data.invoices),
            len(data.payments),
        )

        results: list[TenantSollIstResult] = [
            self._tenant_result(
                tenant,
                unit=units_by_id.get(tenant.unit_id),
                properties_by_id=properties_by_id,
                invoices=invoices_by_tenant.get(tenant.id, []),
                payments=payments_by_tenant.get(tenant.id, PaymentAggregate()),
            )
            for tenant in active_tenants
        ]
        results.extend(
            compute_vacancies(
                data.invoices,
                units_by_id=units_by_id,
                properties_by_id=properties_by_id,
                period=self.period,
                config=self.config,
            )
        )
        return SollIstReport(
            period=self.period,
            property_id=self.property_id,
            results=tuple(results),
            totals=calculate_totals(results),
        )

    def _tenant_result(
        self,
        tenant: TenantRecord,
        *,
        unit: UnitRecord | None,
        properties_by_id: dict[str, PropertyRecord],
        invoices: list[InvoiceRecord],
        payments: PaymentAggregate,
    ) -> TenantSollIstResult:
        soll = compute_tenant_soll(tenant, invoices, period=self.period)
        allocation = allocate_mrg(
            soll_bk=soll.bk,
            soll_hk=soll.hk,
            soll_miete=soll.miete,
            soll_betrag=soll.betrag,
            haben_betrag=payments.total,
        )
        property_record = properties_by_id.get(unit.property_id) if unit else None
        return TenantSollIstResult(
            tenant_id=tenant.id,
            tenant_name=tenant.full_name,
            unit_id=tenant.unit_id,
            unit_name=(unit.top_nummer if unit else "") or "N/A",
            property_id=unit.property_id if unit else "",
            property_name=(property_record.name if property_record else "") or "N/A",
            soll_bk=soll.bk,
            soll_hk=soll.hk,
            soll_miete=soll.miete,
            soll_betrag=soll.betrag,
            ist_bk=allocation.ist_bk,
            ist_hk=allocation.ist_hk,
            ist_miete=allocation.ist_miete,
            haben_betrag=payments.total,
            payment_count=payments.count,
            is_vacancy=False,
            soll_source=soll.source,
        )


def calculate_tenant_soll_ist(
    *,
    tenants: Iterable[Mapping[str, Any] | TenantRecord],
    units: Iterable[Mapping[str, Any] | UnitRecord],
    properties: Iterable[Mapping[str, Any] | PropertyRecord],
    invoices: Iterable[Mapping[str, Any] | InvoiceRecord],
    payments: Iterable[Mapping[str, Any] | PaymentRecord],
    year: int,
    start_month: int = 1,
    end_month: int = 12,
    property_id: str | None = None,
    config: SollIstConfig | None = None,
) -> list[TenantSollIstResult]:
    service = SollIstService(
        Period(year=int(year), start_month=int(start_month), end_month=int(end_month)),
        property_id=property_id,
        config=config,
    )
    report = service.calculate(
        tenants=tenants,
        units=units,
        properties=properties,
        invoices=invoices,
        payments=payments,
    )
    return list(report.results)
