from __future__ import annotations

import logging
from decimal import Decimal
from typing import Iterable

from ..conf import TOLERANCE, SollIstConfig
from ..records import InvoiceRecord, PropertyRecord, UnitRecord
from .money import ZERO, allocate_by_weight, quantize_cent
from .period_filter import Period
from .results import TenantSollIstResult
from .soll_service import gross, reconcile_components

logger = logging.getLogger(__name__)


def group_vacancy_invoices(
    invoices: Iterable[InvoiceRecord],
    *,
    units_by_id: dict[str, UnitRecord],
    period: Period,
) -> dict[str, list[InvoiceRecord]]:
    grouped: dict[str, list[InvoiceRecord]] = {}
    for invoice in invoices:
        if not invoice.is_vacancy or not invoice.unit_id or invoice.unit_id not in units_by_id:
            continue
        if not period.contains_month(invoice.year, invoice.month):
            continue
        grouped.setdefault(invoice.unit_id, []).append(invoice)
    return grouped


def vacancy_result(
    unit_id: str,
    invoices: list[InvoiceRecord],
    *,
    unit: UnitRecord | None,
    property_record: PropertyRecord | None,
    config: SollIstConfig,
) -> TenantSollIstResult:
    soll_betrag = quantize_cent(sum((invoice.gesamtbetrag for invoice in invoices), ZERO))
    components = {
        "bk": sum((gross(invoice.betriebskosten, invoice.ust_satz_bk) for invoice in invoices), Decimal("0")),
        "hk": sum((gross(invoice.heizungskosten, invoice.ust_satz_hk) for invoice in invoices), Decimal("0")),
    }
    soll = reconcile_components(
        components=components,
        target=soll_betrag,
        residual_bucket="bk",
        context=f"Leerstand {unit_id}",
    )

    haben_betrag = quantize_cent(sum((invoice.paid_amount for invoice in invoices), ZERO))
    if haben_betrag >= soll_betrag - TOLERANCE:
        ist = dict(soll)
    elif soll_betrag <= ZERO or haben_betrag <= ZERO:
        ist = {"bk": ZERO, "hk": ZERO}
    else:
        # owner settlement: proportional, no statutory priority
        ist = allocate_by_weight(total_amount=haben_betrag, weights=soll)

    return TenantSollIstResult(
        tenant_id=f"{config.vacancy_prefix}{unit_id}",
        tenant_name=f"Leerstand ({len(invoices)} Mon.)",
        unit_id=unit_id,
        unit_name=(unit.top_nummer if unit else "") or "-",
        property_id=unit.property_id if unit else "",
        property_name=(property_record.name if property_record else "") or "-",
        soll_bk=soll["bk"],
        soll_hk=soll["hk"],
        soll_miete=ZERO,
        soll_betrag=soll_betrag,
        ist_bk=ist["bk"],
        ist_hk=ist["hk"],
        ist_miete=ZERO,
        haben_betrag=haben_betrag,
        payment_count=0,
        is_vacancy=True,
        soll_source="vacancy",
    )


def compute_vacancies(
    invoices: Iterable[InvoiceRecord],
    *,
    units_by_id: dict[str, UnitRecord],
    properties_by_id: dict[str, PropertyRecord],
    period: Period,
    config: SollIstConfig,
) -> list[TenantSollIstResult]:
    grouped = group_vacancy_invoices(invoices, units_by_id=units_by_id, period=period)
    logger.debug("Leerstand: %s Einheiten mit Vorschreibungen in %s.", len(grouped), period.label)
    results: list[TenantSollIstResult] = []
    for unit_id, unit_invoices in grouped.items():
        unit = units_by_id.get(unit_id)
        property_record = properties_by_id.get(unit.property_id) if unit else None
        results.append(
            vacancy_result(
                unit_id,
                unit_invoices,
                unit=unit,
                property_record=property_record,
                config=config,
            )
        )
    return results
