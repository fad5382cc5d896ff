from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable, Mapping

from ..conf import TOLERANCE, gross_factor
from ..records import InvoiceRecord, TenantRecord
from .money import ZERO, allocate_by_weight, correct_rounding, quantize_cent
from .period_filter import Period

logger = logging.getLogger(__name__)

BUCKETS = ("bk", "hk", "miete")
SOURCE_INVOICES = "invoices"
SOURCE_FALLBACK = "fallback"


@dataclass(frozen=True, slots=True)
class SollBreakdown:
    bk: Decimal
    hk: Decimal
    miete: Decimal
    betrag: Decimal
    source: str = SOURCE_INVOICES
    invoice_count: int = 0


def gross(net: Decimal, ust_percent: Decimal) -> Decimal:
    return net * (Decimal("1") + ust_percent / Decimal("100"))


def gross_components(invoices: Iterable[InvoiceRecord]) -> dict[str, Decimal]:
    components = {bucket: Decimal("0") for bucket in BUCKETS}
    for invoice in invoices:
        components["bk"] += gross(invoice.betriebskosten, invoice.ust_satz_bk)
        components["hk"] += gross(invoice.heizungskosten, invoice.ust_satz_hk)
        components["miete"] += gross(invoice.grundmiete, invoice.ust_satz_miete)
    return components


def reconcile_components(
    *,
    components: Mapping[str, Decimal],
    target: Decimal,
    residual_bucket: str,
    context: str = "",
) -> dict[str, Decimal]:
    """Bringt die Brutto-Komponenten centgenau auf den fakturierten Gesamtbetrag.

    Ist die Komponentensumme positiv und weicht um mehr als einen Cent ab, werden alle
    Komponenten mit ``target / summe`` skaliert. Danach wird auf Cent gerundet
    und die Rundungsdifferenz nach größtem Rest verteilt, der Gesamtbetrag
    selbst wird nie verändert.
    """
    target = quantize_cent(target)
    component_sum = sum(components.values(), Decimal("0"))

    if component_sum <= ZERO:
        # no scaling for credit notes or missing breakdowns, the difference goes to one bucket
        result = {bucket: quantize_cent(value) for bucket, value in components.items()}
        others = sum((value for bucket, value in result.items() if bucket != residual_bucket), ZERO)
        residual = target - others
        if residual != result[residual_bucket]:
            logger.warning(
                "Keine positive Komponentenaufteilung für %s (Summe %s), Differenz zu %s wird %s zugeordnet.",
                context or "Vorschreibung",
                quantize_cent(component_sum),
                target,
                residual_bucket.upper(),
            )
        result[residual_bucket] = residual
        return result

    if (component_sum - target).copy_abs() > TOLERANCE:
        logger.info(
            "SOLL-Abstimmung %s: Komponenten %s, Gesamtbetrag %s, Faktor %s.",
            context or "Vorschreibung",
            quantize_cent(component_sum),
            target,
            (target / component_sum).quantize(Decimal("0.000001")),
        )
        return allocate_by_weight(total_amount=target, weights=components)

    return correct_rounding(total_amount=target, raw_amounts=components)


def invoice_soll(
    invoices: list[InvoiceRecord],
    *,
    context: str = "",
) -> SollBreakdown:
    soll_betrag = sum((invoice.gesamtbetrag for invoice in invoices), ZERO)
    reconciled = reconcile_components(
        components=gross_components(invoices),
        target=soll_betrag,
        residual_bucket="miete",
        context=context,
    )
    return SollBreakdown(
        bk=reconciled["bk"],
        hk=reconciled["hk"],
        miete=reconciled["miete"],
        betrag=quantize_cent(soll_betrag),
        source=SOURCE_INVOICES,
        invoice_count=len(invoices),
    )


def fallback_soll(
    tenant: TenantRecord,
    *,
    period: Period,
) -> SollBreakdown:
    months = Decimal(period.month_count)
    soll_miete = quantize_cent(tenant.grundmiete * months * gross_factor("miete"))
    soll_bk = quantize_cent(tenant.bk_vorschuss * months * gross_factor("bk"))
    soll_hk = quantize_cent(tenant.hk_vorschuss * months * gross_factor("hk"))
    return SollBreakdown(
        bk=soll_bk,
        hk=soll_hk,
        miete=soll_miete,
        betrag=soll_bk + soll_hk + soll_miete,
        source=SOURCE_FALLBACK,
    )


def compute_tenant_soll(
    tenant: TenantRecord,
    invoices: Iterable[InvoiceRecord],
    *,
    period: Period,
) -> SollBreakdown:
    period_invoices = [
        invoice
        for invoice in invoices
        if not invoice.is_vacancy and period.contains_month(invoice.year, invoice.month)
    ]
    if period_invoices:
        return invoice_soll(period_invoices, context=f"Mieter {tenant.id}")
    return fallback_soll(tenant, period=period)
