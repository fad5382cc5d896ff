from __future__ import annotations

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Mapping

CENT = Decimal("0.01")
RAW = Decimal("0.0000001")
ZERO = Decimal("0.00")
# amounts beyond 10**12 count as corrupt input
MAX_EXPONENT = 12


def quantize_cent(value: Decimal | str | int | None) -> Decimal:
    return Decimal(value or ZERO).quantize(CENT, rounding=ROUND_HALF_UP)


def to_decimal(value: Any, default: Decimal | None = ZERO) -> Decimal | None:
    """Liest einen Betrag tolerant ein; fehlende oder ungültige Werte ergeben ``default``."""
    if value is None or isinstance(value, bool):
        return default
    if isinstance(value, Decimal):
        return value if value.is_finite() and value.adjusted() <= MAX_EXPONENT else default
    if isinstance(value, str):
        value = value.strip()
        if not value:
            return default
    try:
        parsed = Decimal(str(value))
    except (InvalidOperation, TypeError, ValueError):
        return default
    if not parsed.is_finite() or parsed.adjusted() > MAX_EXPONENT:
        return default
    return parsed


def to_money(value: Any) -> Decimal:
    return quantize_cent(to_decimal(value, ZERO))


def correct_rounding(
    *,
    total_amount: Decimal,
    raw_amounts: Mapping[str, Decimal],
) -> dict[str, Decimal]:
    """Rundet auf Cent und verteilt die Rundungsdifferenz nach größtem Rest.

    Die Summe der Ergebnisse entspricht exakt ``total_amount`` (auf Cent).
    Bei gleichem Rest gewinnt die frühere Position, die Reihenfolge ist daher stabil.
    """
    keys = list(raw_amounts)
    if not keys:
        return {}
    raw = {key: Decimal(raw_amounts[key]).quantize(RAW, rounding=ROUND_HALF_UP) for key in keys}
    rounded = {key: quantize_cent(raw[key]) for key in keys}

    target = quantize_cent(total_amount)
    diff = (target - sum(rounded.values(), ZERO)).quantize(CENT)
    if diff != ZERO:
        step = CENT if diff > ZERO else -CENT
        cents_to_allocate = int((diff.copy_abs() / CENT).to_integral_value())
        order = sorted(
            range(len(keys)),
            key=lambda index: raw[keys[index]] - rounded[keys[index]],
            reverse=diff > ZERO,
        )
        for offset in range(cents_to_allocate):
            key = keys[order[offset % len(order)]]
            rounded[key] = (rounded[key] + step).quantize(CENT)
    return rounded


def allocate_by_weight(
    *,
    total_amount: Decimal,
    weights: Mapping[str, Decimal],
) -> dict[str, Decimal]:
    """Verteilt ``total_amount`` proportional zu ``weights`` centgenau."""
    total_weight = sum((Decimal(value) for value in weights.values()), ZERO)
    if total_weight == ZERO:
        return {key: ZERO for key in weights}
    raw_amounts = {
        key: Decimal(total_amount) * Decimal(weight) / total_weight
        for key, weight in weights.items()
    }
    return correct_rounding(total_amount=total_amount, raw_amounts=raw_amounts)
