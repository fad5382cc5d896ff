from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Iterable, Mapping

from django.utils.dateparse import parse_date, parse_datetime

from .conf import DEFAULT_UST_PERCENT
from .services.money import ZERO, to_decimal, to_money

TRUE_STRINGS = frozenset({"true", "1", "t", "yes", "ja"})


class InvalidRecordError(ValueError):
    """Eingangsdatensatz ohne Pflicht-Identität (z. B. fehlende ``id``)."""


def _pick(raw: Mapping[str, Any], *names: str) -> Any:
    # first key that is present and not None; 0 and "" count as present
    for name in names:
        if name in raw and raw[name] is not None:
            return raw[name]
    return None


def _pick_truthy(raw: Mapping[str, Any], *names: str) -> Any:
    for name in names:
        value = raw.get(name)
        if value:
            return value
    return None


def _as_id(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


def _required_id(raw: Mapping[str, Any], kind: str) -> str:
    record_id = _as_id(raw.get("id"))
    if not record_id:
        raise InvalidRecordError(f"{kind} ohne id: {dict(raw)!r}")
    return record_id


def _as_date(value: Any) -> date | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value).strip()
    try:
        parsed = parse_date(text[:10])
    except ValueError:
        parsed = None
    if parsed is not None:
        return parsed
    try:
        parsed_dt = parse_datetime(text)
    except ValueError:
        return None
    return parsed_dt.date() if parsed_dt else None


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in TRUE_STRINGS
    return bool(value)


def _as_int(value: Any) -> int:
    parsed = to_decimal(value, None)
    if parsed is None or parsed != parsed.to_integral_value():
        return 0
    return int(parsed)


def _as_rate(value: Any, default: Decimal) -> Decimal:
    parsed = to_decimal(value, None)
    return default if parsed is None else parsed


@dataclass(frozen=True, slots=True)
class PropertyRecord:
    id: str
    name: str = ""

    @classmethod
    def from_raw(cls, raw: Mapping[str, Any] | "PropertyRecord") -> "PropertyRecord":
        if isinstance(raw, cls):
            return raw
        return cls(
            id=_required_id(raw, "Liegenschaft"),
            name=str(_pick(raw, "name", "bezeichnung") or "").strip(),
        )


@dataclass(frozen=True, slots=True)
class UnitRecord:
    id: str
    property_id: str = ""
    top_nummer: str = ""

    @classmethod
    def from_raw(cls, raw: Mapping[str, Any] | "UnitRecord") -> "UnitRecord":
        if isinstance(raw, cls):
            return raw
        return cls(
            id=_required_id(raw, "Einheit"),
            property_id=_as_id(_pick_truthy(raw, "propertyId", "property_id")),
            top_nummer=str(_pick_truthy(raw, "top_nummer", "topNummer", "name") or "").strip(),
        )


@dataclass(frozen=True, slots=True)
class TenantRecord:
    id: str
    unit_id: str = ""
    first_name: str = ""
    last_name: str = ""
    grundmiete: Decimal = ZERO
    bk_vorschuss: Decimal = ZERO
    hk_vorschuss: Decimal = ZERO
    mietbeginn: date | None = None
    mietende: date | None = None
    deleted_at: date | None = None
    is_deleted: bool = False

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip() or "N/A"

    @classmethod
    def from_raw(cls, raw: Mapping[str, Any] | "TenantRecord") -> "TenantRecord":
        if isinstance(raw, cls):
            return raw
        deleted_raw = _pick_truthy(raw, "deletedAt", "deleted_at")
        return cls(
            id=_required_id(raw, "Mieter"),
            unit_id=_as_id(_pick_truthy(raw, "unitId", "unit_id")),
            first_name=str(_pick_truthy(raw, "vorname", "firstName", "first_name") or "").strip(),
            last_name=str(_pick_truthy(raw, "nachname", "lastName", "last_name") or "").strip(),
            grundmiete=to_money(_pick_truthy(raw, "grundmiete")),
            bk_vorschuss=to_money(
                _pick_truthy(
                    raw,
                    "betriebskostenVorschuss",
                    "betriebskosten_vorschuss",
                    "bkVorschuss",
                    "bk_vorschuss",
                )
            ),
            hk_vorschuss=to_money(
                _pick_truthy(
                    raw,
                    "heizungskostenVorschuss",
                    "heizungskosten_vorschuss",
                    "heizkostenVorschuss",
                    "hkVorschuss",
                    "hk_vorschuss",
                )
            ),
            mietbeginn=_as_date(_pick(raw, "mietbeginn")),
            mietende=_as_date(_pick(raw, "mietende")),
            deleted_at=_as_date(deleted_raw),
            is_deleted=bool(deleted_raw),
        )


@dataclass(frozen=True, slots=True)
class InvoiceRecord:
    id: str
    tenant_id: str = ""
    unit_id: str = ""
    year: int = 0
    month: int = 0
    grundmiete: Decimal = ZERO
    betriebskosten: Decimal = ZERO
    heizungskosten: Decimal = ZERO
    ust_satz_bk: Decimal = DEFAULT_UST_PERCENT["bk"]
    ust_satz_hk: Decimal = DEFAULT_UST_PERCENT["hk"]
    ust_satz_miete: Decimal = DEFAULT_UST_PERCENT["miete"]
    gesamtbetrag: Decimal = ZERO
    is_vacancy: bool = False
    paid_amount: Decimal = ZERO

    @classmethod
    def from_raw(
        cls,
        raw: Mapping[str, Any] | "InvoiceRecord",
    ) -> "InvoiceRecord":
        if isinstance(raw, cls):
            return raw
        return cls(
            id=_required_id(raw, "Vorschreibung"),
            tenant_id=_as_id(_pick_truthy(raw, "tenantId", "tenant_id")),
            unit_id=_as_id(_pick_truthy(raw, "unitId", "unit_id")),
            year=_as_int(raw.get("year")),
            month=_as_int(raw.get("month")),
            grundmiete=to_money(raw.get("grundmiete")),
            betriebskosten=to_money(raw.get("betriebskosten")),
            heizungskosten=to_money(raw.get("heizungskosten")),
            ust_satz_bk=_as_rate(_pick(raw, "ustSatzBk", "ust_satz_bk"), DEFAULT_UST_PERCENT["bk"]),
            ust_satz_hk=_as_rate(_pick(raw, "ustSatzHeizung", "ust_satz_heizung"), DEFAULT_UST_PERCENT["hk"]),
            ust_satz_miete=_as_rate(_pick(raw, "ustSatzMiete", "ust_satz_miete"), DEFAULT_UST_PERCENT["miete"]),
            gesamtbetrag=to_money(raw.get("gesamtbetrag")),
            is_vacancy=_as_bool(_pick_truthy(raw, "isVacancy", "is_vacancy")),
            paid_amount=to_money(_pick(raw, "paidAmount", "paid_amount")),
        )


@dataclass(frozen=True, slots=True)
class PaymentRecord:
    id: str
    tenant_id: str = ""
    amount: Decimal = ZERO
    payment_date: date | None = None

    @classmethod
    def from_raw(cls, raw: Mapping[str, Any] | "PaymentRecord") -> "PaymentRecord":
        if isinstance(raw, cls):
            return raw
        return cls(
            id=_required_id(raw, "Zahlung"),
            tenant_id=_as_id(_pick_truthy(raw, "tenantId", "tenant_id")),
            amount=to_money(_pick_truthy(raw, "amount", "betrag")),
            payment_date=_as_date(
                _pick_truthy(raw, "paymentDate", "payment_date", "buchungsdatum", "buchungsDatum")
            ),
        )


@dataclass(frozen=True, slots=True)
class SollIstInput:
    tenants: tuple[TenantRecord, ...]
    units: tuple[UnitRecord, ...]
    properties: tuple[PropertyRecord, ...]
    invoices: tuple[InvoiceRecord, ...]
    payments: tuple[PaymentRecord, ...]


def normalize_collections(
    *,
    tenants: Iterable[Mapping[str, Any] | TenantRecord] = (),
    units: Iterable[Mapping[str, Any] | UnitRecord] = (),
    properties: Iterable[Mapping[str, Any] | PropertyRecord] = (),
    invoices: Iterable[Mapping[str, Any] | InvoiceRecord] = (),
    payments: Iterable[Mapping[str, Any] | PaymentRecord] = (),
) -> SollIstInput:
    return SollIstInput(
        tenants=tuple(TenantRecord.from_raw(row) for row in tenants),
        units=tuple(UnitRecord.from_raw(row) for row in units),
        properties=tuple(PropertyRecord.from_raw(row) for row in properties),
        invoices=tuple(InvoiceRecord.from_raw(row) for row in invoices),
        payments=tuple(PaymentRecord.from_raw(row) for row in payments),
    )
