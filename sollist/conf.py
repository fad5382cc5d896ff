from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

from django.conf import settings

# Vertragswerte, nicht über settings konfigurierbar.
TOLERANCE = Decimal("0.01")
DEFAULT_UST_PERCENT = {
    "bk": Decimal("10.00"),
    "hk": Decimal("20.00"),
    "miete": Decimal("10.00"),
}
DEFAULT_VACANCY_PREFIX = "vacancy-"


def gross_factor(bucket: str) -> Decimal:
    return Decimal("1") + DEFAULT_UST_PERCENT[bucket] / Decimal("100")


@dataclass(frozen=True, slots=True)
class SollIstConfig:
    vacancy_prefix: str = DEFAULT_VACANCY_PREFIX

    @classmethod
    def from_settings(cls) -> "SollIstConfig":
        prefix = str(getattr(settings, "SOLL_IST_VACANCY_PREFIX", DEFAULT_VACANCY_PREFIX) or "").strip()
        return cls(vacancy_prefix=prefix or DEFAULT_VACANCY_PREFIX)
