"""Liquidity ratio and USD exposure formulas.

The backend computes the same figures when a form is saved; this module is
the one place the portal computes them, for the instant preview and for the
values it shows after submit.

  Statutory = (1010 + 1040 + 1060 + 1078 + 1079) / (2180 + 2050 + 2255 + 2295)
  Core      = (1100 − 2050) / 2180
  Total     = 1100 / 2180
  USD exposure = |totalAssets| − |totalLiabilities| − |totalCapital|

Missing codes count as 0. A ratio whose denominator is exactly 0 is "N/A";
a zero numerator over a non-zero denominator is a real 0.00%.
"""

from __future__ import annotations

from typing import Mapping

from cashflow_portal.models import ExposurePosition, ExposureResult, RatioResult

NOT_APPLICABLE = "N/A"

STATUTORY_LIQUIDITY_CODES = ("1010", "1040", "1060", "1078", "1079")
DEPOSIT_AND_DEBT_CODES = ("2180", "2050", "2255", "2295")
TOTAL_ASSETS_CODE = "1100"
BORROWINGS_CODE = "2050"
MEMBER_DEPOSITS_CODE = "2180"

Values = Mapping[str, float | None]


def _get(values: Values, code: str) -> float:
    v = values.get(code)
    return float(v) if v is not None else 0.0


def _sum(values: Values, codes: tuple[str, ...]) -> float:
    return sum(_get(values, c) for c in codes)


def _div(a: float, b: float) -> float | None:
    """Division that returns None for a zero divisor."""
    if b == 0:
        return None
    return a / b


def format_percent(ratio: float | None) -> str:
    if ratio is None:
        return NOT_APPLICABLE
    return f"{ratio * 100:.2f}%"


# ═══════════════════════════════════════════════════════════════════════════
#  Liquidity ratios
# ═══════════════════════════════════════════════════════════════════════════

def statutory_ratio_value(values: Values) -> float | None:
    return _div(_sum(values, STATUTORY_LIQUIDITY_CODES), _sum(values, DEPOSIT_AND_DEBT_CODES))


def core_ratio_value(values: Values) -> float | None:
    return _div(
        _get(values, TOTAL_ASSETS_CODE) - _get(values, BORROWINGS_CODE),
        _get(values, MEMBER_DEPOSITS_CODE),
    )


def total_ratio_value(values: Values) -> float | None:
    return _div(_get(values, TOTAL_ASSETS_CODE), _get(values, MEMBER_DEPOSITS_CODE))


def statutory_ratio(values: Values) -> str:
    return format_percent(statutory_ratio_value(values))


def core_ratio(values: Values) -> str:
    return format_percent(core_ratio_value(values))


def total_ratio(values: Values) -> str:
    return format_percent(total_ratio_value(values))


def compute_liquidity_ratios(reporting_date: str, values: Values) -> RatioResult:
    """All three ratios for one reporting date, formatted for display."""
    return RatioResult(
        reporting_date=reporting_date,
        statutory_ratio=statutory_ratio(values),
        core_ratio=core_ratio(values),
        total_ratio=total_ratio(values),
    )


# ═══════════════════════════════════════════════════════════════════════════
#  USD exposure
# ═══════════════════════════════════════════════════════════════════════════

def usd_exposure(values: Values) -> float:
    """Net USD position from the magnitudes of assets, liabilities and capital."""
    return (
        abs(_get(values, "totalAssets"))
        - abs(_get(values, "totalLiabilities"))
        - abs(_get(values, "totalCapital"))
    )


def classify_exposure(exposure: float) -> ExposurePosition:
    if exposure > 0:
        return ExposurePosition.long
    if exposure < 0:
        return ExposurePosition.short
    return ExposurePosition.neutral


def compute_usd_exposure(reporting_date: str, values: Values) -> ExposureResult:
    exposure = usd_exposure(values)
    return ExposureResult(
        reporting_date=reporting_date,
        usd_exposure=exposure,
        position=classify_exposure(exposure),
    )
