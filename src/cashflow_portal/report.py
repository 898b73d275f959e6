"""Combined report: latest forecast, saved ratios and the USD balance trend.

The four sources are independent, so they are fetched in parallel and the
report is ready once all of them have settled. A failing source becomes an
error line on the report; the other sections still render.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Any, Callable

from cashflow_portal.api_client import AuthExpired, Outcome, PortalClient, attempt
from cashflow_portal.config import get_config
from cashflow_portal.models import (
    ChartPoint,
    ForecastPoint,
    SavedLiquidityRatio,
    SavedUsdExposure,
    SummaryPoint,
)
from cashflow_portal.pagination import CancelToken, CollectionCancelled
from cashflow_portal.timewindow import filter_trailing_year, latest_date, parse_calendar_date

log = logging.getLogger(__name__)

REPORT_CURRENCY = "CAD"


@dataclass
class SummarySeries:
    """USD summary rows inside the trailing year, plus the chart series."""
    rows: list[SummaryPoint] = field(default_factory=list)  # newest first
    chart: list[ChartPoint] = field(default_factory=list)   # oldest first
    anchor_date: str | None = None


@dataclass
class ReportData:
    forecast: list[ForecastPoint] = field(default_factory=list)
    liquidity: SavedLiquidityRatio | None = None
    exposure: SavedUsdExposure | None = None
    usd: SummarySeries = field(default_factory=SummarySeries)
    errors: list[str] = field(default_factory=list)


def _reporting_date(point: SummaryPoint) -> str | None:
    return point.reporting_date


def summarize_usd(points: list[SummaryPoint]) -> SummarySeries:
    """Trailing-year table rows and closing-balance chart for USD summary data."""
    windowed = filter_trailing_year(points, _reporting_date)
    chart = []
    for p in windowed:
        if p.closing_balance is None:
            continue
        day = parse_calendar_date(p.reporting_date)
        chart.append(ChartPoint(date=day.date().isoformat(), balance=p.closing_balance))
    anchor = latest_date(windowed, _reporting_date)
    return SummarySeries(
        rows=list(reversed(windowed)),
        chart=chart,
        anchor_date=anchor.isoformat() if anchor else None,
    )


def load_usd_summary(
    client: PortalClient,
    page_size: int | None = None,
    cancel: CancelToken | None = None,
) -> SummarySeries:
    points = client.summary_all(page_size or get_config().summary_page_size, cancel=cancel)
    log.info("Collected %d USD summary row(s)", len(points))
    return summarize_usd(points)


# ═══════════════════════════════════════════════════════════════════════════
#  Fan-out / fan-in
# ═══════════════════════════════════════════════════════════════════════════

_SECTION_ERRORS = {
    "forecast": f"Failed to fetch {REPORT_CURRENCY} forecast",
    "liquidity": "Failed to fetch liquidity ratio",
    "exposure": "Failed to fetch USD exposure",
    "usd": "Failed to fetch all USD summary data",
}


def build_report(
    client: PortalClient,
    *,
    page_size: int | None = None,
    cancel: CancelToken | None = None,
) -> ReportData:
    """Fetch every report section concurrently and wait for all of them.

    If any section finds the session expired, the others are cancelled
    (the paginated one stops before its next page) and ``AuthExpired``
    is raised once everything has settled.
    """
    cancel = cancel or CancelToken()
    page_size = page_size or get_config().report_page_size

    tasks: dict[str, tuple[Callable[..., Any], tuple]] = {
        "forecast": (client.latest_forecast, (REPORT_CURRENCY,)),
        "liquidity": (client.latest_liquidity_ratio, ()),
        "exposure": (client.latest_usd_exposure, ()),
        "usd": (load_usd_summary, (client, page_size, cancel)),
    }

    outcomes: dict[str, Outcome] = {}
    expired: AuthExpired | None = None
    cancelled = False
    with ThreadPoolExecutor(max_workers=len(tasks)) as executor:
        futures = {
            executor.submit(attempt, fn, *args): name
            for name, (fn, args) in tasks.items()
        }
        for future in as_completed(futures):
            name = futures[future]
            try:
                outcomes[name] = future.result()
            except AuthExpired as exc:
                cancel.cancel()
                expired = expired or exc
            except CollectionCancelled:
                cancelled = True

    if expired is not None:
        raise expired
    if cancelled:
        raise CollectionCancelled()

    report = ReportData()
    for name in tasks:
        outcome = outcomes[name]
        if not outcome.ok:
            report.errors.append(f"{_SECTION_ERRORS[name]}: {outcome.error}")
            continue
        if name == "forecast":
            report.forecast = outcome.value or []
        elif name == "liquidity":
            report.liquidity = outcome.value
        elif name == "exposure":
            report.exposure = outcome.value
        elif name == "usd":
            report.usd = outcome.value
    if report.errors:
        log.warning("Report built with %d failed section(s)", len(report.errors))
    return report
