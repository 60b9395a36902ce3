"""Chart and KPI aggregation over an in-memory transaction list.

All functions are pure: they read the rows they are given and never touch the
store or mutate their input. Money is rounded to whole units here, once, so the
same input always serialises to the same output.
"""

from __future__ import annotations

import calendar
import logging
import math
from dataclasses import dataclass, field
from typing import Callable, Hashable, Iterable, Optional, Sequence

from categories import resolve_category
from periods import DateRange
from schemas import (
    AggregatedData,
    CashFlowDatum,
    CategoryDatum,
    KpiMetrics,
    MonthComparison,
    MonthlyDatum,
    TransactionRecord,
)

logger = logging.getLogger(__name__)

TOP_CATEGORY_COUNT = 6
MONTHLY_WINDOW = 12
COMPARISON_WINDOW = 6


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def month_key(day: str) -> str:
    return day[:7]


def month_label(key: str) -> str:
    return calendar.month_abbr[int(key[5:7])]


def filter_by_date_range(
    transactions: Iterable[TransactionRecord], date_range: DateRange
) -> list[TransactionRecord]:
    start, end = date_range.key
    return [txn for txn in transactions if start <= txn.date <= end]


def filter_by_year(
    transactions: Iterable[TransactionRecord], year: int
) -> list[TransactionRecord]:
    start, end = f"{year:04d}-01-01", f"{year:04d}-12-31"
    return [txn for txn in transactions if start <= txn.date <= end]


def _monthly_totals(
    transactions: Iterable[TransactionRecord],
) -> dict[str, tuple[float, float]]:
    buckets: dict[str, list[float]] = {}
    for txn in transactions:
        amount = txn.signed_amount
        if not txn.date:
            continue
        bucket = buckets.setdefault(month_key(txn.date), [0.0, 0.0])
        if amount < 0:
            bucket[0] += abs(amount)
        elif amount > 0:
            bucket[1] += amount
    return {key: (values[0], values[1]) for key, values in buckets.items()}


def monthly_series(
    transactions: Iterable[TransactionRecord], *, window: int = MONTHLY_WINDOW
) -> list[MonthlyDatum]:
    totals = _monthly_totals(transactions)
    keys = sorted(totals)[-window:] if window else sorted(totals)
    series = []
    for key in keys:
        revenue, expenses = totals[key]
        series.append(
            MonthlyDatum(
                period=key,
                month=month_label(key),
                revenue=round_half_up(revenue),
                expenses=round_half_up(expenses),
                profit=round_half_up(revenue - expenses),
            )
        )
    return series


def category_breakdown(
    transactions: Iterable[TransactionRecord], *, limit: int = TOP_CATEGORY_COUNT
) -> list[CategoryDatum]:
    totals: dict[str, float] = {}
    for txn in transactions:
        amount = txn.signed_amount
        if amount <= 0:
            continue
        category = resolve_category(txn)
        totals[category] = totals.get(category, 0.0) + amount

    top = sorted(totals.items(), key=lambda item: item[1], reverse=True)[:limit]
    # percentages are relative to the displayed rows, not to every expense
    top_total = sum(amount for _, amount in top)
    return [
        CategoryDatum(
            category=category,
            amount=round_half_up(amount),
            percentage=round_half_up(amount / top_total * 100) if top_total else 0,
        )
        for category, amount in top
    ]


def cash_flow_series(monthly: Sequence[MonthlyDatum]) -> list[CashFlowDatum]:
    return [
        CashFlowDatum(
            period=m.period,
            month=m.month,
            inflow=m.revenue,
            outflow=m.expenses,
            net=m.profit,
        )
        for m in monthly
    ]


def kpi_metrics(transactions: Sequence[TransactionRecord]) -> KpiMetrics:
    revenue = 0.0
    expenses = 0.0
    gross = 0.0
    for txn in transactions:
        amount = txn.signed_amount
        gross += abs(amount)
        if amount < 0:
            revenue += abs(amount)
        elif amount > 0:
            expenses += amount
    count = len(transactions)
    return KpiMetrics(
        total_revenue=round_half_up(revenue),
        total_expenses=round_half_up(expenses),
        net_profit=round_half_up(revenue - expenses),
        transaction_count=count,
        avg_transaction_size=round_half_up(gross / count) if count else 0,
    )


def profit_margin(kpis: KpiMetrics) -> float:
    if kpis.total_revenue <= 0:
        return 0.0
    return round_half_up(kpis.net_profit / kpis.total_revenue * 1000) / 10


def _percent_change(current: float, previous: float) -> float:
    if not previous:
        return 0.0
    return round_half_up((current - previous) / abs(previous) * 1000) / 10


def month_over_month(
    monthly: Sequence[MonthlyDatum], *, window: int = COMPARISON_WINDOW
) -> list[MonthComparison]:
    recent = list(monthly)[-window:]
    rows = []
    for index, item in enumerate(recent):
        prev = recent[index - 1] if index > 0 else None
        rows.append(
            MonthComparison(
                period=item.period,
                month=item.month,
                revenue=item.revenue,
                expenses=item.expenses,
                profit=item.profit,
                revenue_change=_percent_change(item.revenue, prev.revenue)
                if prev
                else 0.0,
                expenses_change=_percent_change(item.expenses, prev.expenses)
                if prev
                else 0.0,
                profit_change=_percent_change(item.profit, prev.profit)
                if prev
                else 0.0,
            )
        )
    return rows


def aggregate(transactions: Sequence[TransactionRecord]) -> AggregatedData:
    monthly = monthly_series(transactions)
    return AggregatedData(
        monthly_revenue=monthly,
        expenses_by_category=category_breakdown(transactions),
        cash_flow=cash_flow_series(monthly),
        kpi_metrics=kpi_metrics(transactions),
    )


@dataclass
class PanelResult:
    name: str
    data: object = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


def run_panel(name: str, build: Callable[[], object]) -> PanelResult:
    """Compute one dashboard panel; a failure stays inside that panel."""
    try:
        return PanelResult(name=name, data=build())
    except Exception:
        logger.exception(f"panel_failed: panel={name}")
        return PanelResult(name=name, error=f"Unable to load {name.replace('_', ' ')}")


@dataclass
class DashboardRanges:
    kpis: Optional[DateRange] = None
    income_expenses: Optional[DateRange] = None
    categories: Optional[DateRange] = None
    comparison_year: Optional[int] = None


def build_dashboard(
    transactions: Sequence[TransactionRecord],
    ranges: Optional[DashboardRanges] = None,
) -> dict[str, PanelResult]:
    """Each panel can narrow the shared list to its own range."""
    ranges = ranges or DashboardRanges()

    def scoped(date_range: Optional[DateRange]) -> list[TransactionRecord]:
        if date_range is None:
            return list(transactions)
        return filter_by_date_range(transactions, date_range)

    def kpis_panel() -> dict[str, object]:
        kpis = kpi_metrics(scoped(ranges.kpis))
        return {"kpis": kpis, "profit_margin": profit_margin(kpis)}

    def comparison_panel() -> list[MonthComparison]:
        if ranges.comparison_year is None:
            rows = list(transactions)
        else:
            rows = filter_by_year(transactions, ranges.comparison_year)
        return month_over_month(monthly_series(rows))

    panels = [
        run_panel("kpis", kpis_panel),
        run_panel(
            "monthly_revenue", lambda: monthly_series(scoped(ranges.income_expenses))
        ),
        run_panel(
            "cash_flow",
            lambda: cash_flow_series(monthly_series(scoped(ranges.income_expenses))),
        ),
        run_panel(
            "expenses_by_category",
            lambda: category_breakdown(scoped(ranges.categories)),
        ),
        run_panel("month_over_month", comparison_panel),
    ]
    return {panel.name: panel for panel in panels}


@dataclass
class AggregationCache:
    """Recompute only when the ledger version or the range changes."""

    _entries: dict[tuple[int, Hashable], AggregatedData] = field(default_factory=dict)

    def get(
        self,
        version: int,
        transactions: Sequence[TransactionRecord],
        date_range: Optional[DateRange] = None,
    ) -> AggregatedData:
        cache_key = (version, date_range.key if date_range else None)
        cached = self._entries.get(cache_key)
        if cached is not None:
            return cached
        rows = (
            filter_by_date_range(transactions, date_range)
            if date_range
            else list(transactions)
        )
        result = aggregate(rows)
        # older versions can never be asked for again
        self._entries = {
            key: value for key, value in self._entries.items() if key[0] == version
        }
        self._entries[cache_key] = result
        return result
