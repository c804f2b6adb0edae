from __future__ import annotations

from dataclasses import asdict
from datetime import date
from typing import Any, Dict, Optional, Tuple

import pandas as pd

from opportunity_core.aggregation import cumulative, monthly_yearly_totals, percent_of, to_records, year_over_year
from opportunity_core.allocation import effective_revenue, numeric_column
from opportunity_core.charts import bar_chart, year_series_chart
from opportunity_core.filters import DashboardFilters, booking_records, status_codes
from opportunity_core.metrics_pipeline import service_line_distribution
from opportunity_core.schema import STATUS_BOOKED, STATUS_LOST


def _bound(value: Optional[date]) -> Optional[pd.Timestamp]:
    if value is None:
        return None
    ts = pd.Timestamp(value)
    return None if pd.isna(ts) else ts.normalize()


def in_date_range(records: pd.DataFrame, column: str, start: Optional[date], end: Optional[date]) -> pd.Series:
    """Mask of records whose ``column`` date falls in [start, end] by calendar day.

    Absent dates (including the ``"-"`` placeholder) never match. A missing
    bound leaves that side open.
    """
    if column not in records.columns:
        return pd.Series(False, index=records.index, dtype=bool)
    raw = records[column]
    if not pd.api.types.is_datetime64_any_dtype(raw):
        raw = raw.map(lambda v: None if isinstance(v, str) and v.strip() in ("", "-") else v)
    days = pd.to_datetime(raw, errors="coerce", format="mixed").dt.normalize()
    mask = days.notna()
    lo, hi = _bound(start), _bound(end)
    if lo is not None:
        mask &= days >= lo
    if hi is not None:
        mask &= days <= hi
    return mask.fillna(False).astype(bool)


def new_opportunities(records: pd.DataFrame, start: Optional[date], end: Optional[date]) -> pd.DataFrame:
    return records[in_date_range(records, "creation_date", start, end)]


def new_wins(records: pd.DataFrame, start: Optional[date], end: Optional[date]) -> pd.DataFrame:
    return records[in_date_range(records, "winning_date", start, end)]


def new_losses(records: pd.DataFrame, start: Optional[date], end: Optional[date]) -> pd.DataFrame:
    return records[in_date_range(records, "lost_date", start, end)]


def default_period(today: Optional[date] = None) -> Tuple[date, date]:
    """First day of the current month through today."""
    today = today or date.today()
    return today.replace(day=1), today


def _by_status(records: pd.DataFrame, code: int) -> pd.DataFrame:
    return records[status_codes(records) == code]


def _year_slice(records: pd.DataFrame, year: Optional[int]) -> pd.DataFrame:
    if year is None or "last_status_change_date" not in records.columns:
        return records.iloc[0:0]
    years = pd.to_datetime(records["last_status_change_date"], errors="coerce").dt.year
    return records[years == year]


def booking_summary(
    filtered: pd.DataFrame,
    full: pd.DataFrame,
    year: Optional[int],
    use_net: bool = False,
) -> Dict[str, Any]:
    """Booked and lost cards for one year with their share of the unfiltered dataset.

    The filtered side uses display (allocated) revenue; the denominator is the
    raw revenue of every record with the same status and year.
    """
    raw_col = "net_revenue" if use_net else "gross_revenue"
    cards: Dict[str, Any] = {"year": year}
    for key, code in (("booked", STATUS_BOOKED), ("lost", STATUS_LOST)):
        part = _year_slice(_by_status(filtered, code), year)
        whole = _year_slice(_by_status(full, code), year)
        revenue = float(effective_revenue(part, use_net).sum())
        whole_revenue = float(numeric_column(whole, raw_col).sum())
        cards[key] = {
            "count": int(len(part)),
            "revenue": revenue,
            "total_count": int(len(whole)),
            "total_revenue": whole_revenue,
            "pct_of_total_revenue": percent_of(revenue, whole_revenue),
            "pct_of_total_count": percent_of(len(part), len(whole)),
        }
    return cards


def _period_block(records: pd.DataFrame, use_net: bool) -> Dict[str, Any]:
    return {
        "count": int(len(records)),
        "revenue": float(effective_revenue(records, use_net).sum()),
        "records": to_records(records),
    }


def compute_bookings(filters: DashboardFilters, ctx: Dict[str, Any]) -> Dict[str, Any]:
    filtered: pd.DataFrame = ctx.get("filtered", pd.DataFrame())
    full: pd.DataFrame = ctx.get("records", pd.DataFrame())
    use_net = filters.use_net_revenue
    value_col = "net_revenue" if use_net else "gross_revenue"

    closed = booking_records(filtered)
    booked = _by_status(closed, STATUS_BOOKED)
    lost = _by_status(closed, STATUS_LOST)

    monthly = monthly_yearly_totals(booked, "last_status_change_date", value_col)
    yoy = year_over_year(monthly)
    years = sorted({str(b["year"]) for b in monthly})
    cum = cumulative(yoy, years)

    summary_year = filters.summary_year
    if summary_year is None:
        known = ctx.get("years") or []
        summary_year = int(known[-1]) if known else None

    start, end = filters.period_start, filters.period_end
    if start is None and end is None:
        start, end = default_period()

    lines = service_line_distribution(booked, use_net)
    return {
        "filters": asdict(filters),
        "kpis": {
            "booked_count": int(len(booked)),
            "booked_revenue": float(effective_revenue(booked, use_net).sum()),
            "lost_count": int(len(lost)),
            "lost_revenue": float(effective_revenue(lost, use_net).sum()),
        },
        "summary": booking_summary(filtered, full, summary_year, use_net),
        "years": years,
        "monthly": monthly,
        "year_over_year": yoy,
        "cumulative": cum,
        "service_lines": lines,
        "period": {
            "start": start,
            "end": end,
            "new_opportunities": _period_block(new_opportunities(filtered, start, end), use_net),
            "new_wins": _period_block(new_wins(filtered, start, end), use_net),
            "new_losses": _period_block(new_losses(filtered, start, end), use_net),
        },
        "charts": {
            "year_over_year": year_series_chart(yoy, years),
            "cumulative": year_series_chart(cum, years, suffix="_cumulative", mark="line"),
            "service_lines": bar_chart(lines, "name", "revenue", horizontal=True),
        },
    }
