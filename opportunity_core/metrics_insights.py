from __future__ import annotations

from dataclasses import asdict
from datetime import datetime, timedelta
from typing import Any, Dict, Optional, Tuple

import pandas as pd

from opportunity_core.allocation import segment_revenue_series
from opportunity_core.filters import DashboardFilters, status_codes
from opportunity_core.schema import STATUS_FINAL_NEGOTIATION, STATUS_PROPOSAL_DELIVERED, status_label


def change_pct(current: int, previous: int) -> float:
    """Period-over-period change; 100 when starting from nothing, 0 when both are empty."""
    if previous > 0:
        return (current - previous) / previous * 100.0
    return 100.0 if current > 0 else 0.0


def _windows(now: pd.Timestamp, days: int) -> Tuple[pd.Timestamp, pd.Timestamp, pd.Timestamp]:
    span = timedelta(days=days)
    return now - 2 * span, now - span, now


def _split(dates: pd.Series, now: pd.Timestamp, days: int) -> Tuple[pd.Series, pd.Series]:
    """(current, previous) masks: [now - days, now] and [now - 2*days, now - days)."""
    before, start, end = _windows(now, days)
    current = (dates >= start) & (dates <= end)
    previous = (dates >= before) & (dates < start)
    return current.fillna(False).astype(bool), previous.fillna(False).astype(bool)


def _dates(records: pd.DataFrame, column: str) -> pd.Series:
    if column not in records.columns:
        return pd.Series(pd.NaT, index=records.index, dtype="datetime64[ns]")
    return pd.to_datetime(records[column], errors="coerce")


def _block(mask_now: pd.Series, mask_prev: pd.Series, revenue: pd.Series) -> Dict[str, Any]:
    current, previous = int(mask_now.sum()), int(mask_prev.sum())
    return {
        "count": current,
        "previous_count": previous,
        "revenue": float(revenue[mask_now].sum()),
        "change_pct": change_pct(current, previous),
    }


def pipeline_insights(
    records: pd.DataFrame,
    *,
    days: int = 30,
    now: Optional[datetime] = None,
    use_net: bool = False,
) -> Dict[str, Any]:
    """New opportunities and moves into stages 6 and 11 over the last ``days`` vs the window before.

    Revenue sums `segment_revenue`, so the service-line selection narrows which
    records count but never scales their amounts.
    """
    now_ts = pd.Timestamp(now) if now is not None else pd.Timestamp.now()
    revenue = segment_revenue_series(records, use_net)
    status = status_codes(records)

    created_now, created_prev = _split(_dates(records, "creation_date"), now_ts, days)
    moved_now, moved_prev = _split(_dates(records, "last_status_change_date"), now_ts, days)

    out: Dict[str, Any] = {
        "as_of": now_ts,
        "window_days": days,
        "new_opportunities": _block(created_now, created_prev, revenue),
    }
    for key, code in (("moved_to_6", STATUS_PROPOSAL_DELIVERED), ("moved_to_11", STATUS_FINAL_NEGOTIATION)):
        in_stage = (status == code).fillna(False)
        block = _block(moved_now & in_stage, moved_prev & in_stage, revenue)
        block["label"] = status_label(code)
        out[key] = block
    return out


def compute_insights(filters: DashboardFilters, ctx: Dict[str, Any], now: Optional[datetime] = None) -> Dict[str, Any]:
    filtered: pd.DataFrame = ctx.get("filtered", pd.DataFrame())
    return {
        "filters": asdict(filters),
        **pipeline_insights(
            filtered,
            days=filters.settings.insight_window_days,
            now=now,
            use_net=filters.use_net_revenue,
        ),
    }
