from __future__ import annotations

from dataclasses import asdict
from typing import Any, Dict, List, Optional

import pandas as pd

from opportunity_core.aggregation import percent_of
from opportunity_core.allocation import clean_value, numeric_column, segment_revenue_series
from opportunity_core.charts import bar_chart
from opportunity_core.filters import DashboardFilters, status_codes
from opportunity_core.metrics_bookings import in_date_range
from opportunity_core.schema import SPECIAL_SEGMENT_CODES, STATUS_BOOKED

UNKNOWN_ACCOUNT = "Unknown"


def _booking_dates(records: pd.DataFrame) -> pd.Series:
    """Last status change, falling back to winning then creation date."""
    out = pd.Series(pd.NaT, index=records.index, dtype="datetime64[ns]")
    for col in ("last_status_change_date", "winning_date", "creation_date"):
        if col in records.columns:
            out = out.fillna(pd.to_datetime(records[col], errors="coerce"))
    return out


def _special(records: pd.DataFrame) -> pd.Series:
    if "sub_segment_code" not in records.columns:
        return pd.Series(False, index=records.index, dtype=bool)
    return records["sub_segment_code"].map(lambda v: clean_value(v) in SPECIAL_SEGMENT_CODES).astype(bool)


def account_rankings(
    booked: pd.DataFrame,
    *,
    use_net: bool = False,
    target: float = 1_000_000.0,
    top_n: Optional[int] = 10,
) -> Dict[str, Any]:
    """Rank accounts by segment revenue over already-selected booked records.

    ``percent_of_total`` compares an account's booking amount with every booked
    record passed in, not just the ranked ones.
    """
    booking = numeric_column(booked, "net_revenue" if use_net else "gross_revenue")
    calculated = segment_revenue_series(booked, use_net)
    special = _special(booked)
    dates = _booking_dates(booked)
    accounts = (
        booked["account"].map(lambda v: clean_value(v) or UNKNOWN_ACCOUNT)
        if "account" in booked.columns
        else pd.Series(UNKNOWN_ACCOUNT, index=booked.index)
    )

    total_booking = float(booking.sum())
    rows: List[Dict[str, Any]] = []
    for account, idx in accounts.groupby(accounts, sort=False).groups.items():
        amount = float(booking.loc[idx].sum())
        calc = float(calculated.loc[idx].sum())
        count = int(len(idx))
        lines = []
        if "service_line_1" in booked.columns:
            for v in booked.loc[idx, "service_line_1"].tolist():
                line = clean_value(v)
                if line and line not in lines:
                    lines.append(line)
        latest = dates.loc[idx].max()
        rows.append(
            {
                "account": str(account),
                "booking_amount": amount,
                "calculated_amount": calc,
                "opportunity_count": count,
                "average_booking_size": amount / count if count else 0.0,
                "service_lines": lines,
                "has_special_segment": bool(special.loc[idx].any()),
                "latest_booking_date": None if pd.isna(latest) else latest,
                "percent_of_total": percent_of(amount, total_booking) or 0.0,
                "target_progress_pct": min(calc / target * 100.0, 100.0) if target > 0 else 0.0,
            }
        )
    rows.sort(key=lambda r: r["calculated_amount"], reverse=True)
    ranked = rows[:top_n] if top_n else rows

    return {
        "accounts": ranked,
        "totals": {
            "all_booking": total_booking,
            "all_calculated": float(calculated.sum()),
            "ranked_booking": sum(r["booking_amount"] for r in ranked),
            "ranked_calculated": sum(r["calculated_amount"] for r in ranked),
            "special_booking": float(booking[special].sum()),
            "special_calculated": float(calculated[special].sum()),
            "accounts": len(rows),
        },
    }


def compute_rankings(filters: DashboardFilters, ctx: Dict[str, Any]) -> Dict[str, Any]:
    filtered: pd.DataFrame = ctx.get("filtered", pd.DataFrame())
    booked = filtered[status_codes(filtered) == STATUS_BOOKED]
    if filters.period_start is not None or filters.period_end is not None:
        booked = booked[in_date_range(booked, "last_status_change_date", filters.period_start, filters.period_end)]

    result = account_rankings(
        booked,
        use_net=filters.use_net_revenue,
        target=filters.settings.booking_target,
        top_n=filters.top_n,
    )
    return {
        "filters": asdict(filters),
        "period": {"start": filters.period_start, "end": filters.period_end},
        "target": filters.settings.booking_target,
        **result,
        "charts": {
            "calculated": bar_chart(result["accounts"], "account", "calculated_amount", horizontal=True),
        },
    }
