from __future__ import annotations

from dataclasses import asdict
from typing import Any, Dict, List

import pandas as pd

from opportunity_core.aggregation import group_by, median_value, percent_of, size_distribution
from opportunity_core.allocation import effective_revenue, numeric_column
from opportunity_core.charts import bar_chart, stacked_stage_chart
from opportunity_core.filters import DashboardFilters, pipeline_records, status_codes
from opportunity_core.schema import (
    ALLOCATED_LINE,
    ALLOCATION_PCT,
    IS_ALLOCATED,
    OPEN_STATUSES,
    STAGE_GROUPS,
    status_label,
)

TABLE_COLUMNS = [
    "opportunity_id",
    "opportunity_name",
    "account",
    "status",
    "service_line_1",
    ALLOCATED_LINE,
    ALLOCATION_PCT,
    "manager",
    "creation_date",
]


def status_funnel(records: pd.DataFrame, use_net: bool = False) -> List[Dict[str, Any]]:
    """Count and revenue per status code present, ascending by code."""
    if records.empty:
        return []
    revenue = effective_revenue(records, use_net)
    status = status_codes(records)
    out: List[Dict[str, Any]] = []
    for code in sorted(status.dropna().unique()):
        mask = status == code
        out.append(
            {
                "status": int(code),
                "label": status_label(code),
                "count": int(mask.sum()),
                "revenue": float(revenue[mask].sum()),
            }
        )
    return out


def pipeline_by_status(records: pd.DataFrame, use_net: bool = False) -> List[Dict[str, Any]]:
    """The four open stages in order, zero-filled when a stage has no records."""
    present = {row["status"]: row for row in status_funnel(records, use_net)}
    return [
        present.get(code, {"status": code, "label": status_label(code), "count": 0, "revenue": 0.0})
        for code in OPEN_STATUSES
    ]


def service_line_distribution(records: pd.DataFrame, use_net: bool = False) -> List[Dict[str, Any]]:
    """Count and revenue per primary service line, largest revenue first."""
    if records.empty:
        return []
    revenue = effective_revenue(records, use_net)
    out = [
        {"name": str(line), "count": int(len(group)), "revenue": float(revenue.loc[group.index].sum())}
        for line, group in group_by(records, "service_line_1").items()
    ]
    return sorted(out, key=lambda r: r["revenue"], reverse=True)


def stage_revenue_by_service_line(records: pd.DataFrame, use_net: bool = False) -> List[Dict[str, Any]]:
    if records.empty:
        return []
    revenue = effective_revenue(records, use_net)
    status = status_codes(records)
    out: List[Dict[str, Any]] = []
    for line, group in group_by(records, "service_line_1").items():
        row: Dict[str, Any] = {"service_line": str(line)}
        for stage, codes in STAGE_GROUPS.items():
            idx = group.index[status.loc[group.index].isin(codes)]
            row[stage] = float(revenue.loc[idx].sum())
        row["total"] = sum(row[stage] for stage in STAGE_GROUPS)
        out.append(row)
    return sorted(out, key=lambda r: r["total"], reverse=True)


def _table(records: pd.DataFrame, revenue: pd.Series) -> List[Dict[str, Any]]:
    if records.empty:
        return []
    cols = [c for c in TABLE_COLUMNS if c in records.columns]
    table = records[cols].copy()
    table["status_label"] = table["status"].map(status_label)
    table["revenue"] = revenue
    return table.sort_values("revenue", ascending=False).to_dict(orient="records")


def compute_pipeline(filters: DashboardFilters, ctx: Dict[str, Any]) -> Dict[str, Any]:
    filtered: pd.DataFrame = ctx.get("filtered", pd.DataFrame())
    use_net = filters.use_net_revenue
    pipe = pipeline_records(filtered)

    revenue = effective_revenue(pipe, use_net)
    raw_revenue = numeric_column(pipe, "net_revenue" if use_net else "gross_revenue")
    allocated = pipe[IS_ALLOCATED].fillna(False).astype(bool) if IS_ALLOCATED in pipe.columns else pd.Series(False, index=pipe.index)

    total = float(revenue.sum())
    raw_total = float(raw_revenue.sum())
    count = int(len(pipe))

    funnel = pipeline_by_status(pipe, use_net)
    lines = service_line_distribution(pipe, use_net)
    stages = stage_revenue_by_service_line(pipe, use_net)
    bands = size_distribution(revenue.tolist(), filters.settings.size_band_edges)

    return {
        "filters": asdict(filters),
        "kpis": {
            "count": count,
            "total_revenue": total,
            "unallocated_revenue": raw_total,
            "allocation_share_pct": percent_of(total, raw_total),
            "allocated_count": int(allocated.sum()),
            "average_deal": (total / count) if count else None,
            "median_deal": median_value(revenue.tolist()),
        },
        "funnel": funnel,
        "service_lines": lines,
        "stages_by_service_line": stages,
        "size_distribution": bands,
        "opportunities": _table(pipe, revenue),
        "charts": {
            "funnel": bar_chart(funnel, "label", "revenue", sort_desc=False),
            "service_lines": bar_chart(lines, "name", "revenue", horizontal=True),
            "stages": stacked_stage_chart(stages),
            "size_bands": bar_chart(bands, "name", "value", sort_desc=False),
        },
    }
