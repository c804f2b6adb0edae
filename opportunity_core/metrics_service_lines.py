from __future__ import annotations

from dataclasses import asdict
from typing import Any, Dict, List

import pandas as pd

from opportunity_core.aggregation import group_by
from opportunity_core.allocation import effective_revenue
from opportunity_core.charts import bar_chart, treemap_bars
from opportunity_core.filters import DashboardFilters, status_codes
from opportunity_core.schema import STATUS_BOOKED

UNSPECIFIED_OFFERING = "Unspecified"


def service_line_breakdown(records: pd.DataFrame, use_net: bool = False) -> List[Dict[str, Any]]:
    """Per primary service line: revenue, count, average size and the pipeline/booked split."""
    if records.empty:
        return []
    revenue = effective_revenue(records, use_net)
    status = status_codes(records)
    open_mask = (status >= 1) & (status <= 11)
    booked_mask = status == STATUS_BOOKED

    rows: List[Dict[str, Any]] = []
    for line, group in group_by(records, "service_line_1").items():
        idx = group.index
        total = float(revenue.loc[idx].sum())
        count = int(len(group))
        rows.append(
            {
                "service_line": str(line),
                "revenue": total,
                "count": count,
                "average_size": total / count if count else 0.0,
                "pipeline_count": int(open_mask.loc[idx].sum()),
                "pipeline_revenue": float(revenue.loc[idx][open_mask.loc[idx]].sum()),
                "booked_count": int(booked_mask.loc[idx].sum()),
                "booked_revenue": float(revenue.loc[idx][booked_mask.loc[idx]].sum()),
            }
        )
    return sorted(rows, key=lambda r: r["revenue"], reverse=True)


def offering_breakdown(records: pd.DataFrame, use_net: bool = False) -> List[Dict[str, Any]]:
    """Revenue per (service line 1, service offering 1) pair, keyed ``"line - offering"``."""
    if records.empty:
        return []
    revenue = effective_revenue(records, use_net)
    out: Dict[str, Dict[str, Any]] = {}
    for line, group in group_by(records, "service_line_1").items():
        offerings = group["service_offering_1"] if "service_offering_1" in group.columns else pd.Series(None, index=group.index)
        for idx, offering in offerings.items():
            name = offering if isinstance(offering, str) and offering.strip() else UNSPECIFIED_OFFERING
            key = f"{line} - {name}"
            row = out.setdefault(key, {"key": key, "service_line": str(line), "offering": name, "revenue": 0.0, "count": 0})
            row["revenue"] += float(revenue.loc[idx])
            row["count"] += 1
    return sorted(out.values(), key=lambda r: r["revenue"], reverse=True)


def treemap(offerings: List[Dict[str, Any]]) -> Dict[str, Any]:
    """Nested {name, value, children} hierarchy: root -> service line -> offering."""
    lines: Dict[str, Dict[str, Any]] = {}
    for row in offerings:
        node = lines.setdefault(row["service_line"], {"name": row["service_line"], "value": 0.0, "children": []})
        node["value"] += row["revenue"]
        node["children"].append({"name": row["offering"], "value": row["revenue"], "count": row["count"]})
    children = sorted(lines.values(), key=lambda n: n["value"], reverse=True)
    return {"name": "Service Lines", "value": sum(n["value"] for n in children), "children": children}


def compute_service_lines(filters: DashboardFilters, ctx: Dict[str, Any]) -> Dict[str, Any]:
    filtered: pd.DataFrame = ctx.get("filtered", pd.DataFrame())
    use_net = filters.use_net_revenue

    lines = service_line_breakdown(filtered, use_net)
    offerings = offering_breakdown(filtered, use_net)
    return {
        "filters": asdict(filters),
        "kpis": {
            "service_lines": len(lines),
            "total_revenue": sum(r["revenue"] for r in lines),
            "count": sum(r["count"] for r in lines),
        },
        "service_lines": lines,
        "offerings": offerings,
        "treemap": treemap(offerings),
        "charts": {
            "revenue": bar_chart(lines, "service_line", "revenue", horizontal=True),
            "average_size": bar_chart(lines, "service_line", "average_size", horizontal=True),
            "offerings": treemap_bars(offerings),
        },
    }
