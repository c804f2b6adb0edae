"""
Opportunity list: one row per record with its I&O revenue, allocation details
and SAP flag, grouped by client.

Rows built here also back the CSV exports of every page.
"""

from __future__ import annotations

from dataclasses import asdict
from typing import Any, Dict, List, Mapping, Optional

import pandas as pd

from opportunity_core.allocation import clean_value, numeric_column, segment_revenue_series
from opportunity_core.charts import bar_chart
from opportunity_core.filters import DashboardFilters, status_codes
from opportunity_core.schema import (
    SERVICE_LINE_COLUMNS,
    SERVICE_OFFERING_COLUMNS,
    SERVICE_PCT_COLUMNS,
    STATUS_LOST,
    status_label,
)

UNKNOWN_CLIENT = "Unknown Client"

EXPORT_COLUMNS: List[str] = [
    "account",
    "opportunity_id",
    "opportunity_name",
    "status",
    "status_label",
    "revenue",
    "io_revenue",
    "is_allocated",
    "allocated_service_line",
    "allocation_percentage",
    "allocated_revenue",
    "cm1_pct",
    "is_sap_project",
    "lost_comment",
    "service_line_1",
    "service_offering_1",
    "service_offering_pct_1",
    "service_amount_1",
    "service_line_2",
    "service_offering_2",
    "service_offering_pct_2",
    "service_amount_2",
    "service_line_3",
    "service_offering_3",
    "service_offering_pct_3",
    "service_amount_3",
    "manager",
    "partner",
    "em",
    "ep",
    "project_type",
    "creation_date",
    "booking_lost_date",
]


def _line(value: object) -> Optional[str]:
    line = clean_value(value)
    return None if line == "-" else line


def is_sap_project(record: Mapping[str, Any]) -> bool:
    """True when the service lines cover Operations, Technology and Finance or Risk."""
    lines = [line.lower() for line in (_line(record.get(c)) for c in SERVICE_LINE_COLUMNS) if line]
    has_operations = any("operations" in line for line in lines)
    has_technology = any("technology" in line for line in lines)
    has_finance_risk = any("finance" in line or "risk" in line for line in lines)
    return has_operations and has_technology and has_finance_risk


def _number(value: object) -> Optional[float]:
    if value is None or value is pd.NA:
        return None
    try:
        out = float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return None
    return None if pd.isna(out) else out


def _timestamp(value: object) -> Optional[pd.Timestamp]:
    if value is None:
        return None
    ts = pd.to_datetime(value, errors="coerce")
    return None if pd.isna(ts) else ts


def opportunity_rows(records: pd.DataFrame, *, use_net: bool = False) -> List[Dict[str, Any]]:
    """Flat per-record rows, clients in first-seen order and records in input order within a client.

    ``revenue`` is the raw gross (or net) amount and ``io_revenue`` the
    `segment_revenue` of the record. Allocation details are filled only for
    allocated records; ``lost_comment`` only for lost ones.
    """
    if records.empty:
        return []

    revenue_col = "net_revenue" if use_net else "gross_revenue"
    revenue = numeric_column(records, revenue_col).tolist()
    io_revenue = segment_revenue_series(records, use_net).tolist()
    status = status_codes(records).tolist()
    allocated_col = "allocated_net_revenue" if use_net else "allocated_gross_revenue"

    grouped: Dict[str, List[Dict[str, Any]]] = {}
    for i, rec in enumerate(records.to_dict(orient="records")):
        code = None if pd.isna(status[i]) else int(status[i])
        flag = rec.get("is_allocated")
        allocated = flag is not None and not pd.isna(flag) and bool(flag)
        account = clean_value(rec.get("account")) or UNKNOWN_CLIENT
        row: Dict[str, Any] = {
            "account": account,
            "opportunity_id": clean_value(rec.get("opportunity_id")),
            "opportunity_name": clean_value(rec.get("opportunity_name")),
            "status": code,
            "status_label": status_label(code),
            "revenue": revenue[i],
            "io_revenue": io_revenue[i],
            "is_allocated": allocated,
            "allocated_service_line": clean_value(rec.get("allocated_service_line")) if allocated else None,
            "allocation_percentage": _number(rec.get("allocation_percentage")) if allocated else None,
            "allocated_revenue": _number(rec.get(allocated_col)) if allocated else None,
            "cm1_pct": _number(rec.get("cm1_pct")),
            "is_sap_project": is_sap_project(rec),
            "lost_comment": clean_value(rec.get("lost_comment")) if code == STATUS_LOST else None,
        }
        for slot, (line_col, offering_col, pct_col) in enumerate(
            zip(SERVICE_LINE_COLUMNS, SERVICE_OFFERING_COLUMNS, SERVICE_PCT_COLUMNS), start=1
        ):
            line = _line(rec.get(line_col))
            pct = _number(rec.get(pct_col)) if line else None
            row[f"service_line_{slot}"] = line
            row[f"service_offering_{slot}"] = clean_value(rec.get(offering_col)) if line else None
            row[f"service_offering_pct_{slot}"] = pct
            row[f"service_amount_{slot}"] = revenue[i] * (pct or 0.0) / 100.0 if line else None
        for col in ("manager", "partner", "em", "ep", "project_type"):
            row[col] = clean_value(rec.get(col))
        row["creation_date"] = _timestamp(rec.get("creation_date"))
        row["booking_lost_date"] = _timestamp(rec.get("winning_date")) or _timestamp(rec.get("lost_date"))
        grouped.setdefault(account, []).append(row)

    return [row for rows in grouped.values() for row in rows]


def client_groups(rows: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    clients: Dict[str, Dict[str, Any]] = {}
    for row in rows:
        client = clients.setdefault(
            row["account"],
            {"account": row["account"], "count": 0, "revenue": 0.0, "io_revenue": 0.0, "opportunity_ids": []},
        )
        client["count"] += 1
        client["revenue"] += row["revenue"]
        client["io_revenue"] += row["io_revenue"]
        client["opportunity_ids"].append(row["opportunity_id"])
    return list(clients.values())


def list_summary(rows: List[Dict[str, Any]]) -> Dict[str, Any]:
    by_status: Dict[str, int] = {}
    for row in rows:
        by_status[row["status_label"]] = by_status.get(row["status_label"], 0) + 1
    return {
        "total_clients": len({row["account"] for row in rows}),
        "total_opportunities": len(rows),
        "by_status": by_status,
        "total_revenue": float(sum(row["revenue"] for row in rows)),
        "total_io_revenue": float(sum(row["io_revenue"] for row in rows)),
        "sap_projects": sum(1 for row in rows if row["is_sap_project"]),
    }


def export_frame(records: pd.DataFrame, *, use_net: bool = False) -> pd.DataFrame:
    """Client-grouped opportunity rows as a frame with a fixed column order."""
    return pd.DataFrame(opportunity_rows(records, use_net=use_net), columns=EXPORT_COLUMNS)


def compute_opportunities(filters: DashboardFilters, ctx: Dict[str, Any]) -> Dict[str, Any]:
    filtered: pd.DataFrame = ctx.get("filtered", pd.DataFrame())
    rows = opportunity_rows(filtered, use_net=filters.use_net_revenue)
    clients = client_groups(rows)
    top_clients = sorted(clients, key=lambda c: c["io_revenue"], reverse=True)[: filters.top_n]
    return {
        "filters": asdict(filters),
        "revenue_type": "net" if filters.use_net_revenue else "gross",
        "is_filtered": not filters.criteria.is_empty(),
        "summary": list_summary(rows),
        "clients": clients,
        "opportunities": rows,
        "charts": {
            "clients": bar_chart(top_clients, "account", "io_revenue", horizontal=True),
        },
    }
