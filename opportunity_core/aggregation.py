"""Grouping, summation and time-bucketing primitives shared by every view."""

from __future__ import annotations

import math
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Set, Tuple, Union

import numpy as np
import pandas as pd

from opportunity_core.allocation import value_series

MONTH_LABELS = ["Jan", "Feb", "Mar", "Apr", "May", "Jun", "Jul", "Aug", "Sep", "Oct", "Nov", "Dec"]


def _number_or_zero(value: object) -> float:
    if isinstance(value, (bool, np.bool_)):
        return 0.0
    if isinstance(value, (int, float, np.integer, np.floating)):
        out = float(value)
        return 0.0 if math.isnan(out) else out
    return 0.0


def _is_blank_key(value: object) -> bool:
    if value is None or value is pd.NA:
        return True
    if isinstance(value, float) and math.isnan(value):
        return True
    return isinstance(value, str) and not value.strip()


def _plain(value: object) -> object:
    return value.item() if isinstance(value, np.generic) else value


def to_records(records: pd.DataFrame) -> List[Dict[str, Any]]:
    if records.empty:
        return []
    return records.to_dict(orient="records")


def unique_values(records: pd.DataFrame, column: str) -> Set[object]:
    if column not in records.columns:
        return set()
    return {_plain(v) for v in records[column].tolist() if not _is_blank_key(v)}


def group_by(records: pd.DataFrame, column: str) -> Dict[object, pd.DataFrame]:
    """Groups in first-seen order; records without a key are left out of every group."""
    if column not in records.columns or records.empty:
        return {}
    keep = ~records[column].map(_is_blank_key).astype(bool)
    groups: Dict[object, pd.DataFrame] = {}
    for key, group in records[keep].groupby(column, sort=False):
        groups[_plain(key)] = group
    return groups


def sum_by(records: pd.DataFrame, column_or_fn: Union[str, Callable[[Mapping[str, Any]], object]]) -> float:
    """Sum of a numeric column or of a per-record function; anything non-numeric counts as 0."""
    if callable(column_or_fn):
        return float(sum(_number_or_zero(column_or_fn(r)) for r in to_records(records)))
    if column_or_fn not in records.columns:
        return 0.0
    return float(sum(_number_or_zero(v) for v in records[column_or_fn].tolist()))


def monthly_yearly_totals(
    records: pd.DataFrame,
    date_column: str,
    value_column: str,
    *,
    use_net: bool = False,
) -> List[Dict[str, Any]]:
    """Bucket records by calendar (year, month) of ``date_column``.

    Revenue columns are read through their allocated counterpart on allocated
    records; ``segment_revenue`` applies the sub-segment override rule. Records
    without a date are skipped. Months are 1-12; buckets come back in
    chronological order.
    """
    if records.empty or date_column not in records.columns:
        return []
    dates = pd.to_datetime(records[date_column], errors="coerce")
    values = value_series(records, value_column, use_net=use_net).tolist()
    rows = to_records(records)

    buckets: Dict[Tuple[int, int], Dict[str, Any]] = {}
    for row, dt, value in zip(rows, dates.tolist(), values):
        if dt is None or pd.isna(dt):
            continue
        key = (int(dt.year), int(dt.month))
        bucket = buckets.get(key)
        if bucket is None:
            bucket = {
                "month": key[1],
                "year": key[0],
                "month_label": MONTH_LABELS[key[1] - 1],
                "total": 0.0,
                "count": 0,
                "records": [],
            }
            buckets[key] = bucket
        bucket["total"] += _number_or_zero(value)
        bucket["count"] += 1
        bucket["records"].append(row)
    return [buckets[k] for k in sorted(buckets)]


def year_over_year(buckets: Iterable[Mapping[str, Any]]) -> List[Dict[str, Any]]:
    """Pivot month buckets into one row per month with a column set per year (zero-filled)."""
    buckets = list(buckets)
    years = sorted({int(b["year"]) for b in buckets})
    by_month: Dict[int, Dict[str, Any]] = {}
    for b in buckets:
        month = int(b["month"])
        row = by_month.get(month)
        if row is None:
            row = {"month": month, "month_label": b.get("month_label", MONTH_LABELS[month - 1])}
            for y in years:
                row[str(y)] = 0.0
                row[f"{y}Count"] = 0
                row[f"{y}Opportunities"] = []
            by_month[month] = row
        y = int(b["year"])
        row[str(y)] = b["total"]
        row[f"{y}Count"] = b["count"]
        row[f"{y}Opportunities"] = b["records"]
    return [by_month[m] for m in sorted(by_month)]


def cumulative(yoy_rows: Iterable[Mapping[str, Any]], years: Iterable[object]) -> List[Dict[str, Any]]:
    """Add ``<year>_cumulative``: running total per year from the first month row onward."""
    running = {str(y): 0.0 for y in years}
    out: List[Dict[str, Any]] = []
    for row in yoy_rows:
        new_row = dict(row)
        for y in running:
            running[y] += _number_or_zero(row.get(y, 0.0))
            new_row[f"{y}_cumulative"] = running[y]
        out.append(new_row)
    return out


def median_value(values: Iterable[object]) -> float:
    ordered = sorted(_number_or_zero(v) for v in values)
    n = len(ordered)
    if n == 0:
        return 0.0
    mid = n // 2
    if n % 2 == 0:
        return (ordered[mid - 1] + ordered[mid]) / 2
    return ordered[mid]


def _short_money(value: float) -> str:
    if value >= 1_000_000:
        return f"€{value / 1_000_000:g}M"
    if value >= 1_000:
        return f"€{value / 1_000:g}K"
    return f"€{value:g}"


def size_distribution(values: Iterable[object], edges: Optional[Sequence[float]] = None) -> List[Dict[str, Any]]:
    """Deal-size bands: below the first edge, between consecutive edges, above the last."""
    edges = sorted(float(e) for e in (edges or [100_000.0, 500_000.0]))
    bounds = [0.0, *edges, math.inf]
    bands: List[Dict[str, Any]] = []
    for i, (lo, hi) in enumerate(zip(bounds[:-1], bounds[1:])):
        if i == 0:
            name = f"< {_short_money(hi)}"
        elif math.isinf(hi):
            name = f"> {_short_money(lo)}"
        else:
            name = f"{_short_money(lo)}-{_short_money(hi)}"
        bands.append({"name": name, "min": lo, "max": None if math.isinf(hi) else hi, "count": 0, "value": 0.0})

    for v in values:
        amount = _number_or_zero(v)
        for band, lo, hi in zip(bands, bounds[:-1], bounds[1:]):
            if lo <= amount < hi:
                band["count"] += 1
                band["value"] += amount
                break

    total = sum(b["value"] for b in bands)
    for b in bands:
        b["percentage"] = (b["value"] / total * 100.0) if total > 0 else 0.0
    return bands


def percent_of(part: float, whole: float) -> Optional[float]:
    """part / whole as a percentage, None when the whole is zero."""
    if not whole:
        return None
    return part / whole * 100.0
