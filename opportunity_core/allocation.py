"""Revenue allocation across the three service-line slots of an opportunity.

Two distinct rules live here:

- `allocate` is the filter-driven projection: given the service lines a user
  selected, it decides how much of each record's revenue belongs to that
  selection and attaches the derived ``allocated_*`` columns.
- `segment_revenue` is a fixed business rule used by rankings and insights
  (AUTO/CLR/IEM sub-segments count in full, otherwise only the Operations
  share). It ignores any filter selection.
"""

from __future__ import annotations

import math
from typing import Iterable, Iterator, List, Mapping, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from opportunity_core.schema import (
    ALL_SERVICE_LINES_LABEL,
    ALLOCATED_GROSS,
    ALLOCATED_LINE,
    ALLOCATED_NET,
    ALLOCATED_VALUE_COLUMNS,
    ALLOCATION_PCT,
    CAPPED_SUFFIX,
    IS_ALLOCATED,
    OPERATIONS_LINE,
    SERVICE_LINE_COLUMNS,
    SERVICE_PCT_COLUMNS,
    SPECIAL_SEGMENT_CODES,
)


def clean_value(value: object) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, float) and math.isnan(value):
        return None
    if value is pd.NA:
        return None
    s = str(value).strip()
    return s or None


def _as_float(value: object) -> float:
    try:
        out = float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return 0.0
    return 0.0 if math.isnan(out) else out


def numeric_column(records: pd.DataFrame, col: str) -> pd.Series:
    """Column as floats with absent/non-numeric values as 0."""
    if col not in records.columns:
        return pd.Series(0.0, index=records.index, dtype=float)
    return pd.to_numeric(records[col], errors="coerce").fillna(0.0).astype(float)


def distinct_service_lines(records: pd.DataFrame) -> List[str]:
    """Every service line appearing in any slot of the dataset."""
    values = set()
    for col in SERVICE_LINE_COLUMNS:
        if col in records.columns:
            for v in records[col].tolist():
                line = clean_value(v)
                if line is not None:
                    values.add(line)
    return sorted(values)


def _slots(records: pd.DataFrame) -> Iterator[Tuple[Tuple[Optional[str], ...], Tuple[float, ...]]]:
    lines = [
        records[c].tolist() if c in records.columns else [None] * len(records) for c in SERVICE_LINE_COLUMNS
    ]
    pcts = [
        pd.to_numeric(records[c], errors="coerce").tolist() if c in records.columns else [np.nan] * len(records)
        for c in SERVICE_PCT_COLUMNS
    ]
    for row_lines, row_pcts in zip(zip(*lines), zip(*pcts)):
        yield tuple(clean_value(v) for v in row_lines), tuple(_as_float(p) for p in row_pcts)


def allocation_for(
    lines: Sequence[Optional[str]], pcts: Sequence[float], selected: Iterable[str]
) -> Optional[Tuple[float, str]]:
    """(fraction, label) for one record, or None when no slot matches the selection.

    A slot contributes when its line is selected and its percentage is non-zero.
    Without contributors the first matching slot takes 100%. Several
    contributors are summed and capped at 1.0, the label then listing them in
    slot order with a suffix when the cap applied.
    """
    selected = set(selected)
    matching = [i for i, line in enumerate(lines) if line is not None and line in selected]
    if not matching:
        return None
    contributing = [(lines[i], pcts[i] / 100.0) for i in matching if pcts[i]]
    if not contributing:
        return 1.0, str(lines[matching[0]])
    if len(contributing) == 1:
        line, fraction = contributing[0]
        return min(max(fraction, 0.0), 1.0), str(line)
    total = sum(f for _, f in contributing)
    label = ", ".join(str(line) for line, _ in contributing)
    if total > 1.0:
        return 1.0, label + CAPPED_SUFFIX
    return max(total, 0.0), label


def _attach(df: pd.DataFrame, fractions: Sequence[float], labels: Sequence[str]) -> pd.DataFrame:
    frac = np.asarray(fractions, dtype=float)
    gross = numeric_column(df, "gross_revenue").to_numpy()
    net = numeric_column(df, "net_revenue").to_numpy()
    df[ALLOCATED_GROSS] = gross * frac
    df[ALLOCATED_NET] = np.where(net != 0, net * frac, 0.0)
    df[IS_ALLOCATED] = frac != 1.0
    df[ALLOCATION_PCT] = frac * 100.0
    df[ALLOCATED_LINE] = list(labels)
    return df


def allocate(
    records: pd.DataFrame,
    selected_service_lines: Optional[Iterable[str]],
    all_service_lines: Optional[Iterable[str]] = None,
) -> pd.DataFrame:
    """Return a new frame with the allocation projection for a service-line selection.

    ``all_service_lines`` is the distinct line set of the full dataset, used to
    detect that everything is selected. It is derived from ``records`` when not
    given, which is only correct when ``records`` is the full dataset.
    """
    df = records.copy()
    selected = {str(s).strip() for s in (selected_service_lines or []) if clean_value(s) is not None}

    if not selected:
        first_lines = [
            clean_value(v) or "" for v in (df["service_line_1"].tolist() if "service_line_1" in df.columns else [None] * len(df))
        ]
        return _attach(df, np.ones(len(df)), first_lines)

    universe = set(all_service_lines) if all_service_lines is not None else set(distinct_service_lines(records))
    if universe and universe.issubset(selected):
        return _attach(df, np.ones(len(df)), [ALL_SERVICE_LINES_LABEL] * len(df))

    results = [allocation_for(lines, pcts, selected) for lines, pcts in _slots(df)]
    keep = pd.Series([r is not None for r in results], index=df.index, dtype=bool)
    df = df[keep].copy()
    kept = [r for r in results if r is not None]
    return _attach(df, [f for f, _ in kept], [label for _, label in kept])


def segment_revenue(record: Mapping[str, object], use_net: bool = False) -> float:
    """Revenue under the sub-segment / Operations override rule."""
    base = _as_float(record.get("net_revenue" if use_net else "gross_revenue"))
    if clean_value(record.get("sub_segment_code")) in SPECIAL_SEGMENT_CODES:
        return base
    operations = 0.0
    for line_col, pct_col in zip(SERVICE_LINE_COLUMNS, SERVICE_PCT_COLUMNS):
        if clean_value(record.get(line_col)) == OPERATIONS_LINE:
            operations += base * (_as_float(record.get(pct_col)) / 100.0)
    return operations if operations > 0 else base


def segment_revenue_series(records: pd.DataFrame, use_net: bool = False) -> pd.Series:
    values = [segment_revenue(r, use_net) for r in records.to_dict(orient="records")]
    return pd.Series(values, index=records.index, dtype=float)


def effective_revenue(records: pd.DataFrame, use_net: bool = False) -> pd.Series:
    """Allocated revenue where a record is allocated, raw revenue otherwise."""
    raw_col = "net_revenue" if use_net else "gross_revenue"
    return value_series(records, raw_col)


def value_series(records: pd.DataFrame, value_column: str, *, use_net: bool = False) -> pd.Series:
    """Per-record value used by totals.

    ``segment_revenue`` applies the override rule; revenue columns switch to their
    allocated counterpart on allocated records; anything else is read as a number.
    """
    if value_column == "segment_revenue":
        return segment_revenue_series(records, use_net)
    raw = numeric_column(records, value_column)
    alloc_col = ALLOCATED_VALUE_COLUMNS.get(value_column)
    if alloc_col is None or alloc_col not in records.columns or IS_ALLOCATED not in records.columns:
        return raw
    mask = records[IS_ALLOCATED].fillna(False).astype(bool)
    return raw.where(~mask, numeric_column(records, alloc_col))
