from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import date
from typing import Dict, Iterable, List, Mapping, Optional, Sequence

import pandas as pd

from opportunity_core.allocation import allocate, distinct_service_lines
from opportunity_core.schema import CLOSED_STATUSES, SERVICE_LINE_COLUMNS, TECH_PARTNER_COLUMNS

_STATUS_CODE = re.compile(r"^\s*([+-]?\d+)")


@dataclass(frozen=True)
class FilterCriteria:
    sub_segment_codes: List[str] = field(default_factory=list)
    sub_segments: List[str] = field(default_factory=list)
    service_lines: List[str] = field(default_factory=list)
    statuses: List[int] = field(default_factory=list)
    managers: List[str] = field(default_factory=list)
    partners: List[str] = field(default_factory=list)
    accounts: List[str] = field(default_factory=list)
    technology_partners: List[str] = field(default_factory=list)

    def is_empty(self) -> bool:
        return not any(
            [
                self.sub_segment_codes,
                self.sub_segments,
                self.service_lines,
                self.statuses,
                self.managers,
                self.partners,
                self.accounts,
                self.technology_partners,
            ]
        )


@dataclass(frozen=True)
class ViewSettings:
    size_band_edges: List[float] = field(default_factory=lambda: [100_000.0, 500_000.0])
    booking_target: float = 1_000_000.0
    insight_window_days: int = 30


@dataclass(frozen=True)
class DashboardFilters:
    criteria: FilterCriteria = field(default_factory=FilterCriteria)
    use_net_revenue: bool = False
    period_start: Optional[date] = None
    period_end: Optional[date] = None
    summary_year: Optional[int] = None
    top_n: int = 10
    settings: ViewSettings = field(default_factory=ViewSettings)


# Dimension -> record column, for the plain single-column dimensions
_COLUMN_DIMENSIONS: Dict[str, str] = {
    "accounts": "account",
    "sub_segment_codes": "sub_segment_code",
    "sub_segments": "sub_segment",
    "managers": "manager",
    "partners": "partner",
}


def _as_str_list(values: Optional[Iterable[object]]) -> List[str]:
    if not values:
        return []
    if isinstance(values, str):
        values = [values]
    out: List[str] = []
    for v in values:
        if v is None:
            continue
        s = str(v).strip()
        if s and s not in out:
            out.append(s)
    return out


def _as_int_list(values: Optional[Iterable[object]]) -> List[int]:
    if not values:
        return []
    if isinstance(values, (str, int)):
        values = [values]
    out: List[int] = []
    for v in values:
        if isinstance(v, bool) or v is None:
            continue
        if isinstance(v, int):
            code = v
        else:
            match = _STATUS_CODE.match(str(v))
            if match is None:
                continue
            code = int(match.group(1))
        if code not in out:
            out.append(code)
    return out


def _as_date(value: object) -> Optional[date]:
    if value is None or value == "":
        return None
    ts = pd.to_datetime(value, errors="coerce")
    if pd.isna(ts):
        return None
    return ts.date()


def reachable_sub_segments(code_map: Mapping[str, Sequence[str]], selected_codes: Iterable[str]) -> List[str]:
    """Sub-segment options left once sub-segment codes are selected (all of them when none are)."""
    codes = _as_str_list(selected_codes)
    keys = codes if codes else list(code_map.keys())
    out = set()
    for code in keys:
        out.update(code_map.get(code, []))
    return sorted(out)


def normalize_filters(raw: Optional[dict], *, sub_segment_map: Optional[Mapping[str, Sequence[str]]] = None) -> DashboardFilters:
    raw = raw or {}
    src = raw.get("criteria") or raw

    sub_segment_codes = _as_str_list(src.get("sub_segment_codes"))
    sub_segments = _as_str_list(src.get("sub_segments"))
    if sub_segment_map is not None and sub_segment_codes:
        reachable = set(reachable_sub_segments(sub_segment_map, sub_segment_codes))
        sub_segments = [s for s in sub_segments if s in reachable]

    criteria = FilterCriteria(
        sub_segment_codes=sub_segment_codes,
        sub_segments=sub_segments,
        service_lines=_as_str_list(src.get("service_lines")),
        statuses=_as_int_list(src.get("statuses")),
        managers=_as_str_list(src.get("managers")),
        partners=_as_str_list(src.get("partners")),
        accounts=_as_str_list(src.get("accounts")),
        technology_partners=_as_str_list(src.get("technology_partners")),
    )

    top_n = raw.get("top_n", 10)
    try:
        top_n = int(top_n)
    except Exception:
        top_n = 10
    top_n = max(1, min(100, top_n))

    summary_year = raw.get("summary_year")
    try:
        summary_year = int(summary_year) if summary_year not in (None, "") else None
    except Exception:
        summary_year = None

    s = raw.get("settings") or {}
    edges = s.get("size_band_edges") or [100_000.0, 500_000.0]
    try:
        edges = sorted(float(e) for e in edges)
    except Exception:
        edges = [100_000.0, 500_000.0]
    settings = ViewSettings(
        size_band_edges=edges,
        booking_target=float(s.get("booking_target", 1_000_000.0)),
        insight_window_days=max(1, int(s.get("insight_window_days", 30))),
    )

    return DashboardFilters(
        criteria=criteria,
        use_net_revenue=bool(raw.get("use_net_revenue", False)),
        period_start=_as_date(raw.get("period_start")),
        period_end=_as_date(raw.get("period_end")),
        summary_year=summary_year,
        top_n=top_n,
        settings=settings,
    )


def _column(records: pd.DataFrame, col: str) -> pd.Series:
    if col not in records.columns:
        return pd.Series([None] * len(records), index=records.index, dtype=object)
    return records[col]


def status_codes(records: pd.DataFrame) -> pd.Series:
    return pd.to_numeric(_column(records, "status"), errors="coerce").astype(float)


def _matches_any(records: pd.DataFrame, cols: Sequence[str], values: Iterable[str]) -> pd.Series:
    accepted = set(values)
    mask = pd.Series(False, index=records.index)
    for col in cols:
        mask |= _column(records, col).isin(accepted)
    return mask


def apply_filters(
    records: pd.DataFrame,
    criteria: FilterCriteria,
    *,
    all_service_lines: Optional[Iterable[str]] = None,
) -> pd.DataFrame:
    """Filter the full record set and attach the allocation projection.

    Dimensions are ANDed, values within a dimension ORed. Service lines match
    any of the three slots; the surviving records then go through `allocate`.
    Row order is preserved and ``records`` is never modified. Without
    ``all_service_lines`` the line set is taken from ``records`` before any
    dimension narrows it; pass the dataset-wide list when ``records`` is
    already a subset so repeated application is stable.
    """
    if all_service_lines is None:
        all_service_lines = distinct_service_lines(records)

    mask = pd.Series(True, index=records.index)
    for dimension, col in _COLUMN_DIMENSIONS.items():
        values = getattr(criteria, dimension)
        if values:
            mask &= _column(records, col).isin(set(values))

    if criteria.statuses:
        mask &= status_codes(records).isin(criteria.statuses)

    if criteria.technology_partners:
        mask &= _matches_any(records, TECH_PARTNER_COLUMNS, criteria.technology_partners)

    if criteria.service_lines:
        mask &= _matches_any(records, SERVICE_LINE_COLUMNS, criteria.service_lines)

    return allocate(records[mask], criteria.service_lines, all_service_lines)


def pipeline_records(records: pd.DataFrame) -> pd.DataFrame:
    """Open pipeline: status 1 through 11."""
    status = status_codes(records)
    return records[(status >= 1) & (status <= 11)]


def booking_records(records: pd.DataFrame) -> pd.DataFrame:
    """Closed opportunities: booked (14) and lost (15)."""
    return records[status_codes(records).isin(CLOSED_STATUSES)]
