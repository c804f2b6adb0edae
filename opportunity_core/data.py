from __future__ import annotations

import io
import logging
import re
from functools import lru_cache
from pathlib import Path
from typing import Dict, List, Optional

import numpy as np
import pandas as pd

from opportunity_core.allocation import distinct_service_lines
from opportunity_core.filters import DashboardFilters, apply_filters, normalize_filters
from opportunity_core.schema import (
    DATE_COLUMNS,
    MONEY_COLUMNS,
    OPPORTUNITY_COLUMNS,
    PERCENT_COLUMNS,
    REQUIRED_HEADERS,
    TECH_PARTNER_COLUMNS,
    TEXT_COLUMNS,
)


logger = logging.getLogger(__name__)

ACCEPTED_SUFFIXES = (".xlsx", ".xls")
MISSING_TOKENS = {"", "-", "nan", "none", "nat", "<na>", "null"}

_LEADING_NUMBER = re.compile(r"^\s*([+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?)")
_LEADING_INT = re.compile(r"^\s*([+-]?\d+)")


# ---------------- Errors ----------------
class IngestError(Exception):
    """A workbook could not be turned into opportunity records."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NoSheetsError(IngestError):
    pass


class EmptySheetError(IngestError):
    pass


class MissingColumnsError(IngestError):
    def __init__(self, columns: List[str]):
        self.columns = list(columns)
        super().__init__(f"Excel file is missing required columns: {', '.join(self.columns)}")


class DecodeFailureError(IngestError):
    pass


class UnsupportedFileError(IngestError):
    pass


# ---------------- Cell parsing ----------------
def is_missing(value: object) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return value.strip().lower() in MISSING_TOKENS
    try:
        return bool(pd.isna(value))
    except (TypeError, ValueError):
        return False


def parse_number(value: object, *, strip: str = ",") -> Optional[float]:
    """Lenient float parse: numbers pass through, strings lose `strip` chars and keep their leading number."""
    if is_missing(value):
        return None
    if isinstance(value, (bool, np.bool_)):
        return float(value)
    if isinstance(value, (int, float, np.integer, np.floating)):
        return float(value)
    text = str(value)
    for ch in strip:
        text = text.replace(ch, "")
    match = _LEADING_NUMBER.match(text)
    return float(match.group(1)) if match else None


def parse_percent(value: object) -> Optional[float]:
    return parse_number(value, strip="%")


def parse_status(value: object) -> Optional[int]:
    """Base-10 status code; '14 - Booked' -> 14."""
    if is_missing(value):
        return None
    if isinstance(value, (int, np.integer)) and not isinstance(value, (bool, np.bool_)):
        return int(value)
    if isinstance(value, (float, np.floating)):
        return int(value)
    match = _LEADING_INT.match(str(value))
    return int(match.group(1)) if match else None


def normalize_text(value: object) -> Optional[str]:
    if is_missing(value):
        return None
    if isinstance(value, (float, np.floating)) and float(value).is_integer():
        return str(int(value))
    s = str(value).strip()
    return s or None


def parse_dates(series: pd.Series) -> pd.Series:
    if pd.api.types.is_datetime64_any_dtype(series):
        return series
    cleaned = series.map(lambda v: None if is_missing(v) else v)
    return pd.to_datetime(cleaned, errors="coerce", format="mixed")


def drop_duplicate_columns(df: pd.DataFrame) -> pd.DataFrame:
    return df.loc[:, ~df.columns.duplicated()]


def _count_unparsed(original: pd.Series, parsed: pd.Series) -> int:
    present = original.map(lambda v: not is_missing(v))
    return int((present & parsed.isna()).sum())


# ---------------- Ingestion ----------------
def normalize_records(raw: pd.DataFrame, *, strict: bool = False) -> pd.DataFrame:
    """Rename known headers and coerce their cells; unknown columns pass through untouched."""
    df = drop_duplicate_columns(raw.rename(columns=OPPORTUNITY_COLUMNS)).reset_index(drop=True)

    for col in OPPORTUNITY_COLUMNS.values():
        if col not in df.columns:
            df[col] = None

    for col in TEXT_COLUMNS:
        df[col] = df[col].map(normalize_text).astype(object)

    for col in MONEY_COLUMNS + PERCENT_COLUMNS:
        parser = parse_number if col in MONEY_COLUMNS else parse_percent
        parsed = pd.to_numeric(df[col].map(parser), errors="coerce").astype(float)
        if strict:
            bad = _count_unparsed(df[col], parsed)
            if bad:
                logger.warning("%d value(s) in %s could not be parsed as numbers", bad, col)
        df[col] = parsed

    status = pd.array([parse_status(v) for v in df["status"]], dtype="Int64")
    if strict:
        bad = _count_unparsed(df["status"], pd.Series(status))
        if bad:
            logger.warning("%d status value(s) could not be parsed as integers", bad)
    df["status"] = status

    for col in DATE_COLUMNS:
        parsed = parse_dates(df[col])
        if strict:
            bad = _count_unparsed(df[col], parsed)
            if bad:
                logger.warning("%d value(s) in %s could not be parsed as dates", bad, col)
        df[col] = parsed

    dupes = df["opportunity_id"].notna() & df.duplicated(subset=["opportunity_id"], keep="first")
    if dupes.any():
        logger.warning("Dropped %d row(s) with a duplicate Opportunity ID", int(dupes.sum()))
        df = df[~dupes].reset_index(drop=True)
    return df


def ingest(file_bytes: bytes, *, strict: bool = False) -> pd.DataFrame:
    """Decode the first sheet of a workbook into a normalized opportunity frame.

    Raises an `IngestError` subclass when the workbook cannot be read, has no
    sheets, has no rows, or lacks one of the required columns. Cell-level parse
    problems never raise: the value becomes absent. With ``strict=True`` the
    number of such values is logged per column.
    """
    if not file_bytes:
        raise DecodeFailureError("No file data provided")
    try:
        workbook = pd.ExcelFile(io.BytesIO(file_bytes))
    except Exception as exc:
        raise DecodeFailureError(f"Could not read the Excel file: {exc}") from exc

    with workbook:
        if not workbook.sheet_names:
            raise NoSheetsError("Excel file does not contain any sheets")
        sheet = workbook.sheet_names[0]
        try:
            raw = workbook.parse(sheet, dtype=object)
        except Exception as exc:
            raise DecodeFailureError(f"Could not access the worksheet {sheet!r}: {exc}") from exc

    raw = raw.dropna(how="all")
    raw.columns = [str(c).strip() for c in raw.columns]
    if raw.empty:
        raise EmptySheetError("No data found in the Excel file")

    missing = [c for c in REQUIRED_HEADERS if c not in raw.columns]
    if missing:
        raise MissingColumnsError(missing)

    df = normalize_records(raw, strict=strict)
    logger.info("Loaded %d opportunities from sheet %r", len(df), sheet)
    return df


def validate_filename(filename: str) -> None:
    suffix = Path(filename or "").suffix.lower()
    if suffix not in ACCEPTED_SUFFIXES:
        raise UnsupportedFileError(
            f"Unsupported file type {suffix or '(none)'}: upload an Excel file (.xlsx or .xls)"
        )


def ingest_upload(filename: str, file_bytes: bytes, *, strict: bool = False) -> pd.DataFrame:
    validate_filename(filename)
    return ingest(file_bytes, strict=strict)


# ---------------- Dataset context ----------------
def _sorted_unique(df: pd.DataFrame, cols: List[str]) -> List[object]:
    values: set = set()
    for col in cols:
        if col in df.columns:
            values.update(v for v in df[col].dropna().tolist() if v != "")
    return sorted(values, key=str)


def sub_segment_map(records: pd.DataFrame) -> Dict[str, List[str]]:
    """Sub-segment code -> sub-segment labels seen with it."""
    if records.empty or not {"sub_segment_code", "sub_segment"}.issubset(records.columns):
        return {}
    pairs = records.dropna(subset=["sub_segment_code", "sub_segment"])
    out: Dict[str, List[str]] = {}
    for code, group in pairs.groupby("sub_segment_code", sort=True):
        out[str(code)] = sorted({str(s) for s in group["sub_segment"]})
    return out


def build_data_context(records: pd.DataFrame) -> Dict[str, object]:
    """Values derived once per load and shared by every filter pass."""
    statuses = (
        sorted(int(s) for s in records["status"].dropna().unique()) if "status" in records.columns else []
    )
    years: List[int] = []
    if "last_status_change_date" in records.columns:
        dates = pd.to_datetime(records["last_status_change_date"], errors="coerce").dropna()
        years = sorted(int(y) for y in dates.dt.year.unique())
    lines = distinct_service_lines(records)
    return {
        "records": records,
        "rows": int(len(records)),
        "service_lines": lines,
        "sub_segment_map": sub_segment_map(records),
        "years": years,
        "options": {
            "accounts": _sorted_unique(records, ["account"]),
            "managers": _sorted_unique(records, ["manager"]),
            "partners": _sorted_unique(records, ["partner"]),
            "statuses": statuses,
            "sub_segment_codes": _sorted_unique(records, ["sub_segment_code"]),
            "sub_segments": _sorted_unique(records, ["sub_segment"]),
            "service_lines": lines,
            "technology_partners": _sorted_unique(records, TECH_PARTNER_COLUMNS),
        },
    }


@lru_cache(maxsize=4)
def _load_dashboard_data_cached(file_bytes: bytes, strict: bool) -> Dict[str, object]:
    return build_data_context(ingest(file_bytes, strict=strict))


def load_dashboard_data(file_bytes: bytes, *, strict: bool = False) -> Dict[str, object]:
    """Ingest a workbook and build its dataset context; repeated loads of the same bytes are cached."""
    return _load_dashboard_data_cached(bytes(file_bytes), strict)


def prepare_context(filters: dict | DashboardFilters, data_ctx: Dict[str, object]) -> Dict[str, object]:
    """Run the full filter pass from the complete dataset."""
    records: pd.DataFrame = data_ctx.get("records", pd.DataFrame())
    filt = (
        filters
        if isinstance(filters, DashboardFilters)
        else normalize_filters(filters, sub_segment_map=data_ctx.get("sub_segment_map"))
    )
    lines = data_ctx.get("service_lines")
    filtered = apply_filters(records, filt.criteria, all_service_lines=lines)
    return {
        "filters": filt,
        "records": records,
        "filtered": filtered,
        "service_lines": lines or [],
        "years": data_ctx.get("years", []),
    }
