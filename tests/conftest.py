import io
import sys
from pathlib import Path
from typing import Dict, List

import pandas as pd
import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from opportunity_core.data import normalize_records  # noqa: E402


def raw_row(**overrides) -> Dict[str, object]:
    """One spreadsheet row keyed by header label, with blank optional cells."""
    row: Dict[str, object] = {
        "Opportunity ID": "X",
        "Opportunity": "Deal",
        "Status": 1,
        "Account": "Acme",
        "Sub Segment Code": "RET",
        "Sub Segment": "Retail",
        "Gross Revenue": 0,
        "Net Revenue": None,
        "Service Line 1": None,
        "Service Offering 1": None,
        "Service Offering 1 %": None,
        "Service Line 2": None,
        "Service Offering 2": None,
        "Service Offering 2 %": None,
        "Service Line 3": None,
        "Service Offering 3": None,
        "Service Offering 3 %": None,
        "Technology Partner 1": None,
        "Creation Date": None,
        "Last Status Change Date": None,
        "Winning Date": "-",
        "Lost Date": "-",
        "Manager": None,
        "Partner": None,
    }
    row.update(overrides)
    return row


SCENARIO_ROWS: List[Dict[str, object]] = [
    raw_row(
        **{
            "Opportunity ID": "1",
            "Opportunity": "ERP rollout",
            "Status": "14 - Booked",
            "Account": "Acme",
            "Sub Segment Code": "AUTO",
            "Sub Segment": "Auto OEM",
            "Gross Revenue": 100,
            "Net Revenue": 80,
            "Service Line 1": "A",
            "Service Offering 1": "Cloud",
            "Service Offering 1 %": 50,
            "Technology Partner 1": "SAP",
            "Creation Date": "2024-01-10",
            "Last Status Change Date": "2024-03-15",
            "Winning Date": "2024-03-15",
            "Manager": "Ann",
            "Partner": "Paul",
        }
    ),
    raw_row(
        **{
            "Opportunity ID": "2",
            "Opportunity": "Store audit",
            "Status": 14,
            "Account": "Beta",
            "Gross Revenue": "200",
            "Net Revenue": 150,
            "Service Line 1": "B",
            "Service Offering 1": "Audit",
            "Creation Date": "2023-01-05",
            "Last Status Change Date": "2023-03-20",
            "Winning Date": "2023-03-20",
            "Partner": "Paula",
        }
    ),
    raw_row(
        **{
            "Opportunity ID": "3",
            "Opportunity": "Plant ops",
            "Status": 1,
            "Account": "Acme",
            "Gross Revenue": 50,
            "Net Revenue": 40,
            "Service Line 1": "A",
            "Service Offering 1": "Cloud",
            "Service Offering 1 %": "30%",
            "Service Line 2": "B",
            "Service Offering 2": "Audit",
            "Service Offering 2 %": "70%",
            "Technology Partner 1": "Microsoft",
            "Creation Date": "2024-02-01",
            "Last Status Change Date": "2024-02-01",
            "Manager": "Bob",
            "Partner": "Paul",
        }
    ),
]


@pytest.fixture
def make_records():
    """Factory: header-keyed rows -> normalized record frame."""

    def _make(rows: List[Dict[str, object]]) -> pd.DataFrame:
        return normalize_records(pd.DataFrame([raw_row(**r) for r in rows]))

    return _make


@pytest.fixture
def scenario_records() -> pd.DataFrame:
    """Two booked deals on lines A and B plus one open deal split 30/70 across A and B."""
    return normalize_records(pd.DataFrame(SCENARIO_ROWS))


@pytest.fixture
def workbook_bytes():
    """Factory: header-keyed rows -> .xlsx bytes."""

    def _write(rows: List[Dict[str, object]], columns: List[str] = None) -> bytes:
        frame = pd.DataFrame(rows, columns=columns)
        buf = io.BytesIO()
        frame.to_excel(buf, index=False, sheet_name="Opportunities")
        return buf.getvalue()

    return _write


@pytest.fixture
def scenario_workbook(workbook_bytes) -> bytes:
    return workbook_bytes(SCENARIO_ROWS)
