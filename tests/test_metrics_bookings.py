"""Tests for period extraction and the bookings page builder."""

from datetime import date

import pandas as pd
import pytest

from opportunity_core.data import build_data_context, prepare_context
from opportunity_core.filters import normalize_filters
from opportunity_core.metrics_bookings import (
    compute_bookings,
    default_period,
    in_date_range,
    new_losses,
    new_opportunities,
    new_wins,
)


def _ids(df: pd.DataFrame) -> list:
    return df["opportunity_id"].tolist()


class TestPeriodExtraction:
    """Inclusive date-range predicates."""

    def test_new_opportunities_inclusive(self, scenario_records: pd.DataFrame) -> None:
        assert _ids(new_opportunities(scenario_records, date(2024, 1, 10), date(2024, 2, 1))) == ["1", "3"]

    def test_new_wins_skip_placeholder(self, scenario_records: pd.DataFrame) -> None:
        assert _ids(new_wins(scenario_records, date(2020, 1, 1), date(2030, 1, 1))) == ["1", "2"]
        assert _ids(new_wins(scenario_records, date(2024, 3, 15), date(2024, 3, 15))) == ["1"]

    def test_new_losses(self, make_records) -> None:
        records = make_records(
            [
                {"Opportunity ID": "1", "Status": 15, "Gross Revenue": 5, "Lost Date": "2024-04-02"},
                {"Opportunity ID": "2", "Status": 15, "Gross Revenue": 5, "Lost Date": "-"},
                {"Opportunity ID": "3", "Status": 15, "Gross Revenue": 5, "Lost Date": "2024-05-02"},
            ]
        )
        assert _ids(new_losses(records, date(2024, 4, 1), date(2024, 4, 30))) == ["1"]

    def test_raw_placeholder_strings(self) -> None:
        frame = pd.DataFrame({"lost_date": ["-", "", None, "2024-01-02"]})
        assert in_date_range(frame, "lost_date", date(2024, 1, 1), date(2024, 1, 31)).tolist() == [False, False, False, True]

    def test_missing_column_matches_nothing(self, scenario_records: pd.DataFrame) -> None:
        assert not in_date_range(scenario_records, "nope", None, None).any()

    def test_default_period(self) -> None:
        assert default_period(date(2024, 5, 17)) == (date(2024, 5, 1), date(2024, 5, 17))


class TestComputeBookings:
    def _payload(self, records: pd.DataFrame, raw_filters: dict) -> dict:
        data_ctx = build_data_context(records)
        filters = normalize_filters(raw_filters, sub_segment_map=data_ctx["sub_segment_map"])
        return compute_bookings(filters, prepare_context(filters, data_ctx))

    def test_year_over_year(self, scenario_records: pd.DataFrame) -> None:
        payload = self._payload(scenario_records, {"period_start": "2024-01-01", "period_end": "2024-12-31"})
        assert payload["kpis"]["booked_count"] == 2
        assert payload["kpis"]["booked_revenue"] == 300.0
        assert payload["years"] == ["2023", "2024"]
        (march,) = payload["year_over_year"]
        assert (march["month"], march["2023"], march["2024"]) == (3, 200.0, 100.0)
        assert payload["cumulative"][0]["2024_cumulative"] == 100.0
        assert payload["period"]["new_opportunities"]["count"] == 2
        assert payload["period"]["new_wins"]["count"] == 1

    def test_summary_percent_of_total(self, scenario_records: pd.DataFrame) -> None:
        """Filtered bookings are compared with the unfiltered total of the same year."""
        payload = self._payload(scenario_records, {"criteria": {"service_lines": ["A"]}, "summary_year": 2024})
        booked = payload["summary"]["booked"]
        assert booked["revenue"] == pytest.approx(50.0)
        assert booked["total_revenue"] == 100.0
        assert booked["pct_of_total_revenue"] == pytest.approx(50.0)
        assert booked["pct_of_total_count"] == pytest.approx(100.0)
        assert payload["summary"]["lost"]["pct_of_total_revenue"] is None

    def test_summary_year_defaults_to_latest(self, scenario_records: pd.DataFrame) -> None:
        payload = self._payload(scenario_records, {})
        assert payload["summary"]["year"] == 2024
