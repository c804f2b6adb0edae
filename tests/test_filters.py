"""Tests for filter normalization and the filter pipeline."""

from datetime import date

import pandas as pd
import pytest

from opportunity_core.filters import (
    DashboardFilters,
    FilterCriteria,
    apply_filters,
    booking_records,
    normalize_filters,
    pipeline_records,
    reachable_sub_segments,
)
from opportunity_core.schema import ALLOCATION_COLUMNS

LINES = ["A", "B"]


def _ids(df: pd.DataFrame) -> list:
    return df["opportunity_id"].tolist()


class TestApplyFilters:
    """apply_filters semantics."""

    def test_empty_criteria_keeps_everything(self, scenario_records: pd.DataFrame) -> None:
        out = apply_filters(scenario_records, FilterCriteria(), all_service_lines=LINES)
        assert _ids(out) == ["1", "2", "3"]
        assert set(ALLOCATION_COLUMNS).issubset(out.columns)
        assert (out["allocation_percentage"] == 100.0).all()

    @pytest.mark.parametrize(
        "criteria",
        [
            FilterCriteria(),
            FilterCriteria(service_lines=["A"]),
            FilterCriteria(service_lines=["A", "B"]),
            FilterCriteria(accounts=["Acme"], statuses=[1, 14]),
            FilterCriteria(service_lines=["B"], managers=["Bob"]),
        ],
    )
    def test_idempotent(self, scenario_records: pd.DataFrame, criteria: FilterCriteria) -> None:
        """Re-applying the same criteria to a filtered frame changes nothing."""
        once = apply_filters(scenario_records, criteria, all_service_lines=LINES)
        twice = apply_filters(once, criteria, all_service_lines=LINES)
        pd.testing.assert_frame_equal(once, twice)

    def test_dimensions_are_anded(self, scenario_records: pd.DataFrame) -> None:
        criteria = FilterCriteria(accounts=["Acme"], statuses=[14])
        assert _ids(apply_filters(scenario_records, criteria, all_service_lines=LINES)) == ["1"]

    def test_values_within_dimension_are_ored(self, scenario_records: pd.DataFrame) -> None:
        criteria = FilterCriteria(accounts=["Acme", "Beta"])
        assert _ids(apply_filters(scenario_records, criteria, all_service_lines=LINES)) == ["1", "2", "3"]

    def test_service_line_matches_any_slot(self, scenario_records: pd.DataFrame) -> None:
        out = apply_filters(scenario_records, FilterCriteria(service_lines=["B"]), all_service_lines=LINES)
        assert _ids(out) == ["2", "3"]
        assert out["allocated_gross_revenue"].tolist() == pytest.approx([200.0, 35.0])

    def test_absent_manager_never_matches(self, scenario_records: pd.DataFrame) -> None:
        out = apply_filters(scenario_records, FilterCriteria(managers=["Ann", "Bob"]), all_service_lines=LINES)
        assert _ids(out) == ["1", "3"]

    def test_technology_partners(self, scenario_records: pd.DataFrame) -> None:
        out = apply_filters(scenario_records, FilterCriteria(technology_partners=["SAP"]), all_service_lines=LINES)
        assert _ids(out) == ["1"]

    def test_preserves_order_and_input(self, scenario_records: pd.DataFrame) -> None:
        reversed_records = scenario_records.iloc[::-1]
        before = reversed_records.copy()
        out = apply_filters(reversed_records, FilterCriteria(service_lines=["A"]), all_service_lines=LINES)
        assert _ids(out) == ["3", "1"]
        pd.testing.assert_frame_equal(reversed_records, before)

    def test_line_universe_comes_from_unfiltered_input(self, make_records) -> None:
        """Without an explicit universe, lines of records dropped by the filter still count."""
        records = make_records(
            [
                {"Opportunity ID": "1", "Gross Revenue": 100, "Service Line 1": "A", "Service Offering 1 %": 50},
                {"Opportunity ID": "2", "Gross Revenue": 100, "Service Line 1": "C"},
            ]
        )
        implicit = apply_filters(records, FilterCriteria(service_lines=["A", "B"]))
        explicit = apply_filters(records, FilterCriteria(service_lines=["A", "B"]), all_service_lines=["A", "C"])
        assert _ids(implicit) == ["1"]
        assert implicit["allocated_service_line"].tolist() == ["A"]
        assert implicit["allocation_percentage"].tolist() == pytest.approx([50.0])
        assert implicit["allocated_gross_revenue"].tolist() == pytest.approx([50.0])
        pd.testing.assert_frame_equal(implicit, explicit)

    def test_missing_status_is_not_an_error(self, make_records) -> None:
        records = make_records(
            [
                {"Opportunity ID": "1", "Status": "?", "Gross Revenue": 1},
                {"Opportunity ID": "2", "Status": 6, "Gross Revenue": 1},
            ]
        )
        out = apply_filters(records, FilterCriteria(statuses=[6]))
        assert _ids(out) == ["2"]


class TestRecordSlices:
    def test_pipeline_and_booking_records(self, scenario_records: pd.DataFrame) -> None:
        assert _ids(pipeline_records(scenario_records)) == ["3"]
        assert _ids(booking_records(scenario_records)) == ["1", "2"]


class TestNormalizeFilters:
    """Raw dicts from the API or UI -> DashboardFilters."""

    def test_defaults(self) -> None:
        f = normalize_filters(None)
        assert isinstance(f, DashboardFilters)
        assert f.criteria.is_empty()
        assert f.top_n == 10
        assert f.settings.size_band_edges == [100_000.0, 500_000.0]

    def test_statuses_coerced_to_int(self) -> None:
        f = normalize_filters({"criteria": {"statuses": ["14 - Booked", 6, "6", "bad"]}})
        assert f.criteria.statuses == [14, 6]

    def test_negative_and_unlisted_status_codes_kept(self) -> None:
        f = normalize_filters({"criteria": {"statuses": ["-3", -3, "21 - Custom", 0]}})
        assert f.criteria.statuses == [-3, 21, 0]

    def test_blanks_dropped(self) -> None:
        f = normalize_filters({"service_lines": ["A", "", None, " A "]})
        assert f.criteria.service_lines == ["A"]

    def test_unreachable_sub_segments_dropped(self) -> None:
        code_map = {"AUTO": ["Auto OEM"], "RET": ["Retail", "Grocery"]}
        raw = {"criteria": {"sub_segment_codes": ["RET"], "sub_segments": ["Auto OEM", "Grocery"]}}
        f = normalize_filters(raw, sub_segment_map=code_map)
        assert f.criteria.sub_segments == ["Grocery"]

    def test_period_and_top_n(self) -> None:
        f = normalize_filters({"period_start": "2024-01-01", "period_end": date(2024, 3, 31), "top_n": 500})
        assert f.period_start == date(2024, 1, 1)
        assert f.period_end == date(2024, 3, 31)
        assert f.top_n == 100


class TestReachableSubSegments:
    def test_no_codes_selects_everything(self) -> None:
        code_map = {"AUTO": ["Auto OEM"], "RET": ["Retail"]}
        assert reachable_sub_segments(code_map, []) == ["Auto OEM", "Retail"]

    def test_selected_codes_narrow(self) -> None:
        code_map = {"AUTO": ["Auto OEM"], "RET": ["Retail", "Grocery"]}
        assert reachable_sub_segments(code_map, ["RET"]) == ["Grocery", "Retail"]

    def test_unknown_code_reaches_nothing(self) -> None:
        assert reachable_sub_segments({"AUTO": ["Auto OEM"]}, ["XYZ"]) == []
