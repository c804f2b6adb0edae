"""Tests for the service-line page builders."""

import pandas as pd

from opportunity_core.metrics_service_lines import offering_breakdown, service_line_breakdown, treemap


class TestServiceLineBreakdown:
    def test_pipeline_and_booked_split(self, scenario_records: pd.DataFrame) -> None:
        rows = {r["service_line"]: r for r in service_line_breakdown(scenario_records)}
        a = rows["A"]
        assert a["revenue"] == 150.0
        assert a["count"] == 2
        assert a["average_size"] == 75.0
        assert (a["pipeline_count"], a["pipeline_revenue"]) == (1, 50.0)
        assert (a["booked_count"], a["booked_revenue"]) == (1, 100.0)
        assert rows["B"]["pipeline_count"] == 0

    def test_sorted_by_revenue(self, scenario_records: pd.DataFrame) -> None:
        assert [r["service_line"] for r in service_line_breakdown(scenario_records)] == ["B", "A"]


class TestOfferings:
    def test_keyed_by_line_and_offering(self, scenario_records: pd.DataFrame) -> None:
        rows = offering_breakdown(scenario_records)
        assert [r["key"] for r in rows] == ["B - Audit", "A - Cloud"]
        assert rows[1]["count"] == 2

    def test_missing_offering(self, make_records) -> None:
        records = make_records([{"Opportunity ID": "1", "Gross Revenue": 5, "Service Line 1": "A"}])
        assert offering_breakdown(records)[0]["key"] == "A - Unspecified"

    def test_treemap_hierarchy(self, scenario_records: pd.DataFrame) -> None:
        tree = treemap(offering_breakdown(scenario_records))
        assert tree["value"] == 350.0
        assert [child["name"] for child in tree["children"]] == ["B", "A"]
        assert tree["children"][1]["children"] == [{"name": "Cloud", "value": 150.0, "count": 2}]
