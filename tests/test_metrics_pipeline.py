"""Tests for the pipeline page builders."""

import pandas as pd
import pytest

from opportunity_core.data import build_data_context, prepare_context
from opportunity_core.filters import normalize_filters
from opportunity_core.metrics_pipeline import (
    compute_pipeline,
    pipeline_by_status,
    service_line_distribution,
    stage_revenue_by_service_line,
    status_funnel,
)


class TestStatusFunnel:
    def test_ascending_by_status(self, scenario_records: pd.DataFrame) -> None:
        funnel = status_funnel(scenario_records)
        assert [row["status"] for row in funnel] == [1, 14]
        assert funnel[0] == {"status": 1, "label": "1 - New Lead", "count": 1, "revenue": 50.0}
        assert funnel[1]["count"] == 2
        assert funnel[1]["revenue"] == 300.0

    def test_empty(self, scenario_records: pd.DataFrame) -> None:
        assert status_funnel(scenario_records.iloc[0:0]) == []

    def test_open_stages_zero_filled(self, scenario_records: pd.DataFrame) -> None:
        rows = pipeline_by_status(scenario_records)
        assert [row["status"] for row in rows] == [1, 4, 6, 11]
        assert [row["count"] for row in rows] == [1, 0, 0, 0]
        assert rows[3]["label"] == "11 - Final Negotiation"


class TestServiceLineDistribution:
    def test_groups_on_first_slot_only(self, scenario_records: pd.DataFrame) -> None:
        rows = service_line_distribution(scenario_records)
        assert rows == [
            {"name": "B", "count": 1, "revenue": 200.0},
            {"name": "A", "count": 2, "revenue": 150.0},
        ]

    def test_uses_net_when_asked(self, scenario_records: pd.DataFrame) -> None:
        rows = service_line_distribution(scenario_records, use_net=True)
        assert {r["name"]: r["revenue"] for r in rows} == {"B": 150.0, "A": 120.0}

    def test_stage_split(self, make_records) -> None:
        records = make_records(
            [
                {"Opportunity ID": "1", "Status": 1, "Gross Revenue": 10, "Service Line 1": "A"},
                {"Opportunity ID": "2", "Status": 4, "Gross Revenue": 20, "Service Line 1": "A"},
                {"Opportunity ID": "3", "Status": 6, "Gross Revenue": 30, "Service Line 1": "A"},
                {"Opportunity ID": "4", "Status": 11, "Gross Revenue": 40, "Service Line 1": "B"},
            ]
        )
        rows = stage_revenue_by_service_line(records)
        assert rows[0] == {"service_line": "A", "early": 10.0, "mid": 50.0, "late": 0.0, "total": 60.0}
        assert rows[1]["late"] == 40.0


class TestComputePipeline:
    def _payload(self, records: pd.DataFrame, raw_filters: dict) -> dict:
        data_ctx = build_data_context(records)
        filters = normalize_filters(raw_filters, sub_segment_map=data_ctx["sub_segment_map"])
        return compute_pipeline(filters, prepare_context(filters, data_ctx))

    def test_open_records_only(self, scenario_records: pd.DataFrame) -> None:
        payload = self._payload(scenario_records, {})
        assert payload["kpis"]["count"] == 1
        assert payload["kpis"]["total_revenue"] == 50.0
        assert payload["kpis"]["median_deal"] == 50.0
        assert [row["opportunity_id"] for row in payload["opportunities"]] == ["3"]
        assert payload["filters"]["top_n"] == 10

    def test_allocation_share(self, scenario_records: pd.DataFrame) -> None:
        payload = self._payload(scenario_records, {"criteria": {"service_lines": ["B"]}})
        kpis = payload["kpis"]
        assert kpis["total_revenue"] == pytest.approx(35.0)
        assert kpis["unallocated_revenue"] == 50.0
        assert kpis["allocation_share_pct"] == pytest.approx(70.0)
        assert kpis["allocated_count"] == 1

    def test_charts_are_vega_lite_specs(self, scenario_records: pd.DataFrame) -> None:
        charts = self._payload(scenario_records, {})["charts"]
        assert set(charts) == {"funnel", "service_lines", "stages", "size_bands"}
        assert "$schema" in charts["funnel"]
        assert "vega-lite" in charts["funnel"]["$schema"]
