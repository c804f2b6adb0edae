"""Tests for period-over-period pipeline insights."""

from datetime import datetime

import pandas as pd
import pytest

from opportunity_core.data import build_data_context, prepare_context
from opportunity_core.filters import normalize_filters
from opportunity_core.metrics_insights import change_pct, compute_insights, pipeline_insights

NOW = datetime(2024, 3, 20)


@pytest.fixture
def moving_records(make_records) -> pd.DataFrame:
    return make_records(
        [
            {"Opportunity ID": "a", "Status": 6, "Gross Revenue": 10, "Creation Date": "2024-03-01", "Last Status Change Date": "2024-03-10"},
            {"Opportunity ID": "b", "Status": 6, "Gross Revenue": 20, "Creation Date": "2024-01-25", "Last Status Change Date": "2024-02-01"},
            {"Opportunity ID": "c", "Status": 11, "Gross Revenue": 30, "Creation Date": "2023-12-01", "Last Status Change Date": "2024-03-18"},
        ]
    )


class TestChangePct:
    def test_values(self) -> None:
        assert change_pct(1, 2) == -50.0
        assert change_pct(3, 0) == 100.0
        assert change_pct(0, 0) == 0.0


class TestPipelineInsights:
    def test_windows(self, moving_records: pd.DataFrame) -> None:
        out = pipeline_insights(moving_records, now=NOW)
        assert out["new_opportunities"]["count"] == 1
        assert out["new_opportunities"]["previous_count"] == 1
        assert out["new_opportunities"]["change_pct"] == 0.0
        assert out["moved_to_6"]["count"] == 1
        assert out["moved_to_6"]["revenue"] == 10.0
        assert out["moved_to_11"]["count"] == 1
        assert out["moved_to_11"]["change_pct"] == 100.0
        assert out["moved_to_11"]["label"] == "11 - Final Negotiation"

    def test_revenue_follows_segment_rule(self, make_records) -> None:
        records = make_records(
            [
                {
                    "Opportunity ID": "ops",
                    "Status": 1,
                    "Gross Revenue": 200,
                    "Net Revenue": 100,
                    "Service Line 1": "Operations",
                    "Service Offering 1 %": 25,
                    "Service Line 2": "Strategy",
                    "Service Offering 2 %": 75,
                    "Creation Date": "2024-03-15",
                },
                {
                    "Opportunity ID": "auto",
                    "Status": 1,
                    "Sub Segment Code": "AUTO",
                    "Gross Revenue": 80,
                    "Service Line 1": "Operations",
                    "Service Offering 1 %": 10,
                    "Creation Date": "2024-03-16",
                },
            ]
        )
        assert pipeline_insights(records, now=NOW)["new_opportunities"]["revenue"] == pytest.approx(130.0)
        assert pipeline_insights(records, now=NOW, use_net=True)["new_opportunities"]["revenue"] == pytest.approx(25.0)

    def test_revenue_ignores_allocation(self, make_records) -> None:
        records = make_records(
            [
                {
                    "Opportunity ID": "x",
                    "Status": 6,
                    "Gross Revenue": 100,
                    "Service Line 1": "A",
                    "Service Offering 1 %": 40,
                    "Service Line 2": "B",
                    "Service Offering 2 %": 60,
                    "Last Status Change Date": "2024-03-19",
                }
            ]
        )
        data_ctx = build_data_context(records)
        filters = normalize_filters({"criteria": {"service_lines": ["A"]}})
        payload = compute_insights(filters, prepare_context(filters, data_ctx), now=NOW)
        assert payload["moved_to_6"]["count"] == 1
        assert payload["moved_to_6"]["revenue"] == pytest.approx(100.0)

    def test_window_length(self, moving_records: pd.DataFrame) -> None:
        out = pipeline_insights(moving_records, now=NOW, days=5)
        assert out["moved_to_6"]["count"] == 0
        assert out["moved_to_11"]["count"] == 1

    def test_compute_insights_respects_filters(self, moving_records: pd.DataFrame) -> None:
        data_ctx = build_data_context(moving_records)
        filters = normalize_filters({"criteria": {"statuses": [11]}})
        payload = compute_insights(filters, prepare_context(filters, data_ctx), now=NOW)
        assert payload["new_opportunities"]["count"] == 0
        assert payload["moved_to_6"]["count"] == 0
        assert payload["moved_to_11"]["revenue"] == 30.0
        assert payload["window_days"] == 30
