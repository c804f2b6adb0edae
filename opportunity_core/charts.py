from __future__ import annotations

from typing import Any, Dict, List, Optional

import altair as alt
import pandas as pd

alt.data_transformers.disable_max_rows()

STAGE_COLORS = {"early": "#93c5fd", "mid": "#3b82f6", "late": "#1e3a8a"}


def to_vega_spec(chart: alt.Chart) -> Dict[str, Any]:
    """Convert an Altair chart into a Vega-Lite spec dict (JSON-serializable)."""
    return chart.to_dict()


def bar_chart(
    rows: List[Dict[str, Any]],
    category: str,
    value: str,
    *,
    title: Optional[str] = None,
    horizontal: bool = False,
    sort_desc: bool = True,
    height: int = 280,
) -> Optional[Dict[str, Any]]:
    """Single-series bar chart; None when there is nothing to draw."""
    if not rows:
        return None
    df = pd.DataFrame(rows)[[category, value]]
    sort = "-x" if horizontal else "-y"
    cat_enc = alt.Y(f"{category}:N", sort=sort if sort_desc else None, title=None)
    val_enc = alt.X(f"{value}:Q", axis=alt.Axis(format="~s"), title=None)
    if not horizontal:
        cat_enc = alt.X(f"{category}:N", sort=sort if sort_desc else None, title=None)
        val_enc = alt.Y(f"{value}:Q", axis=alt.Axis(format="~s", gridDash=[4, 4]), title=None)
    chart = (
        alt.Chart(df)
        .mark_bar(cornerRadiusEnd=3)
        .encode(
            x=val_enc if horizontal else cat_enc,
            y=cat_enc if horizontal else val_enc,
            tooltip=[f"{category}:N", alt.Tooltip(f"{value}:Q", format=",.0f")],
        )
        .properties(height=height)
    )
    if title:
        chart = chart.properties(title=title)
    return to_vega_spec(chart)


def stacked_stage_chart(rows: List[Dict[str, Any]], *, height: int = 300) -> Optional[Dict[str, Any]]:
    """Horizontal stacked bars of early/mid/late revenue per service line."""
    if not rows:
        return None
    long = pd.DataFrame(rows).melt(
        id_vars=["service_line"], value_vars=list(STAGE_COLORS), var_name="stage", value_name="revenue"
    )
    chart = (
        alt.Chart(long)
        .mark_bar()
        .encode(
            y=alt.Y("service_line:N", sort="-x", title=None),
            x=alt.X("sum(revenue):Q", axis=alt.Axis(format="~s"), title=None),
            color=alt.Color(
                "stage:N",
                scale=alt.Scale(domain=list(STAGE_COLORS), range=list(STAGE_COLORS.values())),
                legend=alt.Legend(orient="bottom", title=None),
            ),
            order=alt.Order("stage:N"),
            tooltip=["service_line:N", "stage:N", alt.Tooltip("revenue:Q", format=",.0f")],
        )
        .properties(height=height)
    )
    return to_vega_spec(chart)


def year_series_chart(
    rows: List[Dict[str, Any]],
    years: List[str],
    *,
    suffix: str = "",
    mark: str = "bar",
    height: int = 280,
) -> Optional[Dict[str, Any]]:
    """Month on the x axis, one color per year; reads ``<year><suffix>`` columns."""
    if not rows or not years:
        return None
    records = []
    for row in rows:
        for y in years:
            records.append({"month": row["month"], "month_label": row["month_label"], "year": y, "value": row.get(f"{y}{suffix}", 0.0)})
    df = pd.DataFrame(records)
    base = alt.Chart(df).encode(
        x=alt.X("month_label:N", sort=alt.SortField("month"), title=None),
        y=alt.Y("value:Q", axis=alt.Axis(format="~s", gridDash=[4, 4]), title=None),
        color=alt.Color("year:N", legend=alt.Legend(orient="bottom", title=None)),
        tooltip=["year:N", "month_label:N", alt.Tooltip("value:Q", format=",.0f")],
    )
    if mark == "line":
        chart = base.mark_line(point={"filled": True, "size": 50})
    else:
        chart = base.mark_bar().encode(xOffset="year:N")
    return to_vega_spec(chart.properties(height=height))


def treemap_bars(rows: List[Dict[str, Any]], *, height: int = 320) -> Optional[Dict[str, Any]]:
    """Line/offering revenue as stacked bars (Vega-Lite has no treemap mark)."""
    if not rows:
        return None
    df = pd.DataFrame(rows)
    chart = (
        alt.Chart(df)
        .mark_bar()
        .encode(
            y=alt.Y("service_line:N", sort="-x", title=None),
            x=alt.X("sum(revenue):Q", axis=alt.Axis(format="~s"), title=None),
            color=alt.Color("offering:N", legend=None),
            tooltip=["service_line:N", "offering:N", alt.Tooltip("revenue:Q", format=",.0f"), "count:Q"],
        )
        .properties(height=height)
    )
    return to_vega_spec(chart)
