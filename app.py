import pandas as pd
import streamlit as st
from contextlib import contextmanager
from typing import Any, Dict, List, Optional

from opportunity_core.data import IngestError, load_dashboard_data, prepare_context
from opportunity_core.filters import booking_records, normalize_filters, pipeline_records, reachable_sub_segments
from opportunity_core.metrics_bookings import compute_bookings
from opportunity_core.metrics_insights import compute_insights
from opportunity_core.metrics_opportunities import compute_opportunities, export_frame
from opportunity_core.metrics_pipeline import compute_pipeline
from opportunity_core.metrics_rankings import compute_rankings
from opportunity_core.metrics_service_lines import compute_service_lines
from opportunity_core.schema import status_label


# ---------- UI / layout helpers ----------
def inject_base_styles():
    if st.session_state.get("_base_css_injected"):
        return
    st.markdown(
        """
        <style>
        .app-top-bar {padding: 6px 0 4px;border-bottom: 1px solid #e5e7eb;margin-bottom: 10px;}
        .app-top-bar .breadcrumb {color: #6b7280;font-size: 0.9rem;margin-bottom: 2px;}
        .app-top-bar .page-title {font-size: 1.4rem;font-weight: 700;color: #111827;}
        .card {border: 1px solid #e5e7eb;border-radius: 12px;padding: 16px;background: #ffffff;
               box-shadow: 0 1px 2px rgba(0,0,0,0.04); margin-bottom: 12px;}
        .card-title {font-weight: 600;font-size: 1.0rem;color: #111827;margin-bottom: 8px;}
        .chip-row {display: flex;flex-wrap: wrap;gap: 6px;margin-top: 6px;}
        .chip {background: #f3f4f6;border: 1px solid #e5e7eb;border-radius: 14px;padding: 4px 10px;font-size: 0.85rem;color: #374151;}
        </style>
        """,
        unsafe_allow_html=True,
    )
    st.session_state["_base_css_injected"] = True


@contextmanager
def card(title: str):
    container = st.container()
    container.markdown(f"<div class='card'><div class='card-title'>{title}</div>", unsafe_allow_html=True)
    body = container.container()
    with body:
        yield body
    container.markdown("</div>", unsafe_allow_html=True)


def format_currency_0(value: Optional[float]) -> str:
    if value is None or pd.isna(value):
        return "N/A"
    return f"€{value:,.0f}"


def format_pct(value: Optional[float]) -> str:
    if value is None or pd.isna(value):
        return "N/A"
    return f"{value:.1f}%"


def format_filter_summary(criteria: Dict[str, List[Any]]) -> str:
    labels = {
        "service_lines": "Service lines",
        "statuses": "Status",
        "accounts": "Accounts",
        "sub_segment_codes": "Sub segment codes",
        "sub_segments": "Sub segments",
        "managers": "Managers",
        "partners": "Partners",
        "technology_partners": "Tech partners",
    }
    chips = [f"{label}: {len(criteria[key])} selected" for key, label in labels.items() if criteria.get(key)]
    if not chips:
        chips = ["All opportunities"]
    return "".join([f"<span class='chip'>{txt}</span>" for txt in chips])


def render_page_header(title: str, summary_html: str, export_df: Optional[pd.DataFrame] = None, export_name: str = "export.csv"):
    inject_base_styles()
    c1, c2 = st.columns([8, 2])
    with c1:
        st.markdown(
            f"<div class='app-top-bar'><div class='breadcrumb'>Opportunities</div><div class='page-title'>{title}</div></div>",
            unsafe_allow_html=True,
        )
    with c2:
        if export_df is not None and not export_df.empty:
            st.download_button(
                "Export CSV",
                data=export_df.to_csv(index=False).encode("utf-8"),
                file_name=export_name,
                mime="text/csv",
            )
    st.markdown(f"<div class='chip-row'>{summary_html}</div>", unsafe_allow_html=True)


def show_chart(spec: Optional[Dict[str, Any]], empty_message: str = "No data for the selected filters."):
    if spec is None:
        st.info(empty_message)
        return
    st.vega_lite_chart(spec, use_container_width=True)


def records_table(rows: List[Dict[str, Any]], columns: Optional[List[str]] = None):
    if not rows:
        st.info("No opportunities match the selected filters.")
        return
    df = pd.DataFrame(rows)
    if columns:
        df = df[[c for c in columns if c in df.columns]]
    st.dataframe(df, use_container_width=True, hide_index=True)


# ---------- Pages ----------
def render_pipeline(payload: Dict[str, Any]):
    kpis = payload["kpis"]
    cols = st.columns(4)
    cols[0].metric("Open opportunities", f"{kpis['count']:,}")
    cols[1].metric(
        "Pipeline revenue",
        format_currency_0(kpis["total_revenue"]),
        delta=f"{format_pct(kpis['allocation_share_pct'])} of unallocated" if kpis["allocated_count"] else None,
        help="Allocated to the selected service lines where a record is split across several.",
    )
    cols[2].metric("Average deal", format_currency_0(kpis["average_deal"]))
    cols[3].metric("Median deal", format_currency_0(kpis["median_deal"]))

    left, right = st.columns(2)
    with left:
        with card("Pipeline by status"):
            show_chart(payload["charts"]["funnel"])
        with card("Deal size distribution"):
            show_chart(payload["charts"]["size_bands"])
    with right:
        with card("Revenue by service line"):
            show_chart(payload["charts"]["service_lines"])
        with card("Early / mid / late stage by service line"):
            show_chart(payload["charts"]["stages"])
    with card("Opportunities"):
        records_table(payload["opportunities"])


def render_bookings(payload: Dict[str, Any]):
    kpis = payload["kpis"]
    summary = payload["summary"]
    cols = st.columns(4)
    cols[0].metric("Booked", format_currency_0(kpis["booked_revenue"]), delta=f"{kpis['booked_count']} deals", delta_color="off")
    cols[1].metric("Lost", format_currency_0(kpis["lost_revenue"]), delta=f"{kpis['lost_count']} deals", delta_color="off")
    year = summary.get("year")
    booked, lost = summary["booked"], summary["lost"]
    cols[2].metric(
        f"Booked {year or ''}".strip(),
        format_currency_0(booked["revenue"]),
        delta=f"{format_pct(booked['pct_of_total_revenue'])} of total",
        delta_color="off",
    )
    cols[3].metric(
        f"Lost {year or ''}".strip(),
        format_currency_0(lost["revenue"]),
        delta=f"{format_pct(lost['pct_of_total_revenue'])} of total",
        delta_color="off",
    )

    tab_yoy, tab_cum = st.tabs(["Year over year", "Cumulative"])
    with tab_yoy:
        show_chart(payload["charts"]["year_over_year"])
    with tab_cum:
        show_chart(payload["charts"]["cumulative"])

    with card("Bookings by service line"):
        show_chart(payload["charts"]["service_lines"])

    period = payload["period"]
    with card(f"Period {period['start']} to {period['end']}"):
        cols = st.columns(3)
        for col, (key, label) in zip(
            cols, [("new_opportunities", "New opportunities"), ("new_wins", "New wins"), ("new_losses", "New losses")]
        ):
            block = period[key]
            col.metric(label, f"{block['count']:,}", delta=format_currency_0(block["revenue"]), delta_color="off")
        tabs = st.tabs(["New opportunities", "New wins", "New losses"])
        for tab, key in zip(tabs, ["new_opportunities", "new_wins", "new_losses"]):
            with tab:
                records_table(period[key]["records"], ["opportunity_id", "opportunity_name", "account", "gross_revenue", "service_line_1"])


def render_service_lines(payload: Dict[str, Any]):
    kpis = payload["kpis"]
    cols = st.columns(3)
    cols[0].metric("Service lines", kpis["service_lines"])
    cols[1].metric("Revenue", format_currency_0(kpis["total_revenue"]))
    cols[2].metric("Opportunities", f"{kpis['count']:,}")
    left, right = st.columns(2)
    with left:
        with card("Revenue by service line"):
            show_chart(payload["charts"]["revenue"])
    with right:
        with card("Average deal size"):
            show_chart(payload["charts"]["average_size"])
    with card("Offerings"):
        show_chart(payload["charts"]["offerings"])
    with card("Pipeline vs booked"):
        records_table(payload["service_lines"])


def render_rankings(payload: Dict[str, Any]):
    totals = payload["totals"]
    cols = st.columns(3)
    cols[0].metric("Booked (all accounts)", format_currency_0(totals["all_booking"]))
    cols[1].metric("Segment revenue (all accounts)", format_currency_0(totals["all_calculated"]))
    cols[2].metric("Special segments", format_currency_0(totals["special_calculated"]))
    with card("Top accounts"):
        show_chart(payload["charts"]["calculated"])
        for row in payload["accounts"]:
            st.markdown(f"**{row['account']}** · {format_currency_0(row['calculated_amount'])} · {format_pct(row['percent_of_total'])} of bookings")
            st.progress(min(int(row["target_progress_pct"]), 100))


def render_insights(payload: Dict[str, Any]):
    st.caption(f"Last {payload['window_days']} days vs the {payload['window_days']} days before")
    cols = st.columns(3)
    for col, key, label in [
        (cols[0], "new_opportunities", "New opportunities"),
        (cols[1], "moved_to_6", f"Moved to {status_label(6)}"),
        (cols[2], "moved_to_11", f"Moved to {status_label(11)}"),
    ]:
        block = payload[key]
        col.metric(label, f"{block['count']:,}", delta=f"{block['change_pct']:.0f}%")
        col.caption(format_currency_0(block["revenue"]))



def render_opportunities(payload: Dict[str, Any]):
    summary = payload["summary"]
    revenue_name = "Net" if payload["revenue_type"] == "net" else "Gross"
    cols = st.columns(4)
    cols[0].metric("Clients", f"{summary['total_clients']:,}")
    cols[1].metric("Opportunities", f"{summary['total_opportunities']:,}")
    cols[2].metric(f"{revenue_name} revenue", format_currency_0(summary["total_revenue"]))
    cols[3].metric("I&O revenue", format_currency_0(summary["total_io_revenue"]))
    with card("Top clients by I&O revenue"):
        show_chart(payload["charts"]["clients"])
    for client in payload["clients"]:
        rows = [r for r in payload["opportunities"] if r["account"] == client["account"]]
        with st.expander(f"{client['account']} · {client['count']} · {format_currency_0(client['io_revenue'])}"):
            records_table(
                rows,
                ["opportunity_id", "opportunity_name", "status_label", "revenue", "io_revenue", "allocated_service_line", "allocation_percentage", "is_sap_project", "lost_comment"],
            )


# ---------- UI setup ----------
st.set_page_config(page_title="Opportunity Dashboard", layout="wide")
inject_base_styles()
st.title("Opportunity Dashboard")
st.caption("Pipeline, bookings and service-line views over an uploaded opportunity export.")

uploaded = st.file_uploader("Opportunity export (.xlsx / .xls)", type=["xlsx", "xls"])
if uploaded is None:
    st.info("Upload an Excel export to get started.")
    st.stop()

try:
    data_ctx = load_dashboard_data(uploaded.getvalue())
except IngestError as exc:
    st.error(exc.message)
    st.stop()

options = data_ctx["options"]

# ----- Sidebar: navigation + filters -----
with st.sidebar:
    st.markdown("### Navigate")
    page = st.radio("Navigate", ["Pipeline", "Bookings", "Service Lines", "Rankings", "Insights", "Opportunities"], index=0)

    st.markdown("---")
    st.markdown("### Filters")
    service_lines = st.multiselect("Service lines", options=options["service_lines"], default=[])
    statuses = st.multiselect("Status", options=options["statuses"], format_func=status_label, default=[])
    accounts = st.multiselect("Accounts", options=options["accounts"], default=[])
    sub_segment_codes = st.multiselect("Sub segment codes", options=options["sub_segment_codes"], default=[])
    sub_segments = st.multiselect(
        "Sub segments",
        options=reachable_sub_segments(data_ctx["sub_segment_map"], sub_segment_codes),
        default=[],
    )
    managers = st.multiselect("Managers", options=options["managers"], default=[])
    partners = st.multiselect("Partners", options=options["partners"], default=[])
    technology_partners = st.multiselect("Technology partners", options=options["technology_partners"], default=[])

    st.markdown("---")
    with st.expander("Advanced settings", expanded=False):
        use_net_revenue = st.checkbox("Use net revenue", value=False)
        top_n = st.slider("Top N accounts", min_value=5, max_value=50, value=10, step=5)
        years = data_ctx["years"]
        summary_year = st.selectbox("Summary year", options=years[::-1]) if years else None
        period = st.date_input("Period", value=[])
        booking_target = st.number_input("Booking target (€)", min_value=0.0, value=1_000_000.0, step=100_000.0)
        insight_window_days = st.slider("Insight window (days)", 7, 90, 30, 1)

criteria = {
    "service_lines": service_lines,
    "statuses": statuses,
    "accounts": accounts,
    "sub_segment_codes": sub_segment_codes,
    "sub_segments": sub_segments,
    "managers": managers,
    "partners": partners,
    "technology_partners": technology_partners,
}
period_start = period[0] if len(period) > 0 else None
period_end = period[1] if len(period) > 1 else None

filters = normalize_filters(
    {
        "criteria": criteria,
        "use_net_revenue": use_net_revenue,
        "period_start": period_start,
        "period_end": period_end,
        "summary_year": summary_year,
        "top_n": top_n,
        "settings": {"booking_target": booking_target, "insight_window_days": insight_window_days},
    },
    sub_segment_map=data_ctx["sub_segment_map"],
)
ctx = prepare_context(filters, data_ctx)
filtered = ctx["filtered"]
summary_html = format_filter_summary(criteria)

if page == "Pipeline":
    render_page_header("Pipeline", summary_html, export_frame(pipeline_records(filtered), use_net=use_net_revenue), "pipeline.csv")
    render_pipeline(compute_pipeline(filters, ctx))
elif page == "Bookings":
    render_page_header("Bookings", summary_html, export_frame(booking_records(filtered), use_net=use_net_revenue), "bookings.csv")
    render_bookings(compute_bookings(filters, ctx))
elif page == "Service Lines":
    render_page_header("Service Lines", summary_html, export_frame(filtered, use_net=use_net_revenue), "service-lines.csv")
    render_service_lines(compute_service_lines(filters, ctx))
elif page == "Rankings":
    render_page_header("Account Rankings", summary_html)
    render_rankings(compute_rankings(filters, ctx))
elif page == "Insights":
    render_page_header("Pipeline Insights", summary_html)
    render_insights(compute_insights(filters, ctx))
else:
    render_page_header("Opportunities", summary_html, export_frame(filtered, use_net=use_net_revenue), "opportunities.csv")
    render_opportunities(compute_opportunities(filters, ctx))
