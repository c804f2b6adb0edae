"""
Canonical column names for opportunity records.

Spreadsheet headers are renamed to these snake_case columns on ingestion; the
rest of the package only refers to the constants below.
"""

from __future__ import annotations

from typing import Dict, List

# Header label -> canonical column
OPPORTUNITY_COLUMNS: Dict[str, str] = {
    "Opportunity ID": "opportunity_id",
    "Opportunity": "opportunity_name",
    "Status": "status",
    "Account": "account",
    "Sub Segment Code": "sub_segment_code",
    "Sub Segment": "sub_segment",
    "Gross Revenue": "gross_revenue",
    "Net Revenue": "net_revenue",
    "CM1%": "cm1_pct",
    "Service Line 1": "service_line_1",
    "Service Line 2": "service_line_2",
    "Service Line 3": "service_line_3",
    "Service Offering 1": "service_offering_1",
    "Service Offering 2": "service_offering_2",
    "Service Offering 3": "service_offering_3",
    "Service Offering 1 %": "service_offering_pct_1",
    "Service Offering 2 %": "service_offering_pct_2",
    "Service Offering 3 %": "service_offering_pct_3",
    "Technology Partner 1": "technology_partner_1",
    "Technology Partner 2": "technology_partner_2",
    "Technology Partner 3": "technology_partner_3",
    "Creation Date": "creation_date",
    "Last Status Change Date": "last_status_change_date",
    "Winning Date": "winning_date",
    "Lost Date": "lost_date",
    "Manager": "manager",
    "Partner": "partner",
    "EM": "em",
    "EP": "ep",
    "Project Type": "project_type",
    "Jobcode": "jobcode",
    "Lost Comment": "lost_comment",
    "CRM Link": "crm_link",
}

REQUIRED_HEADERS: List[str] = ["Opportunity ID", "Status", "Gross Revenue"]

SERVICE_LINE_COLUMNS: List[str] = ["service_line_1", "service_line_2", "service_line_3"]
SERVICE_PCT_COLUMNS: List[str] = ["service_offering_pct_1", "service_offering_pct_2", "service_offering_pct_3"]
SERVICE_OFFERING_COLUMNS: List[str] = ["service_offering_1", "service_offering_2", "service_offering_3"]
TECH_PARTNER_COLUMNS: List[str] = ["technology_partner_1", "technology_partner_2", "technology_partner_3"]

MONEY_COLUMNS: List[str] = ["gross_revenue", "net_revenue"]
PERCENT_COLUMNS: List[str] = ["cm1_pct", *SERVICE_PCT_COLUMNS]
DATE_COLUMNS: List[str] = ["creation_date", "last_status_change_date", "winning_date", "lost_date"]
TEXT_COLUMNS: List[str] = [
    "opportunity_id",
    "opportunity_name",
    "account",
    "sub_segment_code",
    "sub_segment",
    *SERVICE_LINE_COLUMNS,
    *SERVICE_OFFERING_COLUMNS,
    *TECH_PARTNER_COLUMNS,
    "manager",
    "partner",
    "em",
    "ep",
    "project_type",
    "jobcode",
    "lost_comment",
    "crm_link",
]

# Derived by the allocation engine
ALLOCATED_GROSS = "allocated_gross_revenue"
ALLOCATED_NET = "allocated_net_revenue"
IS_ALLOCATED = "is_allocated"
ALLOCATION_PCT = "allocation_percentage"
ALLOCATED_LINE = "allocated_service_line"
ALLOCATION_COLUMNS: List[str] = [ALLOCATED_GROSS, ALLOCATED_NET, IS_ALLOCATED, ALLOCATION_PCT, ALLOCATED_LINE]

ALLOCATED_VALUE_COLUMNS: Dict[str, str] = {"gross_revenue": ALLOCATED_GROSS, "net_revenue": ALLOCATED_NET}

# Pipeline stages
STATUS_NEW_LEAD = 1
STATUS_GO_APPROVED = 4
STATUS_PROPOSAL_DELIVERED = 6
STATUS_FINAL_NEGOTIATION = 11
STATUS_BOOKED = 14
STATUS_LOST = 15

STATUS_LABELS: Dict[int, str] = {
    STATUS_NEW_LEAD: "New Lead",
    STATUS_GO_APPROVED: "Go Approved",
    STATUS_PROPOSAL_DELIVERED: "Proposal Delivered",
    STATUS_FINAL_NEGOTIATION: "Final Negotiation",
    STATUS_BOOKED: "Booked",
    STATUS_LOST: "Lost",
}
OPEN_STATUSES: List[int] = [STATUS_NEW_LEAD, STATUS_GO_APPROVED, STATUS_PROPOSAL_DELIVERED, STATUS_FINAL_NEGOTIATION]
CLOSED_STATUSES: List[int] = [STATUS_BOOKED, STATUS_LOST]

# Early / mid / late pipeline grouping used by the stacked service line view
STAGE_GROUPS: Dict[str, List[int]] = {
    "early": [STATUS_NEW_LEAD],
    "mid": [STATUS_GO_APPROVED, STATUS_PROPOSAL_DELIVERED],
    "late": [STATUS_FINAL_NEGOTIATION],
}

SPECIAL_SEGMENT_CODES = frozenset({"AUTO", "CLR", "IEM"})
OPERATIONS_LINE = "Operations"
ALL_SERVICE_LINES_LABEL = "All Service Lines"
CAPPED_SUFFIX = " (capped at 100%)"


def status_label(status: object) -> str:
    """'11 - Final Negotiation' for known stages, the bare code otherwise."""
    try:
        code = int(status)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return "Unknown"
    label = STATUS_LABELS.get(code)
    return f"{code} - {label}" if label else str(code)
