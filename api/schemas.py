from __future__ import annotations

from datetime import date
from typing import Dict, List, Optional

from pydantic import BaseModel, Field


class FilterCriteriaModel(BaseModel):
    sub_segment_codes: List[str] = Field(default_factory=list)
    sub_segments: List[str] = Field(default_factory=list)
    service_lines: List[str] = Field(default_factory=list)
    statuses: List[int] = Field(default_factory=list)
    managers: List[str] = Field(default_factory=list)
    partners: List[str] = Field(default_factory=list)
    accounts: List[str] = Field(default_factory=list)
    technology_partners: List[str] = Field(default_factory=list)


class ViewSettingsModel(BaseModel):
    size_band_edges: List[float] = Field(default_factory=lambda: [100_000.0, 500_000.0])
    booking_target: float = 1_000_000.0
    insight_window_days: int = Field(default=30, ge=1)


class DashboardFiltersModel(BaseModel):
    criteria: FilterCriteriaModel = Field(default_factory=FilterCriteriaModel)
    use_net_revenue: bool = False
    period_start: Optional[date] = None
    period_end: Optional[date] = None
    summary_year: Optional[int] = None
    top_n: int = Field(default=10, ge=1, le=100)
    settings: ViewSettingsModel = Field(default_factory=ViewSettingsModel)


class UploadResponse(BaseModel):
    filename: str
    rows: int
    service_lines: List[str]
    years: List[int]


class MetaOptionsResponse(BaseModel):
    accounts: List[str]
    managers: List[str]
    partners: List[str]
    statuses: List[int]
    sub_segment_codes: List[str]
    sub_segments: List[str]
    service_lines: List[str]
    technology_partners: List[str]
    sub_segment_map: Dict[str, List[str]]


class MetaListResponse(BaseModel):
    values: List[str]
