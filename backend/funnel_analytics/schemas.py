"""Pydantic schemas for analytics response payloads.

Units are fixed across every response: rates and percentages are
percentage points (0-100), durations are seconds, revenue is raw currency
units.
"""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = Field(description="Service status", examples=["ok"])


class ErrorResponse(BaseModel):
    """Standard error response format."""

    detail: str = Field(description="Error message", examples=["Funnel not found"])


# =============================================================================
# SHARED ROWS
# =============================================================================

class DimensionRow(BaseModel):
    """One group of a session-level breakdown."""

    sessions: int
    conversions: int
    conversion_rate: float
    revenue: float
    percentage: float


class DeviceRow(DimensionRow):
    device: str


class BrowserRow(DimensionRow):
    browser: str


class OsRow(DimensionRow):
    os: str


class CountryRow(DimensionRow):
    country_code: str
    country_name: str


class CityRow(DimensionRow):
    city: str
    country_code: str


# =============================================================================
# SESSION-LEVEL
# =============================================================================

class UtmCombination(BaseModel):
    source: Optional[str] = None
    medium: Optional[str] = None
    campaign: Optional[str] = None
    events: int


class OverviewResponse(BaseModel):
    total_events: int
    total_sessions: int
    page_views: int
    conversions: int
    revenue: float
    avg_session_duration: int
    top_utm: List[UtmCombination]


class TrafficSourceRow(BaseModel):
    source: str
    medium: str
    campaign: str
    sessions: int
    conversions: int
    conversion_rate: float
    revenue: float
    percentage: float


class TrafficSourcesResponse(BaseModel):
    total_sessions: int
    sources: List[TrafficSourceRow]


class UtmRow(BaseModel):
    key: str
    source: Optional[str] = None
    medium: Optional[str] = None
    campaign: Optional[str] = None
    sessions: int
    conversions: int
    conversion_rate: float
    revenue: float
    avg_page_views: float
    avg_revenue: float
    revenue_per_conversion: float


class UtmTotals(BaseModel):
    sessions: int
    conversions: int
    revenue: float
    conversion_rate: float


class UtmAnalyticsResponse(BaseModel):
    group_by: str
    data: List[UtmRow]
    totals: UtmTotals


class SessionTrendPoint(BaseModel):
    date: str = Field(description="Bucket key, e.g. 2025-12-30 or 2025-12-30T14:00")
    label: str
    sessions: int
    page_views: int
    conversions: int
    revenue: float
    avg_duration: int
    avg_experience_score: int


class DurationBucketRow(BaseModel):
    range: str
    sessions: int
    percentage: float


class SessionTotals(BaseModel):
    sessions: int
    page_views: int
    conversions: int
    revenue: float
    conversion_rate: float
    avg_duration: int
    avg_page_views: float


class SessionsTrendResponse(BaseModel):
    interval: str
    trend: List[SessionTrendPoint]
    duration_distribution: List[DurationBucketRow]
    totals: SessionTotals


class DeviceAnalyticsResponse(BaseModel):
    total_sessions: int
    devices: List[DeviceRow]
    browsers: List[BrowserRow]
    operating_systems: List[OsRow]


class GeographyAnalyticsResponse(BaseModel):
    total_sessions: int
    countries: List[CountryRow]
    cities: List[CityRow]


class DevicePerformance(BaseModel):
    device: str
    avg_lcp: Optional[float] = None
    avg_inp: Optional[float] = None
    avg_cls: Optional[float] = None
    avg_experience_score: Optional[float] = None
    sessions: int


class PerformanceAnalyticsResponse(BaseModel):
    avg_lcp: Optional[float] = None
    avg_inp: Optional[float] = None
    avg_cls: Optional[float] = None
    avg_fcp: Optional[float] = None
    avg_ttfb: Optional[float] = None
    avg_experience_score: Optional[float] = None
    sessions_with_vitals: int
    by_device: List[DevicePerformance]


class FlowNodeOut(BaseModel):
    id: str
    label: str
    count: int = Field(description="Distinct sessions that reached this node")


class FlowLinkOut(BaseModel):
    source: str
    target: str
    value: int = Field(description="Observed transitions from source to target")


class FlowMetrics(BaseModel):
    total_sessions: int
    converted_sessions: int
    conversion_rate: float
    drop_off_rate: float


class FunnelFlowResponse(BaseModel):
    nodes: List[FlowNodeOut]
    links: List[FlowLinkOut]
    metrics: FlowMetrics


class StageSnapshotOut(BaseModel):
    stage: str
    sessions: int
    conversions: int
    conversion_rate: float
    drop_off_rate: float = Field(description="Negative when a stage has more sessions than the one before it")
    abandonments: int
    avg_time_in_stage: Optional[int] = None


class StageFlowResponse(BaseModel):
    stages: List[StageSnapshotOut]
    total_sessions: int
    final_conversions: int
    overall_conversion_rate: str = Field(examples=["20.00"])
    unrecognized_stages: List[str]


class TouchSplit(BaseModel):
    conversions: Dict[str, int]
    revenue: Dict[str, float]


class PlatformAttributionRow(BaseModel):
    platform: str
    first_touch_conversions: int
    first_touch_revenue: float
    last_touch_conversions: int
    last_touch_revenue: float


class CampaignAttributionRow(BaseModel):
    key: str
    platform: str
    campaign: str
    conversions: int
    revenue: float


class ConversionsByPlatformResponse(BaseModel):
    total_conversions: int
    total_revenue: float
    first_touch: TouchSplit
    last_touch: TouchSplit
    platforms: List[PlatformAttributionRow]
    top_campaigns: List[CampaignAttributionRow]


class CampaignRevenueRow(BaseModel):
    campaign: str
    conversions: int
    revenue: float


class AdPlatformRow(BaseModel):
    platform: str
    conversions: int
    revenue: float
    aov: float
    first_touch_attributed: int
    last_touch_attributed: int
    top_campaigns: List[CampaignRevenueRow]


class AdTimelinePoint(BaseModel):
    date: str
    platforms: Dict[str, int]
    total: int


class AdSummary(BaseModel):
    total_conversions: int
    total_revenue: float
    aov: float
    platform_count: int


class AdPerformanceResponse(BaseModel):
    platforms: List[AdPlatformRow]
    timeline: List[AdTimelinePoint]
    summary: AdSummary


# =============================================================================
# EVENT-LEVEL
# =============================================================================

class EventTrendPoint(BaseModel):
    date: str
    label: str
    page_views: int
    custom_events: int
    conversions: int
    total_events: int
    revenue: float


class EventTypeRow(BaseModel):
    event_name: str
    category: str
    count: int
    percentage: float


class EventTotals(BaseModel):
    total_events: int
    page_views: int
    custom_events: int
    conversions: int
    revenue: float


class EventsTrendResponse(BaseModel):
    interval: str
    trend: List[EventTrendPoint]
    event_types: List[EventTypeRow]
    totals: EventTotals


class EventsOverTimePoint(BaseModel):
    date: str
    label: str
    events: int
    conversions: int


class EventsOverTimeResponse(BaseModel):
    interval: str
    data: List[EventsOverTimePoint]


class CategoryTrendPoint(BaseModel):
    date: str
    label: str
    counts: Dict[str, int]


class EventCategoryTrendResponse(BaseModel):
    interval: str
    categories: List[str]
    data: List[CategoryTrendPoint]


class CategoryRow(BaseModel):
    category: str
    count: int
    avg_value: float
    sessions: int
    converted_sessions: int
    conversion_rate: float
    percentage: float


class CategoryBreakdownResponse(BaseModel):
    total_events: int
    categories: List[CategoryRow]


class MicroConversionRow(BaseModel):
    micro_conversion_type: str
    category: str
    description: Optional[str] = None
    count: int
    unique_sessions: int
    converted_sessions: int
    conversion_rate: float
    avg_value: float


class TopMicroConversionsResponse(BaseModel):
    micro_conversions: List[MicroConversionRow]


class PropertyValueRow(BaseModel):
    value: str
    count: int
    revenue: float
    percentage: float


class PropertyBreakdown(BaseModel):
    property: str
    values: List[PropertyValueRow]
    distinct_values: int


class EventPropertiesResponse(BaseModel):
    event_name: Optional[str] = None
    total_events: int
    properties: List[PropertyBreakdown]


class FrequencyBucketRow(BaseModel):
    bucket: str
    label: str
    user_count: int
    total_events: int
    percentage: float
    avg_frequency: float


class EventFrequencyResponse(BaseModel):
    event_name: Optional[str] = None
    total_users: int
    total_events: int
    avg_frequency: float
    distribution: List[FrequencyBucketRow]


class EventDimensionRow(BaseModel):
    count: int
    conversions: int
    conversion_rate: float
    revenue: float
    percentage: float


class EventCountryRow(EventDimensionRow):
    country_code: str
    country_name: str


class EventCityRow(EventDimensionRow):
    city: str


class EventGeographyResponse(BaseModel):
    total_events: int
    countries: List[EventCountryRow]
    cities: List[EventCityRow]


class EventDeviceRow(EventDimensionRow):
    device: str


class EventOsRow(EventDimensionRow):
    os: str


class EventDevicesResponse(BaseModel):
    total_events: int
    devices: List[EventDeviceRow]
    operating_systems: List[EventOsRow]


class EventBrowserRow(EventDimensionRow):
    browser: str
    top_version: Optional[str] = None
    total_versions: int


class EventBrowsersResponse(BaseModel):
    total_events: int
    browsers: List[EventBrowserRow]


class EventEngagementRow(BaseModel):
    event_name: str
    occurrences: int
    sessions: int
    avg_engagement: float
    avg_duration: int
    avg_active_time: int
    conversions: int
    conversion_rate: float
    revenue: float


class EventEngagementResponse(BaseModel):
    sessions_with_engagement: int
    avg_engagement: float
    events: List[EventEngagementRow]


class HeatmapCell(BaseModel):
    day: int = Field(description="0 = Sunday")
    day_name: str
    hour: int
    count: int
    revenue: float


class PurchaseHeatmapResponse(BaseModel):
    cells: List[HeatmapCell]
    peak: Optional[HeatmapCell] = None
    total_purchases: int
    total_revenue: float


class VitalMetricStats(BaseModel):
    """Distribution of one Web Vitals metric; milliseconds except CLS."""

    metric: str = Field(examples=["lcp"])
    total: int
    avg: float
    p50: float
    p75: float
    p90: float
    p95: float
    min: float
    max: float
    good_count: int
    needs_improvement_count: int
    poor_count: int
    good_percent: float
    needs_improvement_percent: float
    poor_percent: float


class WebVitalsStatsResponse(BaseModel):
    stats: List[VitalMetricStats]
    passing_rate: float = Field(description="Share of all samples rated GOOD")
    total_vitals: int


# =============================================================================
# VISITORS
# =============================================================================

class VisitorProfileRow(BaseModel):
    id: str
    display_name: Optional[str] = None
    identified_user_id: Optional[str] = None
    first_seen: Optional[str] = None
    last_seen: Optional[str] = None
    total_sessions: int
    total_events: int
    lifecycle_stage: Optional[str] = None
    country_code: str
    country_name: str
    city: str
    device_type: str
    browser_name: str


class VisitorProfilesResponse(BaseModel):
    profiles: List[VisitorProfileRow]
    next_cursor: Optional[str] = None


class VisitorProfileDetail(VisitorProfileRow):
    user_properties: Dict[str, Any] = Field(default_factory=dict)


class VisitorSessionRow(BaseModel):
    session_id: str
    started_at: Optional[str] = None
    ended_at: Optional[str] = None
    duration_seconds: Optional[int] = None
    page_views: int
    events_count: int
    current_stage: Optional[str] = None
    converted: bool
    conversion_value: float
    first_source: Optional[str] = None
    last_source: Optional[str] = None
    device_type: Optional[str] = None
    browser_name: Optional[str] = None
    country_code: Optional[str] = None
    city: Optional[str] = None
    engagement_rate: Optional[float] = None
    experience_score: Optional[float] = None


class VisitorTotals(BaseModel):
    sessions: int
    page_views: int
    events: int
    conversions: int
    revenue: float
    avg_engagement_rate: float
    avg_experience_score: float


class VisitorProfileResponse(BaseModel):
    profile: VisitorProfileDetail
    sessions: List[VisitorSessionRow]
    totals: VisitorTotals


class WebVitalsOut(BaseModel):
    lcp: Optional[float] = None
    inp: Optional[float] = None
    cls: Optional[float] = None
    fcp: Optional[float] = None
    ttfb: Optional[float] = None
    rating: Optional[str] = None


class JourneyEvent(BaseModel):
    id: str
    session_id: str
    event_name: str
    event_category: Optional[str] = None
    page_path: Optional[str] = None
    page_title: Optional[str] = None
    funnel_stage: Optional[str] = None
    is_micro_conversion: bool
    is_conversion: bool
    revenue: Optional[float] = None
    timestamp: Optional[str] = None
    web_vitals: WebVitalsOut


class VisitorJourneyResponse(BaseModel):
    anonymous_id: str
    session_count: int
    events: List[JourneyEvent]


class JourneySession(VisitorSessionRow):
    anonymous_id: Optional[str] = None
    web_vitals: WebVitalsOut


class SessionJourneyResponse(BaseModel):
    session: JourneySession
    stage_history: List[Dict[str, Any]]
    events: List[JourneyEvent]


class ExportedProfile(BaseModel):
    anonymous_id: str
    display_name: Optional[str] = None
    identified_user_id: Optional[str] = None
    user_properties: Dict[str, Any]
    first_seen: Optional[str] = None
    last_seen: Optional[str] = None
    total_sessions: int
    total_events: int


class ExportedSession(BaseModel):
    session_id: str
    started_at: Optional[str] = None
    ended_at: Optional[str] = None
    duration_seconds: Optional[int] = None
    page_views: int
    device_type: Optional[str] = None
    browser_name: Optional[str] = None
    country_code: Optional[str] = None
    city: Optional[str] = None
    converted: bool
    conversion_value: Optional[float] = None


class ExportedEvent(BaseModel):
    event_id: Optional[str] = None
    event_name: str
    timestamp: Optional[str] = None
    page_url: Optional[str] = None
    page_title: Optional[str] = None
    device_type: Optional[str] = None
    country_code: Optional[str] = None
    city: Optional[str] = None


class VisitorExportResponse(BaseModel):
    """Everything stored about one visitor in one funnel, newest first."""

    profile: ExportedProfile
    sessions: List[ExportedSession]
    events: List[ExportedEvent]


# =============================================================================
# DASHBOARD
# =============================================================================

class DashboardResponse(BaseModel):
    results: Dict[str, Any] = Field(description="Analysis name -> result payload")
    errors: Dict[str, str] = Field(description="Analysis name -> error message for failed analyses")
