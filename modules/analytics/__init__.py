"""Pipeline analytics: overview, funnel, stage timing, resume and source effectiveness."""

from .models import (
    FunnelAnalytics,
    FunnelStage,
    OverviewAnalytics,
    ResumeAnalytics,
    ResumeEffectiveness,
    SourceAnalytics,
    SourceMetrics,
    StageTimeAnalytics,
    StageTimeMetrics,
)
from .service import (
    get_overview,
    get_funnel,
    get_stage_time,
    get_resume_effectiveness,
    get_source_analytics,
)

__all__ = [
    "FunnelAnalytics",
    "FunnelStage",
    "OverviewAnalytics",
    "ResumeAnalytics",
    "ResumeEffectiveness",
    "SourceAnalytics",
    "SourceMetrics",
    "StageTimeAnalytics",
    "StageTimeMetrics",
    "get_overview",
    "get_funnel",
    "get_stage_time",
    "get_resume_effectiveness",
    "get_source_analytics",
]
