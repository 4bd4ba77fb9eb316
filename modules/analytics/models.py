"""Report models returned by the analytics service."""

from pydantic import BaseModel, Field


class OverviewAnalytics(BaseModel):
    """High-level application statistics."""
    total_applications: int = 0
    active_applications: int = 0
    closed_applications: int = 0
    response_rate: float = 0.0
    avg_days_to_first_response: float = 0.0


class FunnelStage(BaseModel):
    stage_name: str
    stage_order: int
    count: int = Field(0, description="Distinct applications with an entry on this stage")
    conversion_rate: float = 100.0
    drop_off_rate: float = 0.0


class FunnelAnalytics(BaseModel):
    stages: list[FunnelStage] = []


class StageTimeMetrics(BaseModel):
    """Dwell time on one stage. Open entries count their elapsed time."""
    stage_name: str
    stage_order: int
    avg_days: float = 0.0
    min_days: float = 0.0
    max_days: float = 0.0
    applications_count: int = 0


class StageTimeAnalytics(BaseModel):
    stages: list[StageTimeMetrics] = []


class ResumeEffectiveness(BaseModel):
    resume_id: int
    resume_title: str
    applications_count: int = 0
    responses_count: int = 0
    interviews_count: int = 0
    response_rate: float = 0.0


class ResumeAnalytics(BaseModel):
    resumes: list[ResumeEffectiveness] = []


class SourceMetrics(BaseModel):
    source_name: str
    applications_count: int = 0
    responses_count: int = 0
    interviews_count: int = 0
    response_rate: float = 0.0


class SourceAnalytics(BaseModel):
    sources: list[SourceMetrics] = []
