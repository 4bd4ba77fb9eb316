"""Analytics Aggregator: reports computed from a full scan of one owner's data.

Nothing is cached: each call reads the owner's applications, ledger entries
and templates and aggregates them in memory.

Rounding: every rate and day value is rounded half-up to 2 decimals. Rates
are computed from integer counts and durations from integer microseconds,
so no float error reaches the rounding step.
"""
import logging
from collections import defaultdict
from datetime import datetime, timedelta
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from common.config import get_config
from common.errors import store_errors
from common.scope import OwnerScope, require_scope
from modules.applications.models import (
    CLOSED_APPLICATION_STATUSES,
    OPEN_APPLICATION_STATUSES,
    Application,
    Job,
    Resume,
    StageEntry,
    StageTemplate,
    as_utc,
    utcnow,
)
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

logger = logging.getLogger(__name__)

TWO_PLACES = Decimal("0.01")
MICROSECONDS_PER_DAY = Decimal(86400 * 10**6)


# ---------------------------------------------------------------------------
# Numeric helpers
# ---------------------------------------------------------------------------

def round2(value: Decimal) -> float:
    return float(value.quantize(TWO_PLACES, rounding=ROUND_HALF_UP))


def percent(part: int, whole: int) -> float:
    """part / whole × 100, or 0.0 for an empty whole."""
    if not whole:
        return 0.0
    return round2(Decimal(part) * 100 / Decimal(whole))


def to_days(delta: timedelta) -> Decimal:
    return Decimal(delta // timedelta(microseconds=1)) / MICROSECONDS_PER_DAY


def mean_days(deltas: list[timedelta]) -> float:
    if not deltas:
        return 0.0
    return round2(sum((to_days(d) for d in deltas), Decimal(0)) / len(deltas))


# ---------------------------------------------------------------------------
# Scans
# ---------------------------------------------------------------------------

def _applications(session: Session, scope: OwnerScope) -> list[Application]:
    return list(
        session.scalars(
            select(Application)
            .where(Application.owner_id == scope.owner_id)
            .order_by(Application.id)
        )
    )


def _templates(session: Session, scope: OwnerScope) -> list[StageTemplate]:
    return list(
        session.scalars(
            select(StageTemplate)
            .where(StageTemplate.owner_id == scope.owner_id)
            .order_by(StageTemplate.order, StageTemplate.id)
        )
    )


def _entries(session: Session, scope: OwnerScope) -> list[tuple[StageEntry, StageTemplate]]:
    """Every ledger entry of the owner with its template."""
    rows = session.execute(
        select(StageEntry, StageTemplate)
        .join(StageTemplate, StageTemplate.id == StageEntry.stage_template_id)
        .join(Application, Application.id == StageEntry.application_id)
        .where(
            Application.owner_id == scope.owner_id,
            StageTemplate.owner_id == scope.owner_id,
        )
        .order_by(StageEntry.id)
    )
    return [(entry, template) for entry, template in rows]


def _responded(entries: Iterable[tuple[StageEntry, StageTemplate]], min_order: int) -> set[int]:
    return {e.application_id for e, t in entries if t.order > min_order}


def _interviewed(entries: Iterable[tuple[StageEntry, StageTemplate]], keyword: str) -> set[int]:
    keyword = keyword.lower()
    return {e.application_id for e, t in entries if keyword in t.name.lower()}


# ---------------------------------------------------------------------------
# Reports
# ---------------------------------------------------------------------------

@store_errors
def get_overview(session: Session, scope: OwnerScope) -> OverviewAnalytics:
    """Totals, response rate and mean days to first response.

    A response is any entry on a template ordered past the first stage; the
    first response of an application is the earliest such entry by started_at.
    """
    require_scope(scope)
    min_order = get_config().analytics.response_min_order
    applications = _applications(session, scope)
    entries = _entries(session, scope)

    first_response: dict[int, datetime] = {}
    for entry, template in entries:
        if template.order <= min_order:
            continue
        started = as_utc(entry.started_at)
        seen = first_response.get(entry.application_id)
        if seen is None or started < seen:
            first_response[entry.application_id] = started

    waits = [
        first_response[app.id] - as_utc(app.applied_at)
        for app in applications
        if app.id in first_response
    ]
    report = OverviewAnalytics(
        total_applications=len(applications),
        active_applications=sum(1 for a in applications if a.status in OPEN_APPLICATION_STATUSES),
        closed_applications=sum(1 for a in applications if a.status in CLOSED_APPLICATION_STATUSES),
        response_rate=percent(len(waits), len(applications)),
        avg_days_to_first_response=mean_days(waits),
    )
    logger.debug(
        f"overview user_id={scope.owner_id} total={report.total_applications} "
        f"responses={len(waits)}"
    )
    return report


@store_errors
def get_funnel(session: Session, scope: OwnerScope) -> FunnelAnalytics:
    """Distinct applications per template with step-to-step conversion.

    A stage after an empty stage reports 100% conversion and 0% drop-off.
    Counts may grow between stages when entries skip ahead, so conversion can
    exceed 100 and drop-off can go negative.
    """
    require_scope(scope)
    reached: dict[int, set[int]] = defaultdict(set)
    for entry, template in _entries(session, scope):
        reached[template.id].add(entry.application_id)

    stages = []
    previous: Optional[int] = None
    for template in _templates(session, scope):
        count = len(reached.get(template.id, ()))
        if previous is None or previous == 0:
            conversion, drop_off = 100.0, 0.0
        else:
            conversion = percent(count, previous)
            drop_off = percent(previous - count, previous)
        stages.append(
            FunnelStage(
                stage_name=template.name,
                stage_order=template.order,
                count=count,
                conversion_rate=conversion,
                drop_off_rate=drop_off,
            )
        )
        previous = count
    return FunnelAnalytics(stages=stages)


@store_errors
def get_stage_time(
    session: Session,
    scope: OwnerScope,
    now: Optional[datetime] = None,
) -> StageTimeAnalytics:
    """Days spent per stage. Entries without completed_at run until `now`."""
    require_scope(scope)
    now = as_utc(now) or utcnow()

    durations: dict[int, list[timedelta]] = defaultdict(list)
    applications: dict[int, set[int]] = defaultdict(set)
    for entry, template in _entries(session, scope):
        end = as_utc(entry.completed_at) or now
        durations[template.id].append(end - as_utc(entry.started_at))
        applications[template.id].add(entry.application_id)

    stages = []
    for template in _templates(session, scope):
        spans = durations.get(template.id)
        if not spans:
            continue
        stages.append(
            StageTimeMetrics(
                stage_name=template.name,
                stage_order=template.order,
                avg_days=mean_days(spans),
                min_days=round2(to_days(min(spans))),
                max_days=round2(to_days(max(spans))),
                applications_count=len(applications[template.id]),
            )
        )
    return StageTimeAnalytics(stages=stages)


@store_errors
def get_resume_effectiveness(session: Session, scope: OwnerScope) -> ResumeAnalytics:
    """Per-resume counts and response rate, unused resumes included."""
    require_scope(scope)
    cfg = get_config().analytics
    entries = _entries(session, scope)
    responded = _responded(entries, cfg.response_min_order)
    interviewed = _interviewed(entries, cfg.interview_keyword)

    by_resume: dict[int, list[int]] = defaultdict(list)
    for app in _applications(session, scope):
        by_resume[app.resume_id].append(app.id)

    resumes = session.scalars(select(Resume).where(Resume.owner_id == scope.owner_id))
    rows = []
    for resume in resumes:
        app_ids = by_resume.get(resume.id, [])
        responses = sum(1 for a in app_ids if a in responded)
        rows.append(
            ResumeEffectiveness(
                resume_id=resume.id,
                resume_title=resume.title,
                applications_count=len(app_ids),
                responses_count=responses,
                interviews_count=sum(1 for a in app_ids if a in interviewed),
                response_rate=percent(responses, len(app_ids)),
            )
        )
    rows.sort(key=lambda r: (-r.applications_count, r.resume_title, r.resume_id))
    return ResumeAnalytics(resumes=rows)


@store_errors
def get_source_analytics(session: Session, scope: OwnerScope) -> SourceAnalytics:
    """Per job source counts and response rate. Blank sources share one bucket."""
    require_scope(scope)
    cfg = get_config().analytics
    entries = _entries(session, scope)
    responded = _responded(entries, cfg.response_min_order)
    interviewed = _interviewed(entries, cfg.interview_keyword)

    rows = session.execute(
        select(Application.id, Job.source)
        .join(Job, Job.id == Application.job_id)
        .where(Application.owner_id == scope.owner_id)
    )
    by_source: dict[str, list[int]] = defaultdict(list)
    for app_id, source in rows:
        label = (source or "").strip() or cfg.unknown_source_label
        by_source[label].append(app_id)

    sources = []
    for label, app_ids in by_source.items():
        responses = sum(1 for a in app_ids if a in responded)
        sources.append(
            SourceMetrics(
                source_name=label,
                applications_count=len(app_ids),
                responses_count=responses,
                interviews_count=sum(1 for a in app_ids if a in interviewed),
                response_rate=percent(responses, len(app_ids)),
            )
        )
    sources.sort(key=lambda s: (-s.applications_count, s.source_name))
    return SourceAnalytics(sources=sources)


REPORTS = {
    "overview": get_overview,
    "funnel": get_funnel,
    "stages": get_stage_time,
    "resumes": get_resume_effectiveness,
    "sources": get_source_analytics,
}
