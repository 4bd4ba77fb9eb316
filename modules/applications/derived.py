"""Derived-State Calculator: facts computed on read, never stored.

- current stage of an application (also mirrored into
  Application.current_stage_id by the ledger, inside the same flush)
- last activity timestamp of an application
- aggregate status of a company or job

Every call rescans the ledger. Callers depend on the DerivedStateCalculator
protocol, so a materialized implementation can replace LedgerScanCalculator
without touching them.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, Optional, Protocol

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from common.config import get_config
from common.errors import ErrorCode, NotFoundError, store_errors
from common.scope import OwnerScope, require_scope
from .models import (
    OPEN_APPLICATION_STATUSES,
    Application,
    Comment,
    Company,
    EntityStatus,
    Job,
    StageEntry,
    StageStatus,
    StageTemplate,
    as_utc,
)

logger = logging.getLogger(__name__)

CURRENT_STAGE_STATUSES = {StageStatus.ACTIVE.value, StageStatus.COMPLETED.value}


@dataclass
class EntitySummary:
    """Application rollup for a company or a job."""
    applications_count: int
    active_applications_count: int
    derived_status: EntityStatus
    last_activity_at: Optional[datetime]

    def to_dict(self) -> dict:
        return {
            "applications_count": self.applications_count,
            "active_applications_count": self.active_applications_count,
            "derived_status": self.derived_status.value,
            "last_activity_at": (
                self.last_activity_at.isoformat() if self.last_activity_at else None
            ),
        }


# ---------------------------------------------------------------------------
# Pure rules
# ---------------------------------------------------------------------------

def recency_key(entry: StageEntry) -> tuple:
    """(created_at, id): the newest entry sorts last."""
    return (as_utc(entry.created_at), entry.id or 0)


def pick_current_stage(entries: Iterable[StageEntry]) -> Optional[StageEntry]:
    """Most recently created active or completed entry.

    Template order does not matter here: re-entering an earlier stage (a
    second phone screen) makes that new entry current.
    """
    candidates = [e for e in entries if e.status in CURRENT_STAGE_STATUSES]
    if not candidates:
        return None
    return max(candidates, key=recency_key)


def derive_entity_status(
    applications: Iterable[Application],
    responded_ids: set[int],
) -> EntityStatus:
    """idle / interviewing / active, in that precedence."""
    applications = list(applications)
    if not applications:
        return EntityStatus.IDLE
    if any(app.id in responded_ids for app in applications):
        return EntityStatus.INTERVIEWING
    if any(app.status in OPEN_APPLICATION_STATUSES for app in applications):
        return EntityStatus.ACTIVE
    return EntityStatus.IDLE


def responded_application_ids(
    session: Session,
    application_ids: Iterable[int],
    min_order: Optional[int] = None,
) -> set[int]:
    """Applications with a stage entry whose template order exceeds min_order."""
    ids = set(application_ids)
    if not ids:
        return set()
    if min_order is None:
        min_order = get_config().analytics.response_min_order
    rows = session.scalars(
        select(StageEntry.application_id)
        .join(StageTemplate, StageTemplate.id == StageEntry.stage_template_id)
        .where(StageEntry.application_id.in_(ids), StageTemplate.order > min_order)
        .distinct()
    )
    return set(rows)


# ---------------------------------------------------------------------------
# Calculator
# ---------------------------------------------------------------------------

class DerivedStateCalculator(Protocol):
    """Read-side facts about applications and the entities they hang off."""

    def current_stage(self, session: Session, application: Application) -> Optional[StageEntry]:
        ...

    def last_activity(self, session: Session, application: Application) -> datetime:
        ...

    def company_summary(self, session: Session, scope: OwnerScope, company_id: int) -> EntitySummary:
        ...

    def job_summary(self, session: Session, scope: OwnerScope, job_id: int) -> EntitySummary:
        ...


class LedgerScanCalculator:
    """Computes everything from the ledger on each call."""

    def __init__(self, response_min_order: Optional[int] = None):
        self._response_min_order = response_min_order

    @property
    def response_min_order(self) -> int:
        """Pinned threshold, else the live `analytics.response_min_order`."""
        if self._response_min_order is not None:
            return self._response_min_order
        return get_config().analytics.response_min_order

    def current_stage(self, session: Session, application: Application) -> Optional[StageEntry]:
        entries = session.scalars(
            select(StageEntry).where(StageEntry.application_id == application.id)
        )
        return pick_current_stage(entries)

    def last_activity(self, session: Session, application: Application) -> datetime:
        """max(updated_at, newest stage entry, newest comment)."""
        updated_at = as_utc(application.updated_at)
        latest_stage = session.scalar(
            select(func.max(StageEntry.created_at)).where(
                StageEntry.application_id == application.id
            )
        )
        latest_comment = session.scalar(
            select(func.max(Comment.created_at)).where(
                Comment.application_id == application.id
            )
        )
        return max(
            updated_at,
            as_utc(latest_stage) or updated_at,
            as_utc(latest_comment) or updated_at,
        )

    def summarize(self, session: Session, applications: list[Application]) -> EntitySummary:
        responded = responded_application_ids(
            session, [a.id for a in applications], self.response_min_order
        )
        activity = [self.last_activity(session, a) for a in applications]
        return EntitySummary(
            applications_count=len(applications),
            active_applications_count=sum(
                1 for a in applications if a.status in OPEN_APPLICATION_STATUSES
            ),
            derived_status=derive_entity_status(applications, responded),
            last_activity_at=max(activity) if activity else None,
        )

    def company_summary(self, session: Session, scope: OwnerScope, company_id: int) -> EntitySummary:
        require_scope(scope)
        company = session.get(Company, company_id)
        if company is None or company.owner_id != scope.owner_id:
            raise NotFoundError(
                ErrorCode.COMPANY_NOT_FOUND, "Company not found", {"company_id": company_id}
            )
        applications = list(
            session.scalars(
                select(Application)
                .join(Job, Job.id == Application.job_id)
                .where(
                    Job.company_id == company.id,
                    Job.owner_id == scope.owner_id,
                    Application.owner_id == scope.owner_id,
                )
            )
        )
        return self.summarize(session, applications)

    def job_summary(self, session: Session, scope: OwnerScope, job_id: int) -> EntitySummary:
        require_scope(scope)
        job = session.get(Job, job_id)
        if job is None or job.owner_id != scope.owner_id:
            raise NotFoundError(ErrorCode.JOB_NOT_FOUND, "Job not found", {"job_id": job_id})
        applications = list(
            session.scalars(
                select(Application).where(
                    Application.job_id == job.id,
                    Application.owner_id == scope.owner_id,
                )
            )
        )
        return self.summarize(session, applications)


_calculator: Optional[DerivedStateCalculator] = None


def get_calculator() -> DerivedStateCalculator:
    global _calculator
    if _calculator is None:
        _calculator = LedgerScanCalculator()
    return _calculator


def set_calculator(calculator: Optional[DerivedStateCalculator]) -> None:
    """Swap the process-wide calculator (None restores the default)."""
    global _calculator
    _calculator = calculator


# ---------------------------------------------------------------------------
# Scoped entry points
# ---------------------------------------------------------------------------

@store_errors
def get_company_summary(session: Session, scope: OwnerScope, company_id: int) -> EntitySummary:
    return get_calculator().company_summary(session, scope, company_id)


@store_errors
def get_job_summary(session: Session, scope: OwnerScope, job_id: int) -> EntitySummary:
    return get_calculator().job_summary(session, scope, job_id)
