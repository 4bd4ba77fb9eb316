"""Application store operations: create, look up, status changes, views."""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, List

from sqlalchemy import select
from sqlalchemy.orm import Session

from common.errors import ErrorCode, NotFoundError, ValidationError, store_errors
from common.scope import OwnerScope, require_scope
from .derived import get_calculator
from .models import (
    Application,
    ApplicationStatus,
    Comment,
    Job,
    Resume,
    StageEntry,
    as_utc,
    utcnow,
)

logger = logging.getLogger(__name__)

UNTITLED_APPLICATION = "Untitled Application"


@dataclass
class StageEntryView:
    """A ledger entry with its template name resolved."""
    id: int
    stage_template_id: int
    stage_name: str
    status: str
    order: int
    started_at: datetime
    completed_at: Optional[datetime] = None

    @classmethod
    def from_entry(cls, entry: StageEntry) -> "StageEntryView":
        return cls(
            id=entry.id,
            stage_template_id=entry.stage_template_id,
            stage_name=entry.template.name,
            status=entry.status,
            order=entry.order,
            started_at=entry.started_at,
            completed_at=entry.completed_at,
        )


@dataclass
class CommentView:
    id: int
    content: str
    created_at: datetime
    stage_id: Optional[int] = None


@dataclass
class ApplicationView:
    """Read model for one application, with derived fields filled in."""
    id: int
    name: str
    status: str
    job_id: int
    job_title: str
    company_name: Optional[str]
    resume_id: int
    resume_title: str
    applied_at: datetime
    last_activity_at: datetime
    current_stage: Optional[StageEntryView] = None
    comments: List[CommentView] = field(default_factory=list)
    stage_comments: List[CommentView] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Lookups
# ---------------------------------------------------------------------------

def _owned_job(session: Session, scope: OwnerScope, job_id: int) -> Job:
    job = session.get(Job, job_id)
    if job is None or job.owner_id != scope.owner_id:
        raise NotFoundError(ErrorCode.JOB_NOT_FOUND, "Job not found", {"job_id": job_id})
    return job


def _owned_resume(session: Session, scope: OwnerScope, resume_id: int) -> Resume:
    resume = session.get(Resume, resume_id)
    if resume is None or resume.owner_id != scope.owner_id:
        raise NotFoundError(
            ErrorCode.RESUME_NOT_FOUND, "Resume not found", {"resume_id": resume_id}
        )
    return resume


def parse_application_status(status) -> ApplicationStatus:
    try:
        return ApplicationStatus(status)
    except ValueError:
        raise ValidationError(
            ErrorCode.INVALID_STATUS,
            f"Invalid application status: {status!r}",
            {"allowed": [s.value for s in ApplicationStatus]},
        ) from None


@store_errors
def get_application(session: Session, scope: OwnerScope, application_id: int) -> Application:
    """Owner-scoped lookup. Foreign applications look exactly like missing ones."""
    require_scope(scope)
    application = session.get(Application, application_id)
    if application is None or application.owner_id != scope.owner_id:
        raise NotFoundError(
            ErrorCode.APPLICATION_NOT_FOUND,
            "Application not found",
            {"application_id": application_id},
        )
    return application


# ---------------------------------------------------------------------------
# Mutations
# ---------------------------------------------------------------------------

@store_errors
def create_application(
    session: Session,
    scope: OwnerScope,
    job_id: int,
    resume_id: int,
    name: Optional[str] = None,
    applied_at: Optional[datetime] = None,
) -> Application:
    """Create an application for one of the owner's jobs.

    A blank name falls back to the job title, then to "Untitled Application".
    """
    require_scope(scope)
    job = _owned_job(session, scope, job_id)
    resume = _owned_resume(session, scope, resume_id)

    name = (name or "").strip() or (job.title or "").strip() or UNTITLED_APPLICATION
    now = utcnow()
    application = Application(
        owner_id=scope.owner_id,
        job_id=job.id,
        resume_id=resume.id,
        name=name,
        status=ApplicationStatus.ACTIVE.value,
        applied_at=as_utc(applied_at) or now,
        created_at=now,
        updated_at=now,
    )
    session.add(application)
    session.flush()
    logger.info(
        f"action=create_application application_id={application.id} "
        f"job_id={job.id} resume_id={resume.id} user_id={scope.owner_id}"
    )
    return application


@store_errors
def update_application_status(
    session: Session,
    scope: OwnerScope,
    application_id: int,
    status,
) -> Application:
    new_status = parse_application_status(status)
    application = get_application(session, scope, application_id)
    old_status = application.status
    application.status = new_status.value
    session.flush()
    logger.info(
        f"action=update_application_status application_id={application.id} "
        f"from={old_status} to={new_status.value} user_id={scope.owner_id}"
    )
    return application


# ---------------------------------------------------------------------------
# Views
# ---------------------------------------------------------------------------

def _build_view(session: Session, application: Application) -> ApplicationView:
    calculator = get_calculator()
    current = calculator.current_stage(session, application)
    comments = session.scalars(
        select(Comment)
        .where(Comment.application_id == application.id)
        .order_by(Comment.created_at, Comment.id)
    )
    app_comments, stage_comments = [], []
    for c in comments:
        view = CommentView(id=c.id, content=c.content, created_at=c.created_at, stage_id=c.stage_id)
        (stage_comments if c.stage_id is not None else app_comments).append(view)

    job = application.job
    return ApplicationView(
        id=application.id,
        name=application.name,
        status=application.status,
        job_id=job.id,
        job_title=job.title,
        company_name=job.company.name if job.company else None,
        resume_id=application.resume_id,
        resume_title=application.resume.title,
        applied_at=application.applied_at,
        last_activity_at=calculator.last_activity(session, application),
        current_stage=StageEntryView.from_entry(current) if current else None,
        comments=app_comments,
        stage_comments=stage_comments,
    )


@store_errors
def describe_application(
    session: Session,
    scope: OwnerScope,
    application_id: int,
) -> ApplicationView:
    application = get_application(session, scope, application_id)
    return _build_view(session, application)


@store_errors
def list_applications(session: Session, scope: OwnerScope) -> List[ApplicationView]:
    """All of the owner's applications, most recently active first."""
    require_scope(scope)
    applications = session.scalars(
        select(Application).where(Application.owner_id == scope.owner_id)
    )
    views = [_build_view(session, a) for a in applications]
    views.sort(key=lambda v: (v.last_activity_at, v.id), reverse=True)
    logger.debug(f"Listed {len(views)} applications for {scope.owner_id}")
    return views
