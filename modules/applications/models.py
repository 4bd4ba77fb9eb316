"""SQLAlchemy 2.0 models for the application pipeline tracker.

Tables:
- stage_templates:      per-owner ordered pipeline steps ("Applied", "Interview", ...)
- applications:         one row per job application (the aggregate root)
- application_stages:   append-only stage history (the ledger)
- comments:             notes on an application or one of its stages
- companies, jobs, resumes: collaborator data read by derived state and analytics
"""
import enum
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import (
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    TypeDecorator,
    UniqueConstraint,
    event,
    inspect,
)
from sqlalchemy.orm import (
    DeclarativeBase,
    Mapped,
    Session,
    mapped_column,
    relationship,
    validates,
)

from common.errors import ErrorCode, ValidationError


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Normalize to an aware UTC datetime. Naive values are taken as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class UTCDateTime(TypeDecorator):
    """DateTime stored as naive UTC, returned as aware UTC.

    SQLite has no timezone support, so the offset is stripped on the way in
    and re-attached on the way out.
    """
    impl = DateTime
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        return as_utc(value).replace(tzinfo=None)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return value.replace(tzinfo=timezone.utc)


class Base(DeclarativeBase):
    """Shared declarative base for all tracker models."""
    pass


# --- Enums ---


class ApplicationStatus(str, enum.Enum):
    ACTIVE = "active"
    ON_HOLD = "on_hold"
    REJECTED = "rejected"
    OFFER = "offer"
    ARCHIVED = "archived"


class StageStatus(str, enum.Enum):
    PENDING = "pending"
    ACTIVE = "active"
    COMPLETED = "completed"
    SKIPPED = "skipped"
    CANCELLED = "cancelled"


class EntityStatus(str, enum.Enum):
    """Derived status of a company or job."""
    IDLE = "idle"                   # No applications (or none still open)
    ACTIVE = "active"               # Has active/on-hold applications
    INTERVIEWING = "interviewing"   # Some application got past the first stage


OPEN_APPLICATION_STATUSES = {ApplicationStatus.ACTIVE.value, ApplicationStatus.ON_HOLD.value}
CLOSED_APPLICATION_STATUSES = {
    ApplicationStatus.REJECTED.value,
    ApplicationStatus.OFFER.value,
    ApplicationStatus.ARCHIVED.value,
}
TERMINAL_STAGE_STATUSES = {
    StageStatus.COMPLETED.value,
    StageStatus.SKIPPED.value,
    StageStatus.CANCELLED.value,
}


# --- Collaborator entities ---


class Company(Base):
    __tablename__ = "companies"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    owner_id: Mapped[str] = mapped_column(String(64), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    location: Mapped[Optional[str]] = mapped_column(String(255))
    notes: Mapped[Optional[str]] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime, default=utcnow, onupdate=utcnow, nullable=False
    )

    jobs: Mapped[list["Job"]] = relationship(back_populates="company")

    __table_args__ = (Index("ix_companies_owner", "owner_id"),)

    def __repr__(self) -> str:
        return f"<Company(id={self.id}, name='{self.name}')>"


class Job(Base):
    """A job posting. `source` is free text ("LinkedIn", "Referral", ...)."""
    __tablename__ = "jobs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    owner_id: Mapped[str] = mapped_column(String(64), nullable=False)
    company_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("companies.id", ondelete="SET NULL"), nullable=True
    )
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    source: Mapped[Optional[str]] = mapped_column(String(255))
    url: Mapped[Optional[str]] = mapped_column(String(1000))
    notes: Mapped[Optional[str]] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime, default=utcnow, onupdate=utcnow, nullable=False
    )

    company: Mapped[Optional["Company"]] = relationship(back_populates="jobs")

    __table_args__ = (
        Index("ix_jobs_owner", "owner_id"),
        Index("ix_jobs_company", "company_id"),
    )

    def __repr__(self) -> str:
        return f"<Job(id={self.id}, title='{self.title[:40]}', source='{self.source}')>"


class Resume(Base):
    __tablename__ = "resumes"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    owner_id: Mapped[str] = mapped_column(String(64), nullable=False)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime, default=utcnow, onupdate=utcnow, nullable=False
    )

    __table_args__ = (Index("ix_resumes_owner", "owner_id"),)

    def __repr__(self) -> str:
        return f"<Resume(id={self.id}, title='{self.title}')>"


# --- Pipeline ---


class StageTemplate(Base):
    """A named, ordered step of one owner's pipeline."""
    __tablename__ = "stage_templates"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    owner_id: Mapped[str] = mapped_column(String(64), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    order: Mapped[int] = mapped_column("order", Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime, default=utcnow, onupdate=utcnow, nullable=False
    )

    __table_args__ = (
        UniqueConstraint("owner_id", "name", name="uq_stage_templates_owner_name"),
        UniqueConstraint("owner_id", "order", name="uq_stage_templates_owner_order"),
    )

    def __repr__(self) -> str:
        return f"<StageTemplate(id={self.id}, order={self.order}, name='{self.name}')>"


class Application(Base):
    """A job application, the central aggregate.

    current_stage_id is kept in step with the ledger by the ledger
    operations themselves; it is not a foreign key because the ledger
    references applications in the other direction.
    """
    __tablename__ = "applications"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    owner_id: Mapped[str] = mapped_column(String(64), nullable=False)
    job_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("jobs.id", ondelete="CASCADE"), nullable=False
    )
    resume_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("resumes.id", ondelete="RESTRICT"), nullable=False
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), default=ApplicationStatus.ACTIVE.value, nullable=False
    )
    current_stage_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    applied_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime, default=utcnow, onupdate=utcnow, nullable=False
    )

    job: Mapped["Job"] = relationship()
    resume: Mapped["Resume"] = relationship()
    stages: Mapped[list["StageEntry"]] = relationship(
        back_populates="application",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by=lambda: (StageEntry.order, StageEntry.created_at, StageEntry.id),
    )
    comments: Mapped[list["Comment"]] = relationship(
        back_populates="application",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="Comment.created_at",
    )

    __table_args__ = (
        Index("ix_applications_owner", "owner_id"),
        Index("ix_applications_status", "status"),
        Index("ix_applications_job", "job_id"),
        Index("ix_applications_resume", "resume_id"),
    )

    @validates("applied_at", "created_at", "updated_at")
    def _normalize_timestamps(self, key, value):
        return as_utc(value)

    def __repr__(self) -> str:
        return (
            f"<Application(id={self.id}, "
            f"name='{self.name[:40]}', "
            f"status='{self.status}')>"
        )


class StageEntry(Base):
    """One append-only ledger row: an application occupying a stage.

    `order` is the template's order at creation time and never changes,
    so history stays stable when the catalog is reordered.
    """
    __tablename__ = "application_stages"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    application_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("applications.id", ondelete="CASCADE"), nullable=False
    )
    stage_template_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("stage_templates.id", ondelete="RESTRICT"), nullable=False
    )
    status: Mapped[str] = mapped_column(
        String(20), default=StageStatus.PENDING.value, nullable=False
    )
    order: Mapped[int] = mapped_column("order", Integer, nullable=False)
    started_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)
    completed_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)

    application: Mapped["Application"] = relationship(back_populates="stages")
    template: Mapped["StageTemplate"] = relationship()

    __table_args__ = (
        Index("ix_stages_application", "application_id"),
        Index("ix_stages_template", "stage_template_id"),
    )

    @validates("started_at", "completed_at", "created_at")
    def _normalize_timestamps(self, key, value):
        return as_utc(value)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STAGE_STATUSES

    def __repr__(self) -> str:
        return (
            f"<StageEntry(id={self.id}, app={self.application_id}, "
            f"template={self.stage_template_id}, order={self.order}, "
            f"status='{self.status}')>"
        )


class Comment(Base):
    __tablename__ = "comments"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    application_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("applications.id", ondelete="CASCADE"), nullable=False
    )
    stage_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("application_stages.id", ondelete="SET NULL"), nullable=True
    )
    content: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)

    application: Mapped["Application"] = relationship(back_populates="comments")

    __table_args__ = (Index("ix_comments_application", "application_id"),)

    @validates("created_at")
    def _normalize_timestamps(self, key, value):
        return as_utc(value)

    def __repr__(self) -> str:
        return f"<Comment(id={self.id}, app={self.application_id}, stage={self.stage_id})>"


# ---------------------------------------------------------------------------
# Write-once fields, checked on every flush
# ---------------------------------------------------------------------------
IMMUTABLE_FIELDS = {
    Application: ("owner_id",),
    StageEntry: ("application_id", "stage_template_id", "order"),
}


def check_immutable_fields(session):
    """Reject flushes that rewrite owner or ledger identity columns.

    Uses attribute history on dirty objects, so only persisted rows are
    checked; new objects may set these fields freely.
    """
    for obj in session.dirty:
        fields = IMMUTABLE_FIELDS.get(type(obj))
        if not fields:
            continue
        state = inspect(obj)
        for attr in fields:
            hist = state.attrs[attr].history
            if hist.has_changes() and hist.deleted:
                raise ValidationError(
                    ErrorCode.IMMUTABLE_FIELD,
                    f"{type(obj).__name__}.{attr} cannot be changed",
                    {"id": obj.id, "field": attr},
                )


@event.listens_for(Session, "before_flush")
def _before_flush_check_immutable(session, flush_context, instances):
    check_immutable_fields(session)
