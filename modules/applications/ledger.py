"""Stage History Ledger: append-only record of an application's stages.

After creation an entry only changes `status` and `completed_at`. Every
mutation here ends by re-deriving Application.current_stage_id in the same
session, so the pointer and the ledger commit together.
"""
import logging
from datetime import datetime
from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from common.config import get_config
from common.errors import ErrorCode, NotFoundError, ValidationError, store_errors
from common.scope import OwnerScope, require_scope
from .derived import get_calculator
from .models import (
    TERMINAL_STAGE_STATUSES,
    Application,
    Comment,
    StageEntry,
    StageStatus,
    as_utc,
    utcnow,
)
from .service import get_application
from .templates import get_template

logger = logging.getLogger(__name__)


def parse_stage_status(status) -> StageStatus:
    try:
        return StageStatus(status)
    except ValueError:
        raise ValidationError(
            ErrorCode.INVALID_STATUS,
            f"Invalid stage status: {status!r}",
            {"allowed": [s.value for s in StageStatus]},
        ) from None


def _get_entry(session: Session, scope: OwnerScope, entry_id: int) -> StageEntry:
    require_scope(scope)
    entry = session.scalar(
        select(StageEntry)
        .join(Application, Application.id == StageEntry.application_id)
        .where(StageEntry.id == entry_id, Application.owner_id == scope.owner_id)
    )
    if entry is None:
        raise NotFoundError(
            ErrorCode.APPLICATION_STAGE_NOT_FOUND,
            "Application stage not found",
            {"stage_id": entry_id},
        )
    return entry


def sync_current_stage(session: Session, application: Application) -> Optional[StageEntry]:
    """Flush pending ledger changes and point the application at its current stage."""
    session.flush()
    session.expire(application, ["stages"])
    current = get_calculator().current_stage(session, application)
    new_id = current.id if current is not None else None
    if application.current_stage_id != new_id:
        logger.debug(
            f"current_stage application_id={application.id} "
            f"{application.current_stage_id} -> {new_id}"
        )
        application.current_stage_id = new_id
        session.flush()
    return current


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------

@store_errors
def list_stages(session: Session, scope: OwnerScope, application_id: int) -> list[StageEntry]:
    """All entries of an application, ordered by (order, created_at, id)."""
    application = get_application(session, scope, application_id)
    return list(
        session.scalars(
            select(StageEntry)
            .where(StageEntry.application_id == application.id)
            .order_by(StageEntry.order, StageEntry.created_at, StageEntry.id)
        )
    )


# ---------------------------------------------------------------------------
# Mutations
# ---------------------------------------------------------------------------

def _append(
    session: Session,
    application: Application,
    template,
    status: StageStatus,
) -> StageEntry:
    now = utcnow()
    entry = StageEntry(
        application_id=application.id,
        stage_template_id=template.id,
        status=status.value,
        order=template.order,
        started_at=now,
        created_at=now,
    )
    session.add(entry)
    session.flush()
    return entry


@store_errors
def append_stage(
    session: Session,
    scope: OwnerScope,
    application_id: int,
    template_id: int,
) -> StageEntry:
    """Append a new entry for `template_id`. Not idempotent.

    The initial status comes from `ledger.initial_status`.
    """
    application = get_application(session, scope, application_id)
    template = get_template(session, scope, template_id)
    status = StageStatus(get_config().ledger.initial_status)

    entry = _append(session, application, template, status)
    sync_current_stage(session, application)
    logger.info(
        f"action=add_stage application_id={application.id} stage_id={entry.id} "
        f"template_id={template.id} order={entry.order} status={entry.status} "
        f"user_id={scope.owner_id}"
    )
    return entry


@store_errors
def transition_stage(
    session: Session,
    scope: OwnerScope,
    entry_id: int,
    status,
    completed_at: Optional[datetime] = None,
) -> StageEntry:
    """Change an entry's status.

    Terminal statuses keep `completed_at` (given, else existing, else now for
    `completed`); a given value may not precede `started_at`. Non-terminal
    statuses clear it and reject an explicit one.
    """
    new_status = parse_stage_status(status)
    entry = _get_entry(session, scope, entry_id)

    if new_status.value in TERMINAL_STAGE_STATUSES:
        if completed_at is not None:
            completed_at = as_utc(completed_at)
            if completed_at < as_utc(entry.started_at):
                raise ValidationError(
                    ErrorCode.INVALID_COMPLETED_AT,
                    "completed_at must not be earlier than started_at",
                    {
                        "stage_id": entry.id,
                        "started_at": as_utc(entry.started_at).isoformat(),
                        "completed_at": completed_at.isoformat(),
                    },
                )
            entry.completed_at = completed_at
        elif entry.completed_at is None and new_status is StageStatus.COMPLETED:
            entry.completed_at = utcnow()
    else:
        if completed_at is not None:
            raise ValidationError(
                ErrorCode.INVALID_COMPLETED_AT,
                f"completed_at is only allowed for terminal statuses, not '{new_status.value}'",
                {"stage_id": entry.id, "status": new_status.value},
            )
        entry.completed_at = None

    old_status = entry.status
    entry.status = new_status.value
    sync_current_stage(session, entry.application)
    logger.info(
        f"action=update_stage stage_id={entry.id} application_id={entry.application_id} "
        f"from={old_status} to={entry.status} user_id={scope.owner_id}"
    )
    return entry


@store_errors
def remove_stage(session: Session, scope: OwnerScope, entry_id: int) -> None:
    """Delete one entry. Comments attached to it lose their stage link."""
    entry = _get_entry(session, scope, entry_id)
    application = entry.application
    session.delete(entry)
    sync_current_stage(session, application)
    logger.info(
        f"action=delete_stage stage_id={entry_id} application_id={application.id} "
        f"user_id={scope.owner_id}"
    )


@store_errors
def advance_stage(
    session: Session,
    scope: OwnerScope,
    application_id: int,
    template_id: int,
    comment: Optional[str] = None,
) -> StageEntry:
    """Move an application to the next stage in one unit of work.

    Completes the current entry if it is still active, appends a new active
    entry for `template_id` and attaches `comment` to it when non-blank.
    """
    application = get_application(session, scope, application_id)
    template = get_template(session, scope, template_id)

    current = get_calculator().current_stage(session, application)
    if current is not None and current.status == StageStatus.ACTIVE.value:
        current.status = StageStatus.COMPLETED.value
        current.completed_at = utcnow()

    entry = _append(session, application, template, StageStatus.ACTIVE)
    text = (comment or "").strip()
    if text:
        session.add(Comment(application_id=application.id, stage_id=entry.id, content=text))
    sync_current_stage(session, application)
    logger.info(
        f"action=advance_stage application_id={application.id} stage_id={entry.id} "
        f"template_id={template.id} completed={current.id if current else None} "
        f"user_id={scope.owner_id}"
    )
    return entry
