"""Stage Template Catalog: each owner's ordered list of pipeline steps.

The ledger only reads templates (to copy `order` into new entries); the
management functions here are what the owning user calls to shape the
pipeline. Names and orders are unique per owner.
"""
import logging
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from common.errors import ErrorCode, NotFoundError, ValidationError, store_errors
from common.scope import OwnerScope, require_scope
from .models import StageEntry, StageTemplate

logger = logging.getLogger(__name__)

DEFAULT_STAGE_TEMPLATES = [
    ("Applied", 1),
    ("Phone Screen", 2),
    ("Interview", 3),
    ("Offer", 4),
]


def _clean_name(name: Optional[str]) -> str:
    cleaned = (name or "").strip()
    if not cleaned:
        raise ValidationError(ErrorCode.STAGE_NAME_REQUIRED, "Stage name is required")
    if len(cleaned) > 255:
        raise ValidationError(
            ErrorCode.STAGE_NAME_REQUIRED, "Stage name must be at most 255 characters"
        )
    return cleaned


def _check_order(order) -> int:
    if isinstance(order, bool) or not isinstance(order, int) or order < 0:
        raise ValidationError(
            ErrorCode.INVALID_ORDER, f"Stage order must be a non-negative integer, got {order!r}"
        )
    return order


def _check_unique(
    session: Session,
    scope: OwnerScope,
    name: Optional[str] = None,
    order: Optional[int] = None,
    exclude_id: Optional[int] = None,
) -> None:
    query = select(StageTemplate).where(StageTemplate.owner_id == scope.owner_id)
    if exclude_id is not None:
        query = query.where(StageTemplate.id != exclude_id)
    for other in session.scalars(query):
        if name is not None and other.name == name:
            raise ValidationError(
                ErrorCode.DUPLICATE_STAGE_TEMPLATE,
                f"Stage template '{name}' already exists",
                {"template_id": other.id},
            )
        if order is not None and other.order == order:
            raise ValidationError(
                ErrorCode.DUPLICATE_STAGE_TEMPLATE,
                f"Stage order {order} is already used by '{other.name}'",
                {"template_id": other.id},
            )


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------

@store_errors
def list_templates(session: Session, scope: OwnerScope) -> list[StageTemplate]:
    """All templates of the owner, ordered by `order` ascending."""
    require_scope(scope)
    return list(
        session.scalars(
            select(StageTemplate)
            .where(StageTemplate.owner_id == scope.owner_id)
            .order_by(StageTemplate.order, StageTemplate.id)
        )
    )


@store_errors
def get_template(session: Session, scope: OwnerScope, template_id: int) -> StageTemplate:
    require_scope(scope)
    template = session.get(StageTemplate, template_id)
    if template is None or template.owner_id != scope.owner_id:
        raise NotFoundError(
            ErrorCode.STAGE_TEMPLATE_NOT_FOUND,
            "Stage template not found",
            {"template_id": template_id},
        )
    return template


# ---------------------------------------------------------------------------
# Management
# ---------------------------------------------------------------------------

@store_errors
def create_template(
    session: Session,
    scope: OwnerScope,
    name: str,
    order: int,
) -> StageTemplate:
    require_scope(scope)
    name = _clean_name(name)
    order = _check_order(order)
    _check_unique(session, scope, name=name, order=order)

    template = StageTemplate(owner_id=scope.owner_id, name=name, order=order)
    session.add(template)
    session.flush()
    logger.info(
        f"action=create_stage_template template_id={template.id} "
        f"name='{name}' order={order} user_id={scope.owner_id}"
    )
    return template


@store_errors
def update_template(
    session: Session,
    scope: OwnerScope,
    template_id: int,
    name: Optional[str] = None,
    order: Optional[int] = None,
) -> StageTemplate:
    """Rename and/or reorder a template.

    Existing ledger entries keep the order they were created with.
    """
    template = get_template(session, scope, template_id)
    if name is not None:
        name = _clean_name(name)
    if order is not None:
        order = _check_order(order)
    _check_unique(session, scope, name=name, order=order, exclude_id=template.id)

    if name is not None:
        template.name = name
    if order is not None:
        template.order = order
    session.flush()
    logger.info(
        f"action=update_stage_template template_id={template.id} "
        f"name='{template.name}' order={template.order} user_id={scope.owner_id}"
    )
    return template


@store_errors
def reorder_templates(
    session: Session,
    scope: OwnerScope,
    template_ids: list[int],
) -> list[StageTemplate]:
    """Assign orders 1..n following the given id sequence.

    The list must name every template of the owner exactly once.
    """
    templates = list_templates(session, scope)
    by_id = {t.id: t for t in templates}
    if len(template_ids) != len(set(template_ids)) or set(template_ids) != set(by_id):
        raise ValidationError(
            ErrorCode.INVALID_ORDER,
            "Reorder must list each stage template exactly once",
            {"expected": sorted(by_id), "given": list(template_ids)},
        )

    # Two passes: the unique (owner, order) constraint is checked per row
    for offset, template in enumerate(templates, start=1):
        template.order = -offset
    session.flush()
    for position, template_id in enumerate(template_ids, start=1):
        by_id[template_id].order = position
    session.flush()

    logger.info(
        f"action=reorder_stage_templates user_id={scope.owner_id} order={template_ids}"
    )
    return [by_id[tid] for tid in template_ids]


@store_errors
def delete_template(session: Session, scope: OwnerScope, template_id: int) -> None:
    """Delete a template that no stage entry references."""
    template = get_template(session, scope, template_id)
    in_use = session.scalar(
        select(func.count(StageEntry.id)).where(StageEntry.stage_template_id == template.id)
    )
    if in_use:
        raise ValidationError(
            ErrorCode.STAGE_TEMPLATE_IN_USE,
            f"Stage template '{template.name}' is used by {in_use} stage entries",
            {"template_id": template.id, "entries": in_use},
        )
    session.delete(template)
    session.flush()
    logger.info(
        f"action=delete_stage_template template_id={template_id} user_id={scope.owner_id}"
    )


@store_errors
def seed_default_templates(session: Session, scope: OwnerScope) -> dict:
    """Create the default pipeline for an owner with an empty catalog.

    Idempotent: an owner who already has templates is left alone.

    Returns:
        {"created": N, "existing": N}
    """
    existing = list_templates(session, scope)
    if existing:
        logger.debug(f"Seed skipped for {scope.owner_id}: {len(existing)} templates exist")
        return {"created": 0, "existing": len(existing)}

    for name, order in DEFAULT_STAGE_TEMPLATES:
        session.add(StageTemplate(owner_id=scope.owner_id, name=name, order=order))
    session.flush()
    logger.info(
        f"Seeded {len(DEFAULT_STAGE_TEMPLATES)} default stage templates for {scope.owner_id}"
    )
    return {"created": len(DEFAULT_STAGE_TEMPLATES), "existing": 0}
