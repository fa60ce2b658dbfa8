"""Ownership transfer of interventions and their tracked trees."""

from __future__ import annotations

import logging
from typing import Iterable

from sqlalchemy.orm import Session

from .. import models, schemas
from ..errors import ForbiddenError, InterventionError, NotFoundError, ValidationError
from ..intervention_types import TERMINAL_STATUSES
from ..rbac import MIN_OWNER_ROLE, TRANSFER_ADMIN_ROLES, ProjectMembership, role_at_least
from .changes import ChangeEvent, ChangeSink, emit_change
from .integrity import IntegrityEnforcer
from .interventions import write_guard

logger = logging.getLogger(__name__)

# purpose: reassign intervention ownership with lifecycle and role guards, cascading to trees
# status: active


def _load_transferable(enforcer: IntegrityEnforcer, intervention_id: int) -> models.Intervention:
    intervention = enforcer.lock(
        enforcer.db.query(models.Intervention).filter(
            models.Intervention.id == intervention_id,
            models.Intervention.deleted_at.is_(None),
        )
    ).first()
    if intervention is None:
        raise NotFoundError(
            f"intervention {intervention_id} not found", code="intervention_not_found"
        )
    if intervention.status in TERMINAL_STATUSES:
        raise ForbiddenError(
            f"cannot transfer {intervention.status} intervention", code="terminal_status"
        )
    return intervention


def _validate_new_owner(
    db: Session, membership: ProjectMembership, project_id: int, new_owner_id: int
) -> models.User:
    new_owner = db.get(models.User, new_owner_id)
    if new_owner is None:
        raise NotFoundError(f"user {new_owner_id} not found", code="user_not_found")
    if not new_owner.is_active or new_owner.deleted_at is not None:
        raise ValidationError(f"user {new_owner_id} is not active", code="inactive_user")
    if not role_at_least(membership.get_role(project_id, new_owner_id), MIN_OWNER_ROLE):
        raise ValidationError(
            f"user {new_owner_id} must hold at least the {MIN_OWNER_ROLE} role on the project",
            code="insufficient_role",
        )
    return new_owner


def transfer_ownership(
    db: Session,
    intervention_id: int,
    new_owner_id: int,
    requester_id: int,
    options: schemas.TransferOptions | None = None,
    sink: ChangeSink | None = None,
) -> schemas.TransferResult:
    """Move an intervention and its non-deleted trees to ``new_owner_id``."""

    options = options or schemas.TransferOptions()
    enforcer = IntegrityEnforcer(db)
    membership = ProjectMembership(db)
    with write_guard(db, "ownership transfer"):
        intervention = _load_transferable(enforcer, intervention_id)
        project_id = intervention.project_id
        previous_owner_id = intervention.user_id
        requester_role = membership.get_role(project_id, requester_id)
        if requester_id != previous_owner_id and requester_role not in TRANSFER_ADMIN_ROLES:
            raise ForbiddenError(
                "only the current owner or a project admin can transfer this intervention",
                code="not_authorized",
            )
        new_owner = _validate_new_owner(db, membership, project_id, new_owner_id)
        if new_owner.id == previous_owner_id:
            raise ForbiddenError(
                "cannot transfer intervention to its current owner", code="self_transfer"
            )
        plan = enforcer.plan_ownership_transfer(intervention, new_owner)
        transferred_at = enforcer.apply_ownership_transfer(plan)
        intervention_uid = intervention.uid

    result = schemas.TransferResult(
        intervention_id=intervention_id,
        intervention_uid=intervention_uid,
        previous_owner_id=previous_owner_id,
        new_owner_id=new_owner_id,
        trees_transferred=len(plan.tree_ids),
        changed_fields=list(plan.changed_fields),
        transferred_at=transferred_at,
    )
    logger.info(
        "intervention %s transferred from %s to %s by %s",
        intervention_uid,
        previous_owner_id,
        new_owner_id,
        requester_id,
    )
    emit_change(
        sink,
        ChangeEvent(
            action="intervention.ownership_transferred",
            target_type="intervention",
            target_uid=intervention_uid,
            actor_id=requester_id,
            project_id=project_id,
            changed_fields=plan.changed_fields,
            details={
                "previous_owner_id": previous_owner_id,
                "new_owner_id": new_owner_id,
                "trees_transferred": len(plan.tree_ids),
                "reason": options.reason,
            },
            notify_user_ids=(new_owner_id,) if options.notify else (),
            occurred_at=transferred_at,
        ),
    )
    return result


def bulk_transfer_ownership(
    db: Session,
    intervention_ids: Iterable[int],
    new_owner_id: int,
    requester_id: int,
    options: schemas.TransferOptions | None = None,
    sink: ChangeSink | None = None,
) -> schemas.BulkTransferResult:
    """Transfer each intervention in its own transaction, collecting per-id outcomes."""

    outcome = schemas.BulkTransferResult()
    for intervention_id in dict.fromkeys(intervention_ids):
        try:
            outcome.successful.append(
                transfer_ownership(
                    db, intervention_id, new_owner_id, requester_id, options=options, sink=sink
                )
            )
        except InterventionError as exc:
            logger.info("transfer of intervention %s failed: %s", intervention_id, exc)
            outcome.failed.append(schemas.FailedTransfer(id=intervention_id, error=str(exc)))
    return outcome
