"""
Workflow transaction store: reads, creation and the single finalize mutator.

``finalize`` is the only code path that moves a transaction out of
``pending``. It issues a conditional UPDATE guarded on
``approve_status = 'pending'`` and treats zero affected rows as a lost race
(AlreadyProcessedError), so two concurrent approvals cannot both succeed.

None of these functions commit; the caller owns the unit of work.
"""

import logging
from datetime import datetime, timezone

from sqlalchemy import or_, select, update

from opexhub.core.exceptions import AlreadyProcessedError, NotFoundError, WorkflowError
from opexhub.models import db
from opexhub.models.auth import ROLES, User
from opexhub.models.initiative import Initiative
from opexhub.models.workflow import (
    ACTION_RESULT,
    APPROVE_APPROVED,
    APPROVE_PENDING,
    IL_ASSIGNED_STAGES,
    ROLE_STAGE_MAP,
    WorkflowTransaction,
    stage_definition,
)
from opexhub.services import stage_approver_service, user_service

logger = logging.getLogger(__name__)


# ── Reads ────────────────────────────────────────────────────────────────────


def get_transaction(transaction_id: int) -> WorkflowTransaction:
    txn = db.session.get(WorkflowTransaction, transaction_id)
    if txn is None:
        raise NotFoundError(resource="WorkflowTransaction", resource_id=transaction_id)
    return txn


def get_transactions(initiative_id: int) -> list[WorkflowTransaction]:
    stmt = (
        select(WorkflowTransaction)
        .where(WorkflowTransaction.initiative_id == initiative_id)
        .order_by(WorkflowTransaction.stage_number)
    )
    return list(db.session.execute(stmt).scalars())


def get_transaction_for_stage(initiative_id: int, stage_number: int) -> WorkflowTransaction | None:
    stmt = select(WorkflowTransaction).where(
        WorkflowTransaction.initiative_id == initiative_id,
        WorkflowTransaction.stage_number == stage_number,
    )
    return db.session.execute(stmt).scalar_one_or_none()


def get_pending(initiative_id: int) -> WorkflowTransaction | None:
    """The single pending transaction, or None when the workflow is terminal."""
    stmt = select(WorkflowTransaction).where(
        WorkflowTransaction.initiative_id == initiative_id,
        WorkflowTransaction.approve_status == APPROVE_PENDING,
    )
    return db.session.execute(stmt).scalar_one_or_none()


def get_visible_transactions(initiative_id: int) -> list[WorkflowTransaction]:
    """Transactions a viewer should see on the workflow timeline.

    Stage 1 always; any later stage when its predecessor was approved or the
    stage itself is pending / approved.
    """
    transactions = get_transactions(initiative_id)
    by_stage = {t.stage_number: t for t in transactions}
    visible = []
    for txn in transactions:
        if txn.stage_number == 1:
            visible.append(txn)
            continue
        previous = by_stage.get(txn.stage_number - 1)
        if previous is None:
            continue
        if previous.approve_status == APPROVE_APPROVED or txn.approve_status in (APPROVE_PENDING, APPROVE_APPROVED):
            visible.append(txn)
    return visible


def progress_percentage(initiative_id: int) -> int:
    transactions = get_transactions(initiative_id)
    if not transactions:
        return 0
    approved = sum(1 for t in transactions if t.approve_status == APPROVE_APPROVED)
    return approved * 100 // len(transactions)


# ── Assignment & authorization ───────────────────────────────────────────────


def is_individual(pending_with: str | None) -> bool:
    """True when pending_with names a person rather than a role (or nobody)."""
    return bool(pending_with) and pending_with not in ROLES


def resolve_pending_with(initiative: Initiative, stage_number: int) -> str | None:
    """Work out who a newly entered stage is pending with.

    1. stage 2: the HOD picked at creation.
    2. stages 5, 6, 9, 11: the Initiative Lead assigned at stage 4.
    3. the approver configured for (site, stage) in the stage approver directory.
    4. the first active user holding the stage's role at the site.
    Falls back to the role code itself when no individual can be found.
    """
    role = stage_definition(stage_number).required_role

    if stage_number == 2 and initiative.selected_hod_id:
        hod = db.session.get(User, initiative.selected_hod_id)
        if user_service.is_active_user_with_role(hod, "HOD", initiative.site):
            return hod.email

    if stage_number in IL_ASSIGNED_STAGES:
        stage4 = get_transaction_for_stage(initiative.id, 4)
        if stage4 is not None and stage4.assigned_user_id:
            lead = db.session.get(User, stage4.assigned_user_id)
            if lead is not None and lead.is_active:
                return lead.email

    if role is None:
        return None
    configured = stage_approver_service.configured_approver_email(initiative.site, stage_number)
    if configured:
        return configured
    user = user_service.first_active_user(initiative.site, role)
    if user is not None:
        return user.email
    logger.warning(
        "No active %s at site %s; stage %d assigned to role",
        role, initiative.site, stage_number,
        extra={"initiative_id": initiative.id, "stage_number": stage_number},
    )
    return role


def actor_may_act(actor, txn: WorkflowTransaction) -> bool:
    """Authorization rule for acting on a pending transaction.

    An individual assignment binds: only that e-mail may act. Role-stage
    fallback applies only when pending_with is empty or a role code. The
    actor's site must always match the transaction's site.
    """
    if actor.site != txn.site:
        return False
    if is_individual(txn.pending_with):
        return txn.pending_with.lower() == actor.email.lower()
    if txn.pending_with and txn.pending_with != actor.role:
        return False
    return txn.stage_number in ROLE_STAGE_MAP.get(actor.role, ())


def pending_for_actor(actor) -> list[WorkflowTransaction]:
    """The actor's inbox: pending transactions at their site they may act on."""
    stages = ROLE_STAGE_MAP.get(actor.role, frozenset())
    role_branch = (
        or_(WorkflowTransaction.pending_with.is_(None), WorkflowTransaction.pending_with == actor.role)
        & WorkflowTransaction.stage_number.in_(sorted(stages))
    )
    stmt = (
        select(WorkflowTransaction)
        .where(
            WorkflowTransaction.approve_status == APPROVE_PENDING,
            WorkflowTransaction.site == actor.site,
            or_(WorkflowTransaction.pending_with == actor.email, role_branch),
        )
        .order_by(WorkflowTransaction.created_at, WorkflowTransaction.id)
    )
    return list(db.session.execute(stmt).scalars())


# ── Mutators ─────────────────────────────────────────────────────────────────


def create(initiative: Initiative, stage_number: int, pending_with: str | None = None) -> WorkflowTransaction:
    """Create the pending transaction for a stage the initiative just entered."""
    if get_transaction_for_stage(initiative.id, stage_number) is not None:
        raise WorkflowError(
            f"Stage {stage_number} already exists for initiative id={initiative.id}",
            {"initiative_id": initiative.id, "stage_number": stage_number},
        )
    stage = stage_definition(stage_number)
    txn = WorkflowTransaction(
        initiative_id=initiative.id,
        stage_number=stage_number,
        stage_name=stage.name,
        site=initiative.site,
        required_role=stage.required_role,
        approve_status=APPROVE_PENDING,
        pending_with=pending_with or resolve_pending_with(initiative, stage_number),
    )
    db.session.add(txn)
    db.session.flush()
    logger.info(
        "Stage %d opened for initiative %s pending_with=%s",
        stage_number, initiative.id, txn.pending_with,
        extra={"initiative_id": initiative.id, "stage_number": stage_number, "transaction_id": txn.id},
    )
    return txn


def finalize(
    transaction_id: int,
    action: str,
    actor,
    comment: str,
    payload: dict | None = None,
    stage_fields: dict | None = None,
) -> WorkflowTransaction:
    """Compare-and-set the transaction from pending to its terminal status.

    ``stage_fields`` carries stage-specific columns (assigned_user_id at
    stage 4, the MOC/CAPEX decision at stage 5). Raises AlreadyProcessedError
    when another writer finalized the row first.
    """
    values = {
        "approve_status": ACTION_RESULT[action],
        "action_by": actor.email,
        "action_by_id": actor.id,
        "action_date": datetime.now(timezone.utc),
        "comment": comment,
        "action_payload": payload or None,
        "updated_at": datetime.now(timezone.utc),
    }
    values.update(stage_fields or {})

    result = db.session.execute(
        update(WorkflowTransaction)
        .where(
            WorkflowTransaction.id == transaction_id,
            WorkflowTransaction.approve_status == APPROVE_PENDING,
        )
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        current = db.session.execute(
            select(WorkflowTransaction.approve_status).where(WorkflowTransaction.id == transaction_id)
        ).scalar_one_or_none()
        raise AlreadyProcessedError(transaction_id, current)

    txn = db.session.get(WorkflowTransaction, transaction_id)
    db.session.refresh(txn)
    return txn
