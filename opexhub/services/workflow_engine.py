"""
Workflow engine: the stage action processor.

State machine per initiative:
    STAGE_n  --approve-->  STAGE_n+1      (n < 11)
    STAGE_11 --approve-->  COMPLETED      (current_stage = 12)
    STAGE_n  --reject-->   REJECTED       (n in WORKFLOW_REJECT_STAGES)
    STAGE_8  --drop-->     DROPPED

``process_stage_action`` is a short read-validate-write sequence executed in
one database transaction: finalize the current transaction (compare-and-set),
open the next one, update the initiative. Any failure rolls the whole unit
back.

Check order on every call:
    1. transaction exists and is pending          NotFound / AlreadyProcessed
    2. actor may act on it                        Unauthorized
    3. comment is present                         CommentRequired
    4. the stage offers the action                InvalidPayload
    5. approve only: payload parses, gate holds   InvalidPayload / ValidationGateFailed
"""

import logging

from flask import current_app

from opexhub.core.exceptions import (
    AlreadyProcessedError,
    CommentRequiredError,
    InvalidPayloadError,
    NotFoundError,
    UnauthorizedError,
)
from opexhub.models import db
from opexhub.models.initiative import (
    COMPLETED_STAGE,
    STATUS_COMPLETED,
    STATUS_DROPPED,
    STATUS_IN_PROGRESS,
    STATUS_REJECTED,
    Initiative,
)
from opexhub.models.workflow import (
    ACTION_APPROVE,
    ACTION_DROP,
    ACTION_REJECT,
    DEFAULT_REJECT_STAGES,
    LAST_STAGE,
    VALID_ACTIONS,
    StageDefinition,
    WorkflowTransaction,
    stage_catalog,
    stage_definition,
)
from opexhub.services import monitoring_service, transaction_store
from opexhub.services.stage_payloads import (
    Stage4Payload,
    Stage5Payload,
    Stage10Payload,
    StagePayload,
    parse_stage_payload,
)
from opexhub.services.workflow_gates import evaluate_gate

logger = logging.getLogger(__name__)


# ── Catalog access (config-aware) ────────────────────────────────────────────


def _reject_stages() -> tuple[int, ...]:
    return tuple(current_app.config.get("WORKFLOW_REJECT_STAGES", DEFAULT_REJECT_STAGES))


def get_stage_definition(stage_number: int) -> StageDefinition:
    try:
        return stage_definition(stage_number, _reject_stages())
    except KeyError:
        raise NotFoundError(resource="Stage", resource_id=stage_number)


def get_stage_catalog() -> list[StageDefinition]:
    return stage_catalog(_reject_stages())


# ── Queries ──────────────────────────────────────────────────────────────────


def get_initiative(initiative_id: int) -> Initiative:
    initiative = db.session.get(Initiative, initiative_id)
    if initiative is None:
        raise NotFoundError(resource="Initiative", resource_id=initiative_id)
    return initiative


def resolve_pending_transaction(initiative_id: int, actor) -> WorkflowTransaction | None:
    """The pending transaction for an initiative when ``actor`` may act on it.

    None when the workflow is terminal or the pending stage belongs to
    someone else. Raises NotFoundError for an unknown initiative.
    """
    get_initiative(initiative_id)
    txn = transaction_store.get_pending(initiative_id)
    if txn is None or not transaction_store.actor_may_act(actor, txn):
        return None
    return txn


def pending_inbox(actor) -> list[WorkflowTransaction]:
    return transaction_store.pending_for_actor(actor)


# ── Stage action processor ───────────────────────────────────────────────────


def _stage_fields(payload: StagePayload | None) -> dict:
    """Transaction columns recorded alongside an approve."""
    if isinstance(payload, Stage4Payload):
        return {"assigned_user_id": payload.assigned_user_id}
    if isinstance(payload, Stage5Payload):
        return {
            "requires_moc": payload.requires_moc,
            "moc_number": payload.moc_number,
            "requires_capex": payload.requires_capex,
            "capex_number": payload.capex_number,
        }
    return {}


def _apply_approve(initiative: Initiative, txn: WorkflowTransaction, payload: StagePayload, actor) -> None:
    if isinstance(payload, Stage5Payload):
        initiative.requires_moc = payload.requires_moc
        initiative.moc_number = payload.moc_number
        initiative.requires_capex = payload.requires_capex
        initiative.capex_number = payload.capex_number
    elif isinstance(payload, Stage10Payload) and payload.approved_entry_ids:
        monitoring_service.apply_fa_approval(
            initiative, payload.approved_entry_ids, actor, payload.fa_comments or txn.comment,
        )

    if txn.stage_number == LAST_STAGE:
        initiative.status = STATUS_COMPLETED
        initiative.current_stage = COMPLETED_STAGE
        return

    next_stage = txn.stage_number + 1
    # current_stage first: pending_with resolution may read the initiative
    initiative.current_stage = next_stage
    initiative.status = STATUS_IN_PROGRESS
    transaction_store.create(initiative, next_stage)


def process_stage_action(
    transaction_id: int,
    actor,
    action: str,
    comment: str | None,
    payload: dict | None = None,
) -> WorkflowTransaction:
    """Apply ``action`` (approve / reject / drop) to a pending transaction.

    Returns the finalized transaction. Raises a WorkflowError subclass (or
    NotFoundError) and leaves the database untouched on any failure.
    """
    log_ctx = {"transaction_id": transaction_id, "actor_id": actor.id, "action": action}
    try:
        txn = transaction_store.get_transaction(transaction_id)
        log_ctx.update(initiative_id=txn.initiative_id, stage_number=txn.stage_number)
        if not txn.is_pending:
            raise AlreadyProcessedError(txn.id, txn.approve_status)

        initiative = db.session.get(Initiative, txn.initiative_id)
        if initiative is None:
            raise NotFoundError(resource="Initiative", resource_id=txn.initiative_id)

        if actor.site != initiative.site or not transaction_store.actor_may_act(actor, txn):
            raise UnauthorizedError(
                f"{actor.email} may not act on stage {txn.stage_number} of initiative {initiative.initiative_number}",
                {"pending_with": txn.pending_with, "stage_number": txn.stage_number},
            )

        if not comment or not comment.strip():
            raise CommentRequiredError()
        comment = comment.strip()

        stage = get_stage_definition(txn.stage_number)
        if action not in VALID_ACTIONS or action not in stage.allowed_actions:
            raise InvalidPayloadError(
                f"Action '{action}' is not available at stage {stage.number} ({stage.name})",
                {"action": action, "allowed_actions": list(stage.allowed_actions)},
            )

        parsed = None
        if action == ACTION_APPROVE:
            parsed = parse_stage_payload(stage.number, payload)
            evaluate_gate(stage, initiative, parsed)

        txn = transaction_store.finalize(
            txn.id,
            action,
            actor,
            comment,
            payload=parsed.to_dict() if parsed is not None else None,
            stage_fields=_stage_fields(parsed),
        )

        if action == ACTION_APPROVE:
            _apply_approve(initiative, txn, parsed, actor)
        elif action == ACTION_REJECT:
            initiative.status = STATUS_REJECTED
        elif action == ACTION_DROP:
            initiative.status = STATUS_DROPPED

        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    logger.info(
        "Stage %d %s by %s; initiative %s now stage=%s status=%s",
        txn.stage_number, txn.approve_status, actor.email,
        initiative.initiative_number, initiative.current_stage, initiative.status,
        extra=log_ctx,
    )
    return txn
