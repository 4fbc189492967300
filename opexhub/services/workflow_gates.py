"""
Validation gates: per-stage preconditions checked before an approve.

``evaluate_gate`` raises ValidationGateFailedError naming the unmet gate and
returns normally when the stage may advance. All reads go through the
caller's session so the check sees the same data the mutation will commit
against.
"""

import logging

from sqlalchemy import func, select

from opexhub.core.exceptions import ValidationGateFailedError
from opexhub.models import db
from opexhub.models.auth import User
from opexhub.models.initiative import Initiative
from opexhub.models.monitoring import MonthlyMonitoringEntry
from opexhub.models.timeline import STATUS_COMPLETED, TimelineEntry
from opexhub.models.workflow import (
    GATE_ASSIGNED_IL,
    GATE_FA_APPROVAL,
    GATE_MONITORING_FINALIZED,
    GATE_TIMELINE_COMPLETED,
    StageDefinition,
)
from opexhub.services.stage_payloads import Stage4Payload, Stage10Payload, StagePayload

logger = logging.getLogger(__name__)


# ── Dependent-record predicates ──────────────────────────────────────────────


def timeline_counts(initiative_id: int) -> tuple[int, int]:
    """Return (total, not_completed) timeline entries for an initiative."""
    total = db.session.execute(
        select(func.count(TimelineEntry.id)).where(TimelineEntry.initiative_id == initiative_id)
    ).scalar_one()
    open_count = db.session.execute(
        select(func.count(TimelineEntry.id)).where(
            TimelineEntry.initiative_id == initiative_id,
            TimelineEntry.status != STATUS_COMPLETED,
        )
    ).scalar_one()
    return total, open_count


def monitoring_counts(initiative_id: int) -> tuple[int, int]:
    """Return (total, not_finalized) monitoring entries for an initiative."""
    total = db.session.execute(
        select(func.count(MonthlyMonitoringEntry.id)).where(
            MonthlyMonitoringEntry.initiative_id == initiative_id
        )
    ).scalar_one()
    open_count = db.session.execute(
        select(func.count(MonthlyMonitoringEntry.id)).where(
            MonthlyMonitoringEntry.initiative_id == initiative_id,
            MonthlyMonitoringEntry.is_finalized.is_(False),
        )
    ).scalar_one()
    return total, open_count


def all_timeline_completed(initiative_id: int) -> bool:
    total, open_count = timeline_counts(initiative_id)
    return total > 0 and open_count == 0


def all_monitoring_finalized(initiative_id: int) -> bool:
    total, open_count = monitoring_counts(initiative_id)
    return total > 0 and open_count == 0


def finalized_pending_fa_ids(initiative_id: int) -> list[int]:
    stmt = (
        select(MonthlyMonitoringEntry.id)
        .where(
            MonthlyMonitoringEntry.initiative_id == initiative_id,
            MonthlyMonitoringEntry.is_finalized.is_(True),
            MonthlyMonitoringEntry.fa_approval.is_(False),
        )
        .order_by(MonthlyMonitoringEntry.id)
    )
    return list(db.session.execute(stmt).scalars())


# ── Per-stage gates ──────────────────────────────────────────────────────────


def _gate_assigned_il(initiative: Initiative, payload: Stage4Payload) -> None:
    user = db.session.get(User, payload.assigned_user_id)
    if user is None or not user.is_active or user.role != "IL" or user.site != initiative.site:
        raise ValidationGateFailedError(
            f"User id={payload.assigned_user_id} is not an active Initiative Lead at site {initiative.site}",
            gate=GATE_ASSIGNED_IL,
            details={"assigned_user_id": payload.assigned_user_id},
        )


def _gate_timeline_completed(initiative: Initiative, payload) -> None:
    total, open_count = timeline_counts(initiative.id)
    if total == 0:
        raise ValidationGateFailedError(
            "No timeline entries recorded", gate=GATE_TIMELINE_COMPLETED, details={"total": 0},
        )
    if open_count:
        raise ValidationGateFailedError(
            f"{open_count} timeline entries not completed",
            gate=GATE_TIMELINE_COMPLETED,
            details={"total": total, "not_completed": open_count},
        )


def _gate_monitoring_finalized(initiative: Initiative, payload) -> None:
    total, open_count = monitoring_counts(initiative.id)
    if total == 0:
        raise ValidationGateFailedError(
            "No monthly monitoring entries recorded", gate=GATE_MONITORING_FINALIZED, details={"total": 0},
        )
    if open_count:
        raise ValidationGateFailedError(
            f"{open_count} monitoring entries not finalized",
            gate=GATE_MONITORING_FINALIZED,
            details={"total": total, "not_finalized": open_count},
        )


def _gate_fa_approval(initiative: Initiative, payload: Stage10Payload) -> None:
    _, open_count = monitoring_counts(initiative.id)
    if open_count:
        raise ValidationGateFailedError(
            f"{open_count} monitoring entries were reopened and are not finalized",
            gate=GATE_FA_APPROVAL,
            details={"not_finalized": open_count},
        )
    pending_ids = finalized_pending_fa_ids(initiative.id)
    selected = set(payload.approved_entry_ids)
    unknown = sorted(selected - set(pending_ids))
    if unknown:
        raise ValidationGateFailedError(
            f"Entries {unknown} are not finalized entries awaiting F&A approval",
            gate=GATE_FA_APPROVAL,
            details={"invalid_entry_ids": unknown},
        )
    if pending_ids and not selected:
        raise ValidationGateFailedError(
            f"{len(pending_ids)} finalized entries await F&A approval; select at least one",
            gate=GATE_FA_APPROVAL,
            details={"pending_entry_ids": pending_ids},
        )


_GATES = {
    GATE_ASSIGNED_IL: _gate_assigned_il,
    GATE_TIMELINE_COMPLETED: _gate_timeline_completed,
    GATE_MONITORING_FINALIZED: _gate_monitoring_finalized,
    GATE_FA_APPROVAL: _gate_fa_approval,
}


def evaluate_gate(stage: StageDefinition, initiative: Initiative, payload: StagePayload) -> None:
    """Raise ValidationGateFailedError unless ``stage`` may be approved.

    The MOC/CAPEX gate is fully expressed by Stage5Payload parsing; stages
    without a gate pass unconditionally.
    """
    check = _GATES.get(stage.gate)
    if check is None:
        return
    try:
        check(initiative, payload)
    except ValidationGateFailedError as exc:
        logger.info(
            "Gate %s blocked stage %d for initiative %s: %s",
            exc.gate, stage.number, initiative.id, exc.reason,
            extra={"initiative_id": initiative.id, "stage_number": stage.number},
        )
        raise
