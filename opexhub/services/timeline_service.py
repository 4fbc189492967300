"""
Timeline service: stage-6 implementation activities.

Entries can be added only while the initiative sits at stage 6 and stay
editable until stage 6 is approved. Unless a status is supplied explicitly,
it is derived from the entry's dates when the entry is created or its dates
change (DELAYED is sticky; COMPLETED only changes when set explicitly).
"""

import logging

from sqlalchemy import select

from opexhub.core.exceptions import NotFoundError, UnauthorizedError, ValidationError
from opexhub.models import db
from opexhub.models.initiative import Initiative
from opexhub.models.timeline import (
    STATUS_COMPLETED,
    TIMELINE_STAGE,
    VALID_TIMELINE_STATUSES,
    TimelineEntry,
)
from opexhub.models.workflow import APPROVE_PENDING
from opexhub.services import transaction_store
from opexhub.services.workflow_gates import all_timeline_completed
from opexhub.utils.helpers import parse_date_input

logger = logging.getLogger(__name__)

_DATE_FIELDS = ("planned_start_date", "planned_end_date", "actual_start_date", "actual_end_date")
_TEXT_FIELDS = ("stage_name", "responsible_person", "remarks")


def _get_initiative(initiative_id: int) -> Initiative:
    initiative = db.session.get(Initiative, initiative_id)
    if initiative is None:
        raise NotFoundError(resource="Initiative", resource_id=initiative_id)
    return initiative


def get_entry(entry_id: int) -> TimelineEntry:
    entry = db.session.get(TimelineEntry, entry_id)
    if entry is None:
        raise NotFoundError(resource="TimelineEntry", resource_id=entry_id)
    return entry


def list_entries(initiative_id: int) -> list[TimelineEntry]:
    _get_initiative(initiative_id)
    stmt = (
        select(TimelineEntry)
        .where(TimelineEntry.initiative_id == initiative_id)
        .order_by(TimelineEntry.planned_start_date, TimelineEntry.id)
    )
    return list(db.session.execute(stmt).scalars())


def all_satisfy_gate(initiative_id: int) -> bool:
    _get_initiative(initiative_id)
    return all_timeline_completed(initiative_id)


# ── Guards ───────────────────────────────────────────────────────────────────


def _stage_assignee(initiative: Initiative) -> str | None:
    txn = transaction_store.get_transaction_for_stage(initiative.id, TIMELINE_STAGE)
    return txn.pending_with if txn else None


def _is_locked(initiative: Initiative) -> bool:
    """Entries freeze once stage 6 is no longer pending."""
    txn = transaction_store.get_transaction_for_stage(initiative.id, TIMELINE_STAGE)
    return initiative.is_terminal or txn is None or txn.approve_status != APPROVE_PENDING


def _require_editor(actor, initiative: Initiative, entry: TimelineEntry | None = None) -> None:
    if actor.is_admin:
        return
    if actor.site != initiative.site:
        raise UnauthorizedError(f"{actor.email} is not at site {initiative.site}", {"site": initiative.site})
    assignee = _stage_assignee(initiative)
    if assignee and assignee.lower() == actor.email.lower():
        return
    if assignee is None or not transaction_store.is_individual(assignee):
        if actor.role == "IL":
            return
    if entry is not None and entry.created_by and entry.created_by.lower() == actor.email.lower():
        return
    raise UnauthorizedError(
        f"{actor.email} may not edit the timeline of {initiative.initiative_number}",
        {"initiative_id": initiative.id},
    )


def _require_unlocked(initiative: Initiative) -> None:
    if _is_locked(initiative):
        raise ValidationError(
            "Timeline is locked once the timeline stage has been approved",
            {"initiative_id": initiative.id},
        )


# ── Validation ───────────────────────────────────────────────────────────────


def validate_dates(entry: TimelineEntry) -> None:
    if entry.planned_start_date and entry.planned_end_date and entry.planned_end_date <= entry.planned_start_date:
        raise ValidationError(
            "Planned end date must be after planned start date",
            {"planned_end_date": "must be after planned_start_date"},
        )
    if entry.actual_start_date and entry.planned_start_date and entry.actual_start_date < entry.planned_start_date:
        raise ValidationError(
            "Actual start date cannot precede planned start date",
            {"actual_start_date": "must not precede planned_start_date"},
        )
    if entry.actual_end_date and entry.actual_start_date and entry.actual_end_date <= entry.actual_start_date:
        raise ValidationError(
            "Actual end date must be after actual start date",
            {"actual_end_date": "must be after actual_start_date"},
        )
    if entry.actual_end_date and not entry.actual_start_date:
        raise ValidationError(
            "Actual end date requires an actual start date",
            {"actual_start_date": "required when actual_end_date is set"},
        )


def _validate_status(status: str) -> str:
    status = (status or "").strip().upper()
    if status not in VALID_TIMELINE_STATUSES:
        raise ValidationError(
            f"Invalid timeline status: {status or '(empty)'}",
            {"status": f"must be one of {', '.join(VALID_TIMELINE_STATUSES)}"},
        )
    return status


def _apply_fields(entry: TimelineEntry, data: dict, creating: bool = False) -> None:
    """Copy ``data`` onto ``entry``.

    An explicit status always wins. Otherwise the status is derived on create,
    and on update only when a date changed; COMPLETED is never downgraded.
    """
    for field in _DATE_FIELDS:
        if field in data:
            setattr(entry, field, parse_date_input(data[field], field))
    for field in _TEXT_FIELDS:
        if field in data:
            setattr(entry, field, data[field])
    if not (entry.stage_name or "").strip():
        raise ValidationError("stage_name is required", {"stage_name": "required"})
    if entry.planned_start_date is None or entry.planned_end_date is None:
        raise ValidationError(
            "planned_start_date and planned_end_date are required",
            {"planned_start_date": "required", "planned_end_date": "required"},
        )
    validate_dates(entry)

    if data.get("status"):
        entry.status = _validate_status(data["status"])
    elif creating or (
        entry.status != STATUS_COMPLETED and any(field in data for field in _DATE_FIELDS)
    ):
        entry.status = entry.derive_status()


# ── Lifecycle ────────────────────────────────────────────────────────────────


def create_entry(initiative_id: int, actor, data: dict) -> TimelineEntry:
    initiative = _get_initiative(initiative_id)
    if initiative.is_terminal or initiative.current_stage != TIMELINE_STAGE:
        raise ValidationError(
            f"Timeline entries can only be added at stage {TIMELINE_STAGE}",
            {"current_stage": initiative.current_stage, "status": initiative.status},
        )
    _require_editor(actor, initiative)

    entry = TimelineEntry(initiative_id=initiative.id, created_by=actor.email)
    _apply_fields(entry, data, creating=True)
    db.session.add(entry)
    db.session.commit()
    logger.info(
        "Timeline entry %s created for %s: %s",
        entry.id, initiative.initiative_number, entry.stage_name,
        extra={"initiative_id": initiative.id, "entry_id": entry.id, "actor_id": actor.id},
    )
    return entry


def update_entry(entry_id: int, actor, data: dict) -> TimelineEntry:
    entry = get_entry(entry_id)
    initiative = _get_initiative(entry.initiative_id)
    _require_editor(actor, initiative, entry)
    _require_unlocked(initiative)
    _apply_fields(entry, data)
    db.session.commit()
    return entry


def update_status(entry_id: int, actor, status: str) -> TimelineEntry:
    """Set the status explicitly (e.g. mark an activity COMPLETED)."""
    entry = get_entry(entry_id)
    initiative = _get_initiative(entry.initiative_id)
    _require_editor(actor, initiative, entry)
    _require_unlocked(initiative)
    entry.status = _validate_status(status)
    db.session.commit()
    logger.info(
        "Timeline entry %s status → %s", entry.id, entry.status,
        extra={"initiative_id": initiative.id, "entry_id": entry.id, "actor_id": actor.id},
    )
    return entry


def set_completed(entry_id: int, actor) -> TimelineEntry:
    return update_status(entry_id, actor, STATUS_COMPLETED)


def update_approvals(
    entry_id: int,
    actor,
    site_lead_approval: bool | None = None,
    initiative_lead_approval: bool | None = None,
) -> TimelineEntry:
    """Record the site-lead / initiative-lead sign-off flags on an entry."""
    entry = get_entry(entry_id)
    initiative = _get_initiative(entry.initiative_id)
    if actor.site != initiative.site and not actor.is_admin:
        raise UnauthorizedError(f"{actor.email} is not at site {initiative.site}", {"site": initiative.site})
    _require_unlocked(initiative)

    if site_lead_approval is not None:
        if actor.role != "STLD" and not actor.is_admin:
            raise UnauthorizedError("Only the Site TSD Lead may set site_lead_approval")
        entry.site_lead_approval = bool(site_lead_approval)
    if initiative_lead_approval is not None:
        _require_editor(actor, initiative, entry)
        entry.initiative_lead_approval = bool(initiative_lead_approval)
    db.session.commit()
    return entry


def delete_entry(entry_id: int, actor) -> None:
    entry = get_entry(entry_id)
    initiative = _get_initiative(entry.initiative_id)
    _require_editor(actor, initiative, entry)
    _require_unlocked(initiative)
    db.session.delete(entry)
    db.session.commit()
    logger.info(
        "Timeline entry %s deleted", entry_id,
        extra={"initiative_id": initiative.id, "entry_id": entry_id, "actor_id": actor.id},
    )
