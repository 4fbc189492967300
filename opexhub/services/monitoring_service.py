"""
Monthly monitoring service: stage-9 savings entries and their F&A lifecycle.

    create / update / delete   while the entry is not finalized and stage 9 is pending
    set_finalized              owner, the stage-9 assignee, or ADMIN
    batch_approve              F&A marks finalized entries approved (before stage 10)
    request_edit               F&A sends a finalized entry back to its owner (up to stage 10)

Once stage 9 is approved entries are locked. The only way back in is an F&A
request_edit during stage 10, after which the owner may correct and
re-finalize that entry; stage 10 cannot be approved until it is.

After every F&A approval the initiative's actual_savings is re-synced to the
sum of achieved values on F&A-approved entries.
"""

import logging
from decimal import Decimal

from sqlalchemy import func, select

from opexhub.core.exceptions import (
    NotFoundError,
    UnauthorizedError,
    ValidationError,
)
from opexhub.models import db
from opexhub.models.initiative import Initiative
from opexhub.models.monitoring import (
    DEFAULT_CATEGORY,
    FA_STAGE,
    MONITORING_STAGE,
    MonthlyMonitoringEntry,
)
from opexhub.models.workflow import APPROVE_PENDING
from opexhub.services import transaction_store
from opexhub.services.workflow_gates import all_monitoring_finalized
from opexhub.utils.helpers import normalize_month, parse_decimal

logger = logging.getLogger(__name__)

FA_ROLE = "F&A"


# ── Reads ────────────────────────────────────────────────────────────────────


def get_entry(entry_id: int) -> MonthlyMonitoringEntry:
    entry = db.session.get(MonthlyMonitoringEntry, entry_id)
    if entry is None:
        raise NotFoundError(resource="MonthlyMonitoringEntry", resource_id=entry_id)
    return entry


def list_entries(initiative_id: int, month: str | None = None) -> list[MonthlyMonitoringEntry]:
    _get_initiative(initiative_id)
    stmt = select(MonthlyMonitoringEntry).where(MonthlyMonitoringEntry.initiative_id == initiative_id)
    if month:
        stmt = stmt.where(MonthlyMonitoringEntry.monitoring_month == normalize_month(month))
    stmt = stmt.order_by(MonthlyMonitoringEntry.monitoring_month, MonthlyMonitoringEntry.id)
    return list(db.session.execute(stmt).scalars())


def finalized_pending_fa(initiative_id: int) -> list[MonthlyMonitoringEntry]:
    """Finalized entries still waiting for F&A approval."""
    _get_initiative(initiative_id)
    stmt = (
        select(MonthlyMonitoringEntry)
        .where(
            MonthlyMonitoringEntry.initiative_id == initiative_id,
            MonthlyMonitoringEntry.is_finalized.is_(True),
            MonthlyMonitoringEntry.fa_approval.is_(False),
        )
        .order_by(MonthlyMonitoringEntry.monitoring_month, MonthlyMonitoringEntry.id)
    )
    return list(db.session.execute(stmt).scalars())


def all_satisfy_gate(initiative_id: int) -> bool:
    _get_initiative(initiative_id)
    return all_monitoring_finalized(initiative_id)


# ── Permission helpers ───────────────────────────────────────────────────────


def _get_initiative(initiative_id: int) -> Initiative:
    initiative = db.session.get(Initiative, initiative_id)
    if initiative is None:
        raise NotFoundError(resource="Initiative", resource_id=initiative_id)
    return initiative


def _is_stage_assignee(actor, initiative: Initiative) -> bool:
    txn = transaction_store.get_transaction_for_stage(initiative.id, MONITORING_STAGE)
    return bool(txn and txn.pending_with and txn.pending_with.lower() == actor.email.lower())


def _require_site(actor, initiative: Initiative) -> None:
    if actor.site != initiative.site and not actor.is_admin:
        raise UnauthorizedError(
            f"{actor.email} is not at site {initiative.site}",
            {"site": initiative.site},
        )


def _require_owner(actor, entry: MonthlyMonitoringEntry, initiative: Initiative) -> None:
    _require_site(actor, initiative)
    if actor.is_admin:
        return
    if entry.entered_by and entry.entered_by.lower() == actor.email.lower():
        return
    if _is_stage_assignee(actor, initiative):
        return
    raise UnauthorizedError(
        f"{actor.email} may not modify monitoring entry id={entry.id}",
        {"entry_id": entry.id},
    )


def _require_fa(actor, initiative: Initiative) -> None:
    if actor.role != FA_ROLE or actor.site != initiative.site:
        raise UnauthorizedError(
            "Only F&A at the initiative's site may approve monitoring entries",
            {"site": initiative.site},
        )


def _require_unlocked(entry: MonthlyMonitoringEntry) -> None:
    if entry.is_finalized:
        raise ValidationError(
            f"Monitoring entry id={entry.id} is finalized and cannot be changed",
            {"entry_id": entry.id},
        )


def _monitoring_closed(initiative: Initiative) -> bool:
    """True once stage 9 has been approved (or the workflow ended)."""
    txn = transaction_store.get_transaction_for_stage(initiative.id, MONITORING_STAGE)
    return initiative.is_terminal or (txn is not None and txn.approve_status != APPROVE_PENDING)


def _in_fa_review(initiative: Initiative) -> bool:
    return not initiative.is_terminal and initiative.current_stage == FA_STAGE


def _require_open_for_owner(entry: MonthlyMonitoringEntry, initiative: Initiative, operation: str) -> None:
    """After stage 9 the owner may only rework entries F&A sent back during stage 10."""
    if not _monitoring_closed(initiative):
        return
    if operation in ("update", "finalize") and _in_fa_review(initiative) and not entry.is_finalized:
        return
    raise ValidationError(
        f"Monitoring entry id={entry.id} is locked once monitoring has been approved",
        {"entry_id": entry.id, "operation": operation, "current_stage": initiative.current_stage},
    )


# ── Entry lifecycle ──────────────────────────────────────────────────────────


_EDITABLE_FIELDS = ("kpi_description", "category", "target_value", "achieved_value", "remarks", "monitoring_month")


def _apply_fields(entry: MonthlyMonitoringEntry, data: dict) -> None:
    if "monitoring_month" in data:
        entry.monitoring_month = normalize_month(data["monitoring_month"])
    if "kpi_description" in data:
        kpi = (data.get("kpi_description") or "").strip()
        if not kpi:
            raise ValidationError("kpi_description is required", {"kpi_description": "required"})
        entry.kpi_description = kpi
    if "category" in data:
        entry.category = (data.get("category") or "").strip() or DEFAULT_CATEGORY
    if "target_value" in data:
        target = parse_decimal(data.get("target_value"), "target_value")
        if target is None:
            raise ValidationError("target_value is required", {"target_value": "required"})
        entry.target_value = target
    if "achieved_value" in data:
        entry.achieved_value = parse_decimal(data.get("achieved_value"), "achieved_value")
    if "remarks" in data:
        entry.remarks = data.get("remarks")
    entry.recalculate_deviation()


def create_entry(initiative_id: int, actor, data: dict) -> MonthlyMonitoringEntry:
    """Record a monthly KPI while the initiative sits at stage 9.

    Allowed for the stage-9 assignee or the site's STLD.
    """
    initiative = _get_initiative(initiative_id)
    if initiative.is_terminal or initiative.current_stage != MONITORING_STAGE:
        raise ValidationError(
            f"Monitoring entries can only be added at stage {MONITORING_STAGE}",
            {"current_stage": initiative.current_stage, "status": initiative.status},
        )
    _require_site(actor, initiative)
    if not (_is_stage_assignee(actor, initiative) or actor.role == "STLD" or actor.is_admin):
        raise UnauthorizedError(
            f"{actor.email} may not record monitoring entries for this initiative",
            {"initiative_id": initiative.id},
        )

    missing = [f for f in ("monitoring_month", "kpi_description", "target_value") if data.get(f) in (None, "")]
    if missing:
        raise ValidationError(
            f"Missing required fields: {', '.join(missing)}",
            {f: "required" for f in missing},
        )

    entry = MonthlyMonitoringEntry(initiative_id=initiative.id, entered_by=actor.email)
    _apply_fields(entry, {k: v for k, v in data.items() if k in _EDITABLE_FIELDS})
    db.session.add(entry)
    db.session.commit()
    logger.info(
        "Monitoring entry %s created for %s month=%s",
        entry.id, initiative.initiative_number, entry.monitoring_month,
        extra={"initiative_id": initiative.id, "entry_id": entry.id, "actor_id": actor.id},
    )
    return entry


def update_entry(entry_id: int, actor, data: dict) -> MonthlyMonitoringEntry:
    entry = get_entry(entry_id)
    initiative = _get_initiative(entry.initiative_id)
    _require_owner(actor, entry, initiative)
    _require_unlocked(entry)
    _require_open_for_owner(entry, initiative, "update")
    _apply_fields(entry, {k: v for k, v in data.items() if k in _EDITABLE_FIELDS})
    db.session.commit()
    return entry


def delete_entry(entry_id: int, actor) -> None:
    entry = get_entry(entry_id)
    initiative = _get_initiative(entry.initiative_id)
    _require_owner(actor, entry, initiative)
    _require_unlocked(entry)
    _require_open_for_owner(entry, initiative, "delete")
    db.session.delete(entry)
    db.session.commit()
    logger.info(
        "Monitoring entry %s deleted", entry_id,
        extra={"initiative_id": initiative.id, "entry_id": entry_id, "actor_id": actor.id},
    )


def set_finalized(entry_id: int, actor, finalized: bool) -> MonthlyMonitoringEntry:
    entry = get_entry(entry_id)
    initiative = _get_initiative(entry.initiative_id)
    _require_owner(actor, entry, initiative)
    _require_open_for_owner(entry, initiative, "finalize" if finalized else "unfinalize")
    if finalized and entry.achieved_value is None:
        raise ValidationError(
            "achieved_value is required before finalizing",
            {"achieved_value": "required"},
        )
    if not finalized and entry.fa_approval:
        raise ValidationError(
            f"Monitoring entry id={entry.id} is F&A approved; ask F&A to request an edit",
            {"entry_id": entry.id},
        )
    entry.is_finalized = bool(finalized)
    db.session.commit()
    return entry


# ── F&A ──────────────────────────────────────────────────────────────────────


def sync_actual_savings(initiative: Initiative) -> Decimal:
    """Set initiative.actual_savings to the sum of F&A-approved achieved values."""
    total = db.session.execute(
        select(func.coalesce(func.sum(MonthlyMonitoringEntry.achieved_value), 0)).where(
            MonthlyMonitoringEntry.initiative_id == initiative.id,
            MonthlyMonitoringEntry.fa_approval.is_(True),
        )
    ).scalar_one()
    initiative.actual_savings = Decimal(str(total))
    return initiative.actual_savings


def apply_fa_approval(initiative: Initiative, entry_ids, actor, comments: str | None) -> list[MonthlyMonitoringEntry]:
    """Mark ``entry_ids`` F&A approved without committing.

    Every id must be a finalized, not-yet-approved entry of ``initiative``.
    Shared by batch_approve and the stage-10 approve.
    """
    _require_fa(actor, initiative)
    ids = list(dict.fromkeys(entry_ids))
    if not ids:
        raise ValidationError("entry_ids must not be empty", {"entry_ids": "required"})
    entries = list(
        db.session.execute(
            select(MonthlyMonitoringEntry).where(MonthlyMonitoringEntry.id.in_(ids))
        ).scalars()
    )
    found = {e.id: e for e in entries}
    invalid = [
        i for i in ids
        if i not in found
        or found[i].initiative_id != initiative.id
        or not found[i].is_finalized
        or found[i].fa_approval
    ]
    if invalid:
        raise ValidationError(
            "Only finalized entries awaiting F&A approval can be approved",
            {"invalid_entry_ids": invalid},
        )
    for entry in entries:
        entry.fa_approval = True
        entry.fa_comments = comments
    db.session.flush()
    sync_actual_savings(initiative)
    logger.info(
        "F&A approved %d monitoring entries for %s",
        len(entries), initiative.initiative_number,
        extra={"initiative_id": initiative.id, "actor_id": actor.id},
    )
    return entries


def batch_approve(entry_ids, actor, comments: str | None = None) -> list[MonthlyMonitoringEntry]:
    """F&A approval of finalized entries, ahead of the stage-10 decision.

    All entries must belong to one initiative.
    """
    ids = list(dict.fromkeys(entry_ids or []))
    if not ids:
        raise ValidationError("entry_ids must not be empty", {"entry_ids": "required"})
    initiative_ids = set(
        db.session.execute(
            select(MonthlyMonitoringEntry.initiative_id).where(MonthlyMonitoringEntry.id.in_(ids))
        ).scalars()
    )
    if not initiative_ids:
        raise NotFoundError(resource="MonthlyMonitoringEntry", resource_id=ids[0])
    if len(initiative_ids) > 1:
        raise ValidationError(
            "Batch approval must target a single initiative",
            {"initiative_ids": sorted(initiative_ids)},
        )
    initiative = _get_initiative(initiative_ids.pop())
    try:
        entries = apply_fa_approval(initiative, ids, actor, comments)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    return entries


def request_edit(entry_id: int, actor, comments: str) -> MonthlyMonitoringEntry:
    """F&A re-opens a finalized entry for the owner to correct."""
    entry = get_entry(entry_id)
    initiative = _get_initiative(entry.initiative_id)
    _require_fa(actor, initiative)
    if not _in_fa_review(initiative) and _monitoring_closed(initiative):
        raise ValidationError(
            "Edits can no longer be requested once F&A review has closed",
            {"entry_id": entry.id, "current_stage": initiative.current_stage},
        )
    if not entry.is_finalized:
        raise ValidationError(
            f"Monitoring entry id={entry.id} is not finalized",
            {"entry_id": entry.id},
        )
    if not comments or not comments.strip():
        raise ValidationError("comments are required when requesting an edit", {"comments": "required"})
    was_approved = entry.fa_approval
    entry.is_finalized = False
    entry.fa_approval = False
    entry.fa_comments = comments.strip()
    if was_approved:
        db.session.flush()
        sync_actual_savings(initiative)
    db.session.commit()
    logger.info(
        "F&A requested edit on monitoring entry %s", entry.id,
        extra={"initiative_id": initiative.id, "entry_id": entry.id, "actor_id": actor.id},
    )
    return entry
