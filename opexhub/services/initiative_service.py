"""
Initiative service: registration, lookups and descriptive edits.

Registering an initiative is stage 1 of the workflow: the stage-1
transaction is written already approved and the stage-2 transaction is
opened for the HOD, all in one commit.

Initiative numbers follow SITE/YY/CC/DD/NNN:
    YY   two-digit year
    CC   discipline code (OP, EG, EV, SF, QA, OT)
    DD   running number for this discipline at the site this year
    NNN  running number for the site this year
"""

import logging
from datetime import date, datetime, timezone

from sqlalchemy import func, or_, select

from opexhub.core.exceptions import NotFoundError, UnauthorizedError, ValidationError
from opexhub.models import db
from opexhub.models.auth import DISCIPLINES, SITES, User
from opexhub.models.initiative import (
    BUDGET_TYPES,
    STATUS_PENDING,
    VALID_STATUSES,
    Initiative,
)
from opexhub.models.workflow import APPROVE_APPROVED, WorkflowTransaction, stage_definition
from opexhub.services import transaction_store
from opexhub.utils.helpers import parse_date_input, parse_decimal

logger = logging.getLogger(__name__)

DISCIPLINE_CODES = {
    "Operation": "OP",
    "Engineering & Utility": "EG",
    "Environment": "EV",
    "Safety": "SF",
    "Quality": "QA",
    "Others": "OT",
}

REGISTRATION_COMMENT = "Initiative created and registered"

_DECIMAL_FIELDS = ("expected_savings", "estimated_capex", "target_value")
_DATE_FIELDS = ("start_date", "end_date")
_TEXT_FIELDS = (
    "description",
    "priority",
    "baseline_data",
    "target_outcome",
    "assumption_1",
    "assumption_2",
    "assumption_3",
    "initiator_name",
)
UPDATABLE_FIELDS = ("title", "budget_type", "confidence_level") + _DECIMAL_FIELDS + _DATE_FIELDS + _TEXT_FIELDS


def discipline_code(discipline: str) -> str:
    return DISCIPLINE_CODES.get(discipline, "OT")


def generate_initiative_number(site: str, discipline: str, today: date | None = None) -> str:
    today = today or date.today()
    yy = f"{today.year % 100:02d}"
    code = discipline_code(discipline)
    site_prefix = f"{site}/{yy}/"
    site_count = db.session.execute(
        select(func.count(Initiative.id)).where(Initiative.initiative_number.like(f"{site_prefix}%"))
    ).scalar_one()
    discipline_count = db.session.execute(
        select(func.count(Initiative.id)).where(Initiative.initiative_number.like(f"{site_prefix}{code}/%"))
    ).scalar_one()
    return f"{site}/{yy}/{code}/{discipline_count + 1:02d}/{site_count + 1:03d}"


# ── Field validation ─────────────────────────────────────────────────────────


def _apply_descriptive_fields(initiative: Initiative, data: dict) -> None:
    if "title" in data:
        title = (data.get("title") or "").strip()
        if not title:
            raise ValidationError("title is required", {"title": "required"})
        initiative.title = title
    if "budget_type" in data:
        budget_type = data.get("budget_type") or None
        if budget_type is not None and budget_type not in BUDGET_TYPES:
            raise ValidationError(
                f"Invalid budget_type: {budget_type}",
                {"budget_type": f"must be one of {', '.join(BUDGET_TYPES)}"},
            )
        initiative.budget_type = budget_type
    if "confidence_level" in data:
        level = data.get("confidence_level")
        if level in (None, ""):
            initiative.confidence_level = None
        else:
            if isinstance(level, bool) or not str(level).strip().isdigit() or not 0 <= int(level) <= 100:
                raise ValidationError(
                    "confidence_level must be an integer between 0 and 100",
                    {"confidence_level": "0-100"},
                )
            initiative.confidence_level = int(level)
    for field in _DECIMAL_FIELDS:
        if field in data:
            value = parse_decimal(data.get(field), field)
            if value is not None and value < 0:
                raise ValidationError(f"{field} must not be negative", {field: "must be >= 0"})
            setattr(initiative, field, value)
    for field in _DATE_FIELDS:
        if field in data:
            setattr(initiative, field, parse_date_input(data.get(field), field))
    for field in _TEXT_FIELDS:
        if field in data:
            setattr(initiative, field, data.get(field))

    if initiative.start_date and initiative.end_date and initiative.end_date < initiative.start_date:
        raise ValidationError("end_date must not precede start_date", {"end_date": "before start_date"})


def _selected_hod(data: dict, site: str) -> User | None:
    raw = data.get("selected_hod_id")
    if raw in (None, ""):
        return None
    if isinstance(raw, bool) or not str(raw).isdigit():
        raise ValidationError("selected_hod_id must be an integer", {"selected_hod_id": "integer"})
    hod = db.session.get(User, int(raw))
    if hod is None or not hod.is_active or hod.role != "HOD" or hod.site != site:
        raise ValidationError(
            f"User id={raw} is not an active HOD at site {site}",
            {"selected_hod_id": "not an HOD at this site"},
        )
    return hod


# ── Operations ───────────────────────────────────────────────────────────────


def create_initiative(actor, data: dict) -> Initiative:
    """Register a new initiative and open its workflow at stage 2."""
    site = data.get("site")
    if site not in SITES:
        raise ValidationError(f"Invalid site: {site}", {"site": f"must be one of {', '.join(SITES)}"})
    if site != actor.site and not actor.is_admin:
        raise UnauthorizedError(
            f"{actor.email} may only register initiatives at site {actor.site}",
            {"site": site, "actor_site": actor.site},
        )
    discipline = data.get("discipline")
    if discipline not in DISCIPLINES:
        raise ValidationError(
            f"Invalid discipline: {discipline}",
            {"discipline": f"must be one of {', '.join(DISCIPLINES)}"},
        )
    if not (data.get("title") or "").strip():
        raise ValidationError("title is required", {"title": "required"})

    hod = _selected_hod(data, site)

    initiative = Initiative(
        site=site,
        discipline=discipline,
        status=STATUS_PENDING,
        current_stage=2,
        created_by_id=actor.id,
        initiator_name=actor.full_name,
        selected_hod_id=hod.id if hod else None,
    )
    _apply_descriptive_fields(initiative, {k: v for k, v in data.items() if k in UPDATABLE_FIELDS})

    try:
        initiative.initiative_number = generate_initiative_number(site, discipline)
        db.session.add(initiative)
        db.session.flush()

        now = datetime.now(timezone.utc)
        stage1 = stage_definition(1)
        db.session.add(WorkflowTransaction(
            initiative_id=initiative.id,
            stage_number=1,
            stage_name=stage1.name,
            site=site,
            required_role=stage1.required_role,
            approve_status=APPROVE_APPROVED,
            pending_with=actor.email,
            action_by=actor.email,
            action_by_id=actor.id,
            action_date=now,
            comment=REGISTRATION_COMMENT,
        ))
        db.session.flush()
        transaction_store.create(initiative, 2)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    logger.info(
        "Initiative %s registered by %s", initiative.initiative_number, actor.email,
        extra={"initiative_id": initiative.id, "actor_id": actor.id, "stage_number": 2},
    )
    return initiative


def get_initiative(initiative_id: int) -> Initiative:
    initiative = db.session.get(Initiative, initiative_id)
    if initiative is None:
        raise NotFoundError(resource="Initiative", resource_id=initiative_id)
    return initiative


def initiatives_query(site: str = None, status: str = None, search: str = None):
    """Filtered, newest-first select over initiatives."""
    stmt = select(Initiative)
    if site:
        stmt = stmt.where(Initiative.site == site)
    if status:
        if status not in VALID_STATUSES:
            raise ValidationError(f"Invalid status filter: {status}", {"status": "unknown status"})
        stmt = stmt.where(Initiative.status == status)
    if search:
        pattern = f"%{search.strip()}%"
        stmt = stmt.where(or_(Initiative.title.ilike(pattern), Initiative.initiative_number.ilike(pattern)))
    return stmt.order_by(Initiative.created_at.desc(), Initiative.id.desc())


def list_initiatives(site: str = None, status: str = None, search: str = None) -> list[Initiative]:
    return list(db.session.execute(initiatives_query(site, status, search)).scalars())


def update_initiative(initiative_id: int, actor, data: dict) -> Initiative:
    """Edit descriptive fields. Workflow-owned fields are ignored."""
    initiative = get_initiative(initiative_id)
    if not actor.is_admin and not (
        initiative.created_by_id == actor.id
        or (actor.role == "STLD" and actor.site == initiative.site)
    ):
        raise UnauthorizedError(
            f"{actor.email} may not edit initiative {initiative.initiative_number}",
            {"initiative_id": initiative.id},
        )
    if initiative.is_terminal:
        raise ValidationError(
            f"Initiative {initiative.initiative_number} is {initiative.status} and can no longer be edited",
            {"status": initiative.status},
        )
    _apply_descriptive_fields(initiative, {k: v for k, v in data.items() if k in UPDATABLE_FIELDS})
    db.session.commit()
    return initiative
