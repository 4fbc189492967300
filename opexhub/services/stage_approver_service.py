"""
Stage approver directory: who a stage is pending with at each site.

A site can name one approver per stage. When a stage opens,
transaction_store.resolve_pending_with consults this directory after any
per-initiative choice (the HOD picked at creation, the lead assigned at
stage 4) and before falling back to the first active user with the role.

None of these functions commit; the caller owns the unit of work.
"""

import logging

from sqlalchemy import select

from opexhub.core.exceptions import NotFoundError, ValidationError
from opexhub.models import db
from opexhub.models.auth import SITES
from opexhub.models.workflow import FIRST_STAGE, LAST_STAGE, StageApprover, stage_definition
from opexhub.services import user_service

logger = logging.getLogger(__name__)


def _validate_site_stage(site: str, stage_number: int) -> None:
    if site not in SITES:
        raise ValidationError(f"Unknown site: {site}", {"site": f"must be one of {', '.join(SITES)}"})
    if not FIRST_STAGE < stage_number <= LAST_STAGE:
        raise ValidationError(
            f"Stage {stage_number} has no approver",
            {"stage_number": f"must be between {FIRST_STAGE + 1} and {LAST_STAGE}"},
        )


def list_approvers(site: str | None = None, active_only: bool = False) -> list[StageApprover]:
    stmt = select(StageApprover)
    if site:
        stmt = stmt.where(StageApprover.site == site)
    if active_only:
        stmt = stmt.where(StageApprover.is_active.is_(True))
    stmt = stmt.order_by(StageApprover.site, StageApprover.stage_number)
    return list(db.session.execute(stmt).scalars())


def get_approver(site: str, stage_number: int) -> StageApprover | None:
    stmt = select(StageApprover).where(
        StageApprover.site == site,
        StageApprover.stage_number == stage_number,
    )
    return db.session.execute(stmt).scalar_one_or_none()


def configured_approver_email(site: str, stage_number: int) -> str | None:
    """E-mail of the active configured approver, if that user can still act.

    A row pointing at a deactivated user, or one whose role or site has since
    changed, is skipped so the stage falls through to the role lookup.
    """
    row = get_approver(site, stage_number)
    if row is None or not row.is_active:
        return None
    user = user_service.get_user_by_email(row.user_email)
    if not user_service.is_active_user_with_role(user, row.role_code, site):
        logger.warning(
            "Configured approver %s for %s stage %d can no longer act; ignoring",
            row.user_email, site, stage_number,
            extra={"stage_number": stage_number},
        )
        return None
    return user.email


def set_approver(site: str, stage_number: int, user_email: str) -> StageApprover:
    """Create or replace the approver for (site, stage) and mark it active."""
    _validate_site_stage(site, stage_number)
    role = stage_definition(stage_number).required_role
    user = user_service.get_user_by_email(user_email)
    if not user_service.is_active_user_with_role(user, role, site):
        raise ValidationError(
            f"{user_email} is not an active {role} at site {site}",
            {"user_email": f"must be an active {role} at {site}"},
        )

    row = get_approver(site, stage_number)
    if row is None:
        row = StageApprover(site=site, stage_number=stage_number)
        db.session.add(row)
    row.role_code = role
    row.user_email = user.email
    row.is_active = True
    db.session.flush()
    logger.info("Stage %d approver at %s set to %s", stage_number, site, user.email, extra={"stage_number": stage_number})
    return row


def deactivate_approver(site: str, stage_number: int) -> StageApprover:
    _validate_site_stage(site, stage_number)
    row = get_approver(site, stage_number)
    if row is None:
        raise NotFoundError(resource="StageApprover", resource_id=f"{site}/{stage_number}")
    row.is_active = False
    db.session.flush()
    logger.info("Stage %d approver at %s deactivated", stage_number, site, extra={"stage_number": stage_number})
    return row
