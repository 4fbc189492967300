"""
User Service: lookups against the user directory used by the workflow.

Assignment rules pick "the first active user" deterministically: lowest id
first.
"""

import logging

from email_validator import EmailNotValidError, validate_email
from sqlalchemy import func, select

from opexhub.core.exceptions import ConflictError, NotFoundError, ValidationError
from opexhub.models import db
from opexhub.models.auth import DISCIPLINES, ROLES, SITES, User

logger = logging.getLogger(__name__)


def create_user(
    email: str,
    full_name: str,
    site: str,
    role: str,
    discipline: str = None,
    is_active: bool = True,
) -> User:
    """Register a user in the directory."""
    try:
        email = validate_email(email, check_deliverability=False).normalized
    except EmailNotValidError as e:
        raise ValidationError(f"Invalid email: {e}", {"email": str(e)})

    if site not in SITES:
        raise ValidationError(f"Unknown site: {site}", {"site": f"must be one of {', '.join(SITES)}"})
    if role not in ROLES:
        raise ValidationError(f"Unknown role: {role}", {"role": f"must be one of {', '.join(ROLES)}"})
    if discipline is not None and discipline not in DISCIPLINES:
        raise ValidationError(f"Unknown discipline: {discipline}")

    if get_user_by_email(email) is not None:
        raise ConflictError("User", "email", email)

    user = User(
        email=email,
        full_name=full_name,
        site=site,
        role=role,
        role_name=ROLES[role],
        discipline=discipline,
        is_active=is_active,
    )
    db.session.add(user)
    db.session.flush()
    logger.info("User registered: %s role=%s site=%s", email, role, site)
    return user


def get_user(user_id: int) -> User:
    user = db.session.get(User, user_id)
    if user is None:
        raise NotFoundError(resource="User", resource_id=user_id)
    return user


def get_user_by_email(email: str) -> User | None:
    if not email:
        return None
    stmt = select(User).where(func.lower(User.email) == email.strip().lower())
    return db.session.execute(stmt).scalar_one_or_none()


def find_active_users(site: str, role: str) -> list[User]:
    stmt = (
        select(User)
        .where(User.site == site, User.role == role, User.is_active.is_(True))
        .order_by(User.id)
    )
    return list(db.session.execute(stmt).scalars())


def first_active_user(site: str, role: str) -> User | None:
    users = find_active_users(site, role)
    return users[0] if users else None


def is_active_user_with_role(user: User | None, role: str, site: str) -> bool:
    return bool(user and user.is_active and user.role == role and user.site == site)
