"""
Actor resolution for the HTTP boundary.

Authentication (passwords, SSO, tokens) happens upstream; requests reach this
service already authenticated and carry the caller's user id in the
``X-User-Id`` header. ``require_actor`` resolves that id against the user
directory and hands an explicit ``AuthenticatedActor`` to the view. Services
never look at request state; every operation receives the actor as an
argument.
"""

import functools
import logging
from dataclasses import dataclass

from flask import g, request

from opexhub.models import db
from opexhub.models.auth import User
from opexhub.utils.errors import E, api_error

logger = logging.getLogger(__name__)

ACTOR_HEADER = "X-User-Id"


@dataclass(frozen=True)
class AuthenticatedActor:
    id: int
    email: str
    role: str
    site: str
    full_name: str | None = None

    @classmethod
    def from_user(cls, user: User) -> "AuthenticatedActor":
        return cls(
            id=user.id,
            email=user.email,
            role=user.role,
            site=user.site,
            full_name=user.full_name,
        )

    @property
    def is_admin(self) -> bool:
        return self.role == "ADMIN"


def _actor_from_request() -> AuthenticatedActor | None:
    raw = request.headers.get(ACTOR_HEADER, "").strip()
    if not raw.isdigit():
        return None
    user = db.session.get(User, int(raw))
    if user is None or not user.is_active:
        logger.warning("Rejected actor header %s=%s (unknown or inactive user)", ACTOR_HEADER, raw)
        return None
    return AuthenticatedActor.from_user(user)


def require_actor(f):
    """
    Decorator: resolve the calling actor and pass it as ``actor=``.

    Responds 401 when the header is missing or does not name an active user.
    Sets g.actor_id for request logging.
    """
    @functools.wraps(f)
    def decorated(*args, **kwargs):
        actor = _actor_from_request()
        if actor is None:
            return api_error(E.UNAUTHENTICATED, f"Authentication required. Provide {ACTOR_HEADER} header.")
        g.actor_id = actor.id
        return f(*args, actor=actor, **kwargs)

    return decorated
