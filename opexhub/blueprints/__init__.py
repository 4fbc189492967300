"""
OpEx Hub API blueprints (all mounted under /api/v1).
"""

from flask import request
from sqlalchemy import func, select

from opexhub.models import db

DEFAULT_LIMIT = 200
MAX_LIMIT = 1000


def _int_arg(name: str, default: int) -> int:
    try:
        return int(request.args.get(name, default))
    except (TypeError, ValueError):
        return default


def paginate_select(stmt):
    """Run ``stmt`` with ``?limit=`` / ``?offset=`` applied.

    Returns ``(items, total)`` where ``total`` counts the unpaginated rows.
    """
    total = db.session.execute(
        select(func.count()).select_from(stmt.order_by(None).subquery())
    ).scalar_one()
    limit = min(max(_int_arg("limit", DEFAULT_LIMIT), 1), MAX_LIMIT)
    offset = max(_int_arg("offset", 0), 0)
    items = list(db.session.execute(stmt.limit(limit).offset(offset)).scalars())
    return items, total
