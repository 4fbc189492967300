"""Standardised API error responses.

Usage
-----
    from opexhub.utils.errors import api_error, E

    return api_error(E.NOT_FOUND, "Initiative not found")
    return api_error(E.VALIDATION_REQUIRED, "site is required")
    return api_error(E.GATE_FAILED, "Gate blocked", details={"gate": "timeline_completed"})
"""

from __future__ import annotations

import logging

from flask import jsonify, request
from sqlalchemy.exc import SQLAlchemyError

from opexhub.core.exceptions import (
    ConflictError,
    NotFoundError,
    ValidationError,
    WorkflowError,
)
from opexhub.models import db


# ── Error code constants ──────────────────────────────────────────────
class E:
    """Machine-readable error codes. Workflow kinds reuse ``WorkflowError.code``."""

    # request / boundary
    VALIDATION_REQUIRED = "ERR_VALIDATION_REQUIRED"
    VALIDATION_INVALID = "ERR_VALIDATION_INVALID"
    NOT_FOUND = "ERR_NOT_FOUND"
    CONFLICT_DUPLICATE = "ERR_CONFLICT_DUPLICATE"
    UNAUTHENTICATED = "ERR_UNAUTHENTICATED"
    INTERNAL = "ERR_INTERNAL"

    # stage actions
    ALREADY_PROCESSED = "ALREADY_PROCESSED"
    UNAUTHORIZED = "UNAUTHORIZED"
    COMMENT_REQUIRED = "COMMENT_REQUIRED"
    INVALID_PAYLOAD = "INVALID_PAYLOAD"
    GATE_FAILED = "VALIDATION_GATE_FAILED"


# ── Default HTTP status mapping ───────────────────────────────────────
_DEFAULT_STATUS: dict[str, int] = {
    E.VALIDATION_REQUIRED: 400,
    E.VALIDATION_INVALID: 422,
    E.NOT_FOUND: 404,
    E.CONFLICT_DUPLICATE: 409,
    E.UNAUTHENTICATED: 401,
    E.INTERNAL: 500,
    E.ALREADY_PROCESSED: 409,
    E.UNAUTHORIZED: 403,
    E.COMMENT_REQUIRED: 400,
    E.INVALID_PAYLOAD: 400,
    E.GATE_FAILED: 422,
}


def api_error(
    code: str,
    message: str,
    *,
    status: int | None = None,
    details: dict | None = None,
):
    """``(jsonify({"error", "code", "details"?}), status)`` for a Flask view.

    ``status`` defaults to the code's entry in ``_DEFAULT_STATUS``, else 400.
    ``details`` carries structured context such as the unmet gate or the
    offending entry ids.
    """
    http_status = status or _DEFAULT_STATUS.get(code, 400)

    body: dict = {
        "error": message,
        "code": code,
    }
    if details:
        body["details"] = details

    return jsonify(body), http_status


def register_error_handlers(bp) -> None:
    """Attach the standard exception → JSON mapping to a blueprint.

    Every API blueprint calls this once at import time so that services can
    raise ``opexhub.core.exceptions`` types without knowing about HTTP.
    """
    logger = logging.getLogger(bp.import_name)

    @bp.errorhandler(NotFoundError)
    def _handle_not_found(error: NotFoundError):
        return api_error(E.NOT_FOUND, str(error))

    @bp.errorhandler(ValidationError)
    def _handle_validation(error: ValidationError):
        return api_error(E.VALIDATION_INVALID, str(error), details=error.details)

    @bp.errorhandler(ConflictError)
    def _handle_conflict(error: ConflictError):
        return api_error(E.CONFLICT_DUPLICATE, str(error))

    @bp.errorhandler(WorkflowError)
    def _handle_workflow(error: WorkflowError):
        return api_error(error.code, str(error), details=error.details)

    @bp.errorhandler(SQLAlchemyError)
    def _handle_db(error: SQLAlchemyError):
        db.session.rollback()
        logger.exception("Database error in %s endpoint=%s", bp.name, request.endpoint)
        return api_error(E.INTERNAL, "Database error")
