"""
Workflow Blueprint: stage catalog, transaction history and stage actions.

Endpoints:
    GET    /api/v1/workflow/stages
    GET    /api/v1/workflow/stages/<n>
    GET    /api/v1/workflow/approvers                            ?site=&active=true
    PUT    /api/v1/workflow/approvers/<site>/<n>                 ADMIN; body { "user_email": ... }
    DELETE /api/v1/workflow/approvers/<site>/<n>                 ADMIN; deactivates
    GET    /api/v1/initiatives/<id>/workflow-transactions          ?visible=true
    GET    /api/v1/initiatives/<id>/workflow-transactions/pending  when the caller may act
    GET    /api/v1/workflow-transactions/pending                   caller's inbox
    POST   /api/v1/workflow-transactions/<id>/action
           Body: { "action": "approve|reject|drop",
                   "comment": "...",
                   "payload": { stage-specific fields } }

Error responses carry the workflow error code:
    409 ALREADY_PROCESSED, 403 UNAUTHORIZED, 400 COMMENT_REQUIRED,
    400 INVALID_PAYLOAD, 422 VALIDATION_GATE_FAILED
"""

import logging

from flask import Blueprint, jsonify, request

from opexhub.auth import require_actor
from opexhub.core.exceptions import UnauthorizedError
from opexhub.models import db
from opexhub.services import stage_approver_service, transaction_store, workflow_engine
from opexhub.utils.errors import E, api_error, register_error_handlers

logger = logging.getLogger(__name__)

workflow_bp = Blueprint("workflow", __name__, url_prefix="/api/v1")
register_error_handlers(workflow_bp)


# ── Stage catalog ─────────────────────────────────────────────────────────────


@workflow_bp.route("/workflow/stages", methods=["GET"])
def list_stages():
    return jsonify([s.to_dict() for s in workflow_engine.get_stage_catalog()]), 200


@workflow_bp.route("/workflow/stages/<int:stage_number>", methods=["GET"])
def get_stage(stage_number):
    return jsonify(workflow_engine.get_stage_definition(stage_number).to_dict()), 200


# ── Stage approver directory ──────────────────────────────────────────────────


def _require_admin(actor):
    if not actor.is_admin:
        raise UnauthorizedError("Only ADMIN may configure stage approvers")


@workflow_bp.route("/workflow/approvers", methods=["GET"])
@require_actor
def list_approvers(actor):
    active_only = request.args.get("active", "").lower() in ("1", "true", "yes")
    rows = stage_approver_service.list_approvers(request.args.get("site"), active_only=active_only)
    return jsonify([r.to_dict() for r in rows]), 200


@workflow_bp.route("/workflow/approvers/<site>/<int:stage_number>", methods=["PUT"])
@require_actor
def set_approver(site, stage_number, actor):
    _require_admin(actor)
    data = request.get_json(silent=True) or {}
    email = (data.get("user_email") or "").strip()
    if not email:
        return api_error(E.VALIDATION_REQUIRED, "Field 'user_email' is required.")
    try:
        row = stage_approver_service.set_approver(site.upper(), stage_number, email)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    return jsonify(row.to_dict()), 200


@workflow_bp.route("/workflow/approvers/<site>/<int:stage_number>", methods=["DELETE"])
@require_actor
def deactivate_approver(site, stage_number, actor):
    _require_admin(actor)
    try:
        row = stage_approver_service.deactivate_approver(site.upper(), stage_number)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    return jsonify(row.to_dict()), 200


# ── Transactions ──────────────────────────────────────────────────────────────


@workflow_bp.route("/initiatives/<int:initiative_id>/workflow-transactions", methods=["GET"])
@require_actor
def list_transactions(initiative_id, actor):
    # an unknown initiative is a 404, not an empty list
    workflow_engine.get_initiative(initiative_id)
    if request.args.get("visible", "").lower() in ("1", "true", "yes"):
        transactions = transaction_store.get_visible_transactions(initiative_id)
    else:
        transactions = transaction_store.get_transactions(initiative_id)
    return jsonify([t.to_dict() for t in transactions]), 200


@workflow_bp.route("/initiatives/<int:initiative_id>/workflow-transactions/pending", methods=["GET"])
@require_actor
def get_pending_transaction(initiative_id, actor):
    txn = workflow_engine.resolve_pending_transaction(initiative_id, actor)
    return jsonify({"transaction": txn.to_dict() if txn else None}), 200


@workflow_bp.route("/workflow-transactions/pending", methods=["GET"])
@require_actor
def pending_inbox(actor):
    return jsonify([t.to_dict() for t in workflow_engine.pending_inbox(actor)]), 200


@workflow_bp.route("/workflow-transactions/<int:transaction_id>/action", methods=["POST"])
@require_actor
def process_action(transaction_id, actor):
    data = request.get_json(silent=True) or {}
    action = (data.get("action") or "").strip().lower()
    if not action:
        return api_error(E.VALIDATION_REQUIRED, "Field 'action' is required.")

    txn = workflow_engine.process_stage_action(
        transaction_id,
        actor,
        action,
        data.get("comment"),
        data.get("payload"),
    )
    return jsonify(txn.to_dict()), 200
