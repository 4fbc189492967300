"""
Monthly Monitoring Blueprint: stage-9 savings entries and F&A review.

Endpoints:
    GET    /api/v1/initiatives/<id>/monitoring-entries                  ?month=YYYY-MM
    POST   /api/v1/initiatives/<id>/monitoring-entries
    GET    /api/v1/initiatives/<id>/monitoring-entries/all-finalized
    GET    /api/v1/initiatives/<id>/monitoring-entries/finalized-pending-fa
    PUT    /api/v1/monitoring-entries/<id>
    DELETE /api/v1/monitoring-entries/<id>
    PUT    /api/v1/monitoring-entries/<id>/finalize          Body: { "is_finalized": bool }
    POST   /api/v1/monitoring-entries/<id>/request-edit      Body: { "comments": "..." }
    POST   /api/v1/monitoring-entries/batch-fa-approval      Body: { "entry_ids": [..], "comments": "..." }
"""

import logging

from flask import Blueprint, jsonify, request

from opexhub.auth import require_actor
from opexhub.services import monitoring_service
from opexhub.utils.errors import E, api_error, register_error_handlers

logger = logging.getLogger(__name__)

monitoring_bp = Blueprint("monitoring", __name__, url_prefix="/api/v1")
register_error_handlers(monitoring_bp)


@monitoring_bp.route("/initiatives/<int:initiative_id>/monitoring-entries", methods=["GET"])
@require_actor
def list_entries(initiative_id, actor):
    entries = monitoring_service.list_entries(initiative_id, month=request.args.get("month"))
    return jsonify([e.to_dict() for e in entries]), 200


@monitoring_bp.route("/initiatives/<int:initiative_id>/monitoring-entries", methods=["POST"])
@require_actor
def create_entry(initiative_id, actor):
    data = request.get_json(silent=True) or {}
    entry = monitoring_service.create_entry(initiative_id, actor, data)
    return jsonify(entry.to_dict()), 201


@monitoring_bp.route("/initiatives/<int:initiative_id>/monitoring-entries/all-finalized", methods=["GET"])
@require_actor
def all_finalized(initiative_id, actor):
    return jsonify({"all_finalized": monitoring_service.all_satisfy_gate(initiative_id)}), 200


@monitoring_bp.route(
    "/initiatives/<int:initiative_id>/monitoring-entries/finalized-pending-fa",
    methods=["GET"],
)
@require_actor
def finalized_pending_fa(initiative_id, actor):
    entries = monitoring_service.finalized_pending_fa(initiative_id)
    return jsonify([e.to_dict() for e in entries]), 200


@monitoring_bp.route("/monitoring-entries/<int:entry_id>", methods=["PUT"])
@require_actor
def update_entry(entry_id, actor):
    data = request.get_json(silent=True) or {}
    entry = monitoring_service.update_entry(entry_id, actor, data)
    return jsonify(entry.to_dict()), 200


@monitoring_bp.route("/monitoring-entries/<int:entry_id>", methods=["DELETE"])
@require_actor
def delete_entry(entry_id, actor):
    monitoring_service.delete_entry(entry_id, actor)
    return "", 204


@monitoring_bp.route("/monitoring-entries/<int:entry_id>/finalize", methods=["PUT"])
@require_actor
def finalize_entry(entry_id, actor):
    data = request.get_json(silent=True) or {}
    finalized = data.get("is_finalized", True)
    if not isinstance(finalized, bool):
        return api_error(E.VALIDATION_INVALID, "Field 'is_finalized' must be a boolean.")
    entry = monitoring_service.set_finalized(entry_id, actor, finalized)
    return jsonify(entry.to_dict()), 200


@monitoring_bp.route("/monitoring-entries/<int:entry_id>/request-edit", methods=["POST"])
@require_actor
def request_edit(entry_id, actor):
    data = request.get_json(silent=True) or {}
    entry = monitoring_service.request_edit(entry_id, actor, data.get("comments"))
    return jsonify(entry.to_dict()), 200


@monitoring_bp.route("/monitoring-entries/batch-fa-approval", methods=["POST"])
@require_actor
def batch_fa_approval(actor):
    data = request.get_json(silent=True) or {}
    entry_ids = data.get("entry_ids")
    if not isinstance(entry_ids, list) or not all(isinstance(i, int) and not isinstance(i, bool) for i in entry_ids):
        return api_error(E.VALIDATION_INVALID, "Field 'entry_ids' must be a list of integers.")
    entries = monitoring_service.batch_approve(entry_ids, actor, data.get("comments"))
    return jsonify({"approved": [e.to_dict() for e in entries], "count": len(entries)}), 200
