"""
Timeline Blueprint: stage-6 implementation activities.

Endpoints:
    GET    /api/v1/initiatives/<id>/timeline-entries
    POST   /api/v1/initiatives/<id>/timeline-entries
    GET    /api/v1/initiatives/<id>/timeline-entries/all-completed
    PUT    /api/v1/timeline-entries/<id>
    DELETE /api/v1/timeline-entries/<id>
    PUT    /api/v1/timeline-entries/<id>/status       Body: { "status": "COMPLETED" }
    PUT    /api/v1/timeline-entries/<id>/approvals    Body: { "site_lead_approval": bool,
                                                              "initiative_lead_approval": bool }
"""

import logging

from flask import Blueprint, jsonify, request

from opexhub.auth import require_actor
from opexhub.services import timeline_service
from opexhub.utils.errors import E, api_error, register_error_handlers

logger = logging.getLogger(__name__)

timeline_bp = Blueprint("timeline", __name__, url_prefix="/api/v1")
register_error_handlers(timeline_bp)


def _optional_bool(data: dict, field: str):
    value = data.get(field)
    if value is None or isinstance(value, bool):
        return value, None
    return None, api_error(E.VALIDATION_INVALID, f"Field '{field}' must be a boolean.")


@timeline_bp.route("/initiatives/<int:initiative_id>/timeline-entries", methods=["GET"])
@require_actor
def list_entries(initiative_id, actor):
    entries = timeline_service.list_entries(initiative_id)
    return jsonify([e.to_dict() for e in entries]), 200


@timeline_bp.route("/initiatives/<int:initiative_id>/timeline-entries", methods=["POST"])
@require_actor
def create_entry(initiative_id, actor):
    data = request.get_json(silent=True) or {}
    entry = timeline_service.create_entry(initiative_id, actor, data)
    return jsonify(entry.to_dict()), 201


@timeline_bp.route("/initiatives/<int:initiative_id>/timeline-entries/all-completed", methods=["GET"])
@require_actor
def all_completed(initiative_id, actor):
    return jsonify({"all_completed": timeline_service.all_satisfy_gate(initiative_id)}), 200


@timeline_bp.route("/timeline-entries/<int:entry_id>", methods=["PUT"])
@require_actor
def update_entry(entry_id, actor):
    data = request.get_json(silent=True) or {}
    entry = timeline_service.update_entry(entry_id, actor, data)
    return jsonify(entry.to_dict()), 200


@timeline_bp.route("/timeline-entries/<int:entry_id>", methods=["DELETE"])
@require_actor
def delete_entry(entry_id, actor):
    timeline_service.delete_entry(entry_id, actor)
    return "", 204


@timeline_bp.route("/timeline-entries/<int:entry_id>/status", methods=["PUT"])
@require_actor
def update_status(entry_id, actor):
    data = request.get_json(silent=True) or {}
    if not data.get("status"):
        return api_error(E.VALIDATION_REQUIRED, "Field 'status' is required.")
    entry = timeline_service.update_status(entry_id, actor, data["status"])
    return jsonify(entry.to_dict()), 200


@timeline_bp.route("/timeline-entries/<int:entry_id>/approvals", methods=["PUT"])
@require_actor
def update_approvals(entry_id, actor):
    data = request.get_json(silent=True) or {}
    site_lead, err = _optional_bool(data, "site_lead_approval")
    if err:
        return err
    initiative_lead, err = _optional_bool(data, "initiative_lead_approval")
    if err:
        return err
    entry = timeline_service.update_approvals(
        entry_id, actor,
        site_lead_approval=site_lead,
        initiative_lead_approval=initiative_lead,
    )
    return jsonify(entry.to_dict()), 200
