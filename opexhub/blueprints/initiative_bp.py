"""
Initiative Blueprint: registration, lookup and descriptive edits.

Endpoints:
    POST   /api/v1/initiatives               register (stage 1) and open stage 2
    GET    /api/v1/initiatives               ?site= &status= &search= &limit= &offset=
    GET    /api/v1/initiatives/<id>          detail incl. progress_percentage
    PUT    /api/v1/initiatives/<id>          descriptive fields only

Layer contract:
    - Blueprint: parse input, resolve the actor, call service, return JSON.
    - NO db.session calls here; all writes owned by initiative_service.
"""

import logging

from flask import Blueprint, jsonify, request

from opexhub.auth import require_actor
from opexhub.blueprints import paginate_select
from opexhub.services import initiative_service, transaction_store
from opexhub.utils.errors import register_error_handlers

logger = logging.getLogger(__name__)

initiative_bp = Blueprint("initiative", __name__, url_prefix="/api/v1")
register_error_handlers(initiative_bp)


def _detail(initiative) -> dict:
    data = initiative.to_dict()
    data["progress_percentage"] = transaction_store.progress_percentage(initiative.id)
    pending = transaction_store.get_pending(initiative.id)
    data["pending_transaction"] = pending.to_dict() if pending else None
    return data


@initiative_bp.route("/initiatives", methods=["POST"])
@require_actor
def create_initiative(actor):
    data = request.get_json(silent=True) or {}
    initiative = initiative_service.create_initiative(actor, data)
    return jsonify(_detail(initiative)), 201


@initiative_bp.route("/initiatives", methods=["GET"])
@require_actor
def list_initiatives(actor):
    stmt = initiative_service.initiatives_query(
        site=request.args.get("site"),
        status=request.args.get("status"),
        search=request.args.get("search"),
    )
    items, total = paginate_select(stmt)
    return jsonify({"items": [i.to_dict() for i in items], "total": total}), 200


@initiative_bp.route("/initiatives/<int:initiative_id>", methods=["GET"])
@require_actor
def get_initiative(initiative_id, actor):
    initiative = initiative_service.get_initiative(initiative_id)
    return jsonify(_detail(initiative)), 200


@initiative_bp.route("/initiatives/<int:initiative_id>", methods=["PUT"])
@require_actor
def update_initiative(initiative_id, actor):
    data = request.get_json(silent=True) or {}
    initiative = initiative_service.update_initiative(initiative_id, actor, data)
    return jsonify(_detail(initiative)), 200
