"""
Readiness Blueprint.

Endpoints:
    GET    /api/v1/projects/<id>/readiness                 cached or freshly computed snapshot
           ?refresh=true   bypass the cache
           ?cached=true    cache only; 404 READINESS_NOT_CALCULATED / 503 READINESS_FETCH_ERROR
    POST   /api/v1/projects/<id>/readiness/finalize        {"area": "roles"}
    DELETE /api/v1/projects/<id>/readiness/finalize        {"area": "roles"}  (admin)
    GET    /api/v1/projects/<id>/readiness/finalization    all four areas
    POST   /api/v1/projects/<id>/readiness/invalidate      {"reason": "manual"}
"""

from __future__ import annotations

import logging

from flask import Blueprint, jsonify, request

from showops.auth import current_actor
from showops.blueprints import register_error_handlers
from showops.services import finalization_service, readiness_service
from showops.utils.errors import E, api_error
from showops.utils.helpers import parse_bool

logger = logging.getLogger(__name__)

readiness_bp = Blueprint("readiness", __name__, url_prefix="/api/v1")
register_error_handlers(readiness_bp)


def _area_from_body():
    data = request.get_json(silent=True) or {}
    area = data.get("area") if isinstance(data, dict) else None
    if not area or not isinstance(area, str):
        return None, api_error(E.VALIDATION_REQUIRED, "area is required")
    return area, None


@readiness_bp.route("/projects/<int:project_id>/readiness", methods=["GET"])
def get_readiness(project_id):
    if parse_bool(request.args.get("cached")):
        snapshot = readiness_service.peek_readiness(project_id)
    else:
        snapshot = readiness_service.get_readiness(
            project_id, refresh=parse_bool(request.args.get("refresh")),
        )
    return jsonify(snapshot.to_dict())


@readiness_bp.route("/projects/<int:project_id>/readiness/finalize", methods=["POST"])
def finalize_area(project_id):
    area, err = _area_from_body()
    if err:
        return err
    record = finalization_service.finalize(project_id, area, current_actor())
    return jsonify({
        "finalization": record.to_dict(),
        "readiness": readiness_service.get_readiness(project_id).to_dict(),
    })


@readiness_bp.route("/projects/<int:project_id>/readiness/finalize", methods=["DELETE"])
def unfinalize_area(project_id):
    area, err = _area_from_body()
    if err:
        return err
    record = finalization_service.unfinalize(project_id, area, current_actor())
    return jsonify({
        "finalization": record.to_dict(),
        "readiness": readiness_service.get_readiness(project_id).to_dict(),
    })


@readiness_bp.route("/projects/<int:project_id>/readiness/finalization", methods=["GET"])
def finalization_status(project_id):
    return jsonify({
        "project_id": project_id,
        "areas": finalization_service.get_finalization_status(project_id),
    })


@readiness_bp.route("/projects/<int:project_id>/readiness/invalidate", methods=["POST"])
def invalidate(project_id):
    data = request.get_json(silent=True) or {}
    reason = data.get("reason", "manual") if isinstance(data, dict) else "manual"
    actor = current_actor()
    if not actor.has_admin_access:
        return api_error(E.FORBIDDEN, "Invalidating readiness requires role 'in_house'")
    readiness_service.invalidate_readiness(project_id, reason, actor=actor)
    return jsonify({"project_id": project_id, "invalidated": True, "reason": reason})
