"""
Phase Lifecycle Blueprint.

Endpoints:
    GET  /api/v1/projects/<id>/phase                  current phase + transition status
    POST /api/v1/projects/<id>/phase/transition       request a manual transition
    GET  /api/v1/projects/<id>/phase/history          transition history (paginated)
    GET  /api/v1/projects/<id>/phase/configuration    schedule / archive settings
    PUT  /api/v1/projects/<id>/phase/configuration
    GET  /api/v1/projects/<id>/phase/action-items     to-do items for the phase
    GET  /api/v1/phase/scheduled-transitions?hours=   upcoming automatic transitions
    POST /api/v1/phase/sweep                          run the automatic sweep (admin)

Transition body:
    {"target_phase": "staffing", "reason": "...",
     "override_blockers": false, "revert": false}
"""

from __future__ import annotations

import logging

from flask import Blueprint, jsonify, request

from showops.auth import current_actor, require_role
from showops.blueprints import paginate_query, register_error_handlers
from showops.services import phase_configuration_service, phase_transition_service
from showops.utils.errors import E, api_error
from showops.utils.helpers import parse_bool

logger = logging.getLogger(__name__)

phase_bp = Blueprint("phase", __name__, url_prefix="/api/v1")
register_error_handlers(phase_bp)

MAX_LOOKAHEAD_HOURS = 24 * 366


@phase_bp.route("/projects/<int:project_id>/phase", methods=["GET"])
def get_phase(project_id):
    return jsonify(phase_transition_service.get_transition_status(project_id))


@phase_bp.route("/projects/<int:project_id>/phase/transition", methods=["POST"])
def transition_phase(project_id):
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return api_error(E.VALIDATION_REQUIRED, "JSON body is required")
    target = data.get("target_phase")
    if not target or not isinstance(target, str):
        return api_error(E.VALIDATION_REQUIRED, "target_phase is required")
    reason = data.get("reason") or ""
    if not isinstance(reason, str):
        return api_error(E.VALIDATION_INVALID, "reason must be a string")

    outcome = phase_transition_service.request_transition(
        project_id,
        target,
        trigger="manual",
        reason=reason.strip()[:1000],
        actor=current_actor(),
        override_blockers=parse_bool(data.get("override_blockers")),
        revert=parse_bool(data.get("revert")),
    )
    return jsonify(outcome.to_dict()), 200


@phase_bp.route("/projects/<int:project_id>/phase/history", methods=["GET"])
def phase_history(project_id):
    query = phase_transition_service.transition_history_query(project_id)
    items, total = paginate_query(query)
    return jsonify({"items": [h.to_dict() for h in items], "total": total})


@phase_bp.route("/projects/<int:project_id>/phase/configuration", methods=["GET"])
def get_configuration(project_id):
    return jsonify(phase_configuration_service.get_configuration(project_id))


@phase_bp.route("/projects/<int:project_id>/phase/configuration", methods=["PUT"])
def update_configuration(project_id):
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return api_error(E.VALIDATION_REQUIRED, "JSON body is required")
    actor = current_actor()
    if not actor.has_admin_access:
        return api_error(E.FORBIDDEN, "Updating phase configuration requires role 'in_house'")
    return jsonify(phase_configuration_service.update_configuration(project_id, data, actor))


@phase_bp.route("/projects/<int:project_id>/phase/action-items", methods=["GET"])
def action_items(project_id):
    return jsonify(phase_transition_service.get_action_items(project_id))


@phase_bp.route("/phase/scheduled-transitions", methods=["GET"])
def scheduled_transitions():
    hours = request.args.get("hours", 24, type=int)
    if hours is None or hours < 0 or hours > MAX_LOOKAHEAD_HOURS:
        return api_error(E.VALIDATION_INVALID, f"hours must be between 0 and {MAX_LOOKAHEAD_HOURS}")
    items = phase_transition_service.list_scheduled_transitions(hours_ahead=hours)
    return jsonify({"items": items, "total": len(items), "hours": hours})


@phase_bp.route("/phase/sweep", methods=["POST"])
@require_role("admin")
def run_sweep():
    results = phase_transition_service.sweep_automatic_transitions()
    return jsonify(results)
