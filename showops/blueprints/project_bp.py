"""
Project Blueprint.

Endpoints:
    GET  /api/v1/projects                 list projects (?phase= filter)
    POST /api/v1/projects                 create a project in the prep phase
    GET  /api/v1/projects/<id>            project with its current phase

Service layer owns all business logic and commits.
"""

from __future__ import annotations

import logging

from flask import Blueprint, jsonify, request

from showops.auth import current_actor
from showops.blueprints import register_error_handlers
from showops.models.phase import PROJECT_PHASES
from showops.services import project_service
from showops.utils.errors import E, api_error

logger = logging.getLogger(__name__)

project_bp = Blueprint("projects", __name__, url_prefix="/api/v1")
register_error_handlers(project_bp)


@project_bp.route("/projects", methods=["GET"])
def list_projects():
    phase = request.args.get("phase")
    if phase and phase not in PROJECT_PHASES:
        return api_error(E.VALIDATION_INVALID, f"Unknown phase: {phase}")
    projects = project_service.list_projects(phase=phase)
    return jsonify({"items": [p.to_dict() for p in projects], "total": len(projects)})


@project_bp.route("/projects", methods=["POST"])
def create_project():
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return api_error(E.VALIDATION_REQUIRED, "JSON body is required")
    project = project_service.create_project(data, actor=current_actor())
    body = project.to_dict()
    body["phase_state"] = project.phase_state.to_dict()
    return jsonify(body), 201


@project_bp.route("/projects/<int:project_id>", methods=["GET"])
def get_project(project_id):
    project = project_service.get_project(project_id)
    body = project.to_dict()
    body["phase_state"] = project.phase_state.to_dict() if project.phase_state else None
    return jsonify(body)
