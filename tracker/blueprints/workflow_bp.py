"""
Workflow Blueprint — stored workflow definitions.

Endpoints (under /api/v1):
    GET    /workflows              — list
    POST   /workflows              — create (steps default to a copy of the standard table)
    GET    /workflows/statuses     — every status used by any workflow
    GET    /workflows/<id>         — detail
    PUT    /workflows/<id>         — update name/description/steps
    DELETE /workflows/<id>         — delete (default and in-use workflows are protected)
"""

from flask import Blueprint, jsonify, request

from tracker.middleware.permission_required import login_required, roles_required
from tracker.models.user import Role
from tracker.services import workflow_service
from tracker.utils.errors import E, api_error
from tracker.utils.helpers import db_commit_or_error

workflow_bp = Blueprint("workflow_bp", __name__, url_prefix="/api/v1")

_MANAGERS = (Role.OWNER, Role.GENERAL_ADMIN, Role.ADMIN_DEVELOPER)


@workflow_bp.route("/workflows", methods=["GET"])
@login_required
def list_workflows():
    workflows = workflow_service.list_workflows()
    err = db_commit_or_error()
    if err:
        return err
    return jsonify([w.to_dict() for w in workflows]), 200


@workflow_bp.route("/workflows/statuses", methods=["GET"])
@login_required
def list_statuses():
    return jsonify(workflow_service.all_unique_statuses()), 200


@workflow_bp.route("/workflows", methods=["POST"])
@roles_required(*_MANAGERS)
def create_workflow():
    """Body: { "name": "...", "description": "...", "steps": [...]? }"""
    data = request.get_json(silent=True) or {}
    if not (data.get("name") or "").strip():
        return api_error(E.VALIDATION_REQUIRED, "name is required")
    steps = data.get("steps")
    if steps is not None and not isinstance(steps, list):
        return api_error(E.VALIDATION_INVALID, "steps must be a list")
    wf = workflow_service.create_workflow(data["name"], data.get("description") or "", steps)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(wf.to_dict()), 201


@workflow_bp.route("/workflows/<workflow_id>", methods=["GET"])
@login_required
def get_workflow(workflow_id):
    return jsonify(workflow_service.get_workflow(workflow_id).to_dict()), 200


@workflow_bp.route("/workflows/<workflow_id>", methods=["PUT"])
@roles_required(*_MANAGERS)
def update_workflow(workflow_id):
    data = request.get_json(silent=True) or {}
    steps = data.get("steps")
    if steps is not None and not isinstance(steps, list):
        return api_error(E.VALIDATION_INVALID, "steps must be a list")
    wf = workflow_service.update_workflow(
        workflow_id,
        name=data.get("name"),
        description=data.get("description"),
        steps=steps,
    )
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(wf.to_dict()), 200


@workflow_bp.route("/workflows/<workflow_id>", methods=["DELETE"])
@roles_required(*_MANAGERS)
def delete_workflow(workflow_id):
    workflow_service.delete_workflow(workflow_id)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify({"deleted": workflow_id}), 200
