"""
Project Blueprint — project CRUD, workflow actions and files.

Endpoints (all under /api/v1, login required):
    GET    /projects                              — list (role-filtered; ?status=&search=)
    POST   /projects                              — create (JSON or multipart with files)
    GET    /projects/<id>                         — detail + available actions
    DELETE /projects/<id>                         — delete project, folder, notifications
    POST   /projects/<id>/actions                 — apply a workflow action
    POST   /projects/<id>/revise                  — send back for revision
    POST   /projects/<id>/divisions/complete      — parallel-stage division sign-off
    GET    /projects/<id>/checklist               — parallel-stage document checklist
    GET    /projects/<id>/available-actions       — actions the caller may submit
    PUT    /projects/<id>/title                   — rename
    PUT    /projects/<id>/status                  — manual status override
    POST   /projects/<id>/files                   — upload within current step
    DELETE /projects/<id>/files?path=             — delete one file
    GET    /projects/<id>/files/download?path=    — download one file
"""

import json
import logging

from flask import Blueprint, jsonify, request, send_file

from tracker.blueprints import request_data
from tracker.core.exceptions import ValidationError
from tracker.middleware.permission_required import current_user, login_required
from tracker.services import file_storage, project_service
from tracker.utils.errors import E, api_error
from tracker.utils.helpers import db_commit_or_error

logger = logging.getLogger(__name__)

project_bp = Blueprint("project_bp", __name__, url_prefix="/api/v1")


def _json_field(data, key):
    """A dict field that may arrive as a JSON string in multipart forms."""
    value = data.get(key)
    if value is None or value == "":
        return None
    if isinstance(value, str):
        try:
            value = json.loads(value)
        except json.JSONDecodeError:
            raise ValidationError(f"{key} must be a JSON object", code="VALIDATION_INVALID")
    if not isinstance(value, dict):
        raise ValidationError(f"{key} must be a JSON object", code="VALIDATION_INVALID")
    return value


def _uploads():
    return [f for f in request.files.getlist("files") if f and f.filename]


def _payload(project):
    data = project.to_dict()
    data["availableActions"] = project_service.available_actions(project, current_user()["role"])
    return data


def _commit_and_return(project, status=200):
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(_payload(project)), status


# ═══════════════════════════════════════════════════════════════
# Projects
# ═══════════════════════════════════════════════════════════════

@project_bp.route("/projects", methods=["GET"])
@login_required
def list_projects():
    statuses = request.args.getlist("status")
    search = request.args.get("search", "").strip() or None
    projects = project_service.list_projects_for_role(
        current_user()["role"], statuses=statuses or None, search=search,
    )
    return jsonify({"items": [p.to_dict() for p in projects], "total": len(projects)}), 200


@project_bp.route("/projects", methods=["POST"])
@login_required
def create_project():
    """
    Body (JSON or multipart):
        { "title": "...", "workflowId": "..." }   + files[] when multipart
    """
    data = request_data()
    title = (data.get("title") or "").strip()
    if not title:
        return api_error(E.VALIDATION_REQUIRED, "title is required")
    project = project_service.create_project(
        title, current_user(), workflow_id=data.get("workflowId") or None, uploads=_uploads(),
    )
    return _commit_and_return(project, 201)


@project_bp.route("/projects/<project_id>", methods=["GET"])
@login_required
def get_project(project_id):
    return jsonify(_payload(project_service.get_project(project_id))), 200


@project_bp.route("/projects/<project_id>", methods=["DELETE"])
@login_required
def delete_project(project_id):
    project_service.delete_project(project_id, current_user())
    err = db_commit_or_error()
    if err:
        return err
    return jsonify({"deleted": project_id}), 200


# ═══════════════════════════════════════════════════════════════
# Workflow actions
# ═══════════════════════════════════════════════════════════════

@project_bp.route("/projects/<project_id>/actions", methods=["POST"])
@login_required
def apply_action(project_id):
    """
    Body (JSON or multipart):
        {
          "action": "submitted",
          "note": "...",
          "scheduleDetails": {"date", "time", "location"},
          "surveyDetails": {"date", "time", "description"},
          "expectedStatus": "Pending Offer",
          "division": "MEP"            (mark_division_complete only)
        }
    """
    data = request_data()
    action = (data.get("action") or "").strip()
    if not action:
        return api_error(E.VALIDATION_REQUIRED, "action is required")
    project = project_service.apply_action(
        project_id, current_user(), action,
        uploads=_uploads(),
        note=data.get("note") or None,
        schedule_details=_json_field(data, "scheduleDetails"),
        survey_details=_json_field(data, "surveyDetails"),
        expected_status=data.get("expectedStatus") or None,
        division=data.get("division") or None,
    )
    return _commit_and_return(project)


@project_bp.route("/projects/<project_id>/revise", methods=["POST"])
@login_required
def revise_project(project_id):
    data = request.get_json(silent=True) or {}
    project = project_service.revise_project(
        project_id, current_user(), data.get("note") or None,
        action=data.get("action") or "revise",
    )
    return _commit_and_return(project)


@project_bp.route("/projects/<project_id>/divisions/complete", methods=["POST"])
@login_required
def mark_division_complete(project_id):
    data = request.get_json(silent=True) or {}
    project = project_service.mark_division_complete(
        project_id, current_user(), data.get("division") or None, note=data.get("note") or None,
    )
    return _commit_and_return(project)


@project_bp.route("/projects/<project_id>/checklist", methods=["GET"])
@login_required
def parallel_checklist(project_id):
    return jsonify(project_service.parallel_checklist(project_id)), 200


@project_bp.route("/projects/<project_id>/available-actions", methods=["GET"])
@login_required
def available_actions(project_id):
    project = project_service.get_project(project_id)
    return jsonify({
        "projectId": project.id,
        "status": project.status,
        "actions": project_service.available_actions(project, current_user()["role"]),
    }), 200


# ═══════════════════════════════════════════════════════════════
# Administrative changes
# ═══════════════════════════════════════════════════════════════

@project_bp.route("/projects/<project_id>/title", methods=["PUT"])
@login_required
def update_title(project_id):
    data = request.get_json(silent=True) or {}
    project = project_service.update_title(project_id, current_user(), data.get("title"))
    return _commit_and_return(project)


@project_bp.route("/projects/<project_id>/status", methods=["PUT"])
@login_required
def manual_status_update(project_id):
    """
    Body: { "status", "assignedDivision", "nextAction", "progress", "reason" }
    """
    data = request.get_json(silent=True) or {}
    if not data.get("status"):
        return api_error(E.VALIDATION_REQUIRED, "status is required")
    project = project_service.manual_status_update(
        project_id, current_user(),
        status=data["status"],
        assigned_division=data.get("assignedDivision"),
        next_action=data.get("nextAction"),
        progress=data.get("progress", 0),
        reason=data.get("reason") or "",
    )
    return _commit_and_return(project)


# ═══════════════════════════════════════════════════════════════
# Files
# ═══════════════════════════════════════════════════════════════

@project_bp.route("/projects/<project_id>/files", methods=["POST"])
@login_required
def upload_files(project_id):
    project = project_service.add_files(
        project_id, current_user(), _uploads(), note=request.form.get("note") or None,
    )
    return _commit_and_return(project, 201)


@project_bp.route("/projects/<project_id>/files", methods=["DELETE"])
@login_required
def delete_file(project_id):
    path = request.args.get("path", "")
    if not path:
        return api_error(E.VALIDATION_REQUIRED, "path is required")
    project = project_service.delete_project_file(project_id, current_user(), path)
    return _commit_and_return(project)


@project_bp.route("/projects/<project_id>/files/download", methods=["GET"])
@login_required
def download_file(project_id):
    path = request.args.get("path", "")
    if not path:
        return api_error(E.VALIDATION_REQUIRED, "path is required")
    _, entry = project_service.get_project_file(project_id, path)
    full = file_storage.resolve(entry.path)
    try:
        return send_file(full, as_attachment=True, download_name=entry.name)
    except FileNotFoundError:
        logger.error("File %s of project %s is missing on disk", entry.path, project_id)
        return api_error("FILE_NOT_FOUND", "File is missing on disk", status=404)
