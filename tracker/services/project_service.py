"""
Project Service — project lifecycle on top of the workflow engine.

Every mutating operation:
  1. checks the actor's capability for the project's current state
  2. asks the workflow engine for the next state (for workflow actions)
  3. stores uploads, appends exactly one history entry, updates the row
  4. fans notifications out to the newly responsible roles (best effort,
     skipped for Completed/Canceled)

Services flush but never commit; the blueprint commits once per request.

``actor`` is always ``{"id", "username", "role"}`` (``g.current_user``).

Usage:
    from tracker.services import project_service

    project = project_service.apply_action(
        project_id, g.current_user, "submitted", uploads=request.files.getlist("files"),
    )
"""

from __future__ import annotations

import logging

from flask import current_app

from tracker.core.exceptions import NotFoundError, PermissionDenied, TransitionError, ValidationError
from tracker.models import db
from tracker.models.project import Project
from tracker.models.user import ROLES, Role, normalize_role
from tracker.models.workflow import (
    IN_STEP_ACTIONS,
    PARALLEL_DIVISIONS,
    REVISION_ACTIONS,
    TERMINAL_STATUSES,
    ProjectStatus,
    WorkflowAction,
)
from tracker.services import file_storage, parallel_uploads, workflow_service
from tracker.services.notification import NotificationService
from tracker.services.workflow_engine import (
    action_allowed_for_role,
    can_act_on_step,
    first_step,
    get_available_actions,
    is_in_step_action,
    next_state,
    render_message,
    resolve_step,
)
from tracker.utils.helpers import new_id

logger = logging.getLogger(__name__)

# Roles that see every project in listings
FULL_VISIBILITY_ROLES = frozenset({
    Role.OWNER.value, Role.GENERAL_ADMIN.value, Role.ADMIN_DEVELOPER.value, Role.ADMIN_PROYEK.value,
})

# Roles allowed to override status, delete projects and any file
PROJECT_ADMIN_ROLES = frozenset({
    Role.OWNER.value, Role.GENERAL_ADMIN.value, Role.ADMIN_DEVELOPER.value,
})

TITLE_EDITOR_ROLES = PROJECT_ADMIN_ROLES | {Role.ADMIN_PROYEK.value}

# History entry text per workflow action
HISTORY_TEXT = {
    WorkflowAction.SUBMITTED.value: "Submitted",
    WorkflowAction.APPROVED.value: "Approved",
    WorkflowAction.REJECTED.value: "Rejected",
    WorkflowAction.SCHEDULED.value: "Scheduled Sidang",
    WorkflowAction.COMPLETED.value: "Marked Sidang as Success",
    WorkflowAction.CANCELED_AFTER_SIDANG.value: "Marked Sidang as Canceled",
    WorkflowAction.ALL_FILES_CONFIRMED.value: "Confirmed All Design Files",
    WorkflowAction.REVISION_COMPLETED_AND_FINISH.value: "Completed Post-Sidang Revisions",
}


# ═══════════════════════════════════════════════════════════════
# Queries
# ═══════════════════════════════════════════════════════════════

def get_project(project_id: str, *, code: str | None = None) -> Project:
    project = db.session.get(Project, project_id)
    if project is None:
        raise NotFoundError("Project", project_id, code=code)
    return project


def list_projects() -> list[Project]:
    """All projects, newest first."""
    return Project.query.order_by(Project.created_at.desc()).all()


def list_projects_for_role(role: str | None, *, statuses=None, search: str | None = None) -> list[Project]:
    """
    Projects visible to ``role``.

    Owner, General Admin, Admin Developer and Admin Proyek see everything.
    Other roles see projects assigned to them or whose next action mentions
    their role. ``statuses`` and ``search`` (title or id) narrow the list.
    """
    q = Project.query
    if statuses:
        q = q.filter(Project.status.in_(list(statuses)))
    if search:
        like = f"%{search.strip().lower()}%"
        q = q.filter(db.or_(
            db.func.lower(Project.title).like(like),
            db.func.lower(Project.id).like(like),
        ))
    projects = q.order_by(Project.created_at.desc()).all()

    if role in FULL_VISIBILITY_ROLES:
        return projects
    if not role:
        return []
    role_lc = role.lower()
    return [
        p for p in projects
        if p.assigned_division == role or (p.next_action and role_lc in p.next_action.lower())
    ]


def available_actions(project: Project, role: str | None) -> list[str]:
    """Actions ``role`` could submit for ``project`` right now."""
    if not can_act_on_step(role, project.status, project.assigned_division):
        return []
    actions = get_available_actions(project.workflow.steps, project.status, project.progress)
    return [a for a in actions if action_allowed_for_role(role, a)]


def parallel_checklist(project_id: str) -> dict:
    project = get_project(project_id)
    completed = list(project.parallel_uploads_completed_by or [])
    return {
        "projectId": project.id,
        "status": project.status,
        "checklist": parallel_uploads.checklist(project.files),
        "missing": {d: parallel_uploads.missing_documents(project.files, d) for d in PARALLEL_DIVISIONS},
        "completedBy": completed,
        "allComplete": all(d in completed for d in PARALLEL_DIVISIONS),
    }


# ═══════════════════════════════════════════════════════════════
# Internal helpers
# ═══════════════════════════════════════════════════════════════

def _check_upload_count(uploads):
    limit = current_app.config.get("MAX_FILES_PER_UPLOAD", 10)
    if len(uploads) > limit:
        raise ValidationError(
            f"At most {limit} files per upload", code="TOO_MANY_FILES",
            details={"limit": limit, "received": len(uploads)},
        )


def _store_uploads(project: Project, uploads, actor: dict) -> list[str]:
    names = []
    for storage in uploads:
        original, relpath = file_storage.save_upload(project.id, project.title, storage)
        project.add_file(original, actor["username"], relpath, uploader_role=actor["role"])
        names.append(original)
    return names


def _notify(project: Project, divisions, template: str | None, actor: dict, note: str | None = None):
    if not divisions:
        return 0
    message = render_message(
        template,
        projectName=project.title,
        newStatus=project.status,
        actorUsername=actor["username"],
        reasonNote=note or "",
    ) or f"Proyek '{project.title}' kini berstatus '{project.status}'."
    return NotificationService.notify_users_by_role(list(divisions), message, project.id)


def _require_capability(project: Project, actor: dict, action: str):
    role = actor.get("role")
    if not can_act_on_step(role, project.status, project.assigned_division) \
            or not action_allowed_for_role(role, action):
        logger.warning(
            "Denied %s on project %s for %s (%s)",
            action, project.id, actor.get("username"), role,
            extra={"project_id": project.id, "action": action, "user": actor.get("username")},
        )
        raise PermissionDenied(role, action, project.status)


def _history_text(action: str, result, schedule_details=None) -> str:
    if result.is_revision:
        return "Requested Revision"
    text = HISTORY_TEXT.get(action, action.replace("_", " ").capitalize())
    if action == WorkflowAction.SCHEDULED.value and schedule_details:
        when = " ".join(str(schedule_details.get(k)) for k in ("date", "time") if schedule_details.get(k))
        where = schedule_details.get("location")
        if when or where:
            text += f" ({', '.join(x for x in (when, where) if x)})"
    return text


# ═══════════════════════════════════════════════════════════════
# Create
# ═══════════════════════════════════════════════════════════════

def create_project(title: str, actor: dict, *, workflow_id: str | None = None, uploads=()) -> Project:
    """
    Create a project at the first step of ``workflow_id`` (default workflow if None).

    Raises:
        ValidationError: WORKFLOW_INVALID when the workflow has no usable first step.
    """
    title = (title or "").strip()
    if not title:
        raise ValidationError("title is required", code="VALIDATION_REQUIRED")
    uploads = list(uploads or [])
    _check_upload_count(uploads)

    workflow = workflow_service.get_workflow(workflow_id)
    step = first_step(workflow.steps)
    if not step or not step.get("status"):
        raise ValidationError(
            f"Workflow {workflow.id!r} has no first step", code="WORKFLOW_INVALID",
        )

    project = Project(
        id=new_id("project"),
        title=title,
        workflow_id=workflow.id,
        status=step["status"],
        progress=step.get("progress", 0),
        assigned_division=step.get("assignedDivision") or "",
        next_action=step.get("nextActionDescription"),
        parallel_uploads_completed_by=[],
        created_by=actor["username"],
    )
    db.session.add(project)
    file_storage.ensure_project_folder(project.id, project.title)

    project.add_history(actor["role"], f"Created Project with workflow: {workflow.name}")
    for name in _store_uploads(project, uploads, actor):
        project.add_history(actor["role"], f"Uploaded initial file: {name}")
    project.add_history("System", f"Assigned to {project.assigned_division}")
    db.session.flush()

    logger.info(
        "Project %s created by %s at '%s'", project.id, actor["username"], project.status,
        extra={"project_id": project.id, "user": actor["username"]},
    )
    if project.status not in TERMINAL_STATUSES:
        _notify(
            project, [project.assigned_division],
            "Proyek baru '{projectName}' telah dibuat oleh {actorUsername}. "
            "Tindakan berikutnya: " + (project.next_action or project.status) + ".",
            actor,
        )
    return project


# ═══════════════════════════════════════════════════════════════
# Workflow actions
# ═══════════════════════════════════════════════════════════════

def apply_action(
    project_id: str,
    actor: dict,
    action: str,
    *,
    uploads=(),
    note: str | None = None,
    schedule_details: dict | None = None,
    survey_details: dict | None = None,
    expected_status: str | None = None,
    division: str | None = None,
) -> Project:
    """
    Apply a workflow action submitted by ``actor``.

    Args:
        expected_status: When given, the action is refused with STATUS_CHANGED
            if the project has moved on since the client loaded it.
        division: Division signing off with ``mark_division_complete``;
            defaults to the actor's role.

    Raises:
        PermissionDenied, TransitionError, ValidationError, NotFoundError
    """
    project = get_project(project_id)
    uploads = list(uploads or [])
    role = actor["role"]

    _require_capability(project, actor, action)

    if expected_status and expected_status != project.status:
        raise TransitionError(
            project.id, action, project.status,
            f"expected status '{expected_status}'", code="STATUS_CHANGED",
        )

    steps = project.workflow.steps
    if action in IN_STEP_ACTIONS:
        if not is_in_step_action(steps, project.status, project.progress, action):
            raise TransitionError(project.id, action, project.status,
                                  "Action is not available in the current step")
        if action == WorkflowAction.MARK_DIVISION_COMPLETE.value:
            return _mark_division_complete(project, actor, division, note)
        return _architect_initial_images(project, actor, uploads, note)

    result = next_state(steps, project, action)

    # ── Guards ───────────────────────────────────────────────────────────
    if action == WorkflowAction.SCHEDULED.value and not schedule_details:
        raise ValidationError("scheduleDetails is required", code="SCHEDULE_DETAILS_REQUIRED")
    if project.status == ProjectStatus.PENDING_SURVEY_DETAILS.value \
            and action == WorkflowAction.SUBMITTED.value \
            and not (survey_details or project.survey_details):
        raise ValidationError("surveyDetails is required", code="SURVEY_DETAILS_REQUIRED")
    if action == WorkflowAction.ALL_FILES_CONFIRMED.value:
        completed = project.parallel_uploads_completed_by or []
        pending = [d for d in PARALLEL_DIVISIONS if d not in completed]
        if pending:
            raise ValidationError(
                "Not every division has completed its uploads",
                code="PARALLEL_UPLOADS_INCOMPLETE",
                details={"pendingDivisions": pending},
            )
    _check_upload_count(uploads)

    # ── Apply ────────────────────────────────────────────────────────────
    previous_status = project.status
    file_names = _store_uploads(project, uploads, actor)
    text = _history_text(action, result, schedule_details)
    if file_names:
        text += f": {', '.join(file_names)}"

    project.status = result.status
    project.progress = result.progress
    project.assigned_division = result.assigned_division
    project.next_action = result.next_action
    if schedule_details is not None:
        project.schedule_details = dict(schedule_details)
    if survey_details is not None:
        project.survey_details = dict(survey_details)
    if result.status == ProjectStatus.PENDING_PARALLEL_DESIGN_UPLOADS.value \
            and previous_status != result.status:
        project.parallel_uploads_completed_by = []
    history_note = note
    if result.is_revision:
        moved = f"{previous_status} to {result.status}"
        history_note = f"{note} ({moved})" if note else f"From {moved}"
    project.add_history(role, text, history_note)
    db.session.flush()

    logger.info(
        "Project %s: %s by %s (%s -> %s)",
        project.id, result.action, actor["username"], previous_status, project.status,
        extra={"project_id": project.id, "action": result.action, "user": actor["username"]},
    )

    if not result.is_terminal:
        _notify(project, result.notify_divisions, result.notification_template, actor, note)
    return project


def revise_project(project_id: str, actor: dict, note: str | None = None,
                   action: str = WorkflowAction.REVISE.value) -> Project:
    """
    Send a project back to the previous stage of its current step.

    ``action`` is ``revise`` or the step's own revision action name.

    Raises:
        TransitionError: REVISION_NOT_SUPPORTED_FOR_CURRENT_STEP
    """
    project = get_project(project_id)
    step = resolve_step(project.workflow.steps, project.status, project.progress)
    revision = (step or {}).get("revision")
    if action not in REVISION_ACTIONS or not revision \
            or action not in (WorkflowAction.REVISE.value, revision.get("action")):
        raise TransitionError(
            project.id, action, project.status,
            "Revision is not supported for the current step",
            code="REVISION_NOT_SUPPORTED_FOR_CURRENT_STEP",
        )
    return apply_action(project_id, actor, action, note=note)


# ── In-step actions ───────────────────────────────────────────────────────

def _architect_initial_images(project: Project, actor: dict, uploads, note):
    _check_upload_count(uploads)
    names = _store_uploads(project, uploads, actor)
    text = "Uploaded initial images for Struktur"
    if names:
        text += f": {', '.join(names)}"
    project.add_history(actor["role"], text, note)
    db.session.flush()
    logger.info("Project %s: architect initial images uploaded by %s", project.id, actor["username"])
    _notify(
        project, [Role.STRUKTUR.value, Role.MEP.value],
        "Arsitek telah mengunggah gambar awal untuk proyek '{projectName}'. "
        "Silakan mulai pekerjaan divisi Anda.",
        actor, note,
    )
    return project


def mark_division_complete(project_id: str, actor: dict, division: str | None = None,
                           note: str | None = None) -> Project:
    """Record that ``division`` (default: the actor's role) finished its parallel uploads."""
    project = get_project(project_id)
    return _mark_division_complete(project, actor, division, note)


def _mark_division_complete(project: Project, actor: dict, division, note):
    role = actor["role"]
    division = normalize_role(division) or role
    if project.status != ProjectStatus.PENDING_PARALLEL_DESIGN_UPLOADS.value \
            or division not in PARALLEL_DIVISIONS:
        raise ValidationError(
            f"'{division}' cannot sign off while project is '{project.status}'",
            code="DIVISION_NOT_IN_PARALLEL_STAGE",
        )
    if role not in (division, Role.ADMIN_DEVELOPER.value):
        raise PermissionDenied(role, WorkflowAction.MARK_DIVISION_COMPLETE.value, project.status)

    if not parallel_uploads.division_complete(project.files, division):
        raise ValidationError(
            f"{division} is missing required documents",
            code="PARALLEL_UPLOADS_INCOMPLETE",
            details={
                "division": division,
                "missing": parallel_uploads.missing_documents(project.files, division),
            },
        )

    completed = list(project.parallel_uploads_completed_by or [])
    if division in completed:
        logger.info("Project %s: %s already marked complete", project.id, division)
        return project

    project.parallel_uploads_completed_by = completed + [division]
    project.add_history(division, f"Marked {division} uploads as complete", note)
    db.session.flush()
    logger.info("Project %s: %s uploads complete", project.id, division,
                extra={"project_id": project.id, "user": actor["username"]})

    message = f"Divisi {division} telah menyelesaikan unggahan berkas untuk proyek '{{projectName}}'."
    if all(d in project.parallel_uploads_completed_by for d in PARALLEL_DIVISIONS):
        message += " Semua divisi telah selesai; mohon konfirmasi berkas desain."
    _notify(project, [Role.ADMIN_PROYEK.value], message, actor, note)
    return project


# ═══════════════════════════════════════════════════════════════
# Administrative changes
# ═══════════════════════════════════════════════════════════════

def update_title(project_id: str, actor: dict, new_title: str) -> Project:
    """Rename a project, its storage folder and the stored file paths."""
    project = get_project(project_id)
    if actor["role"] not in TITLE_EDITOR_ROLES:
        raise PermissionDenied(actor["role"], "update_title", project.status)
    new_title = (new_title or "").strip()
    if not new_title:
        raise ValidationError("title is required", code="VALIDATION_REQUIRED")
    old_title = project.title
    if new_title == old_title:
        return project

    old_folder, new_folder = file_storage.rename_project_folder(project.id, old_title, new_title)
    if old_folder != new_folder:
        prefix = old_folder + "/"
        for f in project.files:
            if f.path.startswith(prefix):
                f.path = new_folder + "/" + f.path[len(prefix):]

    project.title = new_title
    project.add_history(actor["role"], f"Changed title from '{old_title}' to '{new_title}'")
    db.session.flush()
    logger.info("Project %s renamed by %s", project.id, actor["username"])
    return project


def manual_status_update(
    project_id: str,
    actor: dict,
    *,
    status: str,
    assigned_division: str | None,
    next_action: str | None,
    progress: int,
    reason: str,
) -> Project:
    """Override a project's position in its workflow. Reason is mandatory."""
    project = get_project(project_id)
    if actor["role"] not in PROJECT_ADMIN_ROLES:
        raise PermissionDenied(actor["role"], "manual_status_update", project.status)
    if not (reason or "").strip():
        raise ValidationError("reason is required", code="REASON_REQUIRED")

    if not any(s.get("status") == status for s in project.workflow.steps):
        raise ValidationError(f"Unknown status for this workflow: {status!r}", code="UNKNOWN_STATUS")
    assigned_division = normalize_role(assigned_division) or ""
    if assigned_division and assigned_division not in ROLES:
        raise ValidationError(f"Unknown division: {assigned_division!r}", code="INVALID_ROLE")
    try:
        progress = int(progress)
    except (TypeError, ValueError):
        raise ValidationError("progress must be an integer", code="VALIDATION_INVALID")
    if not 0 <= progress <= 100:
        raise ValidationError("progress must be between 0 and 100", code="VALIDATION_INVALID")
    if resolve_step(project.workflow.steps, status, progress) is None:
        raise ValidationError(
            f"No single step of this workflow has status {status!r} at {progress}%",
            code="UNRESOLVABLE_STEP",
            details={"progress": sorted(
                s.get("progress") for s in project.workflow.steps if s.get("status") == status
            )},
        )

    previous_status = project.status
    project.status = status
    project.assigned_division = assigned_division
    project.next_action = next_action
    project.progress = progress
    if status == ProjectStatus.PENDING_PARALLEL_DESIGN_UPLOADS.value and previous_status != status:
        project.parallel_uploads_completed_by = []
    project.add_history(actor["role"], f"Manually changed status to {status}", f"Reason: {reason.strip()}")
    db.session.flush()

    logger.warning(
        "Project %s manually moved %s -> %s by %s",
        project.id, previous_status, status, actor["username"],
        extra={"project_id": project.id, "user": actor["username"]},
    )
    if status not in TERMINAL_STATUSES:
        _notify(
            project, [assigned_division],
            "Status proyek '{projectName}' diubah secara manual menjadi '{newStatus}' "
            "oleh {actorUsername}. {reasonNote}",
            actor, f"Alasan: {reason.strip()}",
        )
    return project


# ═══════════════════════════════════════════════════════════════
# Files
# ═══════════════════════════════════════════════════════════════

def add_files(project_id: str, actor: dict, uploads, note: str | None = None) -> Project:
    """Upload files within the current step without changing status."""
    project = get_project(project_id)
    if not can_act_on_step(actor["role"], project.status, project.assigned_division):
        raise PermissionDenied(actor["role"], "upload_files", project.status)
    uploads = list(uploads or [])
    if not uploads:
        raise ValidationError("no files uploaded", code="FILES_REQUIRED")
    _check_upload_count(uploads)
    names = _store_uploads(project, uploads, actor)
    project.add_history(actor["role"], f"Uploaded files: {', '.join(names)}", note)
    db.session.flush()
    return project


def get_project_file(project_id: str, file_path: str):
    project = get_project(project_id)
    for f in project.files:
        if f.path == file_path:
            return project, f
    raise NotFoundError("File", file_path)


def delete_project_file(project_id: str, actor: dict, file_path: str) -> Project:
    """Delete a file from disk and the project; admins or the uploader only."""
    project, entry = get_project_file(project_id, file_path)
    if actor["role"] not in PROJECT_ADMIN_ROLES and entry.uploaded_by != actor["username"]:
        raise PermissionDenied(actor["role"], "delete_file", project.status)
    file_storage.delete_file(entry.path)
    project.files.remove(entry)
    project.add_history(actor["role"], f"Deleted file {entry.name}")
    db.session.flush()
    logger.info("Project %s: file %s deleted by %s", project.id, entry.path, actor["username"])
    return project


def delete_project(project_id: str, actor: dict) -> None:
    """Delete a project with its folder and notifications."""
    project = get_project(project_id, code="PROJECT_NOT_FOUND_FOR_DELETION")
    if actor["role"] not in PROJECT_ADMIN_ROLES:
        raise PermissionDenied(actor["role"], "delete_project", project.status)
    removed = NotificationService.delete_for_project(project.id)
    file_storage.delete_project_folder(project.id, project.title)
    db.session.delete(project)
    db.session.flush()
    logger.info(
        "Project %s deleted by %s (%d notifications removed)",
        project_id, actor["username"], removed,
        extra={"project_id": project_id, "user": actor["username"]},
    )
