"""
Workflow Engine — step resolution, transitions, revisions and capability checks.

The engine is pure: it reads a workflow's step table and a project snapshot
and returns what should happen. Persisting the result, saving files and
sending notifications is the project service's job.

Resolution rules:
  - A project sits on the step whose (status, progress) matches exactly.
  - Otherwise the single step carrying that status is used (revision
    targets may land on a lower progress than the step's nominal one).
  - A status shared by several steps with no progress match is ambiguous
    and resolves to nothing.

Usage:
    from tracker.services.workflow_engine import next_state, can_act

    if not can_act(user["role"], project.status):
        raise PermissionDenied(...)
    result = next_state(workflow.steps, project, "approved")
"""

from __future__ import annotations

import logging
import string
from dataclasses import dataclass, field

from tracker.core.exceptions import TransitionError, WorkflowDefinitionError
from tracker.models.user import ROLES, Role
from tracker.models.workflow import (
    ACTIONS,
    IN_STEP_ACTIONS,
    REVISION_ACTIONS,
    TERMINAL_STATUSES,
    ProjectStatus,
    WorkflowAction,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TransitionResult:
    """Outcome of applying an action to a project's current step."""

    action: str
    status: str
    assigned_division: str
    next_action: str | None
    progress: int
    notify_divisions: tuple[str, ...] = field(default_factory=tuple)
    notification_template: str | None = None
    is_revision: bool = False

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


# ═══════════════════════════════════════════════════════════════
# Step resolution
# ═══════════════════════════════════════════════════════════════

def resolve_step(steps: list[dict], status: str, progress: int | None = None) -> dict | None:
    """Find the step a project with ``status``/``progress`` is on."""
    candidates = [s for s in steps if s.get("status") == status]
    if not candidates:
        return None
    if progress is not None:
        for step in candidates:
            if step.get("progress") == progress:
                return step
    if len(candidates) == 1:
        return candidates[0]
    return None


def first_step(steps: list[dict]) -> dict | None:
    return steps[0] if steps else None


def _revision_matches(revision: dict, action: str) -> bool:
    return action == WorkflowAction.REVISE.value or action == revision.get("action")


def get_transition(steps: list[dict], status: str, progress: int | None, action: str) -> dict | None:
    """Return the transition entry for ``action`` from the resolved step, or None.

    Revision actions (and the generic ``revise``) resolve to the step's
    ``revision`` entry.
    """
    step = resolve_step(steps, status, progress)
    if step is None:
        return None
    transitions = step.get("transitions") or {}
    if action in transitions:
        return transitions[action]
    revision = step.get("revision")
    if revision and _revision_matches(revision, action):
        return revision
    return None


def get_available_actions(steps: list[dict], status: str, progress: int | None = None) -> list[str]:
    """List every action the resolved step accepts (forward, revision, in-step)."""
    step = resolve_step(steps, status, progress)
    if step is None:
        return []
    actions = list((step.get("transitions") or {}).keys())
    if step.get("revision"):
        actions.append(step["revision"]["action"])
    actions.extend(step.get("inStepActions") or [])
    return actions


def is_in_step_action(steps: list[dict], status: str, progress: int | None, action: str) -> bool:
    step = resolve_step(steps, status, progress)
    return bool(step) and action in (step.get("inStepActions") or [])


def next_state(steps: list[dict], project, action: str) -> TransitionResult:
    """
    Compute the project's next state for ``action``.

    Total over (step, action): undefined pairs raise TransitionError rather
    than leaving the project untouched.

    Args:
        steps: Workflow step table.
        project: Anything with ``id``, ``status`` and ``progress`` attributes.
        action: Action name.

    Raises:
        TransitionError: ``INVALID_TRANSITION`` for an unknown pair;
            ``REVISION_NOT_SUPPORTED_FOR_CURRENT_STEP`` for a revision
            action on a step without a matching revision.
    """
    step = resolve_step(steps, project.status, project.progress)
    if step is None:
        raise TransitionError(
            project.id, action, project.status,
            f"No workflow step for status '{project.status}' at {project.progress}%",
        )

    transition = get_transition(steps, project.status, project.progress, action)
    if transition is None:
        if action in REVISION_ACTIONS:
            raise TransitionError(
                project.id, action, project.status,
                f"Step '{step['stepName']}' has no '{action}' revision",
                code="REVISION_NOT_SUPPORTED_FOR_CURRENT_STEP",
            )
        reason = "Unknown action" if action not in ACTIONS else (
            f"Step '{step['stepName']}' does not accept '{action}'"
        )
        raise TransitionError(project.id, action, project.status, reason)

    is_revision = transition is step.get("revision")
    notification = transition.get("notification") or {}
    divisions = notification.get("division")
    if isinstance(divisions, str):
        divisions = [divisions] if divisions else []
    if not notification:
        divisions = [transition["targetAssignedDivision"]] if transition.get("targetAssignedDivision") else []

    return TransitionResult(
        action=transition.get("action", action) if is_revision else action,
        status=transition["targetStatus"],
        assigned_division=transition.get("targetAssignedDivision") or "",
        next_action=transition.get("targetNextActionDescription"),
        progress=int(transition.get("targetProgress", project.progress)),
        notify_divisions=tuple(d for d in divisions or [] if d),
        notification_template=notification.get("message"),
        is_revision=is_revision,
    )


# ═══════════════════════════════════════════════════════════════
# Capability checks
# ═══════════════════════════════════════════════════════════════

_TECHNICAL_STATUSES = frozenset({
    ProjectStatus.PENDING_PARALLEL_DESIGN_UPLOADS.value,
    ProjectStatus.PENDING_POST_SIDANG_REVISION.value,
})

_DESIGN_TEAM = frozenset({
    Role.ADMIN_PROYEK.value, Role.ARSITEK.value, Role.STRUKTUR.value, Role.MEP.value,
})

STATUS_ACTORS: dict[str, frozenset[str]] = {
    ProjectStatus.PENDING_OFFER.value: frozenset({Role.ADMIN_PROYEK.value}),
    ProjectStatus.PENDING_APPROVAL.value: frozenset({Role.OWNER.value}),
    ProjectStatus.PENDING_DP_INVOICE.value: frozenset({Role.GENERAL_ADMIN.value}),
    ProjectStatus.PENDING_ADMIN_FILES.value: frozenset({Role.ADMIN_PROYEK.value}),
    ProjectStatus.PENDING_SURVEY_DETAILS.value: frozenset({Role.ADMIN_PROYEK.value}),
    ProjectStatus.PENDING_PARALLEL_DESIGN_UPLOADS.value: _DESIGN_TEAM,
    ProjectStatus.PENDING_SCHEDULING.value: frozenset({Role.ADMIN_PROYEK.value}),
    ProjectStatus.SCHEDULED.value: frozenset({Role.OWNER.value}),
    ProjectStatus.PENDING_POST_SIDANG_REVISION.value: _DESIGN_TEAM,
    ProjectStatus.COMPLETED.value: frozenset(),
    ProjectStatus.CANCELED.value: frozenset(),
}

SUPERVISOR_ROLES = frozenset({Role.OWNER.value, Role.GENERAL_ADMIN.value})

# Actions narrower than "may act on this status"
ACTION_ROLES: dict[str, frozenset[str]] = {
    WorkflowAction.REVISE.value: frozenset({
        Role.OWNER.value, Role.GENERAL_ADMIN.value, Role.ADMIN_DEVELOPER.value,
    }),
    WorkflowAction.REVISE_OFFER.value: frozenset({
        Role.OWNER.value, Role.GENERAL_ADMIN.value, Role.ADMIN_DEVELOPER.value,
    }),
    WorkflowAction.REVISE_DP.value: frozenset({
        Role.OWNER.value, Role.GENERAL_ADMIN.value, Role.ADMIN_DEVELOPER.value,
    }),
    WorkflowAction.REVISE_AFTER_SIDANG.value: frozenset({
        Role.OWNER.value, Role.GENERAL_ADMIN.value, Role.ADMIN_DEVELOPER.value,
    }),
    WorkflowAction.ALL_FILES_CONFIRMED.value: frozenset({
        Role.ADMIN_PROYEK.value, Role.OWNER.value, Role.GENERAL_ADMIN.value, Role.ADMIN_DEVELOPER.value,
    }),
    WorkflowAction.MARK_DIVISION_COMPLETE.value: frozenset({
        Role.ARSITEK.value, Role.STRUKTUR.value, Role.MEP.value, Role.ADMIN_DEVELOPER.value,
    }),
    WorkflowAction.ARCHITECT_UPLOADED_INITIAL_IMAGES_FOR_STRUKTUR.value: frozenset({
        Role.ARSITEK.value, Role.ADMIN_DEVELOPER.value,
    }),
}


def can_act(role: str | None, status: str) -> bool:
    """
    Whether ``role`` may drive a project that is in ``status``.

    Pure function of its inputs; independent of any workflow table.
    Statuses outside STATUS_ACTORS return False (see ``can_act_on_step``).
    """
    if not role or status in TERMINAL_STATUSES:
        return False
    if role == Role.ADMIN_DEVELOPER.value:
        return True
    if role in SUPERVISOR_ROLES and status in STATUS_ACTORS and status not in _TECHNICAL_STATUSES:
        return True
    return role in STATUS_ACTORS.get(status, frozenset())


def can_act_on_step(role: str | None, status: str, assigned_division: str | None) -> bool:
    """``can_act`` extended to custom statuses: the assigned division may act."""
    if status in STATUS_ACTORS or status in TERMINAL_STATUSES:
        return can_act(role, status)
    if role == Role.ADMIN_DEVELOPER.value:
        return True
    return bool(role) and role == assigned_division


def action_allowed_for_role(role: str | None, action: str) -> bool:
    allowed = ACTION_ROLES.get(action)
    return allowed is None or role in allowed


# ═══════════════════════════════════════════════════════════════
# Messages
# ═══════════════════════════════════════════════════════════════

class _KeepMissing(dict):
    def __missing__(self, key):
        return "{" + key + "}"


def render_message(template: str | None, **values) -> str:
    """Fill ``{projectName}``-style placeholders; unknown ones are left as-is."""
    if not template:
        return ""
    try:
        return string.Formatter().vformat(template, (), _KeepMissing(values)).strip()
    except (ValueError, IndexError):
        logger.warning("Malformed notification template: %r", template)
        return template


# ═══════════════════════════════════════════════════════════════
# Table validation
# ═══════════════════════════════════════════════════════════════

_TRANSITION_KEYS = ("targetStatus", "targetAssignedDivision", "targetProgress")


def _check_target(steps, where, target, problems):
    for key in _TRANSITION_KEYS:
        if key not in target:
            problems.append(f"{where}: missing '{key}'")
    status = target.get("targetStatus")
    if status is None:
        return
    if not any(s.get("status") == status for s in steps):
        problems.append(f"{where}: target status '{status}' has no step")
    elif resolve_step(steps, status, target.get("targetProgress")) is None:
        problems.append(
            f"{where}: target '{status}' at {target.get('targetProgress')}% is ambiguous"
        )
    progress = target.get("targetProgress")
    if not isinstance(progress, int) or not 0 <= progress <= 100:
        problems.append(f"{where}: targetProgress must be an integer 0..100")
    division = target.get("targetAssignedDivision")
    if division and division not in ROLES:
        problems.append(f"{where}: unknown division '{division}'")
    notification = target.get("notification")
    if notification:
        notify = notification.get("division")
        notify = [notify] if isinstance(notify, str) else (notify or [])
        for d in notify:
            if d and d not in ROLES:
                problems.append(f"{where}: unknown notification division '{d}'")


def validate_workflow(workflow_id: str, steps: list[dict]) -> None:
    """
    Check a step table; raise WorkflowDefinitionError listing every problem.

    Checked:
      - at least one step; every step has a name, status and progress 0..100
      - action names belong to WorkflowAction
      - every target status has a step and resolves unambiguously
      - divisions are known roles
      - terminal steps have no transitions; other steps have a way out
    """
    problems: list[str] = []
    if not steps:
        raise WorkflowDefinitionError(workflow_id, ["workflow has no steps"])

    for idx, step in enumerate(steps):
        name = step.get("stepName") or f"step[{idx}]"
        if not step.get("status"):
            problems.append(f"{name}: missing status")
        progress = step.get("progress")
        if not isinstance(progress, int) or not 0 <= progress <= 100:
            problems.append(f"{name}: progress must be an integer 0..100")
        division = step.get("assignedDivision")
        if division and division not in ROLES:
            problems.append(f"{name}: unknown division '{division}'")

        transitions = step.get("transitions") or {}
        revision = step.get("revision")
        in_step = step.get("inStepActions") or []

        if step.get("status") in TERMINAL_STATUSES:
            if transitions or revision:
                problems.append(f"{name}: terminal step must not have transitions")
            continue
        if not transitions and not revision:
            problems.append(f"{name}: non-terminal step has no transitions")

        for action, target in transitions.items():
            if action not in ACTIONS or action in REVISION_ACTIONS or action in IN_STEP_ACTIONS:
                problems.append(f"{name}: '{action}' is not a forward action")
            _check_target(steps, f"{name}.{action}", target, problems)
        if revision:
            action = revision.get("action")
            if action not in REVISION_ACTIONS:
                problems.append(f"{name}: revision action '{action}' is not a revise action")
            _check_target(steps, f"{name}.{action}", revision, problems)
        for action in in_step:
            if action not in IN_STEP_ACTIONS:
                problems.append(f"{name}: '{action}' is not an in-step action")

    if problems:
        raise WorkflowDefinitionError(workflow_id, problems)
