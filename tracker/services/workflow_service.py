"""
Workflow Service — stored workflow definitions.

The default workflow is created on first use and can be edited but never
deleted. Every create/update runs ``validate_workflow`` so a stored table
is always consistent.
"""

import copy
import logging

from tracker.core.exceptions import NotFoundError, ValidationError
from tracker.models import db
from tracker.models.workflow import DEFAULT_WORKFLOW, DEFAULT_WORKFLOW_ID, Workflow, default_steps
from tracker.services.workflow_engine import validate_workflow
from tracker.utils.helpers import new_id

logger = logging.getLogger(__name__)


def ensure_default_workflow() -> Workflow:
    """Create the default workflow if it does not exist yet."""
    wf = db.session.get(Workflow, DEFAULT_WORKFLOW_ID)
    if wf is None:
        wf = Workflow(
            id=DEFAULT_WORKFLOW_ID,
            name=DEFAULT_WORKFLOW["name"],
            description=DEFAULT_WORKFLOW["description"],
            steps=default_steps(),
        )
        db.session.add(wf)
        db.session.flush()
        logger.info("Created default workflow %s", DEFAULT_WORKFLOW_ID)
    return wf


def validate_stored_workflows() -> int:
    """Validate every stored workflow; raises on the first invalid one."""
    workflows = Workflow.query.all()
    for wf in workflows:
        validate_workflow(wf.id, wf.steps)
    return len(workflows)


def list_workflows() -> list[Workflow]:
    ensure_default_workflow()
    return Workflow.query.order_by(Workflow.created_at.asc()).all()


def get_workflow(workflow_id: str | None) -> Workflow:
    """Fetch a workflow; ``None`` means the default one."""
    if not workflow_id or workflow_id == DEFAULT_WORKFLOW_ID:
        return ensure_default_workflow()
    wf = db.session.get(Workflow, workflow_id)
    if wf is None:
        raise NotFoundError("Workflow", workflow_id)
    return wf


def create_workflow(name: str, description: str = "", steps: list | None = None) -> Workflow:
    """Create a workflow; without ``steps`` it starts as a copy of the default table."""
    name = (name or "").strip()
    if not name:
        raise ValidationError("name is required", code="VALIDATION_REQUIRED")
    steps = copy.deepcopy(steps) if steps is not None else default_steps()
    wf_id = new_id("wf")
    validate_workflow(wf_id, steps)
    wf = Workflow(id=wf_id, name=name, description=description or "", steps=steps)
    db.session.add(wf)
    db.session.flush()
    logger.info("Created workflow %s (%s)", wf.id, wf.name)
    return wf


def update_workflow(workflow_id: str, *, name=None, description=None, steps=None) -> Workflow:
    wf = get_workflow(workflow_id)
    if name is not None:
        if not name.strip():
            raise ValidationError("name must not be empty", code="VALIDATION_REQUIRED")
        wf.name = name.strip()
    if description is not None:
        wf.description = description
    if steps is not None:
        steps = copy.deepcopy(steps)
        validate_workflow(wf.id, steps)
        wf.steps = steps
    db.session.flush()
    logger.info("Updated workflow %s", wf.id)
    return wf


def delete_workflow(workflow_id: str) -> None:
    """Delete a workflow; the default and the last remaining one are protected."""
    ensure_default_workflow()
    wf = db.session.get(Workflow, workflow_id)
    if wf is None:
        raise NotFoundError("Workflow", workflow_id)
    if wf.is_default or Workflow.query.count() <= 1:
        raise ValidationError(
            "The default or last remaining workflow cannot be deleted",
            code="CANNOT_DELETE_LAST_OR_DEFAULT_WORKFLOW",
        )
    from tracker.models.project import Project
    in_use = Project.query.filter_by(workflow_id=workflow_id).count()
    if in_use:
        raise ValidationError(
            f"Workflow is used by {in_use} project(s)",
            code="WORKFLOW_IN_USE",
            details={"projects": in_use},
        )
    db.session.delete(wf)
    db.session.flush()
    logger.info("Deleted workflow %s", workflow_id)


def all_unique_statuses() -> list[str]:
    statuses = set()
    for wf in list_workflows():
        for step in wf.steps or []:
            if step.get("status"):
                statuses.add(step["status"])
    return sorted(statuses)
