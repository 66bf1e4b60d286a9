"""
Tracker-wide exception hierarchy.

Services raise these; blueprints never catch them one by one. The app
factory registers a single handler per family and turns each into an
``api_error`` response carrying the exception's machine code.

Usage:
    from tracker.core.exceptions import NotFoundError, ValidationError

    raise NotFoundError(resource="Project", resource_id="project_1")
    raise ValidationError("Reason is required", code="REASON_REQUIRED")
"""


class TrackerError(Exception):
    """Base class. ``code`` is the short machine code shown to clients."""

    code = "INTERNAL"

    def __init__(self, message: str, code: str | None = None, details: dict | None = None) -> None:
        if code:
            self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)


class NotFoundError(TrackerError):
    """Raised when a requested record does not exist.

    Args:
        resource: Human-readable entity name (e.g. "Project", "User").
        resource_id: The id that was looked up. Included in logs and message.
        code: Override for the default ``<RESOURCE>_NOT_FOUND`` code.
    """

    def __init__(
        self,
        resource: str,
        resource_id: int | str | None = None,
        code: str | None = None,
    ) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        super().__init__(msg, code or f"{resource.upper()}_NOT_FOUND")


class ValidationError(TrackerError):
    """Input was well-formed but broke a business rule.

    Maps to HTTP 400 in the blueprint error handlers.
    """

    code = "VALIDATION_FAILED"


class ConflictError(TrackerError):
    """Raised when an operation would duplicate a unique value.

    Maps to HTTP 409.

    Args:
        resource: Model name.
        field: The unique field that would be duplicated.
        value: The conflicting value.
        code: Machine code, e.g. ``USERNAME_EXISTS``.
    """

    def __init__(self, resource: str, field: str, value: str | None = None,
                 code: str | None = None) -> None:
        self.resource = resource
        self.field = field
        self.value = value
        msg = f"{resource} with {field}={value!r} already exists"
        super().__init__(msg, code or f"{field.upper()}_EXISTS")


class PermissionDenied(TrackerError):
    """Raised when a role may not perform an action in the project's current state."""

    code = "FORBIDDEN"

    def __init__(self, role: str | None, action: str, status: str | None = None) -> None:
        self.role = role
        self.action = action
        self.status = status
        msg = f"Role {role!r} may not perform '{action}'"
        if status:
            msg += f" while project is '{status}'"
        super().__init__(msg)


class TransitionError(ValidationError):
    """Raised when a workflow action is not defined for the project's current step."""

    def __init__(self, project_id: str | None, action: str, status: str | None,
                 reason: str | None = None, code: str = "INVALID_TRANSITION") -> None:
        msg = f"Cannot '{action}' project {project_id} (status={status})"
        if reason:
            msg += f": {reason}"
        self.project_id = project_id
        self.action = action
        self.current_status = status
        self.reason = reason
        super().__init__(msg, code)


class WorkflowDefinitionError(ValidationError):
    """Raised when a workflow table fails validation.

    ``problems`` lists every defect found, not only the first.
    """

    def __init__(self, workflow_id: str, problems: list[str]) -> None:
        self.workflow_id = workflow_id
        self.problems = problems
        super().__init__(
            f"Workflow {workflow_id!r} is invalid: " + "; ".join(problems),
            code="WORKFLOW_INVALID",
            details={"problems": problems},
        )
