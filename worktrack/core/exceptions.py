"""
Platform-wide exception hierarchy.

Services raise these types; the application factory registers one error
handler per type so every blueprint gets consistent HTTP status codes.

Usage:
    from worktrack.core.exceptions import NotFoundError, InvalidTransitionError

    raise NotFoundError(resource="Subtask", resource_id=42)
    raise InvalidTransitionError("completed", "approved")
"""


class NotFoundError(Exception):
    """Raised when an item, assignment or user does not exist.

    Args:
        resource: Human-readable model name (e.g. "Task", "WorkAssignment").
        resource_id: The PK that was looked up.
    """

    def __init__(self, resource: str, resource_id: int | str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        super().__init__(msg)


class ValidationError(Exception):
    """Raised when input is well-formed but violates a business rule.

    Maps to HTTP 422 unless a subclass says otherwise.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown for structured API responses.
    """

    status_code = 422

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class InvalidTransitionError(ValidationError):
    """Raised when the requested status change is not in the transition table.

    Carries the rejected (current, requested) pair. Maps to HTTP 400.
    """

    status_code = 400

    def __init__(self, current: str | None, requested: str | None, reason: str | None = None) -> None:
        self.current_status = current
        self.requested_status = requested
        self.reason = reason or f"invalid transition from {current} to {requested}"
        super().__init__(
            self.reason,
            details={"from": current, "to": requested},
        )


class MissingRequiredFeedbackError(ValidationError):
    """Raised when a transition or action lacks a mandatory payload.

    Return without comment, block without reason, reassignment without a
    target user, completion without an outcome note. Maps to HTTP 400.
    """

    status_code = 400

    def __init__(self, field: str, message: str | None = None) -> None:
        self.field = field
        super().__init__(message or f"{field} is required", details={field: "required"})


class ConflictError(Exception):
    """Raised when a concurrent writer changed the item first.

    Maps to HTTP 409.

    Args:
        resource: Model name.
        resource_id: PK of the contended row.
        expected_version: The version the caller based its write on.
    """

    def __init__(self, resource: str, resource_id: int | str, expected_version: int | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        self.expected_version = expected_version
        msg = f"{resource} id={resource_id} was modified concurrently"
        if expected_version is not None:
            msg += f" (expected version {expected_version})"
        super().__init__(msg)


class ReferentialConflictError(Exception):
    """Raised when a delete is blocked by dependent work-session rows.

    Cleanup paths (reassign, unblock) catch this and skip the delete;
    it never reaches an HTTP response.
    """

    def __init__(self, assignment_id: int, session_count: int) -> None:
        self.assignment_id = assignment_id
        self.session_count = session_count
        super().__init__(
            f"WorkAssignment id={assignment_id} has {session_count} logged work session(s)"
        )


class CollaboratorFailure(Exception):
    """Raised by outbound collaborators (notification delivery, lookups).

    Always logged and swallowed by the caller once the core mutation is done.
    """
