"""
Domain Errors

Exception hierarchy raised by executors, workflows, sessions and storage
adapters. Execution failures are recorded (status, events, step results)
before being re-raised, so callers can rely on the recorded state even when
they catch these.
"""


class AgentweaveError(Exception):
    """Base class for all errors raised by this package."""


class ExecutorBusyError(AgentweaveError):
    """Raised when execute() is called on an executor that is already running."""


class WorkflowDefinitionError(AgentweaveError):
    """Raised for invalid workflow definitions or condition expressions."""


class TemplateResolutionError(AgentweaveError):
    """Raised by a strict template resolver when a placeholder has no value."""

    def __init__(self, template: str, placeholders: list[str]):
        self.template = template
        self.placeholders = placeholders
        super().__init__(
            f"Unresolved placeholders {placeholders} in template {template!r}"
        )


class SessionNotFoundError(AgentweaveError, LookupError):
    """Raised when an operation targets a session id that does not exist."""

    def __init__(self, session_id: str):
        self.session_id = session_id
        super().__init__(f"Session not found: {session_id}")


class StorageError(AgentweaveError):
    """Raised when a storage adapter fails to read or write a record."""
