"""
Core exceptions for collaborator failures.

Used to distinguish transient infrastructure failures (store, directory,
Telegram) from business outcomes. Services catch these at the operation
boundary, log them and abandon the operation for the current cycle.
"""


class CollaboratorError(Exception):
    """Raised when an external collaborator call fails (store, directory, channel, sink)."""

    def __init__(self, component: str, operation: str, cause: BaseException | None = None):
        self.component = component
        self.operation = operation
        self.cause = cause
        detail = f": {type(cause).__name__}: {str(cause)[:100]}" if cause else ""
        super().__init__(f"{component}.{operation} failed{detail}")


class CollaboratorTimeoutError(CollaboratorError):
    """Raised when an external collaborator call exceeds its timeout."""
    pass
