"""
Typed errors raised by the service modules.

main.py maps each class to an HTTP status; the services never build
HTTP responses themselves.
"""
from typing import Optional


class CosmicError(Exception):
    """Base class for service errors."""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"detail": self.message}


class ValidationError(CosmicError):
    """Bad or missing input for a single field."""

    status_code = 400

    def __init__(self, field: str, message: str):
        super().__init__(message)
        self.field = field

    def to_dict(self) -> dict:
        return {"detail": self.message, "field": self.field}


class NotFoundError(CosmicError):
    status_code = 404

    def __init__(self, resource: str, resource_id: Optional[str] = None):
        super().__init__(f"{resource} not found")
        self.resource = resource
        self.resource_id = resource_id


class ForbiddenError(CosmicError):
    status_code = 403


class ConflictError(CosmicError):
    status_code = 409


class RateLimitError(CosmicError):
    """Submission cap exceeded. retry_after is in whole seconds."""

    status_code = 429

    def __init__(self, message: str, retry_after: int):
        super().__init__(message)
        self.retry_after = retry_after

    def to_dict(self) -> dict:
        return {"detail": self.message, "retry_after": self.retry_after}
