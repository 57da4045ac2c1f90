from __future__ import annotations

from typing import Any, Dict, Optional


class ServiceError(Exception):
    """A failure the API reports to the caller rather than a crash.

    Subclasses pin the HTTP status and the stable ``error_code`` written
    into the error envelope. ``message`` is shown to the client verbatim,
    so keep it free of internal detail; put identifiers in ``detail``.
    """

    status_code = 400
    error_code = "validation_error"

    def __init__(self, message: str, *, detail: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.detail = detail or {}


class ValidationError(ServiceError):
    """Input outside the accepted ranges (mood, tags, titles, XP)."""


class BadRequestError(ValidationError):
    """Valid input the current state refuses, e.g. a repeated completion."""


class AuthenticationError(ServiceError):
    # Login, refresh and bearer failures all collapse into this one
    status_code = 401
    error_code = "unauthorized"


class ForbiddenError(ServiceError):
    status_code = 403
    error_code = "forbidden"


class NotFoundError(ServiceError):
    status_code = 404
    error_code = "not_found"


class ConflictError(ServiceError):
    status_code = 409
    error_code = "conflict"
