"""
Error taxonomy shared by the review pipeline, the API-key gateway and the
account/team operations.

Every error carries the HTTP status the web layer answers with. Messages
are safe to show to end users.
"""

from typing import Dict, List, Optional


class CodeRoastError(Exception):
    """Base exception for all user-facing failures."""

    http_status = 500

    def __init__(self, message: str, upgrade_required: bool = False):
        super().__init__(message)
        self.message = message
        self.upgrade_required = upgrade_required


class Unauthenticated(CodeRoastError):
    """No caller identity, or the presented credential is unknown."""

    http_status = 401


class ValidationError(CodeRoastError):
    """Input failed validation. Carries messages keyed by field name."""

    http_status = 400

    def __init__(self, field_errors: Dict[str, List[str]]):
        self.field_errors = field_errors
        first = next(iter(field_errors.values()), ["Invalid input"])
        super().__init__(first[0] if first else "Invalid input")


class QuotaExceeded(CodeRoastError):
    """Free-tier monthly review limit reached."""

    http_status = 402

    def __init__(self, message: str):
        super().__init__(message, upgrade_required=True)


class Forbidden(CodeRoastError):
    """Caller is known but not allowed to do this."""

    http_status = 403


class NotFound(CodeRoastError):
    """Requested record does not exist or is not owned by the caller."""

    http_status = 404


class TransportError(CodeRoastError):
    """The text-generation service answered with a non-success status or
    could not be reached. `status_code` is None when no response arrived."""

    http_status = 502

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class PersistenceError(CodeRoastError):
    """A store write failed."""

    http_status = 500
