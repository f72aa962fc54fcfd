"""Domain errors raised by the service layer.

Routers never build HTTP responses for these by hand: ``main.py`` registers a
single handler that maps each class to its status code and serializes
``code``/``details`` next to the message.
"""

from typing import Any, Dict, Optional


class RegistrarError(Exception):
    """Base class for every expected failure of a registrar operation."""

    status_code = 400
    code = "registrar_error"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None, code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}
        if code is not None:
            self.code = code


class ValidationFailed(RegistrarError):
    """Input has the wrong shape or range; rejected before any write."""

    status_code = 422
    code = "validation_failed"


class NotFound(RegistrarError):
    status_code = 404
    code = "not_found"


class Forbidden(RegistrarError):
    status_code = 403
    code = "forbidden"


class Conflict(RegistrarError):
    """The request collides with the current state of the catalog."""

    status_code = 409
    code = "conflict"


class DuplicateCode(Conflict):
    code = "duplicate_code"


class DuplicateEnrollment(Conflict):
    code = "duplicate_enrollment"


class CapacityExceeded(Conflict):
    code = "capacity_exceeded"


class SectionNotOpen(Conflict):
    code = "section_not_open"


class InUse(Conflict):
    """Entity is still referenced and cannot be removed."""

    code = "in_use"
