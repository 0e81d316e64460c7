# backoffice/core/errors.py
from __future__ import annotations

from typing import Any, Optional


class BackofficeError(RuntimeError):
    """
    Base for every business failure raised by the services.
    Routes / exception handlers turn it into the error envelope:
    {"success": false, "error": {"code", "message", "details"}}
    """
    code = "ERROR"
    status_code = 400

    def __init__(self, message: str, *, details: Optional[Any] = None):
        super().__init__(message)
        self.message = message
        self.details = details


class ValidationError(BackofficeError):
    code = "VALIDATION_ERROR"
    status_code = 400


class NotFoundError(BackofficeError):
    code = "NOT_FOUND"
    status_code = 404


class ConflictError(BackofficeError):
    code = "CONFLICT"
    status_code = 409
