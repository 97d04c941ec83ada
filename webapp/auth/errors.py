"""Workflow error taxonomy.

Routers turn these into ``{"status": "error", "message": ..., "code": ...}``
responses with the matching HTTP status.
"""
from __future__ import annotations

from typing import Any, Dict, Optional


class WorkflowError(Exception):
    status_code = 500
    code = "internal_error"

    def __init__(self, message: str, code: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        if code:
            self.code = code

    def to_dict(self) -> Dict[str, Any]:
        return {"status": "error", "message": self.message, "code": self.code}


class NotFound(WorkflowError):
    status_code = 404
    code = "not_found"


class Forbidden(WorkflowError):
    status_code = 403
    code = "forbidden"


class Conflict(WorkflowError):
    status_code = 400
    code = "conflict"


class InvalidInvitation(WorkflowError):
    status_code = 404
    code = "invalid_invitation"

    def __init__(self, message: str = "Invalid or expired invitation") -> None:
        super().__init__(message)


class DownstreamFailure(WorkflowError):
    status_code = 500
    code = "downstream_failure"
