"""
Domain errors raised by service functions.

Services detect rule violations before any write and raise one of these; the
app-level error handler renders them as JSON with the matching status code.
"""
from __future__ import annotations

from typing import Any


class ServiceError(Exception):
    status_code = 500

    def __init__(self, message: str, *, details: list[dict[str, Any]] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or []

    def to_dict(self) -> dict[str, Any]:
        body: dict[str, Any] = {"error": self.message}
        if self.details:
            body["details"] = self.details
        return body


class ValidationError(ServiceError):
    status_code = 400

    @classmethod
    def from_issues(cls, issues: list[dict[str, Any]], message: str = "Validation failed") -> "ValidationError":
        return cls(message, details=issues)


class AuthenticationError(ServiceError):
    status_code = 401


class AuthorizationError(ServiceError):
    status_code = 403


class NotFoundError(ServiceError):
    status_code = 404


class ConflictError(ServiceError):
    status_code = 409


def issue(path: str, message: str) -> dict[str, Any]:
    return {"path": path, "message": message}
