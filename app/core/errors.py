"""
Application error taxonomy.

Services raise these; handlers registered in app.main turn them into
`{"error": ...}` JSON responses with the matching status code.
"""
from typing import Dict, Optional


class AppError(Exception):
    status_code = 500

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.field = field

    def to_dict(self) -> dict:
        body: dict = {"error": self.message}
        if self.field:
            body["field"] = self.field
        return body


class ValidationFailed(AppError):
    """Missing or malformed input."""
    status_code = 400

    def __init__(self, message: str, field: Optional[str] = None, fields: Optional[Dict[str, str]] = None):
        super().__init__(message, field)
        self.fields = fields

    def to_dict(self) -> dict:
        body = super().to_dict()
        if self.fields:
            body["fields"] = self.fields
        return body


class AuthenticationFailed(AppError):
    status_code = 401


class AccessDenied(AppError):
    status_code = 403

    def __init__(self, message: str = "Access denied"):
        super().__init__(message)


class NotFound(AppError):
    status_code = 404

    def __init__(self, resource: str):
        super().__init__(f"{resource} not found")
        self.resource = resource


class Conflict(AppError):
    status_code = 409


class DuplicateError(Conflict):
    """A unique key (email, department code, role name, ...) is already taken."""

    def __init__(self, field: str, message: Optional[str] = None):
        super().__init__(message or f"{field.replace('_', ' ').capitalize()} already exists", field)
