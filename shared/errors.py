"""
Error types raised by the hub services.

Every error carries the HTTP status the API answers with; the message is the
text shown to the user.
"""

from typing import Optional


class HubError(Exception):
    status_code = 400

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code

    def to_dict(self):
        return {"error": self.message}


class ValidationError(HubError):
    status_code = 400


class AuthError(HubError):
    status_code = 401


class PermissionDeniedError(HubError):
    status_code = 403


class NotFoundError(HubError):
    status_code = 404


class StorageError(HubError):
    status_code = 500
