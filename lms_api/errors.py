"""
lms_api/errors.py

Errors raised while talking to the remote LMS API, plus the two local
gating errors the portal raises before any call is made.
"""
from __future__ import annotations

from typing import Any


class LMSAPIError(Exception):
    """A remote call failed. ``status_code`` is None when no response arrived."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        payload: dict[str, Any] | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.payload = payload or {}

    @property
    def http_status(self) -> int:
        if self.status_code and 400 <= self.status_code < 600:
            return self.status_code
        return 502


class AuthenticationRequired(LMSAPIError):
    def __init__(self, message: str = "Authentication required"):
        super().__init__(message, 401)


class PermissionDenied(LMSAPIError):
    def __init__(self, message: str = "You do not have access to this page", redirect: str | None = None):
        super().__init__(message, 403, {"redirect": redirect} if redirect else None)
        self.redirect = redirect
