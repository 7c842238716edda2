"""
Error taxonomy shared by the stores, the services and the HTTP layer.

Stores translate driver failures (SQLAlchemy, redis-py, requests) into these
types so callers never look at a specific backend's error representation.
"""

from __future__ import annotations


class CrowError(Exception):
    """Base class for errors that map onto an HTTP response."""

    status_code: int = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(CrowError):
    """A required field is missing or malformed."""

    status_code = 400


class UnauthorizedError(CrowError):
    status_code = 401


class NotFoundError(CrowError):
    """The referenced crow, name or subscription does not exist."""

    status_code = 404


class ConflictError(CrowError):
    """Duplicate subscription or pending verification for an email.

    Reported as 400 because existing clients only branch on 400.
    """

    status_code = 400


class InvalidTokenError(CrowError):
    """Verification key is missing, unknown, expired or already consumed."""

    status_code = 400


class UpstreamError(CrowError):
    """The store or the mail provider failed.

    ``message`` is what the client sees; the cause stays in the server log.
    """

    status_code = 500
