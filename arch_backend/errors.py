"""
Domain errors raised by services and translated to HTTP responses by the app.
"""

from __future__ import annotations


class ArchError(Exception):
    """Base class for errors that map onto a client-facing status code."""

    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationFailed(ArchError):
    status_code = 400


class StateConflict(ArchError):
    """The request is well formed but the resource is in the wrong state."""

    status_code = 400


class Forbidden(ArchError):
    status_code = 403


class NotFound(ArchError):
    status_code = 404
