"""
Spark — Domain error taxonomy.

Services raise these; the HTTP layer maps them to status codes in
``app.main`` and the realtime gateway turns them into negative acks.
"""

from __future__ import annotations


class SparkError(Exception):
    """Base class for every user-surfaced domain failure."""

    kind: str = "error"
    status_code: int = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class InvalidArgumentError(SparkError, ValueError):
    kind = "invalid_argument"
    status_code = 400


class NotFoundError(SparkError, LookupError):
    kind = "not_found"
    status_code = 404


class ConflictError(SparkError):
    kind = "conflict"
    status_code = 409


class ForbiddenError(SparkError):
    kind = "forbidden"
    status_code = 403


class UnauthorizedError(SparkError):
    kind = "unauthorized"
    status_code = 401
