from __future__ import annotations

from typing import Any


class TicketingError(Exception):
    status_code = 500

    def __init__(self, message: str, details: Any = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details

    def __str__(self) -> str:
        return self.message


class ValidationError(TicketingError, ValueError):
    """Malformed or missing input, rejected before any upstream call."""

    status_code = 400


class NotFoundError(TicketingError, KeyError):
    status_code = 404


class UpstreamError(TicketingError, RuntimeError):
    """The reservation API answered with an error or a non-success payload."""

    status_code = 502

    def __init__(self, message: str, upstream_status: int | None = None, details: Any = None) -> None:
        super().__init__(message, details)
        self.upstream_status = upstream_status


class CacheIntegrityError(TicketingError, ValueError):
    """Artifact bytes failed the structural check; callers treat this as a miss."""

    status_code = 500


class RenderFailure(TicketingError, RuntimeError):
    status_code = 502
