"""Error hierarchy for the scraper, the local store and the HTTP collaborator.

Parsing never raises for malformed markup; only the store and the transport
surface failures through these classes.
"""

from __future__ import annotations

from typing import Any, Dict, Optional

import requests


class WorkTrackerError(Exception):
    """Base exception for all worktracker errors."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} (details: {self.details})"
        return self.message


class ReconciliationError(WorkTrackerError):
    """The local store rejected a reconciliation batch; nothing was committed."""

    pass


class ResponseError(WorkTrackerError):
    """The server answered with an error status or could not be reached."""

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        *,
        response: Optional[requests.Response] = None,
    ) -> None:
        super().__init__(message, details)
        self.response = response


class AuthenticationError(ResponseError):
    """The server redirected to its login page."""

    pass


class AccessDeniedError(ResponseError):
    """The server redirected to its access denied page."""

    pass
