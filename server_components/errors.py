"""Client-facing error taxonomy.

Every subclass is rendered as ``{"error": true, "message": ...}`` with its
``status_code``. Webhook processing never raises these to the caller.
"""

from __future__ import annotations


class CardSyncError(Exception):
    """Base exception for errors returned to API clients."""

    status_code = 500

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class ParamError(CardSyncError):
    """Missing fields or a field that is not valid JSON."""

    status_code = 400

    def __init__(self, message: str = "Invalid parameters") -> None:
        super().__init__(message)


class AuthError(CardSyncError):
    """Card API key rejected."""

    status_code = 400


class NotFoundError(CardSyncError):
    """Unknown card on a direct lookup."""

    status_code = 404


class StorageError(CardSyncError):
    """State backend failure. The backend message is passed through."""

    status_code = 500


class AnalyticsError(CardSyncError):
    """At least one analytics event in a submission failed to record."""

    status_code = 500
