"""Exception taxonomy for the calendar integration.

Provider-facing failures are converted to one of these at the OAuth and
sync boundaries. ``StorageError`` is the only category allowed to reach
callers as fatal.
"""

from __future__ import annotations


class CalendarError(Exception):
    """Base class for calendar integration errors."""


class NotConfiguredError(CalendarError):
    """Raised when the provider client credentials are missing."""


class CalendarConnectionError(CalendarError):
    """Raised when no usable credential is available for a user."""


class NotConnectedError(CalendarConnectionError):
    """The user never authorized, or the credential cannot be revived."""


class RefreshFailedError(CalendarConnectionError):
    """Exchanging the refresh token for a new access token failed."""


class OAuthError(CalendarError):
    """Raised when an OAuth2 call to the provider fails."""


class ProviderRejectedError(OAuthError):
    """The provider answered the code exchange with an error."""


class InvalidStateError(OAuthError):
    """The OAuth ``state`` parameter is malformed, tampered, or expired."""


class CalendarAPIError(CalendarError):
    """Raised when a Calendar REST call fails."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class StorageError(CalendarError):
    """Raised when local persistence fails."""
