"""Calendar synchronization: OAuth2 token lifecycle and task/event sync."""

from taskcal.calendar.errors import (
    CalendarAPIError,
    CalendarConnectionError,
    CalendarError,
    InvalidStateError,
    NotConfiguredError,
    NotConnectedError,
    OAuthError,
    ProviderRejectedError,
    RefreshFailedError,
    StorageError,
)
from taskcal.calendar.models import (
    CalendarEventDescriptor,
    Credential,
    SyncOutcome,
    SyncResult,
    TaskSnapshot,
)

__all__ = [
    "CalendarAPIError",
    "CalendarConnectionError",
    "CalendarError",
    "CalendarEventDescriptor",
    "Credential",
    "InvalidStateError",
    "NotConfiguredError",
    "NotConnectedError",
    "OAuthError",
    "ProviderRejectedError",
    "RefreshFailedError",
    "StorageError",
    "SyncOutcome",
    "SyncResult",
    "TaskSnapshot",
]
