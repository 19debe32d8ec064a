"""Data models for calendar synchronization.

Credentials, the task snapshot consumed from the task collaborator, the
event payload derived from it, and the tri-state sync outcome.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, replace
from datetime import UTC, datetime, timedelta
from enum import StrEnum
from typing import Any

# Display defaults for optional task references
DEFAULT_DESCRIPTION = "No description"
DEFAULT_CATEGORY = "Uncategorized"
DEFAULT_ASSIGNEE = "Unassigned User"

# Events mirror a task deadline as a fixed one-hour slot
EVENT_DURATION = timedelta(hours=1)

COMPLETED_STATUS = "Completed"

# Upper bound on a provider-reported token lifetime, in seconds
MAX_TOKEN_LIFETIME = 366 * 24 * 3600


def _as_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes, convert aware ones."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def _lifetime_seconds(expires_in: Any) -> float:
    """Token lifetime in seconds; 0 for anything that is not a finite number."""
    try:
        seconds = float(expires_in)
    except (TypeError, ValueError):
        return 0.0
    if not math.isfinite(seconds) or seconds < 0:
        return 0.0
    return min(seconds, MAX_TOKEN_LIFETIME)


# ------------------------------------------------------------------
# Credentials
# ------------------------------------------------------------------


@dataclass(frozen=True)
class Credential:
    """A user's OAuth2 credential bundle."""

    access_token: str
    refresh_token: str | None = None
    expires_at: datetime | None = None
    scope: str = ""
    token_type: str = "Bearer"

    def __repr__(self) -> str:
        return (
            f"Credential(access_token=<REDACTED>, "
            f"refresh_token={'<REDACTED>' if self.refresh_token else None}, "
            f"expires_at={self.expires_at!r}, scope={self.scope!r})"
        )

    __str__ = __repr__

    @classmethod
    def from_token_response(
        cls, data: dict[str, Any], *, now: datetime | None = None
    ) -> Credential:
        """Build a credential from a provider token endpoint response.

        An ``expires_in`` that is not a finite number yields a credential
        that is already expired, so the next use refreshes it.
        """
        issued = now or datetime.now(UTC)
        expires_at: datetime | None = None
        expires_in = data.get("expires_in")
        if expires_in is not None:
            expires_at = issued + timedelta(seconds=_lifetime_seconds(expires_in))
        return cls(
            access_token=data.get("access_token", "") or "",
            refresh_token=data.get("refresh_token") or None,
            expires_at=expires_at,
            scope=data.get("scope", "") or "",
            token_type=data.get("token_type", "Bearer") or "Bearer",
        )

    @property
    def is_refreshable(self) -> bool:
        """Whether the credential can be revived after expiry."""
        return bool(self.refresh_token)

    @property
    def is_empty(self) -> bool:
        """A credential with neither token is the same as disconnected."""
        return not self.access_token and not self.refresh_token

    def is_expired(self, *, now: datetime | None = None, leeway: float = 0) -> bool:
        """Check whether the access token is expired or about to expire.

        Args:
            now: Reference time (defaults to the current UTC time).
            leeway: Seconds before ``expires_at`` at which the token
                already counts as expired.
        """
        if not self.access_token:
            return True
        if self.expires_at is None:
            return False
        current = _as_utc(now or datetime.now(UTC))
        return current + timedelta(seconds=leeway) >= _as_utc(self.expires_at)

    def with_refresh_token_from(self, previous: Credential | str | None) -> Credential:
        """Carry a previous refresh token forward if this one lacks it."""
        if self.refresh_token:
            return self
        token = previous.refresh_token if isinstance(previous, Credential) else previous
        if not token:
            return self
        return replace(self, refresh_token=token)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "access_token": self.access_token,
            "refresh_token": self.refresh_token,
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
            "scope": self.scope,
            "token_type": self.token_type,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Credential:
        """Create from dictionary."""
        expires_at = data.get("expires_at")
        if isinstance(expires_at, str):
            expires_at = datetime.fromisoformat(expires_at)
        return cls(
            access_token=data.get("access_token", "") or "",
            refresh_token=data.get("refresh_token") or None,
            expires_at=expires_at,
            scope=data.get("scope", "") or "",
            token_type=data.get("token_type", "Bearer") or "Bearer",
        )


# ------------------------------------------------------------------
# Task side
# ------------------------------------------------------------------


@dataclass(frozen=True)
class TaskSnapshot:
    """The fields of a task the sync engine reads.

    ``remote_event_id`` is the task's sync link: ``None`` while unsynced,
    the provider's event ID once an event exists.
    """

    task_id: int
    task_name: str
    deadline: datetime
    status: str
    description: str | None = None
    category_name: str | None = None
    assignee_name: str | None = None
    remote_event_id: str | None = None

    @property
    def is_synced(self) -> bool:
        return bool(self.remote_event_id)

    def with_remote_event_id(self, remote_event_id: str | None) -> TaskSnapshot:
        """Return a copy carrying a new sync link."""
        return replace(self, remote_event_id=remote_event_id)

    def is_overdue(self, now: datetime | None = None) -> bool:
        """Deadline has passed and the task is not completed."""
        current = _as_utc(now or datetime.now(UTC))
        return _as_utc(self.deadline) < current and self.status != COMPLETED_STATUS


@dataclass(frozen=True)
class CalendarEventDescriptor:
    """Event payload derived from a task for a create or update call."""

    title: str
    description: str
    start: datetime
    end: datetime

    @classmethod
    def from_task(cls, task: TaskSnapshot) -> CalendarEventDescriptor:
        """Derive the event payload, resolving missing references to defaults."""
        lines = [
            f"Task: {task.task_name}",
            f"Description: {task.description or DEFAULT_DESCRIPTION}",
            f"Status: {task.status}",
            f"Category: {task.category_name or DEFAULT_CATEGORY}",
            f"Assigned to: {task.assignee_name or DEFAULT_ASSIGNEE}",
        ]
        start = _as_utc(task.deadline)
        return cls(
            title=task.task_name,
            description="\n".join(lines),
            start=start,
            end=start + EVENT_DURATION,
        )

    def to_event_body(self) -> dict[str, Any]:
        """Render as a Google Calendar event resource."""
        return {
            "summary": self.title,
            "description": self.description,
            "start": {"dateTime": self.start.isoformat(), "timeZone": "UTC"},
            "end": {"dateTime": self.end.isoformat(), "timeZone": "UTC"},
        }


# ------------------------------------------------------------------
# Outcomes
# ------------------------------------------------------------------


class SyncOutcome(StrEnum):
    """Result category of a sync operation."""

    SYNCED = "synced"
    NOT_CONFIGURED = "not_configured"
    NOT_CONNECTED = "not_connected"
    FAILED = "failed"


class SyncAction(StrEnum):
    """What a successful sync did remotely."""

    CREATED = "created"
    UPDATED = "updated"
    DELETED = "deleted"
    NOOP = "noop"


@dataclass(frozen=True)
class SyncResult:
    """Outcome of a sync operation plus the task's updated sync link."""

    outcome: SyncOutcome
    remote_event_id: str | None
    action: SyncAction | None = None
    error: str = ""

    @property
    def ok(self) -> bool:
        return self.outcome is SyncOutcome.SYNCED

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "outcome": self.outcome.value,
            "remote_event_id": self.remote_event_id,
            "action": self.action.value if self.action else None,
            "error": self.error,
        }
