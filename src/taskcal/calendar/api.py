"""Google Calendar REST calls.

Plain async functions over an immutable :class:`CalendarTarget`; no client
object carries tokens between calls, so one process can serve many users
concurrently. Every failure is raised as :class:`CalendarAPIError`.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any
from urllib.parse import quote

import httpx

from taskcal.calendar.errors import CalendarAPIError
from taskcal.calendar.models import CalendarEventDescriptor
from taskcal.logging import get_logger

log = get_logger("taskcal.calendar.api")

CALENDAR_API_BASE = "https://www.googleapis.com/calendar/v3"

# Status codes meaning the event no longer exists remotely
_GONE_STATUSES = frozenset({404, 410})


@dataclass(frozen=True)
class CalendarTarget:
    """Everything one API call needs: whose token, which calendar, how long to wait."""

    access_token: str
    calendar_id: str = "primary"
    timeout: float = 30.0

    def __post_init__(self) -> None:
        if not self.access_token:
            raise ValueError("access_token is required")

    def __repr__(self) -> str:
        return f"CalendarTarget(calendar_id={self.calendar_id!r}, timeout={self.timeout!r})"

    def headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.access_token}"}

    def events_url(self, event_id: str | None = None) -> str:
        url = f"{CALENDAR_API_BASE}/calendars/{quote(self.calendar_id, safe='')}/events"
        if event_id is not None:
            url = f"{url}/{quote(event_id, safe='')}"
        return url


@dataclass
class CalendarEvent:
    """A calendar event as returned by a listing."""

    event_id: str = ""
    summary: str = ""
    description: str = ""
    start: datetime | None = None
    end: datetime | None = None
    all_day: bool = False
    status: str = "confirmed"
    html_link: str = ""

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "event_id": self.event_id,
            "summary": self.summary,
            "description": self.description,
            "start": self.start.isoformat() if self.start else None,
            "end": self.end.isoformat() if self.end else None,
            "all_day": self.all_day,
            "status": self.status,
            "html_link": self.html_link,
        }


# ------------------------------------------------------------------
# Operations
# ------------------------------------------------------------------


async def insert_event(target: CalendarTarget, descriptor: CalendarEventDescriptor) -> str:
    """Create an event and return the provider-assigned event ID."""
    response = await _request(
        target, "POST", target.events_url(), json_data=descriptor.to_event_body()
    )
    data = _json_object(response)
    event_id = data.get("id")
    if not event_id:
        raise CalendarAPIError("Calendar API returned an event without an id")
    log.info("calendar_event_created", event_id=event_id, calendar=target.calendar_id)
    return str(event_id)


async def update_event(
    target: CalendarTarget, event_id: str, descriptor: CalendarEventDescriptor
) -> None:
    """Overwrite the task-derived fields of an existing event.

    Raises:
        CalendarAPIError: If the provider does not accept the update.
    """
    await _request(
        target, "PATCH", target.events_url(event_id), json_data=descriptor.to_event_body()
    )
    log.info("calendar_event_updated", event_id=event_id, calendar=target.calendar_id)


async def delete_event(target: CalendarTarget, event_id: str) -> None:
    """Delete an event. An event that is already gone counts as deleted.

    Raises:
        CalendarAPIError: On any other failure.
    """
    try:
        await _request(target, "DELETE", target.events_url(event_id))
    except CalendarAPIError as exc:
        if exc.status_code not in _GONE_STATUSES:
            raise
        log.info("calendar_event_already_gone", event_id=event_id, status=exc.status_code)
        return
    log.info("calendar_event_deleted", event_id=event_id, calendar=target.calendar_id)


async def list_events(
    target: CalendarTarget,
    *,
    time_min: datetime | None = None,
    time_max: datetime | None = None,
    max_results: int = 5,
    single_events: bool = True,
) -> list[CalendarEvent]:
    """List events, ordered by start time when recurring events are expanded."""
    params: dict[str, Any] = {
        "maxResults": max_results,
        "singleEvents": str(single_events).lower(),
        "orderBy": "startTime" if single_events else "updated",
    }
    if time_min:
        params["timeMin"] = _rfc3339(time_min)
    if time_max:
        params["timeMax"] = _rfc3339(time_max)

    response = await _request(target, "GET", target.events_url(), params=params)
    items = _json_object(response).get("items", [])
    events = [_parse_event(item) for item in items]
    log.debug("calendar_events_listed", calendar=target.calendar_id, count=len(events))
    return events


# ------------------------------------------------------------------
# HTTP helpers
# ------------------------------------------------------------------


async def _request(
    target: CalendarTarget,
    method: str,
    url: str,
    *,
    params: dict[str, Any] | None = None,
    json_data: dict[str, Any] | None = None,
) -> httpx.Response:
    async with httpx.AsyncClient(timeout=target.timeout) as client:
        try:
            response = await client.request(
                method, url, headers=target.headers(), params=params, json=json_data
            )
            response.raise_for_status()
            return response
        except httpx.HTTPStatusError as exc:
            raise CalendarAPIError(
                f"Calendar API error {exc.response.status_code}: {exc.response.text}",
                status_code=exc.response.status_code,
            ) from exc
        except httpx.RequestError as exc:
            raise CalendarAPIError(f"Calendar API request failed: {exc}") from exc


def _json_object(response: httpx.Response) -> dict[str, Any]:
    try:
        data = response.json()
    except ValueError as exc:
        raise CalendarAPIError(f"Calendar API returned invalid JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise CalendarAPIError("Calendar API returned an unexpected payload")
    return data


# ------------------------------------------------------------------
# Parsing helpers
# ------------------------------------------------------------------


def _rfc3339(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.isoformat()


def _parse_event(data: dict[str, Any]) -> CalendarEvent:
    """Parse a Google Calendar API event resource."""
    start_data = data.get("start", {})
    return CalendarEvent(
        event_id=data.get("id", ""),
        summary=data.get("summary", ""),
        description=data.get("description", ""),
        start=_parse_datetime(start_data),
        end=_parse_datetime(data.get("end", {})),
        all_day="date" in start_data and "dateTime" not in start_data,
        status=data.get("status", "confirmed"),
        html_link=data.get("htmlLink", ""),
    )


def _parse_datetime(dt_data: dict[str, str]) -> datetime | None:
    """Parse a ``{"dateTime": ...}`` or ``{"date": ...}`` block."""
    dt_str = dt_data.get("dateTime") or dt_data.get("date")
    if not dt_str:
        return None
    try:
        if "T" in dt_str:
            return datetime.fromisoformat(dt_str.replace("Z", "+00:00"))
        # All-day events
        return datetime.strptime(dt_str, "%Y-%m-%d").replace(tzinfo=UTC)
    except (ValueError, TypeError):
        return None
