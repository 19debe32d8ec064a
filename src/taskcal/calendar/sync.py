"""Best-effort mirroring of tasks onto calendar events.

Each operation maps one task lifecycle event onto at most one remote call
and returns a :class:`SyncResult` carrying the task's updated sync link.
Provider trouble is reported, never raised: the task mutation that
triggered the sync goes ahead whatever the calendar says. Only
``StorageError`` escapes.

Link transitions::

    Unsynced --create/update/manual ok--> Synced(id)
    Synced(id) --update/manual ok--> Synced(id)
    Synced(id) --delete/remove ok--> Unsynced
    any --failure--> unchanged
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from taskcal.calendar import api
from taskcal.calendar.api import CalendarEvent, CalendarTarget
from taskcal.calendar.errors import (
    CalendarAPIError,
    CalendarConnectionError,
    NotConnectedError,
)
from taskcal.calendar.models import (
    CalendarEventDescriptor,
    SyncAction,
    SyncOutcome,
    SyncResult,
    TaskSnapshot,
)
from taskcal.logging import get_logger

if TYPE_CHECKING:
    from taskcal.calendar.flow import OAuthFlowManager
    from taskcal.calendar.refresher import TokenRefresher

log = get_logger("taskcal.calendar.sync")

UPCOMING_EVENTS_LIMIT = 5

_RemoteCall = Callable[[CalendarTarget, TaskSnapshot], Awaitable[SyncResult]]


class CalendarSyncEngine:
    """Keeps one task's calendar event consistent with the task."""

    def __init__(self, flow: OAuthFlowManager, refresher: TokenRefresher) -> None:
        self._flow = flow
        self._refresher = refresher

    # ------------------------------------------------------------------
    # Task lifecycle
    # ------------------------------------------------------------------

    async def on_create(self, user_id: int, task: TaskSnapshot) -> SyncResult:
        """Create the event for a newly created task."""
        return await self._guarded("create", user_id, task, self._create)

    async def on_update(self, user_id: int, task: TaskSnapshot) -> SyncResult:
        """Push task changes; an unsynced task gets a fresh event."""
        return await self._guarded("update", user_id, task, self._upsert)

    async def on_delete(self, user_id: int, task: TaskSnapshot) -> SyncResult:
        """Remove the event of a task being deleted."""
        return await self._unlink("delete", user_id, task)

    async def manual_sync(self, user_id: int, task: TaskSnapshot) -> SyncResult:
        """User-triggered sync, safe to repeat at any time."""
        return await self._guarded("manual_sync", user_id, task, self._upsert)

    async def remove_link(self, user_id: int, task: TaskSnapshot) -> SyncResult:
        """Remove the event but keep the task."""
        return await self._unlink("remove_link", user_id, task)

    # ------------------------------------------------------------------
    # Read side
    # ------------------------------------------------------------------

    async def upcoming_events(
        self, user_id: int, *, limit: int = UPCOMING_EVENTS_LIMIT
    ) -> list[CalendarEvent] | None:
        """Next events from now, or None when the calendar is unavailable."""
        if not self._flow.is_configured():
            return None
        try:
            target = await self._target(user_id)
            return await api.list_events(target, time_min=datetime.now(UTC), max_results=limit)
        except (CalendarConnectionError, CalendarAPIError) as exc:
            log.warning("calendar_list_failed", user_id=user_id, error=str(exc))
            return None

    # ------------------------------------------------------------------
    # Remote operations
    # ------------------------------------------------------------------

    async def _create(self, target: CalendarTarget, task: TaskSnapshot) -> SyncResult:
        event_id = await api.insert_event(target, CalendarEventDescriptor.from_task(task))
        return SyncResult(SyncOutcome.SYNCED, event_id, SyncAction.CREATED)

    async def _upsert(self, target: CalendarTarget, task: TaskSnapshot) -> SyncResult:
        if not task.remote_event_id:
            return await self._create(target, task)
        descriptor = CalendarEventDescriptor.from_task(task)
        await api.update_event(target, task.remote_event_id, descriptor)
        return SyncResult(SyncOutcome.SYNCED, task.remote_event_id, SyncAction.UPDATED)

    async def _delete(self, target: CalendarTarget, task: TaskSnapshot) -> SyncResult:
        event_id = task.remote_event_id
        if not event_id:
            return SyncResult(SyncOutcome.SYNCED, None, SyncAction.NOOP)
        await api.delete_event(target, event_id)
        return SyncResult(SyncOutcome.SYNCED, None, SyncAction.DELETED)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _unlink(self, operation: str, user_id: int, task: TaskSnapshot) -> SyncResult:
        if self._flow.is_configured() and not task.is_synced:
            # Nothing to delete remotely
            return SyncResult(SyncOutcome.SYNCED, None, SyncAction.NOOP)
        return await self._guarded(operation, user_id, task, self._delete)

    async def _guarded(
        self,
        operation: str,
        user_id: int,
        task: TaskSnapshot,
        remote_call: _RemoteCall,
    ) -> SyncResult:
        if not self._flow.is_configured():
            log.info("calendar_sync_skipped", reason="not_configured", task_id=task.task_id)
            return SyncResult(SyncOutcome.NOT_CONFIGURED, task.remote_event_id)

        try:
            target = await self._target(user_id)
        except NotConnectedError as exc:
            log.info(
                "calendar_sync_skipped",
                reason="not_connected",
                user_id=user_id,
                task_id=task.task_id,
            )
            return SyncResult(SyncOutcome.NOT_CONNECTED, task.remote_event_id, error=str(exc))
        except CalendarConnectionError as exc:
            log.warning(
                "calendar_sync_failed",
                operation=operation,
                user_id=user_id,
                task_id=task.task_id,
                error=str(exc),
            )
            return _failed(task, str(exc))

        try:
            result = await remote_call(target, task)
        except CalendarAPIError as exc:
            log.warning(
                "calendar_sync_failed",
                operation=operation,
                user_id=user_id,
                task_id=task.task_id,
                status=exc.status_code,
                error=str(exc),
            )
            return _failed(task, str(exc))

        log.info(
            "calendar_sync_completed",
            operation=operation,
            user_id=user_id,
            task_id=task.task_id,
            outcome=result.outcome.value,
            action=result.action.value if result.action else None,
        )
        return result

    async def _target(self, user_id: int) -> CalendarTarget:
        credential = await self._refresher.get_valid_credential(user_id)
        return CalendarTarget(
            access_token=credential.access_token,
            calendar_id=self._flow.calendar_id,
            timeout=self._flow.timeout,
        )


def _failed(task: TaskSnapshot, error: str) -> SyncResult:
    return SyncResult(SyncOutcome.FAILED, task.remote_event_id, error=error)
