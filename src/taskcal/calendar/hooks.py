"""Glue between task mutations and the sync engine.

The surrounding application calls one hook per task mutation after it has
committed the task itself. The hook runs the sync, stores a changed sync
link, and returns an advisory message to append to the mutation's result.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING

from taskcal.calendar.flow import OAuthFlowManager
from taskcal.calendar.models import SyncAction, SyncOutcome, SyncResult, TaskSnapshot
from taskcal.calendar.refresher import TokenRefresher
from taskcal.calendar.sync import CalendarSyncEngine
from taskcal.calendar.task_links import TaskLinkStorage
from taskcal.calendar.token_store import TokenStore
from taskcal.config import get_settings
from taskcal.logging import get_logger

if TYPE_CHECKING:
    import asyncpg

    from taskcal.calendar.task_links import TaskLinkWriter
    from taskcal.config import Settings

log = get_logger("taskcal.calendar.hooks")


class TaskOperation(StrEnum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    SYNC = "sync"
    UNSYNC = "unsync"


_CONNECT_HINT = " Connect to Google Calendar to enable automatic sync."
_CONNECT_FIRST = "Please connect to Google Calendar first."
_NOT_CONFIGURED = "Google Calendar is not configured. Please contact administrator."

_MESSAGES: dict[tuple[TaskOperation, SyncOutcome], str] = {
    (TaskOperation.CREATE, SyncOutcome.SYNCED): (
        "Task added and synced with Google Calendar successfully!"
    ),
    (TaskOperation.CREATE, SyncOutcome.FAILED): (
        "Task added successfully but failed to sync with Google Calendar."
    ),
    (TaskOperation.CREATE, SyncOutcome.NOT_CONFIGURED): "Task added successfully!",
    (TaskOperation.CREATE, SyncOutcome.NOT_CONNECTED): "Task added successfully!" + _CONNECT_HINT,
    (TaskOperation.UPDATE, SyncOutcome.SYNCED): (
        "Task updated and Google Calendar event synced successfully!"
    ),
    (TaskOperation.UPDATE, SyncOutcome.FAILED): (
        "Task updated successfully but failed to sync with Google Calendar."
    ),
    (TaskOperation.UPDATE, SyncOutcome.NOT_CONFIGURED): "Task updated successfully!",
    (TaskOperation.UPDATE, SyncOutcome.NOT_CONNECTED): (
        "Task updated successfully!" + _CONNECT_HINT
    ),
    (TaskOperation.DELETE, SyncOutcome.SYNCED): (
        "Task and Google Calendar event deleted successfully!"
    ),
    (TaskOperation.DELETE, SyncOutcome.FAILED): (
        "Task deleted successfully but failed to delete Google Calendar event."
    ),
    (TaskOperation.DELETE, SyncOutcome.NOT_CONFIGURED): "Task deleted successfully!",
    (TaskOperation.DELETE, SyncOutcome.NOT_CONNECTED): "Task deleted successfully!",
    (TaskOperation.SYNC, SyncOutcome.SYNCED): (
        "Task successfully synced with Google Calendar! Event {action}."
    ),
    (TaskOperation.SYNC, SyncOutcome.FAILED): "Failed to sync task with Google Calendar.",
    (TaskOperation.SYNC, SyncOutcome.NOT_CONFIGURED): _NOT_CONFIGURED,
    (TaskOperation.SYNC, SyncOutcome.NOT_CONNECTED): _CONNECT_FIRST,
    (TaskOperation.UNSYNC, SyncOutcome.SYNCED): (
        "Task removed from Google Calendar successfully!"
    ),
    (TaskOperation.UNSYNC, SyncOutcome.FAILED): "Failed to remove task from Google Calendar.",
    (TaskOperation.UNSYNC, SyncOutcome.NOT_CONFIGURED): _NOT_CONFIGURED,
    (TaskOperation.UNSYNC, SyncOutcome.NOT_CONNECTED): _CONNECT_FIRST,
}


def advisory_message(operation: TaskOperation, result: SyncResult) -> str:
    """User-facing text describing how the calendar side of a mutation went."""
    if result.action is SyncAction.NOOP:
        if operation is TaskOperation.UNSYNC:
            return "Task is not synced with Google Calendar."
        if operation is TaskOperation.DELETE:
            return "Task deleted successfully!"
    if (
        operation is TaskOperation.UPDATE
        and result.ok
        and result.action is SyncAction.CREATED
    ):
        return "Task updated and synced with Google Calendar successfully!"
    template = _MESSAGES[(operation, result.outcome)]
    return template.format(action=result.action.value if result.action else "synced")


@dataclass(frozen=True)
class HookResult:
    """Sync result, the task as it now stands, and the advisory message."""

    result: SyncResult
    task: TaskSnapshot
    message: str

    @property
    def ok(self) -> bool:
        return self.result.ok


class TaskCalendarHooks:
    """Runs the sync engine for task mutations and persists link changes."""

    def __init__(self, engine: CalendarSyncEngine, link_writer: TaskLinkWriter) -> None:
        self._engine = engine
        self._links = link_writer

    async def task_created(self, user_id: int, task: TaskSnapshot) -> HookResult:
        result = await self._engine.on_create(user_id, task)
        return await self._finish(TaskOperation.CREATE, task, result)

    async def task_updated(self, user_id: int, task: TaskSnapshot) -> HookResult:
        result = await self._engine.on_update(user_id, task)
        return await self._finish(TaskOperation.UPDATE, task, result)

    async def task_deleted(self, user_id: int, task: TaskSnapshot) -> HookResult:
        """Delete the mirrored event. The task row is removed by the caller regardless."""
        result = await self._engine.on_delete(user_id, task)
        return await self._finish(TaskOperation.DELETE, task, result, persist=False)

    async def sync_task(self, user_id: int, task: TaskSnapshot) -> HookResult:
        result = await self._engine.manual_sync(user_id, task)
        return await self._finish(TaskOperation.SYNC, task, result)

    async def unsync_task(self, user_id: int, task: TaskSnapshot) -> HookResult:
        result = await self._engine.remove_link(user_id, task)
        return await self._finish(TaskOperation.UNSYNC, task, result)

    async def _finish(
        self,
        operation: TaskOperation,
        task: TaskSnapshot,
        result: SyncResult,
        *,
        persist: bool = True,
    ) -> HookResult:
        if persist and result.remote_event_id != task.remote_event_id:
            await self._links.set_remote_event_id(task.task_id, result.remote_event_id)
            task = task.with_remote_event_id(result.remote_event_id)
        message = advisory_message(operation, result)
        log.debug(
            "task_hook_finished",
            operation=operation.value,
            task_id=task.task_id,
            outcome=result.outcome.value,
        )
        return HookResult(result=result, task=task, message=message)


async def create_task_hooks(
    pool: asyncpg.Pool, settings: Settings | None = None
) -> TaskCalendarHooks:
    """Wire hooks for a host application sharing ``pool`` with this service."""
    settings = settings or get_settings()
    token_store = TokenStore()
    await token_store.initialize(pool)
    flow = OAuthFlowManager.from_settings(settings, token_store)
    refresher = TokenRefresher(token_store, flow, leeway=settings.token_expiry_leeway)
    return TaskCalendarHooks(
        CalendarSyncEngine(flow, refresher),
        TaskLinkStorage(pool, table=settings.tasks_table),
    )
