"""Write-back of a task's sync link.

The task row belongs to the surrounding application; the only column
this service ever writes is the remote event ID.
"""

from __future__ import annotations

import re
from typing import TYPE_CHECKING, Protocol

from taskcal.calendar.errors import StorageError
from taskcal.calendar.token_store import STORAGE_ERRORS
from taskcal.logging import get_logger

if TYPE_CHECKING:
    import asyncpg

log = get_logger("taskcal.calendar.task_links")

LINK_COLUMN = "google_calendar_event_id"

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*(\.[A-Za-z_][A-Za-z0-9_]*)?$")


class TaskLinkWriter(Protocol):
    """Anything that can persist a task's remote event ID."""

    async def set_remote_event_id(self, task_id: int, remote_event_id: str | None) -> None: ...


class TaskLinkStorage:
    """asyncpg implementation of :class:`TaskLinkWriter`."""

    def __init__(self, pool: asyncpg.Pool, *, table: str = "tasks") -> None:
        if not _IDENTIFIER.match(table):
            raise ValueError(f"Invalid table name: {table!r}")
        self._pool = pool
        self._table = table

    async def set_remote_event_id(self, task_id: int, remote_event_id: str | None) -> None:
        """Point the task at ``remote_event_id`` (``None`` clears the link)."""
        query = f"UPDATE {self._table} SET {LINK_COLUMN} = $2 WHERE id = $1"  # nosec B608
        try:
            async with self._pool.acquire() as conn:
                result = await conn.execute(query, task_id, remote_event_id)
        except STORAGE_ERRORS as exc:
            log.error("task_link_write_failed", task_id=task_id, error=str(exc))
            raise StorageError(f"Failed to update sync link of task {task_id}: {exc}") from exc

        if result == "UPDATE 0":
            # Task row already gone (deleted concurrently); nothing to link
            log.warning("task_link_target_missing", task_id=task_id)
            return
        log.debug("task_link_updated", task_id=task_id, linked=remote_event_id is not None)
