"""PostgreSQL persistence for per-user OAuth credentials.

Follows the asyncpg.Pool pattern used across the service: construct,
call ``initialize(pool)`` once at startup, then use the async methods.
Every database failure surfaces as :class:`StorageError`.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

import asyncpg

from taskcal.calendar.errors import StorageError
from taskcal.calendar.models import Credential
from taskcal.logging import get_logger

if TYPE_CHECKING:
    from asyncpg.pool import PoolConnectionProxy

log = get_logger("taskcal.calendar.token_store")

# Errors that mean "the store is unusable right now"
STORAGE_ERRORS: tuple[type[BaseException], ...] = (
    asyncpg.PostgresError,
    asyncpg.InterfaceError,
    OSError,
)

_CREATE_CREDENTIALS_TABLE = """
CREATE TABLE IF NOT EXISTS calendar_credentials (
    user_id       BIGINT PRIMARY KEY,
    access_token  TEXT NOT NULL,
    refresh_token TEXT,
    expires_at    TIMESTAMPTZ,
    scope         TEXT NOT NULL DEFAULT '',
    token_type    TEXT NOT NULL DEFAULT 'Bearer',
    updated_at    TIMESTAMPTZ NOT NULL DEFAULT NOW()
);
"""


class TokenStore:
    """Loads, saves and clears one credential per user."""

    def __init__(self) -> None:
        self._pool: asyncpg.Pool | None = None

    async def initialize(self, pool: asyncpg.Pool) -> None:
        """Create the table and store the connection pool."""
        self._pool = pool
        async with self._connection("initialize") as conn:
            await conn.execute(_CREATE_CREDENTIALS_TABLE)
        log.info("token_store_initialized")

    async def load(self, user_id: int) -> Credential | None:
        """Return the user's credential, or None when disconnected."""
        async with self._connection("load") as conn:
            row = await conn.fetchrow(
                """
                SELECT access_token, refresh_token, expires_at, scope, token_type
                FROM calendar_credentials
                WHERE user_id = $1
                """,
                user_id,
            )
        if row is None:
            return None
        credential = Credential(
            access_token=row["access_token"] or "",
            refresh_token=row["refresh_token"] or None,
            expires_at=row["expires_at"],
            scope=row["scope"] or "",
            token_type=row["token_type"] or "Bearer",
        )
        # A row holding neither token is a leftover disconnect
        return None if credential.is_empty else credential

    async def save(self, user_id: int, credential: Credential) -> None:
        """Insert or replace the user's credential (last writer wins)."""
        async with self._connection("save") as conn:
            await conn.execute(
                """
                INSERT INTO calendar_credentials
                    (user_id, access_token, refresh_token, expires_at,
                     scope, token_type, updated_at)
                VALUES ($1, $2, $3, $4, $5, $6, NOW())
                ON CONFLICT (user_id) DO UPDATE SET
                    access_token = EXCLUDED.access_token,
                    refresh_token = EXCLUDED.refresh_token,
                    expires_at = EXCLUDED.expires_at,
                    scope = EXCLUDED.scope,
                    token_type = EXCLUDED.token_type,
                    updated_at = NOW()
                """,
                user_id,
                credential.access_token,
                credential.refresh_token,
                credential.expires_at,
                credential.scope,
                credential.token_type,
            )
        log.debug("credential_saved", user_id=user_id)

    async def clear(self, user_id: int) -> None:
        """Remove the user's credential. Clearing twice is harmless."""
        async with self._connection("clear") as conn:
            await conn.execute(
                "DELETE FROM calendar_credentials WHERE user_id = $1",
                user_id,
            )
        log.info("credential_cleared", user_id=user_id)

    @asynccontextmanager
    async def _connection(self, operation: str) -> AsyncIterator[PoolConnectionProxy]:
        if self._pool is None:
            raise StorageError("TokenStore used before initialize()")
        try:
            async with self._pool.acquire() as conn:
                yield conn
        except STORAGE_ERRORS as exc:
            log.error("token_store_failed", operation=operation, error=str(exc))
            raise StorageError(f"Credential {operation} failed: {exc}") from exc
