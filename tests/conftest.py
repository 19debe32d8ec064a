"""Shared fixtures for the taskcal test suite."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from taskcal.calendar.models import Credential, TaskSnapshot
from taskcal.config import get_settings

NOW = datetime(2026, 3, 15, 12, 0, 0, tzinfo=UTC)


class MemoryTokenStore:
    """Dict-backed stand-in for TokenStore with call counters."""

    def __init__(self, initial: dict[int, Credential] | None = None) -> None:
        self.credentials: dict[int, Credential] = dict(initial or {})
        self.saves: list[tuple[int, Credential]] = []
        self.clears: list[int] = []

    async def load(self, user_id: int) -> Credential | None:
        return self.credentials.get(user_id)

    async def save(self, user_id: int, credential: Credential) -> None:
        self.saves.append((user_id, credential))
        self.credentials[user_id] = credential

    async def clear(self, user_id: int) -> None:
        self.clears.append(user_id)
        self.credentials.pop(user_id, None)


@pytest.fixture(autouse=True)
def _clear_settings_cache():
    """Settings are lru_cached; never leak them between tests."""
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def memory_store() -> MemoryTokenStore:
    return MemoryTokenStore()


@pytest.fixture
def valid_credential() -> Credential:
    """A credential that stays valid for the next hour."""
    return Credential(
        access_token="access-1",
        refresh_token="refresh-1",
        expires_at=datetime.now(UTC) + timedelta(hours=1),
    )


@pytest.fixture
def expired_credential() -> Credential:
    return Credential(
        access_token="access-old",
        refresh_token="refresh-1",
        expires_at=datetime.now(UTC) - timedelta(minutes=5),
    )


@pytest.fixture
def task() -> TaskSnapshot:
    return TaskSnapshot(
        task_id=7,
        task_name="Write report",
        deadline=datetime(2026, 3, 20, 9, 0, 0, tzinfo=UTC),
        status="Pending",
        description="Quarterly numbers",
        category_name="Work",
        assignee_name="Alex",
    )


@pytest.fixture
def mock_pool():
    """Mock asyncpg pool whose ``acquire()`` yields an async connection."""
    pool = MagicMock()
    conn = AsyncMock()
    ctx = AsyncMock()
    ctx.__aenter__ = AsyncMock(return_value=conn)
    ctx.__aexit__ = AsyncMock(return_value=False)
    pool.acquire.return_value = ctx
    return pool, conn


def make_response(
    status_code: int = 200,
    json_data: dict | list | None = None,
    text: str = "",
) -> MagicMock:
    """Create a mock ``httpx.Response``."""
    resp = MagicMock(spec=httpx.Response)
    resp.status_code = status_code
    resp.text = text
    if json_data is not None:
        resp.json.return_value = json_data
    else:
        resp.json.side_effect = ValueError("no json")
    if 200 <= status_code < 300:
        resp.raise_for_status = MagicMock()
    else:
        http_error = httpx.HTTPStatusError(
            message=f"HTTP {status_code}",
            request=MagicMock(spec=httpx.Request),
            response=resp,
        )
        resp.raise_for_status.side_effect = http_error
    return resp


@pytest.fixture
def response_factory():
    """Factory for mock ``httpx.Response`` objects."""
    return make_response


@pytest.fixture
def mock_httpx():
    """Patch ``httpx.AsyncClient`` everywhere and yield the entered client mock."""
    with pytest.MonkeyPatch.context() as mp:
        mock_cls = MagicMock()
        client_instance = AsyncMock()
        mock_cls.return_value.__aenter__ = AsyncMock(return_value=client_instance)
        mock_cls.return_value.__aexit__ = AsyncMock(return_value=False)
        mp.setattr(httpx, "AsyncClient", mock_cls)
        client_instance.constructor = mock_cls
        yield client_instance
