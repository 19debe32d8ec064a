"""Tests for CalendarSyncEngine.

The remote calls in ``taskcal.calendar.api`` are patched; the flow and
refresher are real and run against the in-memory token store.
"""

from __future__ import annotations

from dataclasses import replace
from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from taskcal.calendar.api import CalendarEvent, CalendarTarget
from taskcal.calendar.auth import GoogleOAuthClient
from taskcal.calendar.errors import CalendarAPIError, OAuthError, StorageError
from taskcal.calendar.flow import OAuthFlowManager
from taskcal.calendar.models import Credential, SyncAction, SyncOutcome
from taskcal.calendar.refresher import TokenRefresher
from taskcal.calendar.sync import CalendarSyncEngine

USER = 1


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def oauth_client() -> MagicMock:
    client = MagicMock(spec=GoogleOAuthClient)
    client.exchange_code = AsyncMock(
        return_value={"access_token": "access-1", "refresh_token": "refresh-1", "expires_in": 3599}
    )
    client.refresh = AsyncMock(return_value={"access_token": "access-2", "expires_in": 3599})
    return client


@pytest.fixture
def flow(memory_store, oauth_client) -> OAuthFlowManager:
    return OAuthFlowManager(
        memory_store,
        client_id="cid",
        client_secret="csecret",
        redirect_uri="http://x/cb",
        calendar_id="primary",
        timeout=7.0,
        oauth_client=oauth_client,
    )


@pytest.fixture
def engine(memory_store, flow) -> CalendarSyncEngine:
    return CalendarSyncEngine(flow, TokenRefresher(memory_store, flow))


@pytest.fixture
def unconfigured_engine(memory_store) -> CalendarSyncEngine:
    flow = OAuthFlowManager(memory_store)
    return CalendarSyncEngine(flow, TokenRefresher(memory_store, flow))


@pytest.fixture
def connected(memory_store, valid_credential) -> Credential:
    memory_store.credentials[USER] = valid_credential
    return valid_credential


@pytest.fixture
def remote():
    """Patch every remote call; yields a namespace of the mocks."""
    with (
        patch("taskcal.calendar.api.insert_event", new_callable=AsyncMock) as insert,
        patch("taskcal.calendar.api.update_event", new_callable=AsyncMock) as update,
        patch("taskcal.calendar.api.delete_event", new_callable=AsyncMock) as delete,
        patch("taskcal.calendar.api.list_events", new_callable=AsyncMock) as listing,
    ):
        insert.return_value = "evt-new"
        listing.return_value = []
        mocks = MagicMock()
        mocks.insert, mocks.update, mocks.delete, mocks.list = insert, update, delete, listing
        yield mocks


def _total_calls(remote) -> int:
    return sum(
        m.await_count for m in (remote.insert, remote.update, remote.delete, remote.list)
    )


# ===========================================================================
# on_create
# ===========================================================================


class TestOnCreate:
    async def test_creates_event(self, engine, connected, remote, task) -> None:
        result = await engine.on_create(USER, task)

        assert result.outcome is SyncOutcome.SYNCED
        assert result.remote_event_id == "evt-new"
        assert result.action is SyncAction.CREATED
        target, descriptor = remote.insert.await_args[0]
        assert target == CalendarTarget("access-1", "primary", 7.0)
        assert descriptor.title == "Write report"

    async def test_not_connected(self, engine, remote, task) -> None:
        result = await engine.on_create(USER, task)

        assert result.outcome is SyncOutcome.NOT_CONNECTED
        assert result.remote_event_id is None
        assert _total_calls(remote) == 0

    async def test_network_error_is_failed_and_link_unchanged(
        self, engine, connected, remote, task
    ) -> None:
        remote.insert.side_effect = CalendarAPIError("Calendar API request failed: timeout")

        result = await engine.on_create(USER, task)

        assert result.outcome is SyncOutcome.FAILED
        assert result.remote_event_id is None
        assert "timeout" in result.error

    async def test_expired_token_refreshed_first(
        self, engine, memory_store, expired_credential, oauth_client, remote, task
    ) -> None:
        memory_store.credentials[USER] = expired_credential

        result = await engine.on_create(USER, task)

        assert result.ok
        oauth_client.refresh.assert_awaited_once_with("refresh-1")
        target = remote.insert.await_args[0][0]
        assert target.access_token == "access-2"
        assert memory_store.credentials[USER].refresh_token == "refresh-1"

    async def test_fractional_expires_in_from_refresh(
        self, engine, memory_store, expired_credential, oauth_client, remote, task
    ) -> None:
        memory_store.credentials[USER] = expired_credential
        oauth_client.refresh.return_value = {"access_token": "access-2", "expires_in": "3599.0"}

        result = await engine.on_create(USER, task)

        assert result.outcome is SyncOutcome.SYNCED
        assert remote.insert.await_args[0][0].access_token == "access-2"
        assert memory_store.credentials[USER].expires_at is not None

    async def test_refresh_failure_is_failed(
        self, engine, memory_store, expired_credential, oauth_client, remote, task
    ) -> None:
        memory_store.credentials[USER] = expired_credential
        oauth_client.refresh.side_effect = OAuthError("invalid_grant")

        result = await engine.on_create(USER, task)

        assert result.outcome is SyncOutcome.FAILED
        assert _total_calls(remote) == 0

    async def test_storage_error_escapes(self, engine, memory_store, remote, task) -> None:
        memory_store.load = AsyncMock(side_effect=StorageError("db down"))
        with pytest.raises(StorageError):
            await engine.on_create(USER, task)


# ===========================================================================
# on_update / manual_sync
# ===========================================================================


class TestOnUpdate:
    async def test_updates_linked_event(self, engine, connected, remote, task) -> None:
        linked = task.with_remote_event_id("evt-1")

        result = await engine.on_update(USER, linked)

        assert result.outcome is SyncOutcome.SYNCED
        assert result.remote_event_id == "evt-1"
        assert result.action is SyncAction.UPDATED
        assert remote.update.await_args[0][1] == "evt-1"
        remote.insert.assert_not_awaited()

    async def test_unsynced_update_is_create(self, engine, connected, remote, task) -> None:
        result = await engine.on_update(USER, task)

        assert result.remote_event_id == "evt-new"
        assert result.action is SyncAction.CREATED
        remote.update.assert_not_awaited()

    async def test_update_failure_keeps_link(self, engine, connected, remote, task) -> None:
        remote.update.side_effect = CalendarAPIError("gone", status_code=404)

        result = await engine.on_update(USER, task.with_remote_event_id("evt-1"))

        assert result.outcome is SyncOutcome.FAILED
        assert result.remote_event_id == "evt-1"

    async def test_expired_without_refresh_token_is_not_connected(
        self, engine, memory_store, remote, task
    ) -> None:
        memory_store.credentials[USER] = Credential(
            access_token="old", expires_at=datetime.now(UTC) - timedelta(minutes=1)
        )

        result = await engine.on_update(USER, task)

        assert result.outcome is SyncOutcome.NOT_CONNECTED
        assert _total_calls(remote) == 0


class TestManualSync:
    async def test_connect_then_manual_sync(self, engine, flow, remote, task) -> None:
        first = await engine.on_create(USER, task)
        assert first.outcome is SyncOutcome.NOT_CONNECTED

        await flow.exchange_code(USER, "code")
        second = await engine.manual_sync(USER, task)

        assert second.outcome is SyncOutcome.SYNCED
        assert second.remote_event_id == "evt-new"

    async def test_repeatable(self, engine, connected, remote, task) -> None:
        first = await engine.manual_sync(USER, task)
        second = await engine.manual_sync(USER, task.with_remote_event_id(first.remote_event_id))

        assert second.remote_event_id == first.remote_event_id
        assert second.action is SyncAction.UPDATED
        assert remote.insert.await_count == 1


# ===========================================================================
# on_delete / remove_link
# ===========================================================================


class TestUnlink:
    async def test_delete_linked_event(self, engine, connected, remote, task) -> None:
        result = await engine.on_delete(USER, task.with_remote_event_id("evt-1"))

        assert result.outcome is SyncOutcome.SYNCED
        assert result.remote_event_id is None
        assert result.action is SyncAction.DELETED
        assert remote.delete.await_args[0][1] == "evt-1"

    async def test_delete_unsynced_makes_no_calls(
        self, engine, memory_store, oauth_client, remote, task
    ) -> None:
        # Even with an expired token nothing is refreshed
        memory_store.credentials[USER] = Credential(
            access_token="old",
            refresh_token="r",
            expires_at=datetime.now(UTC) - timedelta(minutes=1),
        )

        result = await engine.on_delete(USER, task)

        assert result.outcome is SyncOutcome.SYNCED
        assert result.action is SyncAction.NOOP
        assert _total_calls(remote) == 0
        oauth_client.refresh.assert_not_awaited()

    async def test_create_then_delete_returns_to_unsynced(
        self, engine, connected, remote, task
    ) -> None:
        created = await engine.on_create(USER, task)
        deleted = await engine.on_delete(
            USER, task.with_remote_event_id(created.remote_event_id)
        )
        assert deleted.remote_event_id is None
        assert task.remote_event_id is None

    async def test_remove_link_keeps_link_on_failure(
        self, engine, connected, remote, task
    ) -> None:
        remote.delete.side_effect = CalendarAPIError("boom", status_code=500)

        result = await engine.remove_link(USER, task.with_remote_event_id("evt-1"))

        assert result.outcome is SyncOutcome.FAILED
        assert result.remote_event_id == "evt-1"

    async def test_remove_link_not_connected(self, engine, remote, task) -> None:
        result = await engine.remove_link(USER, task.with_remote_event_id("evt-1"))
        assert result.outcome is SyncOutcome.NOT_CONNECTED
        assert result.remote_event_id == "evt-1"


# ===========================================================================
# Not configured
# ===========================================================================


class TestNotConfigured:
    @pytest.mark.parametrize(
        "operation", ["on_create", "on_update", "on_delete", "manual_sync", "remove_link"]
    )
    @pytest.mark.parametrize("remote_event_id", [None, "evt-1"])
    async def test_every_operation_reports_not_configured(
        self,
        unconfigured_engine,
        memory_store,
        valid_credential,
        remote,
        task,
        operation: str,
        remote_event_id: str | None,
    ) -> None:
        memory_store.credentials[USER] = valid_credential
        snapshot = replace(task, remote_event_id=remote_event_id)

        result = await getattr(unconfigured_engine, operation)(USER, snapshot)

        assert result.outcome is SyncOutcome.NOT_CONFIGURED
        assert result.remote_event_id == remote_event_id
        assert _total_calls(remote) == 0


# ===========================================================================
# upcoming_events
# ===========================================================================


class TestUpcomingEvents:
    async def test_lists_from_now(self, engine, connected, remote) -> None:
        remote.list.return_value = [CalendarEvent(event_id="e1")]

        events = await engine.upcoming_events(USER, limit=3)

        assert [e.event_id for e in events] == ["e1"]
        kwargs = remote.list.await_args[1]
        assert kwargs["max_results"] == 3
        assert kwargs["time_min"].tzinfo is not None

    async def test_unconfigured_is_none(self, unconfigured_engine, remote) -> None:
        assert await unconfigured_engine.upcoming_events(USER) is None

    async def test_not_connected_is_none(self, engine, remote) -> None:
        assert await engine.upcoming_events(USER) is None
        remote.list.assert_not_awaited()

    async def test_api_error_is_none(self, engine, connected, remote) -> None:
        remote.list.side_effect = CalendarAPIError("boom")
        assert await engine.upcoming_events(USER) is None
