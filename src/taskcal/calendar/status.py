"""Connection status for the calendar integration."""

from __future__ import annotations

from typing import TYPE_CHECKING

from taskcal.calendar.errors import CalendarConnectionError
from taskcal.logging import get_logger

if TYPE_CHECKING:
    from taskcal.calendar.flow import OAuthFlowManager
    from taskcal.calendar.refresher import TokenRefresher
    from taskcal.calendar.token_store import TokenStore

log = get_logger("taskcal.calendar.status")


class ConnectionStatusQuery:
    """Answers "is the provider configured" and "is this user connected".

    :meth:`is_connected` reports whether a *usable* token exists, so it
    refreshes and persists an expired token on the way. Callers that need
    a side-effect-free answer use :meth:`has_credential`.
    """

    def __init__(
        self,
        flow: OAuthFlowManager,
        refresher: TokenRefresher,
        token_store: TokenStore,
    ) -> None:
        self._flow = flow
        self._refresher = refresher
        self._store = token_store

    def is_configured(self) -> bool:
        return self._flow.is_configured()

    async def has_credential(self, user_id: int) -> bool:
        """Whether anything revivable is stored. Never touches the provider."""
        credential = await self._store.load(user_id)
        if credential is None:
            return False
        return credential.is_refreshable or not credential.is_expired()

    async def is_connected(self, user_id: int) -> bool:
        """Whether the user currently holds a usable token.

        Raises:
            StorageError: If the credential store is unavailable.
        """
        try:
            await self._refresher.get_valid_credential(user_id)
        except CalendarConnectionError as exc:
            log.debug("calendar_not_connected", user_id=user_id, reason=str(exc))
            return False
        return True

    async def status(self, user_id: int) -> dict[str, bool]:
        """Status payload for polling clients."""
        configured = self.is_configured()
        connected = await self.is_connected(user_id) if configured else False
        return {"connected": connected, "configured": configured}
