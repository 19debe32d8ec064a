"""Access-token renewal.

Refreshing needs no locking: two concurrent refreshes both yield valid
tokens and whichever is saved last is the one kept.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from taskcal.calendar.errors import (
    NotConfiguredError,
    NotConnectedError,
    OAuthError,
    RefreshFailedError,
)
from taskcal.calendar.models import Credential
from taskcal.logging import get_logger

if TYPE_CHECKING:
    from taskcal.calendar.flow import OAuthFlowManager
    from taskcal.calendar.token_store import TokenStore

log = get_logger("taskcal.calendar.refresher")

DEFAULT_LEEWAY_SECONDS = 60


def _utcnow() -> datetime:
    return datetime.now(UTC)


class TokenRefresher:
    """Hands out credentials whose access token is currently usable."""

    def __init__(
        self,
        token_store: TokenStore,
        flow: OAuthFlowManager,
        *,
        leeway: float = DEFAULT_LEEWAY_SECONDS,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._store = token_store
        self._flow = flow
        self._leeway = leeway
        self._clock = clock

    async def ensure_valid(self, user_id: int, credential: Credential) -> Credential:
        """Return ``credential`` or a refreshed, persisted replacement.

        Raises:
            NotConnectedError: Expired with no refresh token to revive it.
            RefreshFailedError: The provider refused or could not be reached.
            StorageError: The refreshed credential could not be saved.
        """
        if not credential.is_expired(now=self._clock(), leeway=self._leeway):
            return credential

        refresh_token = credential.refresh_token
        if not refresh_token:
            log.info("credential_expired_without_refresh_token", user_id=user_id)
            raise NotConnectedError("Access token expired and no refresh token is stored")

        try:
            response = await self._flow.oauth_client.refresh(refresh_token)
        except NotConfiguredError as exc:
            raise RefreshFailedError(str(exc)) from exc
        except OAuthError as exc:
            log.warning("token_refresh_failed", user_id=user_id, error=str(exc))
            raise RefreshFailedError(str(exc)) from exc

        refreshed = Credential.from_token_response(response, now=self._clock())
        if not refreshed.access_token:
            log.warning("token_refresh_failed", user_id=user_id, error="no access_token")
            raise RefreshFailedError("Refresh response carried no access_token")

        # Providers usually send the refresh token only on the first grant
        refreshed = refreshed.with_refresh_token_from(credential)
        await self._store.save(user_id, refreshed)
        log.info("token_refreshed", user_id=user_id)
        return refreshed

    async def get_valid_credential(self, user_id: int) -> Credential:
        """Load the stored credential and make sure it is usable.

        Raises:
            NotConnectedError: Nothing is stored for the user.
        """
        credential = await self._store.load(user_id)
        if credential is None:
            raise NotConnectedError("No calendar credential stored")
        return await self.ensure_valid(user_id, credential)
