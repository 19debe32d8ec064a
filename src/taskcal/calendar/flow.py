"""Connect/disconnect lifecycle for a user's calendar credential."""

from __future__ import annotations

from typing import TYPE_CHECKING

from taskcal.calendar.auth import GoogleOAuthClient
from taskcal.calendar.errors import NotConfiguredError, ProviderRejectedError
from taskcal.calendar.models import Credential
from taskcal.logging import get_logger

if TYPE_CHECKING:
    from taskcal.calendar.token_store import TokenStore
    from taskcal.config import Settings

log = get_logger("taskcal.calendar.flow")


class OAuthFlowManager:
    """Builds authorization URLs, exchanges codes, and disconnects users.

    The provider client is created lazily, so a deployment without
    client credentials still answers :meth:`is_configured`.
    """

    def __init__(
        self,
        token_store: TokenStore,
        *,
        client_id: str = "",
        client_secret: str = "",  # nosec B107
        redirect_uri: str = "",
        calendar_id: str = "primary",
        state_secret: str = "",  # nosec B107
        timeout: float = 30.0,
        oauth_client: GoogleOAuthClient | None = None,
    ) -> None:
        self._store = token_store
        self._client_id = client_id.strip()
        self._client_secret = client_secret.strip()
        self._redirect_uri = redirect_uri.strip()
        self._calendar_id = calendar_id.strip()
        self._state_secret = state_secret
        self._timeout = timeout
        self._oauth_client = oauth_client

    @classmethod
    def from_settings(cls, settings: Settings, token_store: TokenStore) -> OAuthFlowManager:
        """Build a manager from application settings."""
        state_secret = (
            settings.oauth_state_secret.get_secret_value() if settings.oauth_state_secret else ""
        )
        return cls(
            token_store,
            client_id=settings.google_client_id,
            client_secret=settings.google_client_secret.get_secret_value(),
            redirect_uri=settings.google_redirect_uri,
            calendar_id=settings.google_calendar_id,
            state_secret=state_secret,
            timeout=settings.http_timeout,
        )

    @property
    def calendar_id(self) -> str:
        return self._calendar_id

    @property
    def timeout(self) -> float:
        return self._timeout

    def is_configured(self) -> bool:
        """True iff every required provider setting is present. No I/O."""
        return bool(
            self._client_id and self._client_secret and self._redirect_uri and self._calendar_id
        )

    @property
    def oauth_client(self) -> GoogleOAuthClient:
        """The provider OAuth client.

        Raises:
            NotConfiguredError: If client credentials are missing.
        """
        if self._oauth_client is None:
            if not self.is_configured():
                raise NotConfiguredError("Google Calendar is not configured")
            self._oauth_client = GoogleOAuthClient(
                self._client_id,
                self._client_secret,
                self._redirect_uri,
                state_secret=self._state_secret,
                timeout=self._timeout,
            )
        return self._oauth_client

    def build_auth_url(self, user_id: int) -> str:
        """Authorization URL whose state is bound to ``user_id``."""
        client = self.oauth_client
        url = client.build_auth_url(client.create_state_token(user_id))
        log.info("auth_url_generated", user_id=user_id)
        return url

    async def exchange_code(self, user_id: int, code: str) -> Credential:
        """Exchange an authorization code and persist the credential.

        A refresh token already on file survives when the provider leaves
        it out of the response.

        Raises:
            ProviderRejectedError: The provider rejected the code; nothing
                is persisted.
            OAuthError: Transport or HTTP failure; nothing is persisted.
            StorageError: The credential could not be read or written.
        """
        response = await self.oauth_client.exchange_code(code)
        credential = Credential.from_token_response(response)
        if not credential.access_token:
            raise ProviderRejectedError("Token exchange returned no access_token")

        previous = await self._store.load(user_id)
        credential = credential.with_refresh_token_from(previous)
        await self._store.save(user_id, credential)

        log.info(
            "calendar_connected",
            user_id=user_id,
            has_refresh_token=credential.is_refreshable,
        )
        return credential

    async def complete_callback(self, state: str, code: str) -> tuple[int, Credential]:
        """Validate the callback state, then exchange the code.

        Raises:
            InvalidStateError: If the state token does not check out.
        """
        user_id = self.oauth_client.validate_state_token(state)
        credential = await self.exchange_code(user_id, code)
        return user_id, credential

    async def disconnect(self, user_id: int) -> None:
        """Forget the user's credential. Safe to call when already disconnected."""
        await self._store.clear(user_id)
        log.info("calendar_disconnected", user_id=user_id)
