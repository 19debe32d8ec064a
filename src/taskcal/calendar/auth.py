"""OAuth2 client for Google Calendar.

Builds authorization URLs, signs and validates the ``state`` parameter
that binds a callback to the user who started the flow, and talks to
the token endpoint for code exchange and refresh.
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import json
import time
from typing import Any
from urllib.parse import urlencode

import httpx

from taskcal.calendar.errors import InvalidStateError, OAuthError, ProviderRejectedError
from taskcal.logging import get_logger

log = get_logger("taskcal.calendar.auth")

# Google OAuth2 endpoints
GOOGLE_AUTH_URL = "https://accounts.google.com/o/oauth2/v2/auth"
GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"  # nosec B105

# Event read/write only
CALENDAR_SCOPES = ["https://www.googleapis.com/auth/calendar.events"]

# State token expiry (10 minutes)
STATE_TOKEN_EXPIRY = 600


class GoogleOAuthClient:
    """Handles the Google side of the OAuth2 authorization-code flow."""

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        redirect_uri: str,
        *,
        state_secret: str = "",  # nosec B107
        timeout: float = 30.0,
    ) -> None:
        """Initialize the OAuth client.

        Args:
            client_id: Google OAuth2 client ID.
            client_secret: Google OAuth2 client secret.
            redirect_uri: Callback URL for the OAuth2 redirect.
            state_secret: Secret key for HMAC-signing state tokens.
            timeout: Token endpoint request timeout in seconds.
        """
        if not client_id:
            raise ValueError("client_id is required")
        if not client_secret:
            raise ValueError("client_secret is required")
        if not redirect_uri:
            raise ValueError("redirect_uri is required")

        self._client_id = client_id
        self._client_secret = client_secret
        self._redirect_uri = redirect_uri
        self._state_secret = state_secret or client_secret
        self._timeout = timeout

    def build_auth_url(self, state: str, *, scopes: list[str] | None = None) -> str:
        """Build the consent-screen URL.

        Offline access plus a forced consent prompt make Google issue a
        refresh token on every grant; previously granted scopes are kept.
        """
        params = {
            "client_id": self._client_id,
            "redirect_uri": self._redirect_uri,
            "response_type": "code",
            "scope": " ".join(scopes or CALENDAR_SCOPES),
            "access_type": "offline",
            "prompt": "consent",
            "include_granted_scopes": "true",
            "state": state,
        }
        return f"{GOOGLE_AUTH_URL}?{urlencode(params)}"

    def create_state_token(self, user_id: int, *, now: float | None = None) -> str:
        """Create an HMAC-signed state token encoding user_id + timestamp."""
        payload_b64 = _b64_encode(json.dumps({"user_id": user_id}))
        timestamp = str(int(now if now is not None else time.time()))
        message = f"{payload_b64}.{timestamp}"
        return f"{message}.{self._sign(message)}"

    def validate_state_token(self, state: str, *, now: float | None = None) -> int:
        """Validate a state token and return the user_id it carries.

        Raises:
            InvalidStateError: If the token is malformed, tampered or expired.
        """
        parts = state.split(".")
        if len(parts) != 3:
            raise InvalidStateError("Invalid state token format")

        payload_b64, timestamp_str, signature = parts
        expected = self._sign(f"{payload_b64}.{timestamp_str}").encode("utf-8")
        # Compared as bytes: compare_digest rejects non-ASCII str
        if not hmac.compare_digest(signature.encode("utf-8", "surrogatepass"), expected):
            raise InvalidStateError("State token signature mismatch")

        try:
            timestamp = int(timestamp_str)
            user_id = int(json.loads(_b64_decode(payload_b64))["user_id"])
        except (ValueError, KeyError, TypeError) as exc:
            raise InvalidStateError(f"Failed to decode state token: {exc}") from exc

        current = now if now is not None else time.time()
        if current - timestamp > STATE_TOKEN_EXPIRY:
            raise InvalidStateError("State token expired")
        return user_id

    async def exchange_code(self, code: str) -> dict[str, Any]:
        """Exchange an authorization code for tokens.

        Raises:
            ProviderRejectedError: The provider answered with an ``error`` field.
            OAuthError: Any other HTTP or transport failure.
        """
        data = {
            "client_id": self._client_id,
            "client_secret": self._client_secret,
            "code": code,
            "grant_type": "authorization_code",
            "redirect_uri": self._redirect_uri,
        }
        result = await self._post_token(data, purpose="exchange")
        log.info("code_exchanged_for_tokens")
        return result

    async def refresh(self, refresh_token: str) -> dict[str, Any]:
        """Trade a refresh token for a new access token.

        Google usually omits ``refresh_token`` from this response.

        Raises:
            OAuthError: If the refresh fails for any reason.
        """
        data = {
            "client_id": self._client_id,
            "client_secret": self._client_secret,
            "refresh_token": refresh_token,
            "grant_type": "refresh_token",
        }
        result = await self._post_token(data, purpose="refresh")
        log.info("access_token_refreshed")
        return result

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _post_token(self, data: dict[str, str], *, purpose: str) -> dict[str, Any]:
        async with httpx.AsyncClient(timeout=self._timeout) as client:
            try:
                response = await client.post(GOOGLE_TOKEN_URL, data=data)
            except httpx.RequestError as exc:
                raise OAuthError(f"Token {purpose} request failed: {exc}") from exc

        try:
            result = response.json()
        except ValueError:
            result = None

        # Google reports rejected grants as {"error": ...}, usually with a 400
        if isinstance(result, dict) and "error" in result:
            raise ProviderRejectedError(
                f"Token {purpose} error: {result['error']}"
                f" - {result.get('error_description', '')}"
            )
        if response.status_code >= 400:
            raise OAuthError(
                f"Token {purpose} HTTP error {response.status_code}: {response.text}"
            )
        if not isinstance(result, dict):
            raise OAuthError(f"Token {purpose} returned a non-JSON body")
        return result

    def _sign(self, message: str) -> str:
        """Create HMAC-SHA256 signature of message."""
        return hmac.new(
            self._state_secret.encode("utf-8"),
            message.encode("utf-8"),
            hashlib.sha256,
        ).hexdigest()


def _b64_encode(data: str) -> str:
    """URL-safe base64 encode without padding."""
    return base64.urlsafe_b64encode(data.encode("utf-8")).rstrip(b"=").decode("ascii")


def _b64_decode(data: str) -> str:
    """URL-safe base64 decode with padding restoration."""
    padded = data + "=" * (-len(data) % 4)
    return base64.urlsafe_b64decode(padded.encode("ascii")).decode("utf-8")
