"""HTTP surface for the calendar integration.

Sits behind the task application, which authenticates users and passes
the user ID in ``X-User-Id``. An optional shared secret (``X-API-Secret``)
guards every route except the health check and the OAuth callback; the
callback is reached by the user's browser and is authenticated by its
signed ``state`` parameter instead.
"""

from __future__ import annotations

import asyncio
import hmac
from typing import TYPE_CHECKING, Any
from urllib.parse import urlencode

import asyncpg
from aiohttp import web

from taskcal import __version__
from taskcal.calendar.errors import (
    InvalidStateError,
    NotConfiguredError,
    OAuthError,
    StorageError,
)
from taskcal.calendar.flow import OAuthFlowManager
from taskcal.calendar.refresher import TokenRefresher
from taskcal.calendar.status import ConnectionStatusQuery
from taskcal.calendar.sync import CalendarSyncEngine
from taskcal.calendar.token_store import TokenStore
from taskcal.config import get_settings
from taskcal.logging import get_logger

if TYPE_CHECKING:
    from aiohttp.typedefs import Handler

log = get_logger("taskcal.api.server")

USER_HEADER = "X-User-Id"
SECRET_HEADER = "X-API-Secret"  # nosec B105

# Routes reachable without the shared secret
_PUBLIC_PATHS = frozenset({"/health", "/calendar/callback"})


class CalendarServer:
    """aiohttp application exposing connect/disconnect/status endpoints."""

    def __init__(
        self,
        flow: OAuthFlowManager,
        status: ConnectionStatusQuery,
        engine: CalendarSyncEngine,
        *,
        host: str = "0.0.0.0",  # nosec B104
        port: int = 8080,
        api_secret: str | None = None,
        completion_url: str | None = None,
    ) -> None:
        self._flow = flow
        self._status = status
        self._engine = engine
        self._host = host
        self._port = port
        self._api_secret = api_secret or None
        self._completion_url = completion_url or None
        self._app: web.Application | None = None
        self._runner: web.AppRunner | None = None

    # ------------------------------------------------------------------
    # Wiring
    # ------------------------------------------------------------------

    def create_app(self) -> web.Application:
        """Build the aiohttp application."""
        app = web.Application(middlewares=[self._error_middleware, self._auth_middleware])
        app.router.add_get("/health", self.handle_health)
        app.router.add_get("/calendar/status", self.handle_status)
        app.router.add_get("/calendar/connect", self.handle_connect)
        app.router.add_get("/calendar/callback", self.handle_callback)
        app.router.add_post("/calendar/disconnect", self.handle_disconnect)
        app.router.add_get("/calendar/events", self.handle_events)
        self._app = app
        return app

    async def start(self) -> None:
        """Start serving."""
        app = self._app or self.create_app()
        self._runner = web.AppRunner(app)
        await self._runner.setup()
        site = web.TCPSite(self._runner, self._host, self._port)
        await site.start()
        log.info("calendar_server_started", host=self._host, port=self._port)

    async def stop(self) -> None:
        """Stop serving. No-op when not started."""
        if self._runner is not None:
            await self._runner.cleanup()
            self._runner = None
            log.info("calendar_server_stopped")

    # ------------------------------------------------------------------
    # Middleware
    # ------------------------------------------------------------------

    def _check_auth(self, request: web.Request) -> bool:
        if not self._api_secret:
            return True
        provided = request.headers.get(SECRET_HEADER, "").encode("utf-8", "surrogatepass")
        return hmac.compare_digest(provided, self._api_secret.encode("utf-8"))

    @web.middleware
    async def _auth_middleware(
        self, request: web.Request, handler: Handler
    ) -> web.StreamResponse:
        if request.path in _PUBLIC_PATHS or self._check_auth(request):
            return await handler(request)
        log.warning("unauthorized_request", path=request.path)
        return web.json_response({"error": "Unauthorized"}, status=401)

    @web.middleware
    async def _error_middleware(
        self, request: web.Request, handler: Handler
    ) -> web.StreamResponse:
        try:
            return await handler(request)
        except StorageError as exc:
            log.error("storage_unavailable", path=request.path, error=str(exc))
            return web.json_response({"error": "Storage unavailable"}, status=500)

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------

    async def handle_health(self, request: web.Request) -> web.Response:
        return web.json_response(
            {"status": "ok", "version": __version__, "configured": self._flow.is_configured()}
        )

    async def handle_status(self, request: web.Request) -> web.Response:
        user_id = _user_id(request)
        return web.json_response(await self._status.status(user_id))

    async def handle_connect(self, request: web.Request) -> web.Response:
        """Send the user to the consent screen unless already connected."""
        user_id = _user_id(request)
        if not self._flow.is_configured():
            return web.json_response({"error": "Google Calendar is not configured."}, status=503)
        if await self._status.is_connected(user_id):
            return web.json_response({"connected": True, "message": "Already connected!"})
        raise web.HTTPFound(self._flow.build_auth_url(user_id))

    async def handle_callback(self, request: web.Request) -> web.Response:
        """Finish the authorization-code flow started by /calendar/connect."""
        query = request.query
        if "error" in query:
            log.info("oauth_access_denied", error=query.get("error"))
            return self._finish_callback("Access denied.", status=400)
        code = query.get("code")
        if not code:
            return self._finish_callback("No code returned.", status=400)

        try:
            user_id, _ = await self._flow.complete_callback(query.get("state", ""), code)
        except NotConfiguredError:
            return self._finish_callback("Google Calendar is not configured.", status=503)
        except InvalidStateError as exc:
            log.warning("oauth_state_rejected", error=str(exc))
            return self._finish_callback("Invalid or expired authorization request.", status=400)
        except OAuthError as exc:
            log.error("oauth_callback_failed", error=str(exc))
            return self._finish_callback("Failed to connect to Google Calendar.", status=400)

        log.info("oauth_callback_completed", user_id=user_id)
        return self._finish_callback("Google Calendar connected!", status=200)

    async def handle_disconnect(self, request: web.Request) -> web.Response:
        user_id = _user_id(request)
        await self._flow.disconnect(user_id)
        return web.json_response({"message": "Disconnected successfully!"})

    async def handle_events(self, request: web.Request) -> web.Response:
        """Upcoming events from the user's calendar."""
        user_id = _user_id(request)
        try:
            limit = int(request.query.get("limit", "5"))
        except ValueError:
            raise web.HTTPBadRequest(reason="limit must be an integer") from None
        if not 1 <= limit <= 50:
            raise web.HTTPBadRequest(reason="limit must be between 1 and 50")

        events = await self._engine.upcoming_events(user_id, limit=limit)
        if events is None:
            return web.json_response({"available": False, "events": []})
        return web.json_response({"available": True, "events": [e.to_dict() for e in events]})

    def _finish_callback(self, message: str, *, status: int) -> web.Response:
        if self._completion_url:
            key = "message" if status == 200 else "error"
            raise web.HTTPFound(f"{self._completion_url}?{urlencode({key: message})}")
        payload: dict[str, Any] = {"message": message} if status == 200 else {"error": message}
        return web.json_response(payload, status=status)


def _user_id(request: web.Request) -> int:
    raw = request.headers.get(USER_HEADER)
    if not raw:
        raise web.HTTPUnauthorized(reason=f"Missing {USER_HEADER} header")
    try:
        return int(raw)
    except ValueError:
        raise web.HTTPBadRequest(reason=f"Invalid {USER_HEADER} header") from None


# ------------------------------------------------------------------
# Entry point
# ------------------------------------------------------------------


async def run_server() -> None:
    """Build every component from settings and serve until cancelled."""
    settings = get_settings()
    pool = await asyncpg.create_pool(dsn=settings.database_url.get_secret_value())

    token_store = TokenStore()
    await token_store.initialize(pool)

    flow = OAuthFlowManager.from_settings(settings, token_store)
    refresher = TokenRefresher(token_store, flow, leeway=settings.token_expiry_leeway)
    server = CalendarServer(
        flow,
        ConnectionStatusQuery(flow, refresher, token_store),
        CalendarSyncEngine(flow, refresher),
        host=settings.api_host,
        port=settings.api_port,
        api_secret=settings.api_secret.get_secret_value() if settings.api_secret else None,
        completion_url=settings.calendar_completion_url,
    )
    if not flow.is_configured():
        log.warning("calendar_not_configured")

    await server.start()
    try:
        while True:
            await asyncio.sleep(3600)
    finally:
        await server.stop()
        await pool.close()
