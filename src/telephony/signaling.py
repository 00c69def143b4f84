"""Connection to the Asterisk ARI: one event websocket plus a shared REST client."""

from __future__ import annotations

import asyncio
import inspect
import json
import logging
from collections.abc import Awaitable, Callable
from typing import Any
from urllib.parse import urlencode

import httpx
import websockets
from websockets.exceptions import ConnectionClosed, InvalidHandshake, InvalidURI

from telephony.errors import SignalingConnectionError

LOGGER = logging.getLogger(__name__)

NotificationHandler = Callable[[dict[str, Any]], Awaitable[None] | None]


class SignalingLink:
    """Owns the ARI connection for a single Stasis application.

    ``run_forever`` keeps the event stream alive: a failed connect or a dropped
    socket is retried after a delay that doubles up to ``max_reconnect_delay``
    and resets once a connection succeeds. Every (re)connect subscribes to the
    same application through the websocket URL, so delivery simply resumes.

    Commands go through ``request``, which waits for the link to be up instead
    of failing immediately while a reconnect is pending.
    """

    def __init__(
        self,
        base_url: str,
        username: str,
        password: str,
        app: str,
        *,
        reconnect_delay: float = 5.0,
        max_reconnect_delay: float = 60.0,
        command_timeout: float = 10.0,
        ws_connect: Callable[..., Awaitable[Any]] = websockets.connect,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._username = username
        self._password = password
        self._app = app
        self._reconnect_delay = reconnect_delay
        self._max_reconnect_delay = max(max_reconnect_delay, reconnect_delay)
        self._command_timeout = command_timeout
        self._ws_connect = ws_connect
        self._transport = transport

        self._ws: Any = None
        self._http: httpx.AsyncClient | None = None
        self._handler: NotificationHandler | None = None
        self._connected = asyncio.Event()
        self._stopping = False

    @property
    def app(self) -> str:
        return self._app

    @property
    def connected(self) -> bool:
        return self._connected.is_set()

    def on_notification(self, handler: NotificationHandler) -> None:
        """Register the consumer for every inbound ARI event (replaces any previous one)."""

        if self._handler is not None and self._handler is not handler:
            LOGGER.warning("Replacing ARI notification handler")
        self._handler = handler

    async def wait_connected(self) -> None:
        await self._connected.wait()

    async def connect(self) -> None:
        """Open the event websocket for the application.

        Raises ``SignalingConnectionError`` on authentication or network failure.
        """

        if self._ws is not None:
            return

        LOGGER.info("Connecting to ARI events at %s (app=%s)", self._base_url, self._app)
        try:
            self._ws = await self._ws_connect(
                self._events_ws_url(), ping_interval=20, ping_timeout=20
            )
        except (OSError, InvalidHandshake, InvalidURI, asyncio.TimeoutError) as exc:
            raise SignalingConnectionError(f"Could not connect to ARI: {exc}") from exc

        if self._http is None or self._http.is_closed:
            self._http = httpx.AsyncClient(
                base_url=self._base_url,
                auth=(self._username, self._password),
                timeout=self._command_timeout,
                transport=self._transport,
            )

        self._connected.set()
        LOGGER.info("ARI link established (app=%s)", self._app)

    async def disconnect(self) -> None:
        """Close the link and stop reconnecting. Safe to call at any time."""

        self._stopping = True
        await self._drop()
        if self._http is not None:
            await self._http.aclose()
            self._http = None

    async def run_forever(self) -> None:
        """Connect, pump events to the handler, and reconnect until ``disconnect``."""

        self._stopping = False
        delay = self._reconnect_delay
        while not self._stopping:
            try:
                await self.connect()
            except SignalingConnectionError as exc:
                LOGGER.warning("%s; retrying in %.1fs", exc.detail, delay)
            except Exception:
                LOGGER.exception("ARI connect crashed; retrying in %.1fs", delay)
            else:
                delay = self._reconnect_delay
                try:
                    await self._pump()
                except (ConnectionClosed, OSError) as exc:
                    LOGGER.warning("ARI event stream dropped: %s", exc)
                except Exception:
                    LOGGER.exception("ARI event loop crashed; reconnecting")
                finally:
                    await self._drop()
                if self._stopping:
                    break
                LOGGER.warning("ARI link lost; reconnecting in %.1fs", delay)

            await asyncio.sleep(delay)
            delay = min(delay * 2, self._max_reconnect_delay)

        LOGGER.info("ARI link stopped (app=%s)", self._app)

    async def request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        timeout: float | None = None,
    ) -> httpx.Response:
        """Send an ARI REST command, waiting for the link if it is reconnecting."""

        timeout = timeout or self._command_timeout
        try:
            await asyncio.wait_for(self._connected.wait(), timeout)
        except asyncio.TimeoutError as exc:
            raise SignalingConnectionError(
                f"ARI link not available for {method} {path} after {timeout:g}s"
            ) from exc

        http = self._http
        if http is None or http.is_closed:
            raise SignalingConnectionError(f"ARI link closed before {method} {path} was sent")
        try:
            return await http.request(method, path, params=params, timeout=timeout)
        except httpx.HTTPError as exc:
            raise SignalingConnectionError(f"ARI request {method} {path} failed: {exc}") from exc

    async def _pump(self) -> None:
        async for message in self._ws:
            try:
                event = json.loads(message)
            except json.JSONDecodeError:
                LOGGER.debug("Ignoring non-JSON ARI message")
                continue
            if not isinstance(event, dict):
                continue
            await self._deliver(event)

    async def _deliver(self, event: dict[str, Any]) -> None:
        if self._handler is None:
            return
        try:
            result = self._handler(event)
            if inspect.isawaitable(result):
                await result
        except Exception:
            LOGGER.exception("ARI notification handler failed for %s", event.get("type"))

    async def _drop(self) -> None:
        self._connected.clear()
        ws, self._ws = self._ws, None
        if ws is not None:
            try:
                await ws.close()
            except Exception:
                LOGGER.debug("Error while closing ARI websocket", exc_info=True)

    def _events_ws_url(self) -> str:
        # ARI events WS endpoint: /ari/events?app=<app>&api_key=<user>:<pass>
        base = self._base_url
        if base.startswith("https://"):
            scheme = "wss://"
            rest = base.removeprefix("https://")
        elif base.startswith("http://"):
            scheme = "ws://"
            rest = base.removeprefix("http://")
        else:
            scheme = "ws://"
            rest = base

        query = urlencode({"app": self._app, "api_key": f"{self._username}:{self._password}"})
        return f"{scheme}{rest}/events?{query}"
