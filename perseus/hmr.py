"""Hot-update channel for the Perseus dev server.

A websocket server keeps the set of connected browser clients and pushes
small JSON events to all of them whenever something changes. Delivery is
best effort: every client is written to independently with a timeout, a
client whose write fails is dropped and disconnected, and nothing is retried
or queued. A browser whose connection closes retries with backoff and
reloads the page when it reconnects or runs out of attempts.

Wire format (one JSON object per message)::

    {"type": "reload" | "css-update" | "js-update" | "error",
     "path": "...", "paths": ["..."], "message": "...",
     "timestamp": 1700000000000, "clientId": "..."}

Only ``type`` and ``timestamp`` are always present.

Key classes:
- HmrEvent: One wire message.
- HotUpdateChannel: Websocket server with broadcast helpers.

Key functions:
- update_for_path: Pick the update type for a changed file.
- client_script: Browser bootstrap that connects to the channel.
- inject_hmr_script: Add the bootstrap tag to an HTML document.
"""

from __future__ import annotations

import asyncio
import json
import re
import time
import uuid
from collections.abc import Iterable
from dataclasses import dataclass, field
from enum import StrEnum
from pathlib import Path
from typing import Any

import structlog
import websockets

from .errors import ChannelBroadcastError

log = structlog.get_logger()

HMR_SCRIPT_PATH = "/__perseus_hmr.js"
DEFAULT_SEND_TIMEOUT = 1.0
STYLE_EXTENSIONS = (".css",)
SCRIPT_EXTENSIONS = (".js", ".mjs", ".jsx", ".ts", ".tsx")
MAX_RECONNECT_ATTEMPTS = 5

_HEAD_CLOSE_RE = re.compile(r"</head\s*>", re.IGNORECASE)
_BODY_CLOSE_RE = re.compile(r"</body\s*>", re.IGNORECASE)


class HmrEventType(StrEnum):
    RELOAD = "reload"
    CSS_UPDATE = "css-update"
    JS_UPDATE = "js-update"
    ERROR = "error"


def _now_ms() -> int:
    return int(time.time() * 1000)


@dataclass(frozen=True)
class HmrEvent:
    """A hot-update message.

    Attributes:
        type: Update kind.
        path: Single affected URL path.
        paths: Affected URL paths for batched updates.
        message: Human-readable text for ``error`` events.
        timestamp: Milliseconds since the epoch.
        client_id: Target client, when the event concerns one client.
    """

    type: HmrEventType
    path: str | None = None
    paths: tuple[str, ...] | None = None
    message: str | None = None
    timestamp: int = field(default_factory=_now_ms)
    client_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"type": str(self.type), "timestamp": self.timestamp}
        if self.path is not None:
            payload["path"] = self.path
        if self.paths is not None:
            payload["paths"] = list(self.paths)
        if self.message is not None:
            payload["message"] = self.message
        if self.client_id is not None:
            payload["clientId"] = self.client_id
        return payload

    def to_json(self) -> str:
        return json.dumps(self.to_dict())


def update_for_path(path: Path | str, url_path: str | None = None) -> HmrEvent:
    """Choose the update event for a changed file.

    Stylesheets produce ``css-update`` so the page can swap the link in
    place. Scripts produce ``js-update``, which clients currently answer
    with a full reload. Everything else (content, markup) produces
    ``reload``.

    Args:
        path: Changed file on disk.
        url_path: Public URL of the file, if it is served directly.

    Returns:
        The event to broadcast.
    """
    extension = Path(path).suffix.lower()
    target = url_path if url_path is not None else str(path)
    if extension in STYLE_EXTENSIONS:
        return HmrEvent(HmrEventType.CSS_UPDATE, path=target, paths=(target,))
    if extension in SCRIPT_EXTENSIONS:
        return HmrEvent(HmrEventType.JS_UPDATE, path=target, paths=(target,))
    return HmrEvent(HmrEventType.RELOAD, path=target)


class HotUpdateChannel:
    """Websocket server that fans hot-update events out to browsers.

    Attributes:
        host: Interface the websocket server binds to.
        port: Requested port; ``0`` picks a free one, see ``bound_port``.
        send_timeout: Seconds allowed for a single client write.
    """

    def __init__(
        self,
        host: str = "localhost",
        port: int = 3001,
        send_timeout: float = DEFAULT_SEND_TIMEOUT,
    ):
        self.host = host
        self.port = port
        self.send_timeout = send_timeout
        self._clients: dict[Any, str] = {}
        self._server: Any = None

    @property
    def client_count(self) -> int:
        return len(self._clients)

    @property
    def client_ids(self) -> list[str]:
        return list(self._clients.values())

    @property
    def bound_port(self) -> int:
        """Port the server is listening on (the requested port before start)."""
        if self._server is not None and self._server.sockets:
            return self._server.sockets[0].getsockname()[1]
        return self.port

    async def start(self) -> None:
        if self._server is not None:
            return
        self._server = await websockets.serve(self._handler, self.host, self.port)
        log.info("hmr_started", url=f"ws://{self.host}:{self.bound_port}")

    async def close(self) -> None:
        """Stop accepting connections and close every client."""
        server, self._server = self._server, None
        clients = list(self._clients)
        self._clients.clear()
        for websocket in clients:
            try:
                await websocket.close()
            except Exception as exc:
                log.debug("hmr_client_close_failed", error=str(exc))
        if server is not None:
            server.close()
            await server.wait_closed()
            log.info("hmr_stopped")

    def register(self, websocket: Any, client_id: str | None = None) -> str:
        client_id = client_id or uuid.uuid4().hex[:8]
        self._clients[websocket] = client_id
        log.debug("hmr_client_connected", client_id=client_id, clients=len(self._clients))
        return client_id

    def unregister(self, websocket: Any) -> None:
        client_id = self._clients.pop(websocket, None)
        if client_id is not None:
            log.debug("hmr_client_disconnected", client_id=client_id, clients=len(self._clients))

    async def _handler(self, websocket: Any) -> None:
        self.register(websocket)
        try:
            async for raw in websocket:
                await self.handle_message(websocket, raw)
        except websockets.ConnectionClosed:
            pass
        finally:
            self.unregister(websocket)

    async def handle_message(self, websocket: Any, raw: str | bytes) -> None:
        """Handle one message sent by a client.

        ``connect`` records the client's own id and ``ping`` is answered
        with ``pong``. Anything else is ignored.
        """
        try:
            data = json.loads(raw)
        except (TypeError, ValueError) as exc:
            log.warning("hmr_message_invalid", error=str(exc))
            return
        if not isinstance(data, dict):
            return
        kind = data.get("type")
        if kind == "connect" and data.get("id") and websocket in self._clients:
            self._clients[websocket] = str(data["id"])
            log.debug("hmr_client_identified", client_id=self._clients[websocket])
        elif kind == "ping":
            await websocket.send(json.dumps({"type": "pong"}))

    async def broadcast(self, event: HmrEvent) -> int:
        """Send ``event`` to every connected client.

        Writes run concurrently and are bounded by ``send_timeout``. A client
        whose write fails is dropped and its connection closed without
        affecting the others.

        Returns:
            Number of clients that received the event.
        """
        clients = list(self._clients.items())
        if not clients:
            return 0
        message = event.to_json()
        results = await asyncio.gather(
            *(self._send(websocket, client_id, message) for websocket, client_id in clients)
        )
        dropped = [websocket for (websocket, _), ok in zip(clients, results) if not ok]
        if dropped:
            await asyncio.gather(*(self._disconnect(websocket) for websocket in dropped))
        delivered = sum(results)
        log.debug("hmr_broadcast", type=str(event.type), delivered=delivered, clients=len(clients))
        return delivered

    async def _send(self, websocket: Any, client_id: str, message: str) -> bool:
        try:
            await asyncio.wait_for(websocket.send(message), self.send_timeout)
        except Exception as exc:
            error = ChannelBroadcastError(client_id, exc)
            log.warning("hmr_broadcast_failed", client_id=client_id, error=str(error))
            self._clients.pop(websocket, None)
            return False
        return True

    async def _disconnect(self, websocket: Any) -> None:
        # A closed socket sends the browser down its reconnect path.
        try:
            await asyncio.wait_for(websocket.close(), self.send_timeout)
        except Exception as exc:
            log.debug("hmr_client_close_failed", error=f"{type(exc).__name__}: {exc}")

    async def request_reload(self, path: str | None = None) -> int:
        return await self.broadcast(HmrEvent(HmrEventType.RELOAD, path=path))

    async def push_style_update(self, paths: Iterable[str]) -> int:
        paths = tuple(paths)
        return await self.broadcast(
            HmrEvent(HmrEventType.CSS_UPDATE, path=paths[0] if paths else None, paths=paths)
        )

    async def push_script_update(self, paths: Iterable[str]) -> int:
        paths = tuple(paths)
        return await self.broadcast(
            HmrEvent(HmrEventType.JS_UPDATE, path=paths[0] if paths else None, paths=paths)
        )

    async def push_error(self, message: str) -> int:
        return await self.broadcast(HmrEvent(HmrEventType.ERROR, message=message))

    async def notify_change(self, path: Path | str, url_path: str | None = None) -> HmrEvent:
        """Broadcast the update that matches a changed file and return it."""
        event = update_for_path(path, url_path)
        await self.broadcast(event)
        return event


_CLIENT_SCRIPT = """\
// Perseus hot-update client
(function () {{
  var socketUrl = {url};
  var maxAttempts = {max_attempts};
  var clientId = Math.random().toString(36).substring(2, 10);
  var attempts = 0;
  var timer = null;
  var socket;

  function updateStylesheet(path) {{
    if (!path) return;
    if (path.charAt(0) !== '/') path = '/' + path;
    var target = path.split('?')[0];
    var links = document.querySelectorAll('link[rel="stylesheet"]');
    for (var i = 0; i < links.length; i++) {{
      var href = links[i].getAttribute('href');
      if (!href) continue;
      var linkPath = new URL(href, window.location.href).pathname;
      if (linkPath === target || linkPath.endsWith(target)) {{
        links[i].href = href.split('?')[0] + '?t=' + Date.now();
        return;
      }}
    }}
    var link = document.createElement('link');
    link.rel = 'stylesheet';
    link.href = target + '?t=' + Date.now();
    document.head.appendChild(link);
  }}

  function connect() {{
    socket = new WebSocket(socketUrl);
    socket.addEventListener('open', function () {{
      clearTimeout(timer);
      if (attempts > 0) {{
        window.location.reload();
        return;
      }}
      socket.send(JSON.stringify({{ type: 'connect', id: clientId }}));
    }});
    socket.addEventListener('message', function (event) {{
      var data;
      try {{
        data = JSON.parse(event.data);
      }} catch (err) {{
        console.error('[perseus] Bad update message', err);
        return;
      }}
      if (data.type === 'reload' || data.type === 'js-update') {{
        window.location.reload();
      }} else if (data.type === 'css-update') {{
        (data.paths || [data.path]).forEach(updateStylesheet);
      }} else if (data.type === 'error') {{
        console.error('[perseus] ' + data.message);
      }}
    }});
    socket.addEventListener('close', function () {{
      clearTimeout(timer);
      if (attempts < maxAttempts) {{
        attempts++;
        var delay = Math.min(1000 * Math.pow(1.5, attempts), 10000);
        timer = setTimeout(connect, delay);
      }} else {{
        setTimeout(function () {{ window.location.reload(); }}, 1000);
      }}
    }});
    socket.addEventListener('error', function () {{
      socket.close();
    }});
  }}

  connect();
}})();
"""


def client_script(host: str, port: int) -> str:
    """Return the browser bootstrap script for a channel at ``host:port``.

    The script reconnects with exponential backoff capped at ten seconds,
    reloads the page once it gives up, swaps stylesheet links on
    ``css-update`` and reloads on ``reload`` and ``js-update``.
    """
    return _CLIENT_SCRIPT.format(
        url=json.dumps(f"ws://{host}:{port}"),
        max_attempts=MAX_RECONNECT_ATTEMPTS,
    )


def inject_hmr_script(html: str, src: str = HMR_SCRIPT_PATH) -> str:
    """Insert a script tag loading ``src`` into an HTML document.

    The tag goes before ``</head>``, else before ``</body>``, else at the
    end. A document that already references ``src`` is returned unchanged.
    """
    if src in html:
        return html
    tag = f'<script src="{src}"></script>'
    for pattern in (_HEAD_CLOSE_RE, _BODY_CLOSE_RE):
        match = pattern.search(html)
        if match:
            return f"{html[: match.start()]}{tag}\n{html[match.start() :]}"
    return f"{html}\n{tag}\n"
