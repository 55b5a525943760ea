"""Development server for Perseus.

Serves the site straight from the route table with hot updates:
- Resolves requests against the current route table, then static files.
- Injects the hot-update bootstrap script into HTML responses.
- Rejects directory listings and missing paths with a 404 (serving 404.html when present).
- Watches the pages, static and layouts folders and pushes updates to browsers.

The HTTP server runs in a thread, as the standard library server does;
everything else (plugin hooks, rebuilds, watchers, the websocket channel)
runs on one asyncio loop. Request threads only read the route table, which
is published by swapping one reference.

Key classes:
- DevServer: Main class for running the development server.
- Response: A resolved HTTP response.
"""

from __future__ import annotations

import asyncio
import functools
import io
import threading
from collections.abc import Iterable
from dataclasses import dataclass, field
from http.server import SimpleHTTPRequestHandler, ThreadingHTTPServer
from pathlib import Path
from urllib.parse import unquote, urlsplit

import structlog
from markupsafe import escape

from .build import create_processor, load_config
from .errors import WatchSetupError
from .hmr import HMR_SCRIPT_PATH, HotUpdateChannel, client_script, inject_hmr_script
from .plugins import Plugin, PluginPipeline
from .routes import RouteTableBuilder, RouteTableSlot, normalize_request_path
from .templates import LayoutEngine
from .utils import cache_control_for, content_type_for
from .watcher import ContentWatcher, FileChangeEvent

log = structlog.get_logger()


@dataclass
class Response:
    """A resolved HTTP response.

    Attributes:
        status: HTTP status code.
        body: Encoded response body.
        headers: Response headers.
    """

    status: int
    body: bytes
    headers: dict[str, str] = field(default_factory=dict)


class _DevRequestHandler(SimpleHTTPRequestHandler):
    """HTTP request handler that delegates resolution to the DevServer.

    Attributes:
        dev_server: Server whose ``resolve`` answers every request.
    """

    dev_server: DevServer

    def send_head(self):
        response = self.dev_server.resolve(self.path)
        self.send_response(response.status)
        for name, value in response.headers.items():
            self.send_header(name, value)
        self.send_header("Content-Length", str(len(response.body)))
        self.end_headers()
        return io.BytesIO(response.body)

    def list_directory(self, path):  # pragma: no cover - send_head never lists
        return None

    def log_message(self, format, *args):
        log.debug("http_request", client=self.address_string(), request=format % args)


class DevServer:
    """Development server with hot updates.

    Attributes:
        project_root: Root directory of the project.
        config: Site configuration.
        http_port: Port for the HTTP server.
        hmr_port: Port for the hot-update websocket server.
        pipeline: Plugin pipeline for the session.
        processor: Content processor shared by every rebuild.
        builder: Route table builder.
        routes: Slot holding the current route table.
        channel: Hot-update channel.
        renderer: Layout renderer for routes.
        headers: Extra headers added to every response. Plugins may change
            them from ``configure_server``.
    """

    def __init__(
        self,
        project_root: Path,
        http_port: int | None = None,
        hmr_port: int | None = None,
        plugins: Iterable[Plugin] = (),
    ):
        """Initialize the development server.

        Args:
            project_root: Root directory of the project.
            http_port: Optional override for the HTTP port.
            hmr_port: Optional override for the websocket port. Defaults to
                ``http_port + 1`` when only the HTTP port is overridden.
            plugins: Plugins to run, in order.
        """
        self.project_root = Path(project_root)
        self.config = load_config(self.project_root)
        self.host = str(self.config.get("host", "localhost"))
        self.http_port = int(http_port if http_port is not None else self.config["port"])
        if hmr_port is not None:
            self.hmr_port = int(hmr_port)
        elif http_port is not None:
            self.hmr_port = self.http_port + 1
        else:
            self.hmr_port = int(self.config["hmr_port"])

        self.pages_dir = self.project_root / self.config["pages_dir"]
        self.static_dir = self.project_root / self.config["static_dir"]
        self.layouts_dir = self.project_root / self.config["layouts_dir"]

        self.pipeline = PluginPipeline(plugins)
        self.processor = create_processor(self.config, self.pipeline)
        self.builder = RouteTableBuilder(self.processor, self.pipeline)
        self.routes = RouteTableSlot()
        self.channel = HotUpdateChannel(self.host, self.hmr_port)
        self.renderer = LayoutEngine(self.layouts_dir, self.config)
        self.headers: dict[str, str] = {}

        self._httpd: ThreadingHTTPServer | None = None
        self._watchers: list[ContentWatcher] = []
        self._loop: asyncio.AbstractEventLoop | None = None
        self._stop_event: asyncio.Event | None = None
        self._rebuild_lock: asyncio.Lock | None = None
        self._running = False

    def start(self) -> None:  # pragma: no cover - integration path
        """Run the server until interrupted."""
        try:
            asyncio.run(self.serve())
        except KeyboardInterrupt:
            log.info("dev_server_interrupted")

    def stop(self) -> None:
        """Ask a running server to shut down. Safe to call from any thread."""
        if self._loop is not None and self._stop_event is not None:
            self._loop.call_soon_threadsafe(self._stop_event.set)

    async def serve(self) -> None:  # pragma: no cover - integration path
        await self.open()
        try:
            await self._stop_event.wait()
        finally:
            await self.close()

    async def open(self) -> None:
        """Start a dev session.

        Runs build_start hooks, builds the initial route table, runs
        configure_server hooks, then starts the websocket channel, the HTTP
        server and the watchers.
        """
        self._loop = asyncio.get_running_loop()
        self._stop_event = asyncio.Event()
        self._rebuild_lock = asyncio.Lock()
        await self.pipeline.run_build_start()
        self._running = True
        self.routes.swap(await self.builder.build_async(self.pages_dir))
        await self.pipeline.run_configure_server(self)
        await self.channel.start()
        self._start_http()
        self._start_watchers()

    async def close(self) -> None:
        """Stop watchers, client connections and the HTTP server, then run build_end hooks."""
        if not self._running:
            return
        self._running = False
        for watcher in self._watchers:
            watcher.close()
        self._watchers.clear()
        await self.channel.close()
        httpd, self._httpd = self._httpd, None
        if httpd is not None:
            await asyncio.to_thread(httpd.shutdown)
            httpd.server_close()
        await self.pipeline.run_build_end()
        log.info("dev_server_stopped")

    def _start_http(self) -> None:
        handler_cls = type(
            "_DevRequestHandlerWithServer",
            (_DevRequestHandler,),
            {"dev_server": self},
        )
        handler = functools.partial(handler_cls, directory=str(self.static_dir))
        httpd = ThreadingHTTPServer((self.host, self.http_port), handler)
        httpd.daemon_threads = True
        self._httpd = httpd
        threading.Thread(target=httpd.serve_forever, name="perseus-http", daemon=True).start()
        log.info("dev_server_started", url=f"http://{self.host}:{self.http_port}")

    def _start_watchers(self) -> None:
        watch_config = self.config.get("watch") or {}
        debounce = float(watch_config.get("debounce_ms", 100)) / 1000
        ignored = watch_config.get("ignored", ())
        extensions = watch_config.get("extensions", ())
        for directory in (self.pages_dir, self.static_dir, self.layouts_dir):
            if not directory.is_dir():
                continue
            watcher = ContentWatcher(
                directory,
                self.handle_change,
                debounce=debounce,
                ignored=ignored,
                extensions=() if directory == self.static_dir else extensions,
            )
            try:
                watcher.start()
            except WatchSetupError as exc:
                log.error("watch_setup_failed", directory=str(directory), error=str(exc))
                continue
            self._watchers.append(watcher)

    async def handle_change(self, event: FileChangeEvent) -> None:
        """React to a debounced file change.

        Content files invalidate their cache entry and trigger a full route
        rebuild followed by a reload. Any other watched file pushes the
        update chosen by its extension, addressed by its path below the
        watched directory. Removals reload.
        """
        log.info("file_changed", type=event.type, path=str(event.path))
        if _is_within(event.path, self.pages_dir) and event.extension in self.processor.extensions:
            self.processor.invalidate(event.path)
            if await self.rebuild() and event.type != "removed":
                await self._report_unprocessed(event.path)
            return
        url_path = self._watched_url_path(event.path)
        if event.type == "removed":
            await self.channel.request_reload(url_path)
        else:
            await self.channel.notify_change(event.path, url_path)

    def _watched_url_path(self, path: Path) -> str | None:
        for directory in (self.static_dir, self.pages_dir, self.layouts_dir):
            if _is_within(path, directory):
                return "/" + path.absolute().relative_to(directory.absolute()).as_posix()
        return None

    async def rebuild(self) -> bool:
        """Rebuild the whole route table and swap it in.

        Returns:
            True if the new table was published and a reload requested.
        """
        lock = self._rebuild_lock or asyncio.Lock()
        self._rebuild_lock = lock
        async with lock:
            try:
                table = await self.builder.build_async(self.pages_dir)
            except Exception as exc:
                log.error("route_rebuild_failed", error=str(exc))
                await self.channel.push_error(f"Rebuild failed: {exc}")
                return False
            self.routes.swap(table)
        await self.channel.request_reload()
        return True

    async def _report_unprocessed(self, path: Path) -> None:
        """Push an error event when an existing content file produced no route."""
        resolved = path.absolute()
        if any(content_file.path == resolved for content_file in self.routes.current.values()):
            return
        if resolved.exists():
            rel = resolved.relative_to(self.pages_dir.absolute()).as_posix()
            await self.channel.push_error(f"Failed to process {rel}")

    def resolve(self, request_path: str) -> Response:
        """Resolve a request path to a response.

        Order: hot-update script, route table, static file, 404.

        Args:
            request_path: Raw request target, possibly with a query string.

        Returns:
            Response to send.
        """
        url_path = urlsplit(request_path).path or "/"
        if url_path == HMR_SCRIPT_PATH:
            script = client_script(self.host, self.channel.bound_port)
            return self._response(200, script.encode("utf-8"), "application/javascript; charset=utf-8")

        content_file = self.routes.get(normalize_request_path(url_path))
        if content_file is not None:
            try:
                html = self.renderer.render(content_file, self.routes.routes())
            except Exception as exc:
                log.error("route_render_failed", path=str(content_file.path), error=str(exc))
                return self._html(500, f"<h1>Render error</h1><pre>{escape(str(exc))}</pre>")
            return self._html(200, html)

        static_file = self._static_file(url_path)
        if static_file is not None:
            return self._serve_file(static_file)
        return self._not_found()

    def _static_file(self, url_path: str) -> Path | None:
        root = self.static_dir.resolve()
        candidate = (root / unquote(url_path).lstrip("/")).resolve()
        if candidate != root and root not in candidate.parents:
            return None
        if candidate.is_dir():
            candidate = candidate / "index.html"
        return candidate if candidate.is_file() else None

    def _serve_file(self, path: Path, status: int = 200) -> Response:
        content_type = content_type_for(path)
        body = path.read_bytes()
        if content_type.startswith("text/html"):
            try:
                body = inject_hmr_script(body.decode("utf-8")).encode("utf-8")
            except UnicodeDecodeError:
                log.warning("hmr_script_not_injected", path=str(path), reason="not utf-8")
                content_type = content_type.split(";")[0]
        return self._response(status, body, content_type)

    def _not_found(self) -> Response:
        error_page = self.static_dir / "404.html"
        if error_page.is_file():
            return self._serve_file(error_page, status=404)
        return self._html(404, "<h1>404 Not Found</h1>")

    def _html(self, status: int, html: str) -> Response:
        body = inject_hmr_script(html).encode("utf-8")
        return self._response(status, body, "text/html; charset=utf-8")

    def _response(self, status: int, body: bytes, content_type: str) -> Response:
        headers = {"Content-Type": content_type}
        cache_control = cache_control_for(content_type, self.config.get("cache_control"))
        if cache_control:
            headers["Cache-Control"] = cache_control
        headers.update(self.headers)
        return Response(status=status, body=body, headers=headers)


def _is_within(path: Path, directory: Path) -> bool:
    try:
        path.absolute().relative_to(directory.absolute())
    except ValueError:
        return False
    return True


