"""File watcher with per-path debouncing.

Watchdog delivers filesystem events on its own thread. They are handed to
the asyncio loop with ``call_soon_threadsafe`` and filtered there against
ignore globs and an extension allow-list. Every accepted event (re)arms a
timer for its own path, so a burst of writes to one file becomes a single
change while a pending change to another file keeps its own schedule.

Key classes:
- FileChangeEvent: A debounced, categorized change.
- ContentWatcher: Watches one directory and delivers FileChangeEvents.
"""

from __future__ import annotations

import asyncio
import inspect
import os
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from fnmatch import fnmatchcase
from pathlib import Path
from typing import Any, Literal

import structlog
from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from .errors import WatchSetupError

log = structlog.get_logger()

ChangeType = Literal["added", "changed", "removed"]
ChangeHandler = Callable[["FileChangeEvent"], Any]

DEFAULT_DEBOUNCE = 0.1
DEFAULT_IGNORED = (
    "**/node_modules/**",
    "**/.git/**",
    "**/dist/**",
    "**/*.js.map",
    "**/*.d.ts",
)
DEFAULT_WATCH_EXTENSIONS = (".md", ".mdx", ".html", ".css", ".js", ".jsx", ".ts", ".tsx")

# "moved" is only known to be a rename; existence decides at delivery time.
_RawKind = Literal["added", "changed", "removed", "moved"]


@dataclass(frozen=True)
class FileChangeEvent:
    """A debounced file change.

    Attributes:
        type: Whether the file was added, changed or removed.
        path: Absolute path of the file.
        extension: Lowercased file extension including the dot.
    """

    type: ChangeType
    path: Path
    extension: str


def _merge_kinds(previous: _RawKind | None, current: _RawKind) -> _RawKind:
    """Combine the kind of a pending change with a newer one for the same path."""
    if previous == "added" and current == "changed":
        return "added"
    if previous == "removed" and current == "added":
        return "changed"
    return current


class _WatchdogBridge(FileSystemEventHandler):
    """Forwards watchdog events from the observer thread to the event loop."""

    def __init__(self, watcher: ContentWatcher, loop: asyncio.AbstractEventLoop):
        super().__init__()
        self.watcher = watcher
        self.loop = loop

    def on_created(self, event: FileSystemEvent) -> None:
        self._forward(event, "added", event.src_path)

    def on_modified(self, event: FileSystemEvent) -> None:
        self._forward(event, "changed", event.src_path)

    def on_deleted(self, event: FileSystemEvent) -> None:
        self._forward(event, "removed", event.src_path)

    def on_moved(self, event: FileSystemEvent) -> None:
        self._forward(event, "removed", event.src_path)
        self._forward(event, "moved", event.dest_path)

    def _forward(self, event: FileSystemEvent, kind: _RawKind, path: str | bytes) -> None:
        if event.is_directory:
            return
        if isinstance(path, bytes):
            path = os.fsdecode(path)
        try:
            self.loop.call_soon_threadsafe(self.watcher.dispatch, kind, path)
        except RuntimeError:
            # Loop already closed during shutdown.
            log.debug("watch_event_dropped", path=path)


class ContentWatcher:
    """Watches a directory and delivers debounced change events.

    ``start`` must be called from a running event loop; the handler runs on
    that loop and may be a plain function or a coroutine function.

    Attributes:
        directory: Directory being watched.
        handler: Callback receiving FileChangeEvent objects.
        debounce: Quiet period in seconds before a change is delivered.
        ignored: Glob patterns matched against absolute POSIX paths.
        extensions: Allowed file extensions; empty allows everything.
    """

    def __init__(
        self,
        directory: Path | str,
        handler: ChangeHandler,
        debounce: float = DEFAULT_DEBOUNCE,
        ignored: Iterable[str] = DEFAULT_IGNORED,
        extensions: Iterable[str] = DEFAULT_WATCH_EXTENSIONS,
        recursive: bool = True,
        observer_factory: Callable[[], Any] = Observer,
    ):
        self.directory = Path(directory).absolute()
        self.handler = handler
        self.debounce = debounce
        self.ignored = tuple(ignored)
        self.extensions = tuple(ext.lower() for ext in extensions)
        self.recursive = recursive
        self._observer_factory = observer_factory
        self._observer: Any = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._timers: dict[str, asyncio.TimerHandle] = {}
        self._kinds: dict[str, _RawKind] = {}
        self._tasks: set[asyncio.Task[None]] = set()
        self._closed = False

    @property
    def pending(self) -> int:
        """Number of paths with an armed debounce timer."""
        return len(self._timers)

    @property
    def is_running(self) -> bool:
        return self._observer is not None and not self._closed

    def start(self) -> None:
        """Start the filesystem observer.

        Raises:
            WatchSetupError: If the directory does not exist or cannot be
                watched.
            RuntimeError: If called without a running event loop.
        """
        if self.is_running:
            return
        self._loop = asyncio.get_running_loop()
        if not self.directory.is_dir():
            raise WatchSetupError(self.directory)
        observer = self._observer_factory()
        try:
            observer.schedule(
                _WatchdogBridge(self, self._loop), str(self.directory), recursive=self.recursive
            )
            observer.start()
        except OSError as exc:
            raise WatchSetupError(self.directory, exc) from exc
        self._observer = observer
        self._closed = False
        log.info("watch_started", directory=str(self.directory))

    def accepts(self, path: Path) -> bool:
        """Return True if changes to ``path`` should be delivered.

        Ignore globs match the path below the watched directory, so an
        ancestor such as ``dist`` does not hide the whole tree.
        """
        try:
            posix = "/" + path.absolute().relative_to(self.directory).as_posix()
        except ValueError:
            posix = path.as_posix()
        if any(fnmatchcase(posix, pattern) for pattern in self.ignored):
            return False
        if self.extensions and path.suffix.lower() not in self.extensions:
            return False
        return True

    def dispatch(self, kind: _RawKind, path: Path | str) -> None:
        """Record a raw event and (re)arm the debounce timer for its path.

        Must run on the event loop thread.
        """
        if self._closed:
            return
        resolved = Path(os.path.abspath(path))
        if not self.accepts(resolved):
            return
        loop = self._loop or asyncio.get_running_loop()
        self._loop = loop
        key = str(resolved)
        timer = self._timers.pop(key, None)
        if timer is not None:
            timer.cancel()
        self._kinds[key] = _merge_kinds(self._kinds.get(key) if timer else None, kind)
        self._timers[key] = loop.call_later(self.debounce, self._fire, key)

    def close(self) -> None:
        """Cancel pending timers and stop the observer. Safe to call twice."""
        if self._closed:
            return
        self._closed = True
        for timer in self._timers.values():
            timer.cancel()
        self._timers.clear()
        self._kinds.clear()
        observer, self._observer = self._observer, None
        if observer is not None:
            observer.stop()
            observer.join()
        log.info("watch_stopped", directory=str(self.directory))

    def _fire(self, key: str) -> None:
        self._timers.pop(key, None)
        kind = self._kinds.pop(key, "changed")
        path = Path(key)
        if kind == "moved":
            kind = "added" if path.exists() else "removed"
        event = FileChangeEvent(type=kind, path=path, extension=path.suffix.lower())
        task = asyncio.ensure_future(self._deliver(event), loop=self._loop)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _deliver(self, event: FileChangeEvent) -> None:
        log.debug("watch_change_dispatched", type=event.type, path=str(event.path))
        try:
            result = self.handler(event)
            if inspect.isawaitable(result):
                await result
        except Exception as exc:
            log.error(
                "watch_handler_failed",
                type=event.type,
                path=str(event.path),
                error=str(exc),
                exc_info=True,
            )
