"""Route table construction for Perseus.

The route table maps URL routes to processed content. It is rebuilt in full
on every regeneration and published through a RouteTableSlot, which swaps
the whole mapping in a single assignment so readers on any thread see
either the previous table or the new one.

Key classes:
- RouteTableSlot: Owned, swappable reference to the current table.
- RouteTableBuilder: Walks a content directory and builds a table.
"""

from __future__ import annotations

import posixpath
from collections.abc import Mapping
from pathlib import Path
from types import MappingProxyType
from urllib.parse import unquote, urlsplit

import structlog

from .content import ContentFile, ContentProcessor, FileContentLoader, normalize_route
from .plugins import PluginPipeline
from .protocols import ContentLoader

log = structlog.get_logger()

RouteTable = Mapping[str, ContentFile]

_HTML_SUFFIXES = (".html", ".htm")


class RouteTableSlot:
    """Holds the current route table.

    The table itself is a read-only view; replacing it is the only way to
    change what readers see.
    """

    def __init__(self, table: Mapping[str, ContentFile] | None = None):
        self._table: RouteTable = MappingProxyType(dict(table or {}))

    @property
    def current(self) -> RouteTable:
        return self._table

    def swap(self, table: Mapping[str, ContentFile]) -> RouteTable:
        """Publish a new table and return the previous one."""
        previous = self._table
        self._table = MappingProxyType(dict(table))
        return previous

    def get(self, route: str) -> ContentFile | None:
        return self._table.get(route)

    def routes(self) -> list[str]:
        return sorted(self._table)

    def __len__(self) -> int:
        return len(self._table)


def normalize_request_path(path: str) -> str:
    """Map a request URL onto a route key.

    Query strings and fragments are dropped, percent escapes decoded, dot
    segments resolved, and ``.html`` suffixes and ``index`` pages collapsed.

    Examples:
        >>> normalize_request_path("/guide/")
        '/guide'
        >>> normalize_request_path("/guide/index.html")
        '/guide'
        >>> normalize_request_path("/about.html?x=1")
        '/about'
    """
    url_path = unquote(urlsplit(path).path) or "/"
    url_path = posixpath.normpath("/" + url_path.lstrip("/"))
    lowered = url_path.lower()
    for suffix in _HTML_SUFFIXES:
        if lowered.endswith(suffix):
            url_path = url_path[: -len(suffix)]
            break
    route = normalize_route(url_path)
    if route == "/index":
        return "/"
    if route.endswith("/index"):
        return route[: -len("/index")]
    return route


class RouteTableBuilder:
    """Builds route tables by processing every content file in a directory.

    A file that fails to process is logged and left out; the remaining
    files still produce routes.

    Attributes:
        processor: Content processor used for every file.
        pipeline: Plugin pipeline whose ``process_content_file`` hooks run
            in ``build_async``.
        loader: Content file discovery.
    """

    def __init__(
        self,
        processor: ContentProcessor,
        pipeline: PluginPipeline | None = None,
        loader: ContentLoader | None = None,
    ):
        self.processor = processor
        self.pipeline = pipeline if pipeline is not None else processor.pipeline
        self.loader = loader or FileContentLoader(processor.extensions)

    def build(self, pages_dir: Path | str) -> dict[str, ContentFile]:
        """Build a route table synchronously.

        Only synchronous transform hooks can run here, and
        ``process_content_file`` hooks are not called.

        Args:
            pages_dir: Root content directory.

        Returns:
            Mapping of route to ContentFile.
        """
        pages_dir = Path(pages_dir)
        table: dict[str, ContentFile] = {}
        for path in self._files(pages_dir):
            try:
                content_file = self.processor.process_sync(path, pages_dir)
            except Exception as exc:
                self._skip(path, exc)
                continue
            self._add(table, content_file)
        log.info("route_table_built", routes=len(table), pages_dir=str(pages_dir))
        return table

    async def build_async(self, pages_dir: Path | str) -> dict[str, ContentFile]:
        """Build a route table, running every plugin hook.

        Files are processed one at a time in sorted order. A file whose
        ``process_content_file`` hook fails is left out like any other
        per-file failure.

        Args:
            pages_dir: Root content directory.

        Returns:
            Mapping of route to ContentFile.
        """
        pages_dir = Path(pages_dir)
        table: dict[str, ContentFile] = {}
        for path in self._files(pages_dir):
            try:
                content_file = await self.processor.process(path, pages_dir)
                await self.pipeline.run_process_content_file(content_file)
            except Exception as exc:
                self._skip(path, exc)
                continue
            self._add(table, content_file)
        log.info("route_table_built", routes=len(table), pages_dir=str(pages_dir))
        return table

    def _files(self, pages_dir: Path) -> list[Path]:
        if not pages_dir.is_dir():
            log.warning("route_pages_dir_missing", pages_dir=str(pages_dir))
            return []
        return self.loader.iter_files(pages_dir)

    @staticmethod
    def _skip(path: Path, exc: Exception) -> None:
        log.warning("route_build_file_failed", path=str(path), error=str(exc))

    @staticmethod
    def _add(table: dict[str, ContentFile], content_file: ContentFile) -> None:
        existing = table.get(content_file.route)
        if existing is not None:
            # Sorted walk: the first file claiming a route keeps it.
            log.warning(
                "route_conflict",
                route=content_file.route,
                kept=str(existing.path),
                skipped=str(content_file.path),
            )
            return
        table[content_file.route] = content_file
