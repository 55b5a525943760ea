"""Content processing for Perseus.

This module turns content files (or in-memory strings) into ContentFile
objects: it separates the metadata block from the body, converts the body to
HTML, runs the plugin transform chain over the result, extracts a table of
contents and derives the URL route.

Key classes:
- ContentFile: Immutable processed unit of content.
- TocItem: One table of contents entry.
- FileContentLoader: Discovers content files under a directory.
- ContentProcessor: Processes files with caching and plugin transforms.

Key functions:
- derive_route: Map a source path to its URL route.
"""

from __future__ import annotations

import asyncio
import os
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any

import structlog

from .cache import ContentCache
from .errors import ContentFileNotFound, FileReadError
from .extractors import (
    DEFAULT_TOC_MAX_LEVEL,
    DEFAULT_TOC_MIN_LEVEL,
    extract_frontmatter,
    extract_toc,
)
from .plugins import PluginPipeline
from .protocols import Converter
from .renderers import MarkdownConverter

log = structlog.get_logger()

DEFAULT_CONTENT_EXTENSIONS = (".md", ".mdx")


@dataclass(frozen=True)
class TocItem:
    """A heading collected for the table of contents.

    Attributes:
        level: Heading level (1-6).
        id: Anchor id of the heading element.
        text: Heading text with markup removed.
    """

    level: int
    id: str
    text: str


@dataclass(frozen=True)
class ContentFile:
    """A processed content file.

    Instances served from the cache are shared, so callers that need to
    change one should work on ``copy()``.

    Attributes:
        path: Absolute source location, also the cache identity.
        route: URL path derived from ``path`` (``/`` or ``/a/b``).
        raw_body: Source text with the metadata block removed.
        metadata: Parsed metadata in source order.
        rendered_body: HTML produced from ``raw_body`` after plugin transforms.
        toc: Table of contents entries in document order.
    """

    path: Path
    route: str
    raw_body: str
    metadata: dict[str, Any] = field(default_factory=dict)
    rendered_body: str = ""
    toc: tuple[TocItem, ...] = ()

    def copy(self) -> ContentFile:
        """Return an independent copy safe to mutate."""
        return replace(self, metadata=dict(self.metadata))

    @property
    def title(self) -> str:
        """Title from metadata, else the first TOC entry, else the route."""
        title = self.metadata.get("title")
        if title not in (None, ""):
            return str(title)
        if self.toc:
            return self.toc[0].text
        return self.route


def derive_route(
    path: Path | str,
    root_dir: Path | str,
    extensions: Iterable[str] = DEFAULT_CONTENT_EXTENSIONS,
) -> str:
    """Derive the URL route for a content file.

    The extension is stripped, a trailing ``index`` segment collapses into
    its parent and the result always has a single leading slash. The root
    index maps to ``/``.

    Args:
        path: Path to the content file.
        root_dir: Content root the route is relative to.
        extensions: Extensions to strip from the final segment.

    Returns:
        Route string.

    Raises:
        ValueError: If ``path`` is not inside ``root_dir``.

    Examples:
        >>> derive_route("pages/guide/index.md", "pages")
        '/guide'
        >>> derive_route("pages/index.md", "pages")
        '/'
    """
    rel = os.path.relpath(os.path.abspath(path), os.path.abspath(root_dir))
    rel = rel.replace(os.sep, "/")
    if rel == ".." or rel.startswith("../"):
        raise ValueError(f"{path} is not inside {root_dir}")
    lowered = rel.lower()
    for ext in extensions:
        if lowered.endswith(ext.lower()):
            rel = rel[: -len(ext)]
            break
    segments = [part for part in rel.split("/") if part and part != "."]
    if segments and segments[-1] == "index":
        segments.pop()
    return "/" + "/".join(segments)


def normalize_route(route: str) -> str:
    """Normalize a URL path to route form (``/a/b``, no trailing slash)."""
    segments = [part for part in route.split("/") if part]
    return "/" + "/".join(segments)


class FileContentLoader:
    """Discovers content files under a directory.

    Attributes:
        extensions: File extensions treated as content.
    """

    def __init__(self, extensions: Iterable[str] = DEFAULT_CONTENT_EXTENSIONS):
        self.extensions = tuple(ext.lower() for ext in extensions)

    def is_content(self, path: Path) -> bool:
        return path.name.lower().endswith(self.extensions)

    def iter_files(self, content_dir: Path) -> list[Path]:
        """List all content files under ``content_dir`` recursively.

        Unreadable directories are logged and skipped. The result is sorted
        so repeated walks of an unchanged tree yield the same order.

        Args:
            content_dir: Directory to walk.

        Returns:
            Sorted list of absolute paths.
        """

        def on_error(exc: OSError) -> None:
            log.warning("content_directory_unreadable", path=exc.filename, error=str(exc))

        files: list[Path] = []
        root = Path(content_dir).absolute()
        for dirpath, dirnames, filenames in os.walk(root, onerror=on_error):
            dirnames.sort()
            for name in filenames:
                candidate = Path(dirpath) / name
                if self.is_content(candidate):
                    files.append(candidate)
        return sorted(files)


class ContentProcessor:
    """Processes content files into ContentFile objects.

    File-backed processing is cached by source path and validated against
    the file's modification time. Concurrent ``process`` calls for the same
    uncached path share a single computation.

    Attributes:
        pipeline: Plugin pipeline whose transform chain runs over the HTML.
        converter: Markdown-to-HTML converter.
        cache: Content cache.
        enable_cache: Whether file-backed results are cached.
        extract_toc: Whether to build a table of contents.
    """

    def __init__(
        self,
        pipeline: PluginPipeline | None = None,
        converter: Converter | None = None,
        cache: ContentCache | None = None,
        enable_cache: bool = True,
        extract_toc: bool = True,
        toc_min_level: int = DEFAULT_TOC_MIN_LEVEL,
        toc_max_level: int = DEFAULT_TOC_MAX_LEVEL,
        extensions: Iterable[str] = DEFAULT_CONTENT_EXTENSIONS,
        clock: Callable[[], float] = time.time,
    ):
        self.pipeline = pipeline if pipeline is not None else PluginPipeline()
        self.converter = converter or MarkdownConverter()
        self.cache = cache if cache is not None else ContentCache(clock=clock)
        self.enable_cache = enable_cache
        self.extract_toc = extract_toc
        self.toc_min_level = toc_min_level
        self.toc_max_level = toc_max_level
        self.extensions = tuple(extensions)
        self._clock = clock
        self._inflight: dict[str, asyncio.Future[ContentFile]] = {}

    @classmethod
    def from_config(
        cls, config: dict[str, Any], pipeline: PluginPipeline | None = None
    ) -> ContentProcessor:
        """Create a processor from a site configuration dictionary."""
        cache_config = config.get("cache") or {}
        return cls(
            pipeline=pipeline,
            cache=ContentCache(
                max_size=cache_config.get("max_size", 100),
                ttl=cache_config.get("ttl", 60),
            ),
            enable_cache=cache_config.get("enabled", True),
            toc_min_level=config.get("toc_min_level", DEFAULT_TOC_MIN_LEVEL),
            toc_max_level=config.get("toc_max_level", DEFAULT_TOC_MAX_LEVEL),
            extensions=config.get("content_extensions", DEFAULT_CONTENT_EXTENSIONS),
        )

    async def process(self, path: Path | str, root_dir: Path | str) -> ContentFile:
        """Process a content file, serving a fresh cached result when possible.

        Args:
            path: Path to the content file.
            root_dir: Content root used for route derivation.

        Returns:
            Processed ContentFile.

        Raises:
            ContentFileNotFound: If the file does not exist.
            FileReadError: If the file cannot be read or decoded.
            PluginHookError: If a transform hook fails.
        """
        path = Path(path).absolute()
        if not self.enable_cache:
            return await self._process_uncached(path, Path(root_dir))

        key = ContentCache.key_for(path)
        pending = self._inflight.get(key)
        if pending is not None:
            return await asyncio.shield(pending)

        cached = self._cached(path)
        if cached is not None:
            return cached

        task = asyncio.ensure_future(self._process_and_store(path, Path(root_dir)))
        self._inflight[key] = task
        try:
            return await asyncio.shield(task)
        finally:
            if self._inflight.get(key) is task:
                del self._inflight[key]

    def process_sync(self, path: Path | str, root_dir: Path | str) -> ContentFile:
        """Process a content file without an event loop.

        Only synchronous transform hooks can run on this path.
        """
        path = Path(path).absolute()
        if self.enable_cache:
            cached = self._cached(path)
            if cached is not None:
                return cached
        started = self._clock()
        raw = self._read(path)
        metadata, body, markup = self._convert(raw, path)
        markup = self.pipeline.run_transform_sync(markup)
        content_file = self._finalize(path, Path(root_dir), metadata, body, markup)
        if self.enable_cache:
            self.cache.set_content(path, content_file, started)
        return content_file

    async def process_text(
        self,
        text: str,
        root_dir: Path | str,
        path: Path | str | None = None,
    ) -> ContentFile:
        """Process an in-memory string. Results are never cached.

        Args:
            text: Raw content including an optional metadata block.
            root_dir: Content root used for route derivation.
            path: Virtual location of the content; defaults to the root index.

        Returns:
            Processed ContentFile.
        """
        root = Path(root_dir)
        virtual = Path(path).absolute() if path is not None else (root / "index.md").absolute()
        metadata, body, markup = self._convert(text, virtual)
        markup = await self.pipeline.run_transform(markup)
        return self._finalize(virtual, root, metadata, body, markup)

    def clear_cache(self) -> None:
        self.cache.clear()

    def invalidate(self, path: Path | str) -> None:
        """Drop the cached result for one source file."""
        self.cache.remove_content(Path(path).absolute())

    def cache_stats(self) -> dict[str, Any]:
        return {"size": self.cache.size(), "keys": self.cache.keys()}

    def _cached(self, path: Path) -> ContentFile | None:
        if not self.cache.is_content_fresh(path):
            return None
        cached = self.cache.get_content(path)
        if cached is not None:
            log.debug("content_cache_hit", path=str(path))
        return cached

    async def _process_and_store(self, path: Path, root_dir: Path) -> ContentFile:
        started = self._clock()
        content_file = await self._process_uncached(path, root_dir)
        self.cache.set_content(path, content_file, started)
        return content_file

    async def _process_uncached(self, path: Path, root_dir: Path) -> ContentFile:
        log.debug("content_processing", path=str(path))
        raw = self._read(path)
        metadata, body, markup = self._convert(raw, path)
        markup = await self.pipeline.run_transform(markup)
        return self._finalize(path, root_dir, metadata, body, markup)

    @staticmethod
    def _read(path: Path) -> str:
        try:
            return path.read_text(encoding="utf-8")
        except FileNotFoundError as exc:
            raise ContentFileNotFound(path) from exc
        except (OSError, UnicodeDecodeError) as exc:
            raise FileReadError(path, exc) from exc

    def _convert(self, raw: str, path: Path) -> tuple[dict[str, Any], str, str]:
        metadata, body = extract_frontmatter(raw, path)
        return metadata, body, self.converter.convert(body)

    def _finalize(
        self,
        path: Path,
        root_dir: Path,
        metadata: dict[str, Any],
        body: str,
        markup: str,
    ) -> ContentFile:
        toc = (
            tuple(extract_toc(markup, self.toc_min_level, self.toc_max_level))
            if self.extract_toc
            else ()
        )
        return ContentFile(
            path=path,
            route=derive_route(path, root_dir, self.extensions),
            raw_body=body,
            metadata=metadata,
            rendered_body=markup,
            toc=toc,
        )
