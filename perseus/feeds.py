"""Feed generation for Perseus.

This module generates the crawler-facing outputs (sitemap.xml, robots.txt,
rss.xml) from the route table. Feed generation is separate from build
orchestration so plugins can reuse the generators on their own.

Classes:
    FeedGenerator: Base class for feed generators.
    SitemapGenerator: Generates sitemap.xml files.
    RobotsGenerator: Generates robots.txt files.
    RSSGenerator: Generates RSS feed files for dated content.
    FeedRegistry: Registry for managing feed generators.

Functions:
    create_default_feed_registry: Create a registry with default generators.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Iterable
from datetime import date, datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING, Any
from xml.sax.saxutils import escape

from .errors import FileWriteError
from .utils import join_root_url

if TYPE_CHECKING:
    from .content import ContentFile


def _lastmod(content_file: ContentFile) -> str:
    """Return the modification date of a content file as YYYY-MM-DD."""
    try:
        stamp = content_file.path.stat().st_mtime
    except OSError:
        stamp = datetime.now(timezone.utc).timestamp()
    return datetime.fromtimestamp(stamp, timezone.utc).strftime("%Y-%m-%d")


def _published(content_file: ContentFile) -> datetime | None:
    value = content_file.metadata.get("date")
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day, tzinfo=timezone.utc)
    if isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value)
        except ValueError:
            return None
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    return None


class FeedGenerator(ABC):
    """Abstract base class for feed generators.

    Subclasses implement specific output formats.
    """

    @property
    @abstractmethod
    def filename(self) -> str:
        """Return the output filename, such as 'sitemap.xml'."""
        ...

    @abstractmethod
    def generate(
        self,
        content_files: Iterable[ContentFile],
        data: dict[str, Any],
    ) -> str | None:
        """Generate feed content.

        Args:
            content_files: Processed content to include.
            data: Site configuration containing the base URL.

        Returns:
            Feed content, or None if the feed cannot be generated
            (e.g., no base URL configured).
        """
        ...

    def write(
        self,
        output_dir: Path,
        content_files: Iterable[ContentFile],
        data: dict[str, Any],
    ) -> bool:
        """Generate and write the feed to the output directory.

        Returns:
            True if the feed was written, False if skipped.

        Raises:
            FileWriteError: If the file cannot be written.
        """
        content = self.generate(content_files, data)
        if content is None:
            return False
        output_path = Path(output_dir) / self.filename
        try:
            output_path.parent.mkdir(parents=True, exist_ok=True)
            output_path.write_text(content, encoding="utf-8")
        except OSError as exc:
            raise FileWriteError(output_path, exc) from exc
        return True


class SitemapGenerator(FeedGenerator):
    """Generates sitemap.xml following the sitemaps.org protocol.

    Requires 'url' in site data to generate absolute URLs.
    """

    @property
    def filename(self) -> str:
        return "sitemap.xml"

    def generate(
        self,
        content_files: Iterable[ContentFile],
        data: dict[str, Any],
    ) -> str | None:
        base_url = str(data.get("url", "")).rstrip("/")
        if not base_url:
            return None

        lines = [
            '<?xml version="1.0" encoding="UTF-8"?>',
            '<urlset xmlns="http://www.sitemaps.org/schemas/sitemap/0.9">',
        ]
        for content_file in sorted(content_files, key=lambda c: c.route):
            loc = escape(join_root_url(base_url, content_file.route))
            lines.append(
                f"  <url><loc>{loc}</loc><lastmod>{_lastmod(content_file)}</lastmod></url>"
            )
        lines.append("</urlset>")
        return "\n".join(lines) + "\n"


class RobotsGenerator(FeedGenerator):
    """Generates robots.txt pointing crawlers at the sitemap."""

    @property
    def filename(self) -> str:
        return "robots.txt"

    def generate(
        self,
        content_files: Iterable[ContentFile],
        data: dict[str, Any],
    ) -> str | None:
        base_url = str(data.get("url", "")).rstrip("/")
        if not base_url:
            return None
        return f"User-agent: *\nAllow: /\n\nSitemap: {join_root_url(base_url, 'sitemap.xml')}\n"


class RSSGenerator(FeedGenerator):
    """Generates an RSS 2.0 feed from content that has a ``date``.

    Items are sorted newest first. Content without a parsable ``date``
    is left out; if nothing is dated, no feed is written.
    """

    @property
    def filename(self) -> str:
        return "rss.xml"

    def generate(
        self,
        content_files: Iterable[ContentFile],
        data: dict[str, Any],
    ) -> str | None:
        base_url = str(data.get("url", "")).rstrip("/")
        title = data.get("title", "Perseus Feed")
        if not base_url:
            return None

        dated = [(published, c) for c in content_files if (published := _published(c))]
        if not dated:
            return None

        items = []
        for published, content_file in sorted(dated, key=lambda item: item[0], reverse=True):
            link = escape(join_root_url(base_url, content_file.route))
            description = content_file.metadata.get("description") or content_file.title
            items.append(
                f"<item><title>{escape(content_file.title)}</title><link>{link}</link>"
                f"<description>{escape(str(description))}</description>"
                f"<pubDate>{published.strftime('%a, %d %b %Y %H:%M:%S +0000')}</pubDate></item>"
            )

        build_date = datetime.now(timezone.utc).strftime("%a, %d %b %Y %H:%M:%S +0000")
        rss = [
            '<?xml version="1.0" encoding="UTF-8"?>',
            '<rss version="2.0"><channel>',
            f"<title>{escape(str(title))}</title>",
            f"<link>{escape(base_url)}</link>",
            f"<lastBuildDate>{build_date}</lastBuildDate>",
        ]
        rss.extend(items)
        rss.append("</channel></rss>")
        return "\n".join(rss) + "\n"


class FeedRegistry:
    """Registry for managing feed generators.

    Attributes:
        _generators: List of registered feed generators.
    """

    def __init__(self) -> None:
        self._generators: list[FeedGenerator] = []

    def register(self, generator: FeedGenerator) -> None:
        self._generators.append(generator)

    def generate_all(
        self,
        output_dir: Path,
        content_files: Iterable[ContentFile],
        data: dict[str, Any],
    ) -> list[str]:
        """Generate all registered feeds.

        Args:
            output_dir: Directory to write feed files to.
            content_files: Processed content from the route table.
            data: Site configuration.

        Returns:
            List of filenames that were generated.
        """
        # Convert to list to allow multiple iterations
        files = list(content_files)
        generated = []
        for generator in self._generators:
            if generator.write(output_dir, files, data):
                generated.append(generator.filename)
        return generated


def create_default_feed_registry() -> FeedRegistry:
    """Create a registry with sitemap, robots and RSS generators."""
    registry = FeedRegistry()
    registry.register(SitemapGenerator())
    registry.register(RobotsGenerator())
    registry.register(RSSGenerator())
    return registry
