"""Metadata and table-of-contents extraction for Perseus.

This module splits the leading metadata block from a content file, parses
it as YAML, and scans rendered markup for headings to build a table of
contents.

Key functions:
- split_frontmatter: Separate the ``---`` delimited block from the body.
- parse_frontmatter: Parse the block with ``yaml.safe_load``.
- extract_frontmatter: Tolerant combination of the two.
- extract_toc: Collect headings with ids from rendered HTML.
"""

from __future__ import annotations

import html
import re
from datetime import date
from pathlib import Path
from typing import TYPE_CHECKING, Any

import structlog
import yaml

if TYPE_CHECKING:
    from .content import TocItem

from .errors import ContentParseError

log = structlog.get_logger()

FRONTMATTER_RE = re.compile(
    r"\A---[ \t]*\r?\n(?:(.*?)\r?\n)?---[ \t]*(?:\r?\n|\Z)", re.DOTALL
)
HEADING_RE = re.compile(
    r'<h([1-6])\b[^>]*?\bid="([^"]+)"[^>]*>(.*?)</h\1\s*>',
    re.IGNORECASE | re.DOTALL,
)
TAG_RE = re.compile(r"<[^>]+>")

# Only this key keeps YAML timestamps as date objects; feeds sort on it.
DATE_KEY = "date"

DEFAULT_TOC_MIN_LEVEL = 2
DEFAULT_TOC_MAX_LEVEL = 4


def split_frontmatter(text: str) -> tuple[str | None, str]:
    """Split a leading metadata block from the body.

    Args:
        text: Raw file content.

    Returns:
        Tuple of (block text or None when there is no block, remaining body).
    """
    match = FRONTMATTER_RE.match(text)
    if not match:
        return None, text
    return match.group(1) or "", text[match.end() :]


def parse_frontmatter(block: str) -> dict[str, Any]:
    """Parse the body of a metadata block into an ordered mapping.

    Booleans and numbers come back typed, quoted values stay strings. A
    timestamp stays a date only under the ``date`` key; elsewhere it is
    kept as its ISO text.

    Args:
        block: Text between the opening and closing ``---`` lines.

    Returns:
        Mapping of keys to values, in source order.

    Raises:
        ContentParseError: If the block is not valid YAML or is not a mapping.
    """
    try:
        data = yaml.safe_load(block)
    except yaml.YAMLError as exc:
        mark = getattr(exc, "problem_mark", None)
        problem = getattr(exc, "problem", None) or str(exc)
        raise ContentParseError(
            f"Invalid metadata: {problem}", line=mark.line + 1 if mark else None
        ) from exc
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ContentParseError(f"Metadata must be a mapping, got {type(data).__name__}")

    metadata: dict[str, Any] = {}
    for key, value in data.items():
        if key is None or key == "":
            raise ContentParseError("Metadata key must not be empty")
        key = str(key)
        if isinstance(value, date) and key != DATE_KEY:
            value = value.isoformat()
        metadata[key] = value
    return metadata


def extract_frontmatter(text: str, path: Path | None = None) -> tuple[dict[str, Any], str]:
    """Extract metadata and body, falling back to empty metadata on errors.

    Args:
        text: Raw file content.
        path: Source file, used only for the warning on a bad block.

    Returns:
        Tuple of (metadata dict, body with the block removed).
    """
    block, body = split_frontmatter(text)
    if block is None:
        return {}, body
    try:
        return parse_frontmatter(block), body
    except ContentParseError as exc:
        log.warning(
            "content_metadata_invalid",
            path=str(path) if path is not None else None,
            error=str(exc),
        )
        return {}, body


def extract_toc(
    markup: str,
    min_level: int = DEFAULT_TOC_MIN_LEVEL,
    max_level: int = DEFAULT_TOC_MAX_LEVEL,
) -> list[TocItem]:
    """Collect table of contents entries from rendered HTML.

    Only heading elements that carry an ``id`` attribute are considered.

    Args:
        markup: Rendered HTML.
        min_level: Lowest heading level to include.
        max_level: Highest heading level to include.

    Returns:
        TocItem objects in document order.
    """
    # Import here to avoid circular imports
    from .content import TocItem

    items: list[TocItem] = []
    for match in HEADING_RE.finditer(markup):
        level = int(match.group(1))
        if level < min_level or level > max_level:
            continue
        text = html.unescape(TAG_RE.sub("", match.group(3))).strip()
        items.append(TocItem(level=level, id=match.group(2), text=text))
    return items
