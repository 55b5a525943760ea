"""Utility functions for Perseus.

Small helpers shared by the dev server and the static build: output
directory management, URL joining, and content-type and cache-control
resolution for static responses.
"""

from __future__ import annotations

import shutil
from collections.abc import Mapping
from fnmatch import fnmatchcase
from pathlib import Path

DEFAULT_CONTENT_TYPE = "application/octet-stream"

CONTENT_TYPES = {
    ".html": "text/html",
    ".css": "text/css",
    ".js": "application/javascript",
    ".mjs": "application/javascript",
    ".json": "application/json",
    ".png": "image/png",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".gif": "image/gif",
    ".svg": "image/svg+xml",
    ".webp": "image/webp",
    ".ico": "image/x-icon",
    ".txt": "text/plain",
    ".md": "text/markdown",
    ".pdf": "application/pdf",
    ".xml": "application/xml",
    ".zip": "application/zip",
    ".woff": "font/woff",
    ".woff2": "font/woff2",
    ".ttf": "font/ttf",
    ".otf": "font/otf",
    ".mp4": "video/mp4",
    ".webm": "video/webm",
    ".mp3": "audio/mpeg",
    ".wav": "audio/wav",
}

DEFAULT_CACHE_CONTROL = {
    "image/*": "public, max-age=86400",
    "text/css": "public, max-age=86400",
    "application/javascript": "public, max-age=86400",
    "text/html": "no-cache",
}

_TEXT_PREFIXES = ("text/",)
_TEXT_TYPES = ("application/javascript", "application/json", "application/xml", "image/svg+xml")


def ensure_clean_dir(path: Path) -> None:
    """Ensure a directory exists and is empty.

    Args:
        path: Directory path to clean or create.
    """
    if path.exists():
        shutil.rmtree(str(path))
    path.mkdir(parents=True, exist_ok=True)


def join_root_url(root_url: str, path: str) -> str:
    """Join a root URL with a path, avoiding doubled slashes.

    Examples:
        >>> join_root_url("https://example.com/", "/about")
        'https://example.com/about'
    """
    return root_url.rstrip("/") + "/" + path.lstrip("/")


def content_type_for(path: Path | str) -> str:
    """Resolve the MIME type of a file from its extension.

    Text types get a ``charset=utf-8`` parameter.
    """
    content_type = CONTENT_TYPES.get(Path(path).suffix.lower(), DEFAULT_CONTENT_TYPE)
    if content_type.startswith(_TEXT_PREFIXES) or content_type in _TEXT_TYPES:
        return f"{content_type}; charset=utf-8"
    return content_type


def cache_control_for(
    content_type: str, cache_control: Mapping[str, str] | None = None
) -> str | None:
    """Resolve the Cache-Control header for a content type.

    An exact match wins over wildcard patterns such as ``image/*``. An empty
    or missing mapping falls back to DEFAULT_CACHE_CONTROL.

    Args:
        content_type: MIME type, optionally with parameters.
        cache_control: Mapping of content type or pattern to header value.

    Returns:
        Header value, or None when nothing matches.
    """
    mapping = cache_control or DEFAULT_CACHE_CONTROL
    base_type = content_type.split(";", 1)[0].strip().lower()
    if base_type in mapping:
        return mapping[base_type]
    for pattern, value in mapping.items():
        if "*" in pattern and fnmatchcase(base_type, pattern.lower()):
            return value
    return None
