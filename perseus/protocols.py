"""Protocol definitions for Perseus.

This module defines the boundaries between the core pipeline and its
external collaborators: the Markdown converter, the layout renderer, the
static asset bundler and the content loader.

These protocols enable:
- Loose coupling between the pipeline and pluggable collaborators
- Easy testing through fake implementations
"""

from __future__ import annotations

from abc import abstractmethod
from pathlib import Path
from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from .content import ContentFile


@runtime_checkable
class Converter(Protocol):
    """Protocol for converting a metadata-free body to markup."""

    @abstractmethod
    def convert(self, text: str) -> str:
        """Convert source text to HTML.

        Args:
            text: Body without the metadata block.

        Returns:
            Rendered HTML string.
        """
        ...


@runtime_checkable
class LayoutRenderer(Protocol):
    """Protocol for wrapping a processed content file in its layout.

    Implementations turn a ContentFile into a complete HTML document.
    """

    @abstractmethod
    def render(self, content_file: ContentFile, routes: list[str]) -> str:
        """Render a content file to a full page.

        Args:
            content_file: Processed content.
            routes: All routes of the site, for navigation.

        Returns:
            Rendered HTML document.
        """
        ...


@runtime_checkable
class Bundler(Protocol):
    """Protocol for the static asset bundler.

    The bundling algorithm itself is opaque to the pipeline.
    """

    @abstractmethod
    def bundle(self, files: list[Path], output_dir: Path) -> list[Path]:
        """Bundle asset files into the output directory.

        Args:
            files: Source asset files.
            output_dir: Destination root.

        Returns:
            Paths of the written outputs.
        """
        ...


@runtime_checkable
class ContentLoader(Protocol):
    """Protocol for discovering content files.

    This separates file discovery from content processing.
    """

    @abstractmethod
    def iter_files(self, content_dir: Path) -> list[Path]:
        """List all content files under a directory.

        Args:
            content_dir: Directory to walk recursively.

        Returns:
            List of paths to content files.
        """
        ...
