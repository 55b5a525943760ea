"""Static asset handling for Perseus.

The static directory is handed to a bundler collaborator that writes the
build outputs. The default bundler copies files as-is, keeping their path
relative to the static directory.

Key components:
- CopyBundler: Default implementation of the Bundler protocol.
- AssetPipeline: Collects static files and runs the bundler.
"""

from __future__ import annotations

import shutil
from pathlib import Path

import structlog

from .errors import FileWriteError
from .protocols import Bundler

log = structlog.get_logger()


class CopyBundler:
    """Copies files into the output directory unchanged.

    Attributes:
        source_dir: Root the copied files are made relative to.
    """

    def __init__(self, source_dir: Path):
        self.source_dir = Path(source_dir)

    def bundle(self, files: list[Path], output_dir: Path) -> list[Path]:
        """Copy ``files`` below ``output_dir``.

        Raises:
            FileWriteError: If a file cannot be copied.
        """
        written = []
        for item in files:
            dest = Path(output_dir) / Path(item).relative_to(self.source_dir)
            try:
                dest.parent.mkdir(parents=True, exist_ok=True)
                shutil.copy2(item, dest)
            except OSError as exc:
                raise FileWriteError(dest, exc) from exc
            written.append(dest)
        return written


class AssetPipeline:
    """Runs the bundler over every file in the static directory.

    Attributes:
        static_dir: Directory containing static assets.
        output_dir: Directory where outputs are written.
        bundler: Bundler collaborator.
    """

    def __init__(self, static_dir: Path, output_dir: Path, bundler: Bundler | None = None):
        self.static_dir = Path(static_dir)
        self.output_dir = Path(output_dir)
        self.bundler = bundler or CopyBundler(self.static_dir)

    def run(self) -> list[Path]:
        """Bundle all static files. Returns the written paths."""
        if not self.static_dir.is_dir():
            return []
        files = sorted(item for item in self.static_dir.rglob("*") if item.is_file())
        outputs = self.bundler.bundle(files, self.output_dir)
        log.info("assets_bundled", files=len(files), outputs=len(outputs))
        return outputs
