"""Error hierarchy for Perseus.

All Perseus-specific errors inherit from PerseusError so callers can catch
them in one place. Errors that belong to a single source file carry the
offending path; errors raised by plugins carry the plugin name.

Key classes:
- BuildError: Fatal build failure with file context.
- PluginHookError: Wraps any exception raised inside a plugin hook.
- ContentParseError: Malformed metadata block (never fatal on its own).
"""

from __future__ import annotations

from pathlib import Path


class PerseusError(Exception):
    """Base error for all Perseus operations."""


class ContentFileNotFound(PerseusError, FileNotFoundError):
    """A content file requested for processing does not exist."""

    def __init__(self, path: Path):
        self.path = path
        super().__init__(f"File not found: {path}")


class FileReadError(PerseusError):
    """A content file exists but could not be read or decoded."""

    def __init__(self, path: Path, original_error: Exception | None = None):
        self.path = path
        self.original_error = original_error
        super().__init__(f"Failed to read {path}: {original_error}")


class FileWriteError(PerseusError):
    """An output file could not be written."""

    def __init__(self, path: Path, original_error: Exception | None = None):
        self.path = path
        self.original_error = original_error
        super().__init__(f"Failed to write {path}: {original_error}")


class ContentParseError(PerseusError):
    """The leading metadata block of a content file could not be parsed.

    Content processing recovers from this error by using empty metadata.
    """

    def __init__(self, message: str, line: int | None = None):
        self.message = message
        self.line = line
        location = f" (line {line})" if line is not None else ""
        super().__init__(f"{message}{location}")


class PluginHookError(PerseusError):
    """Error raised from inside a plugin hook.

    Attributes:
        plugin_name: Name of the plugin whose hook failed.
        hook: Name of the hook that was running.
        original_error: The exception the hook raised.
    """

    def __init__(self, plugin_name: str, hook: str, original_error: Exception):
        self.plugin_name = plugin_name
        self.hook = hook
        self.original_error = original_error
        super().__init__(
            f"Plugin '{plugin_name}' failed in {hook}: "
            f"{type(original_error).__name__}: {original_error}"
        )


class WatchSetupError(PerseusError):
    """The filesystem watcher could not be started for a directory."""

    def __init__(self, path: Path, original_error: Exception | None = None):
        self.path = path
        self.original_error = original_error
        reason = f": {original_error}" if original_error else ""
        super().__init__(f"Failed to watch directory {path}{reason}")


class ChannelBroadcastError(PerseusError):
    """Delivering a hot-update message to one client failed."""

    def __init__(self, client_id: str, original_error: Exception):
        self.client_id = client_id
        self.original_error = original_error
        super().__init__(
            f"Failed to deliver update to client {client_id}: "
            f"{type(original_error).__name__}: {original_error}"
        )


class BuildError(PerseusError):
    """Error during site build with file context.

    Attributes:
        source_path: Path to the source file that caused the error.
        message: Human-readable error message.
        original_error: The original exception that was caught.
    """

    def __init__(
        self,
        source_path: Path,
        message: str,
        original_error: Exception | None = None,
    ):
        self.source_path = source_path
        self.message = message
        self.original_error = original_error
        super().__init__(f"{source_path}: {message}")
