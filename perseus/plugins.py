"""Plugin pipeline for Perseus.

A plugin is a named record of optional hooks. The pipeline runs each hook
across all plugins in registration order, awaiting one before starting the
next, and wraps anything a hook raises in PluginHookError. Deciding whether
a failure aborts the surrounding work is left to the caller.

Hooks:
- build_start() / build_end(): once per build or dev session.
- transform(markup) -> markup: left fold over the rendered HTML.
- process_content_file(content_file): observe each produced file.
- configure_server(server): receive the dev server when it starts.

Any hook may be a plain function or return an awaitable.

Key classes:
- Plugin: Hook record.
- PluginPipeline: Ordered plugin list with hook runners.
"""

from __future__ import annotations

import inspect
from collections.abc import Awaitable, Callable, Iterable, Iterator
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any

import structlog

from .errors import PluginHookError
from .feeds import SitemapGenerator

if TYPE_CHECKING:
    from .content import ContentFile

log = structlog.get_logger()

HOOK_NAMES = (
    "build_start",
    "build_end",
    "transform",
    "process_content_file",
    "configure_server",
)


@dataclass
class Plugin:
    """A named set of optional lifecycle hooks.

    Attributes:
        name: Unique plugin name used in error messages.
        build_start: Called when a build or dev session starts.
        build_end: Called when a build or dev session ends.
        transform: Receives rendered markup and returns new markup.
        process_content_file: Receives every produced ContentFile.
        configure_server: Receives the dev server handle.
        options: Free-form plugin settings.
    """

    name: str
    build_start: Callable[[], Any] | None = None
    build_end: Callable[[], Any] | None = None
    transform: Callable[[str], str | Awaitable[str]] | None = None
    process_content_file: Callable[[ContentFile], Any] | None = None
    configure_server: Callable[[Any], Any] | None = None
    options: dict[str, Any] = field(default_factory=dict)

    def hooks(self) -> list[str]:
        """Return the names of the hooks this plugin implements."""
        return [name for name in HOOK_NAMES if getattr(self, name) is not None]


class PluginPipeline:
    """Ordered collection of plugins.

    Registration order is execution order for every hook.
    """

    def __init__(self, plugins: Iterable[Plugin] = ()):
        self._plugins: list[Plugin] = []
        for plugin in plugins:
            self.add(plugin)

    def add(self, plugin: Plugin) -> None:
        """Register a plugin at the end of the pipeline.

        Raises:
            ValueError: If a plugin with the same name is registered.
        """
        if self.get(plugin.name) is not None:
            raise ValueError(f"Plugin '{plugin.name}' is already registered")
        self._plugins.append(plugin)
        log.debug("plugin_registered", plugin=plugin.name, hooks=plugin.hooks())

    def remove(self, name: str) -> bool:
        """Unregister a plugin by name. Returns True if it was registered."""
        for index, plugin in enumerate(self._plugins):
            if plugin.name == name:
                del self._plugins[index]
                return True
        return False

    def get(self, name: str) -> Plugin | None:
        for plugin in self._plugins:
            if plugin.name == name:
                return plugin
        return None

    @property
    def names(self) -> list[str]:
        return [plugin.name for plugin in self._plugins]

    def __iter__(self) -> Iterator[Plugin]:
        return iter(list(self._plugins))

    def __len__(self) -> int:
        return len(self._plugins)

    async def run_build_start(self) -> None:
        for plugin, hook in self._with_hook("build_start"):
            await self._call(plugin, "build_start", hook)

    async def run_build_end(self) -> None:
        for plugin, hook in self._with_hook("build_end"):
            await self._call(plugin, "build_end", hook)

    async def run_transform(self, markup: str) -> str:
        """Fold ``markup`` through every transform hook.

        Args:
            markup: Rendered HTML.

        Returns:
            The output of the last transform hook.

        Raises:
            PluginHookError: If a hook raises or returns a non-string.
        """
        for plugin, hook in self._with_hook("transform"):
            markup = self._check_markup(plugin, await self._call(plugin, "transform", hook, markup))
        return markup

    def run_transform_sync(self, markup: str) -> str:
        """Fold ``markup`` through every transform hook without an event loop.

        Raises:
            PluginHookError: If a hook raises, returns a non-string or
                returns an awaitable.
        """
        for plugin, hook in self._with_hook("transform"):
            try:
                result = hook(markup)
            except Exception as exc:
                raise self._wrap(plugin, "transform", exc) from exc
            if inspect.isawaitable(result):
                if inspect.iscoroutine(result):
                    result.close()
                exc = TypeError("asynchronous transform cannot run in a synchronous build")
                raise self._wrap(plugin, "transform", exc)
            markup = self._check_markup(plugin, result)
        return markup

    async def run_process_content_file(self, content_file: ContentFile) -> None:
        for plugin, hook in self._with_hook("process_content_file"):
            await self._call(plugin, "process_content_file", hook, content_file)

    async def run_configure_server(self, server: Any) -> None:
        for plugin, hook in self._with_hook("configure_server"):
            await self._call(plugin, "configure_server", hook, server)

    def _with_hook(self, name: str) -> list[tuple[Plugin, Callable[..., Any]]]:
        return [
            (plugin, getattr(plugin, name))
            for plugin in self._plugins
            if getattr(plugin, name) is not None
        ]

    async def _call(self, plugin: Plugin, name: str, hook: Callable[..., Any], *args: Any) -> Any:
        try:
            result = hook(*args)
            if inspect.isawaitable(result):
                result = await result
        except Exception as exc:
            raise self._wrap(plugin, name, exc) from exc
        return result

    def _check_markup(self, plugin: Plugin, result: Any) -> str:
        if not isinstance(result, str):
            exc = TypeError(f"transform returned {type(result).__name__}, expected str")
            raise self._wrap(plugin, "transform", exc)
        return result

    @staticmethod
    def _wrap(plugin: Plugin, name: str, exc: Exception) -> PluginHookError:
        log.error("plugin_hook_failed", plugin=plugin.name, hook=name, error=str(exc))
        return PluginHookError(plugin.name, name, exc)


def sitemap_plugin(output_dir: Path | str, base_url: str) -> Plugin:
    """Create a plugin that writes sitemap.xml from every processed file.

    Routes are collected by ``process_content_file`` and written once on
    ``build_end``. Collection restarts on every ``build_start``.

    Args:
        output_dir: Directory that receives sitemap.xml.
        base_url: Absolute site URL prefixed to every route.

    Returns:
        Configured plugin.
    """
    collected: dict[str, ContentFile] = {}
    generator = SitemapGenerator()

    def build_start() -> None:
        collected.clear()

    def process_content_file(content_file: ContentFile) -> None:
        collected[content_file.route] = content_file

    def build_end() -> None:
        if generator.write(Path(output_dir), collected.values(), {"url": base_url}):
            log.info("sitemap_written", routes=len(collected), output_dir=str(output_dir))

    return Plugin(
        name="sitemap",
        build_start=build_start,
        build_end=build_end,
        process_content_file=process_content_file,
        options={"output_dir": str(output_dir), "base_url": base_url},
    )
