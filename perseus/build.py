"""Site building functionality for Perseus.

This module loads configuration and produces the static site: it builds the
route table through the plugin pipeline, renders every route with its
layout, copies static assets and writes the crawler feeds.

Key functions:
- build_site: Build the entire site.
- load_config: Load site configuration from perseus.yaml.
"""

from __future__ import annotations

import asyncio
import copy
from collections.abc import Iterable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import structlog
import yaml
from jinja2 import TemplateSyntaxError

from .assets import AssetPipeline
from .content import ContentFile, ContentProcessor
from .errors import BuildError, FileWriteError
from .feeds import create_default_feed_registry
from .plugins import Plugin, PluginPipeline
from .routes import RouteTableBuilder
from .templates import LayoutEngine
from .utils import ensure_clean_dir

log = structlog.get_logger()

CONFIG_FILENAME = "perseus.yaml"

DEFAULT_CONFIG: dict[str, Any] = {
    "title": "Perseus Site",
    "url": "",
    "pages_dir": "pages",
    "static_dir": "public",
    "layouts_dir": "layouts",
    "output_dir": "dist",
    "host": "localhost",
    "port": 3000,
    "hmr_port": None,
    "content_extensions": [".md", ".mdx"],
    "toc_min_level": 2,
    "toc_max_level": 4,
    "cache": {
        "enabled": True,
        "max_size": 100,
        "ttl": 60,
    },
    "watch": {
        "debounce_ms": 100,
        "ignored": [
            "**/node_modules/**",
            "**/.git/**",
            "**/dist/**",
            "**/*.js.map",
            "**/*.d.ts",
        ],
        "extensions": [".md", ".mdx", ".html", ".css", ".js", ".jsx", ".ts", ".tsx"],
    },
    "cache_control": {},
}


@dataclass
class BuildResult:
    """Result of a site build operation.

    Attributes:
        routes: Route table the site was rendered from.
        output_dir: Directory where the site was built.
        config: Site configuration used for the build.
    """

    routes: dict[str, ContentFile]
    output_dir: Path
    config: dict[str, Any] = field(default_factory=dict)


def load_config(project_root: Path) -> dict[str, Any]:
    """Load site configuration from perseus.yaml.

    Nested sections (``cache``, ``watch``, ``cache_control``) are merged key
    by key over the defaults. ``hmr_port`` defaults to ``port + 1``.

    Args:
        project_root: Root directory of the project.

    Returns:
        Dictionary containing configuration values, with defaults applied.
    """
    config_path = Path(project_root) / CONFIG_FILENAME
    config = copy.deepcopy(DEFAULT_CONFIG)
    if config_path.exists():
        with open(config_path, encoding="utf-8") as f:
            loaded = yaml.safe_load(f) or {}
        if isinstance(loaded, dict):
            for key, value in loaded.items():
                if isinstance(config.get(key), dict) and isinstance(value, dict):
                    config[key].update(value)
                else:
                    config[key] = value
        else:
            log.warning("config_ignored", path=str(config_path), reason="not a mapping")
    if config.get("hmr_port") is None:
        config["hmr_port"] = int(config["port"]) + 1
    return config


def create_processor(config: dict[str, Any], pipeline: PluginPipeline) -> ContentProcessor:
    return ContentProcessor.from_config(config, pipeline)


def build_site(
    project_root: Path,
    plugins: Iterable[Plugin] = (),
    output_dir_override: Path | None = None,
    clean_output: bool = True,
) -> BuildResult:
    """Build the entire static site.

    Args:
        project_root: Root directory of the project.
        plugins: Plugins to run, in order.
        output_dir_override: Write the build here instead of ``output_dir``.
        clean_output: Whether to wipe the output directory before building.

    Returns:
        BuildResult containing the route table and output directory.

    Raises:
        BuildError: If the pages directory is missing or a page fails to render.
        PluginHookError: If a build_start or build_end hook fails.
    """
    return asyncio.run(
        build_site_async(
            project_root,
            plugins=plugins,
            output_dir_override=output_dir_override,
            clean_output=clean_output,
        )
    )


async def build_site_async(
    project_root: Path,
    plugins: Iterable[Plugin] = (),
    output_dir_override: Path | None = None,
    clean_output: bool = True,
) -> BuildResult:
    """Async implementation of build_site."""
    project_root = Path(project_root)
    config = load_config(project_root)
    output_dir = Path(output_dir_override or project_root / config["output_dir"])
    pages_dir = project_root / config["pages_dir"]
    if not pages_dir.is_dir():
        raise BuildError(pages_dir, "Expected a pages directory")

    if clean_output:
        ensure_clean_dir(output_dir)
    else:
        output_dir.mkdir(parents=True, exist_ok=True)

    pipeline = PluginPipeline(plugins)
    await pipeline.run_build_start()

    builder = RouteTableBuilder(create_processor(config, pipeline), pipeline)
    routes = await builder.build_async(pages_dir)

    engine = LayoutEngine(project_root / config["layouts_dir"], config)
    route_list = sorted(routes)
    for route in route_list:
        content_file = routes[route]
        try:
            rendered = engine.render(content_file, route_list)
        except TemplateSyntaxError as exc:
            raise BuildError(
                content_file.path,
                f"Template syntax error on line {exc.lineno}: {exc.message}",
                exc,
            ) from exc
        except Exception as exc:
            raise BuildError(content_file.path, _format_error_message(exc), exc) from exc
        _write_page(output_dir, route, rendered)

    AssetPipeline(project_root / config["static_dir"], output_dir).run()
    feeds = create_default_feed_registry().generate_all(output_dir, routes.values(), config)

    await pipeline.run_build_end()
    log.info("build_finished", routes=len(routes), feeds=feeds, output_dir=str(output_dir))
    return BuildResult(routes=routes, output_dir=output_dir, config=config)


def _format_error_message(exc: Exception) -> str:
    """Format an exception into a user-friendly error message."""
    error_type = type(exc).__name__
    error_msg = str(exc)

    if error_type == "UndefinedError":
        return f"Undefined variable: {error_msg}"
    return f"{error_type}: {error_msg}"


def _write_page(output_dir: Path, route: str, rendered: str) -> Path:
    """Write a rendered route to ``<output_dir>/<route>/index.html``.

    Raises:
        FileWriteError: If the file cannot be written.
    """
    target_dir = output_dir / route.strip("/")
    html_path = target_dir / "index.html"
    try:
        target_dir.mkdir(parents=True, exist_ok=True)
        html_path.write_text(rendered, encoding="utf-8")
    except OSError as exc:
        raise FileWriteError(html_path, exc) from exc
    return html_path
