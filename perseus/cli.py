"""Command-line interface for Perseus.

This module defines the CLI commands using the Click framework.

Commands:
- build: Build the site into the output directory.
- serve: Run the development server with hot updates.
"""

from __future__ import annotations

from pathlib import Path

import click

from . import __version__
from .errors import BuildError, PluginHookError
from .log import LOG_FORMATS, LOG_LEVELS, setup_logging


@click.group()
@click.version_option(version=__version__, prog_name="perseus")
@click.option(
    "--log-level",
    type=click.Choice(LOG_LEVELS, case_sensitive=False),
    default="INFO",
    show_default=True,
    help="Minimum level of log messages",
)
@click.option(
    "--log-format",
    type=click.Choice(LOG_FORMATS),
    default="text",
    show_default=True,
    help="Console text or one JSON object per line",
)
def cli(log_level: str, log_format: str):
    """Perseus static site pipeline."""
    setup_logging(log_level, log_format)


@cli.command()
def build():
    """Build the site into the output directory."""
    project_root = Path.cwd()
    from .build import build_site

    try:
        result = build_site(project_root)
    except BuildError as exc:
        _report_build_error(project_root, exc)
        raise SystemExit(1) from None
    except PluginHookError as exc:
        _report_plugin_error(exc)
        raise SystemExit(1) from None
    click.echo(f"Built {len(result.routes)} routes into {result.output_dir}")


@cli.command()
@click.option(
    "--port",
    type=int,
    required=False,
    help="Port to run the dev server (overrides perseus.yaml)",
)
@click.option(
    "--hmr-port",
    type=int,
    required=False,
    help="Port for the hot-update websocket server (overrides perseus.yaml hmr_port)",
)
def serve(port: int | None, hmr_port: int | None):
    """Run dev server with hot updates."""
    project_root = Path.cwd()
    from .server import DevServer

    server = DevServer(project_root, http_port=port, hmr_port=hmr_port)
    try:
        server.start()
    except PluginHookError as exc:
        _report_plugin_error(exc)
        raise SystemExit(1) from None


def _report_build_error(project_root: Path, exc: BuildError) -> None:
    try:
        display_path = exc.source_path.relative_to(project_root)
    except ValueError:
        display_path = exc.source_path
    click.echo(click.style("Build failed:", fg="red", bold=True), err=True)
    click.echo(click.style(f"  File: {display_path}", fg="yellow"), err=True)
    click.echo(click.style(f"  Error: {exc.message}", fg="white"), err=True)


def _report_plugin_error(exc: PluginHookError) -> None:
    click.echo(click.style("Build failed:", fg="red", bold=True), err=True)
    click.echo(click.style(f"  Plugin: {exc.plugin_name} ({exc.hook})", fg="yellow"), err=True)
    click.echo(click.style(f"  Error: {exc.original_error}", fg="white"), err=True)


def main():
    """Entry point for the CLI application."""
    cli()
