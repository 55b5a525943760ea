"""Layout rendering for Perseus.

This module wraps processed content in a full HTML document using Jinja2.
Layouts are looked up in the project's layouts directory, falling back to a
built-in default layout.

Key class:
- LayoutEngine: Default implementation of the LayoutRenderer protocol.

Key function:
- render_toc: Render TOC entries as nested lists.
"""

from __future__ import annotations

from collections.abc import Sequence
from pathlib import Path
from typing import Any

import structlog
from jinja2 import (
    ChoiceLoader,
    DictLoader,
    Environment,
    FileSystemLoader,
    TemplateNotFound,
    select_autoescape,
)
from markupsafe import Markup, escape

from .content import ContentFile, TocItem

log = structlog.get_logger()

__all__ = ["DEFAULT_LAYOUT", "LayoutEngine", "render_toc"]

DEFAULT_LAYOUT = """\
<!DOCTYPE html>
<html lang="en">
<head>
  <meta charset="utf-8">
  <meta name="viewport" content="width=device-width, initial-scale=1">
  <title>{% if page.title != site.title %}{{ page.title }} | {% endif %}{{ site.title }}</title>
  {% if page.metadata.description %}<meta name="description" content="{{ page.metadata.description }}">{% endif %}
  <style>{{ pygments_css() }}</style>
</head>
<body>
  <main>
{{ content }}
  </main>
</body>
</html>
"""


def render_toc(toc: Sequence[TocItem]) -> Markup:
    """Render a table of contents as nested HTML lists.

    Generates ``<ul><li><a href="#id">text</a></li></ul>`` nested by
    heading level.

    Args:
        toc: TOC entries in document order.

    Returns:
        Markup-safe HTML, or empty Markup if there are no entries.
    """
    if not toc:
        return Markup("")

    html_parts: list[str] = []
    level_stack: list[int] = []

    for item in toc:
        level = item.level

        # Close nested lists if going to a shallower level
        while level_stack and level_stack[-1] > level:
            level_stack.pop()
            html_parts.append("</li></ul>")

        if level_stack and level_stack[-1] == level:
            html_parts.append("</li>")
        else:
            html_parts.append("<ul>")
            level_stack.append(level)

        html_parts.append(f'<li><a href="#{escape(item.id)}">{escape(item.text)}</a>')

    while level_stack:
        level_stack.pop()
        html_parts.append("</li></ul>")

    return Markup("".join(html_parts))


class LayoutEngine:
    """Layout renderer using Jinja2.

    The ``layout`` metadata key selects a template by name. Candidates
    ``<name>.html.jinja``, ``<name>.jinja``, ``<name>.html`` and ``<name>``
    are tried in order, then the same for ``default``.

    Attributes:
        layouts_dir: Directory containing layout templates.
        data: Site configuration exposed to templates as ``site``.
        env: Jinja2 environment.
    """

    def __init__(self, layouts_dir: Path | str, data: dict[str, Any] | None = None):
        self.layouts_dir = Path(layouts_dir)
        self.data = data or {}
        self.env = Environment(
            loader=ChoiceLoader(
                [
                    FileSystemLoader(str(self.layouts_dir)),
                    DictLoader({"default.html": DEFAULT_LAYOUT}),
                ]
            ),
            autoescape=select_autoescape(["html", "xml", "jinja"]),
        )
        self.env.globals["site"] = self.data
        self.env.globals["render_toc"] = render_toc
        self.env.globals["pygments_css"] = self._pygments_css

    @staticmethod
    def _pygments_css() -> Markup:
        """Return Pygments CSS for the ``.highlight`` class."""
        from pygments.formatters import HtmlFormatter

        return Markup(HtmlFormatter().get_style_defs(".highlight"))

    def render(self, content_file: ContentFile, routes: list[str]) -> str:
        """Render a content file inside its layout.

        Args:
            content_file: Processed content.
            routes: All routes of the site.

        Returns:
            Complete HTML document.
        """
        layout = str(content_file.metadata.get("layout") or "default")
        template = self._resolve_layout_template(layout)
        return template.render(
            page=content_file,
            content=Markup(content_file.rendered_body),
            toc=render_toc(content_file.toc),
            routes=routes,
        )

    def _resolve_layout_template(self, layout: str):
        candidates = [f"{layout}.html.jinja", f"{layout}.jinja", f"{layout}.html", layout]
        if layout != "default":
            candidates.extend(["default.html.jinja", "default.jinja", "default.html"])
        for name in candidates:
            try:
                return self.env.get_template(name)
            except TemplateNotFound:
                continue
        log.warning("layout_not_found", layout=layout)
        return self.env.get_template("default.html")
