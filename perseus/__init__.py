"""Perseus static site pipeline.

Turns a tree of Markdown content files into a servable site and keeps it
live while files change. The core is a content cache, a plugin pipeline,
a route table rebuilt on every change, a debounced file watcher and a
websocket channel that tells browsers to reload or patch stylesheets.

The main entry point is the CLI module, which provides commands for
building the site and running the development server.
"""

__all__ = ["__version__"]
__version__ = "0.1.0"
