"""Entry point for the Perseus CLI.

This module serves as the main entry point when running the perseus package directly.
"""

from .cli import main

if __name__ == "__main__":  # pragma: no cover
    main()
