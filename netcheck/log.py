from __future__ import annotations

import logging

from rich.console import Console
from rich.logging import RichHandler


def setup_logging(console: Console, verbose: bool = False) -> None:
    """Route all netcheck logging through Rich on the CLI console."""
    handler = RichHandler(console=console, show_path=False, markup=False, rich_tracebacks=True)
    handler.setFormatter(logging.Formatter("%(message)s"))

    root = logging.getLogger("netcheck")
    root.handlers[:] = [handler]
    root.setLevel(logging.DEBUG if verbose else logging.INFO)
    root.propagate = False
