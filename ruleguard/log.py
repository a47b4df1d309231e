"""Logging setup for the RuleGuard command line."""

import logging
from typing import Optional

from rich.console import Console
from rich.logging import RichHandler


def setup_logging(verbose: bool = False, console: Optional[Console] = None) -> None:
    """Route the ``ruleguard`` loggers to a rich console handler.

    Args:
        verbose: Log DEBUG records when True, WARNING and above otherwise.
        console: Console to write to. Defaults to stderr.
    """
    logger = logging.getLogger("ruleguard")
    logger.setLevel(logging.DEBUG if verbose else logging.WARNING)

    # Clear existing handlers to avoid duplicates on repeated invocations
    if logger.handlers:
        logger.handlers.clear()

    handler = RichHandler(
        console=console or Console(stderr=True),
        show_path=verbose,
        rich_tracebacks=True,
    )
    handler.setFormatter(logging.Formatter("%(message)s"))
    logger.addHandler(handler)
    logger.propagate = False
