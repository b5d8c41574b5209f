"""Logging setup for processes embedding hashvault."""

import logging

from rich.console import Console
from rich.logging import RichHandler


def setup_logging(level: str = "INFO") -> logging.Logger:
    """Send ``hashvault.*`` records to stderr through rich.

    Calling it again replaces the handler instead of stacking another one.
    """
    logger = logging.getLogger("hashvault")
    logger.setLevel(level)

    for handler in list(logger.handlers):
        if getattr(handler, "_hashvault", False):
            logger.removeHandler(handler)

    handler = RichHandler(console=Console(stderr=True),
                          show_path=False,
                          rich_tracebacks=True)
    handler.setFormatter(logging.Formatter("%(name)s: %(message)s"))
    handler._hashvault = True
    logger.addHandler(handler)

    return logger
