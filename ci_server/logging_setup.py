"""Console logging setup for the server process."""

import logging

from rich.logging import RichHandler

HANDLER_NAME = "ci_server"

LOG_FORMAT = "%(name)s: %(message)s"


def configure_logging(level: str = "INFO") -> None:
    """Install a Rich console handler on the root logger.

    Calling this more than once only updates the level.

    Args:
        level: Logging level name.
    """
    root = logging.getLogger()
    root.setLevel(level)
    if any(h.get_name() == HANDLER_NAME for h in root.handlers):
        return

    handler = RichHandler(show_path=False)
    handler.set_name(HANDLER_NAME)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    root.addHandler(handler)


__all__ = ["HANDLER_NAME", "LOG_FORMAT", "configure_logging"]
