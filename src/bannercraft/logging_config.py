"""
Logging configuration for bannercraft.

Modules log through ``logging.getLogger(__name__)``; every logger lives under
the ``bannercraft`` root. Nothing is emitted until ``configure_logging`` is
called (the server entry point does this), so importing the package as a
library leaves the host application's logging alone.
"""

import logging

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"
ROOT_LOGGER_NAME = "bannercraft"


def configure_logging(level: str | int = "INFO") -> logging.Logger:
    """
    Attach a stderr handler to the bannercraft logger and set its level.

    Calling this again only changes the level; handlers are never duplicated.

    Args:
        level: Level name ("DEBUG", "INFO", ...) or numeric level

    Returns:
        The configured root bannercraft logger
    """
    root = logging.getLogger(ROOT_LOGGER_NAME)
    if not root.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        root.addHandler(handler)
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
    root.setLevel(level)
    return root


__all__ = ["LOG_FORMAT", "ROOT_LOGGER_NAME", "configure_logging"]
