from __future__ import annotations

import logging
import sys

_HANDLER_NAME = "feedstream-console"


def configure_logging(level: str = "INFO") -> logging.Logger:
    """Attach a single stdout handler to the ``feedstream`` logger tree."""

    logger = logging.getLogger("feedstream")
    logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    for handler in logger.handlers:
        if handler.get_name() == _HANDLER_NAME and isinstance(handler, logging.StreamHandler):
            # stdout may have been swapped and the old stream closed; never flush it.
            handler.stream = sys.stdout
            return logger

    handler = logging.StreamHandler(sys.stdout)
    handler.set_name(_HANDLER_NAME)
    handler.setFormatter(
        logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
    )
    logger.addHandler(handler)
    return logger
