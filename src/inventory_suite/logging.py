"""Logging setup shared by the API, the CLI and the services.

Modules log through children of the ``inventory`` logger. Handlers live on that
parent only: a console handler on stderr (stdout is kept for CLI output such as
chat JSON) and an optional ``LOG_FILE``. uvicorn's own loggers are left alone.
"""

import logging
import os
from typing import List, Optional, Union

ROOT_LOGGER = "inventory"
LOG_FORMAT = "%(asctime)s [%(name)s] %(levelname)s: %(message)s"
LOG_DATEFMT = "%Y-%m-%d %H:%M:%S"


def parse_level(value: Union[str, int, None], default: int = logging.INFO) -> int:
    """Map a LOG_LEVEL value (``debug``, ``WARN``, ``10``...) to a logging level."""
    if isinstance(value, int):
        return value
    text = (value or "").strip().upper()
    if not text:
        return default
    if text.isdigit():
        return int(text)
    level = logging.getLevelName(text)
    return level if isinstance(level, int) else default


def configure_logging(level: Union[str, int, None] = None, log_file: Optional[str] = None) -> logging.Logger:
    """(Re)build the handlers of the ``inventory`` logger.

    Arguments left as None fall back to LOG_LEVEL / LOG_FILE; an empty
    ``log_file`` turns file logging off.
    """
    root = logging.getLogger(ROOT_LOGGER)
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()

    resolved = parse_level(level if level is not None else os.environ.get("LOG_LEVEL"))
    root.setLevel(resolved)
    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt=LOG_DATEFMT)

    handlers: List[logging.Handler] = [logging.StreamHandler()]
    path = log_file if log_file is not None else os.environ.get("LOG_FILE")
    file_error: Optional[OSError] = None
    if path:
        try:
            handlers.append(logging.FileHandler(path, encoding="utf-8"))
        except OSError as exc:
            file_error = exc
    for handler in handlers:
        handler.setLevel(resolved)
        handler.setFormatter(formatter)
        root.addHandler(handler)

    root.propagate = False
    setattr(root, "_inventory_configured", True)
    if file_error is not None:
        root.warning("LOG_FILE %s could not be opened (%s); logging to console only", path, file_error)
    return root


def get_logger(name: str) -> logging.Logger:
    """Return ``inventory.<name>``, configuring the parent on first use."""
    root = logging.getLogger(ROOT_LOGGER)
    if not getattr(root, "_inventory_configured", False):
        configure_logging()
    return root.getChild(name)
