"""Logging setup shared by the daemon, the CLI and the MCP server.

Everything logs to stderr; stdout belongs to command output (and to the
protocol stream when running as an MCP server). The daemon additionally
writes a rotating log file.
"""

from __future__ import annotations

import logging
import logging.handlers
import sys
from pathlib import Path

LOG_FORMAT = "%(asctime)s - %(levelname)s - %(name)s - %(message)s"
ROOT_LOGGER = "memorypilot"

# marks handlers we installed, so repeated calls replace rather than stack
_HANDLER_ATTR = "_memorypilot_handler"


def setup_logging(level: str | int = "INFO",
                  log_file: str | Path | None = None) -> logging.Logger:
    logger = logging.getLogger(ROOT_LOGGER)
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO
    logger.setLevel(level)

    for handler in list(logger.handlers):
        if getattr(handler, _HANDLER_ATTR, False):
            logger.removeHandler(handler)
            handler.close()

    console = logging.StreamHandler(sys.stderr)
    console.setFormatter(logging.Formatter("%(levelname)s %(name)s: %(message)s"))
    setattr(console, _HANDLER_ATTR, True)
    logger.addHandler(console)

    if log_file is not None:
        path = Path(log_file)
        path.parent.mkdir(parents=True, exist_ok=True)
        fh = logging.handlers.RotatingFileHandler(
            path, maxBytes=5_000_000, backupCount=5, encoding="utf-8"
        )
        fh.setFormatter(logging.Formatter(LOG_FORMAT))
        setattr(fh, _HANDLER_ATTR, True)
        logger.addHandler(fh)

    return logger
