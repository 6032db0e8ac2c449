"""Rotating file + stdout logging for the command-line tool."""

from __future__ import annotations

import logging
import sys
from logging.handlers import RotatingFileHandler

LOG_FILE_NAME = "file-syncer.log"
LOG_MAX_BYTES = 10_000_000
LOG_BACKUP_COUNT = 3

_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def init_logging(log_file: str | None = LOG_FILE_NAME, *, verbose: bool = False) -> logging.Logger:
    """Configure the ``file_syncer`` logger.

    Log records go to stdout and, unless *log_file* is ``None``, to a
    size-rotated file keeping :data:`LOG_BACKUP_COUNT` old files.  Calling
    this again replaces the handlers installed by a previous call.
    """
    root = logging.getLogger("file_syncer")
    for handler in list(root.handlers):
        if getattr(handler, "_file_syncer", False):
            root.removeHandler(handler)
            handler.close()

    formatter = logging.Formatter(_FORMAT)
    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if log_file:
        handlers.append(RotatingFileHandler(
            log_file, maxBytes=LOG_MAX_BYTES, backupCount=LOG_BACKUP_COUNT,
            encoding="utf-8",
        ))
    for handler in handlers:
        handler.setFormatter(formatter)
        handler._file_syncer = True
        root.addHandler(handler)

    root.setLevel(logging.DEBUG if verbose else logging.INFO)
    return root
