"""Logging setup for the pinbuild CLI.

Progress goes to stderr as terse lines: ``> message`` for info and
``! message`` for warnings and errors. Debug records (``--verbose``)
carry their origin as ``@ module:line``.
"""

from __future__ import annotations

import logging
import sys


class ProgressFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        marker = "!" if record.levelno >= logging.WARNING else ">"
        line = f"{marker} {record.getMessage()}"
        if record.levelno != logging.INFO:
            line += f" @ {record.name}:{record.lineno}"
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


def configure_logging(verbose: bool = False) -> None:
    """Install the stderr handler on the ``pinbuild`` logger, once.

    Later calls only adjust the level and re-point the handler at the
    current ``sys.stderr``.
    """
    logger = logging.getLogger("pinbuild")
    logger.setLevel(logging.DEBUG if verbose else logging.INFO)
    for handler in logger.handlers:
        if isinstance(handler.formatter, ProgressFormatter):
            handler.stream = sys.stderr
            return
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(ProgressFormatter())
    logger.addHandler(handler)
