from __future__ import annotations

from collections.abc import Mapping
from datetime import UTC, datetime
import logging
from logging.handlers import RotatingFileHandler
import os

from lsplint.core.paths.global_paths import LOG_DIR, LOG_FILE

logger = logging.getLogger("lsplint")

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")
DEFAULT_LOG_MAX_BYTES = 10 * 1024 * 1024


def _escape(text: str) -> str:
    return text.replace("\\", "\\\\").replace("\n", "\\n")


class StructuredLogFormatter(logging.Formatter):
    """One line per record: UTC timestamp, parent pid, pid, level, message.

    Newlines in messages and tracebacks are escaped, so multi-line server
    stderr still lands on a single line.
    """

    def format(self, record: logging.LogRecord) -> str:
        fields = [
            datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            str(os.getppid()),
            str(os.getpid()),
            record.levelname,
            _escape(record.getMessage()),
        ]
        if record.exc_info:
            fields.append(_escape(self.formatException(record.exc_info)))
        return " ".join(fields)


def get_log_level(environ: Mapping[str, str] = os.environ) -> int:
    if environ.get("DEBUG_MODE") == "true":
        return logging.DEBUG

    name = environ.get("LOG_LEVEL", "WARNING").upper()
    if name not in LOG_LEVELS:
        return logging.WARNING
    return logging.getLevelNamesMapping()[name]


def apply_logging_config(target_logger: logging.Logger = logger) -> RotatingFileHandler:
    """Attach a rotating file handler for LOG_FILE to `target_logger`.

    The logger is opened up to DEBUG; the handler level (LOG_LEVEL or
    DEBUG_MODE) decides what reaches the file.
    """
    LOG_DIR.path.mkdir(parents=True, exist_ok=True)

    handler = RotatingFileHandler(
        LOG_FILE.path,
        maxBytes=int(os.environ.get("LOG_MAX_BYTES", DEFAULT_LOG_MAX_BYTES)),
        backupCount=0,
        encoding="utf-8",
    )
    handler.setFormatter(StructuredLogFormatter())
    handler.setLevel(get_log_level())

    target_logger.setLevel(logging.DEBUG)
    target_logger.addHandler(handler)
    return handler
