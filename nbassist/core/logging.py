"""key=value log lines for the assist service.

Every line carries timestamp, level, module, function and message. Records
tied to a document, a cell or a stream session also carry those ids so one
interaction can be followed across modules.
"""

import logging
import sys
from typing import Any

CORRELATION_FIELDS = ("document", "target", "session_id")


def _render(value: Any) -> str:
    text = str(value)
    if any(ch.isspace() for ch in text):
        return '"' + text.replace('"', '\\"') + '"'
    return text


class StructuredFormatter(logging.Formatter):
    """Renders a record as space-separated key=value pairs."""

    def format(self, record: logging.LogRecord) -> str:
        fields: dict[str, Any] = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "module": record.module,
            "function": record.funcName,
            "message": record.getMessage(),
        }
        for key in CORRELATION_FIELDS:
            if hasattr(record, key):
                fields[key] = getattr(record, key)
        fields.update(getattr(record, "extra_data", {}))

        line = " ".join(f"{key}={_render(value)}" for key, value in fields.items())
        if record.exc_info:
            line = f"{line}\n{self.formatException(record.exc_info)}"
        return line


def _level_for_env() -> int:
    try:
        from nbassist.core.config import get_settings

        return logging.DEBUG if get_settings().NBASSIST_ENV == "dev" else logging.INFO
    except Exception:
        # Settings may fail validation before the app is configured
        return logging.INFO


def get_logger(name: str) -> logging.Logger:
    """Return ``name``'s logger, attaching a stdout handler the first time."""
    logger = logging.getLogger(name)
    if not logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(StructuredFormatter())
        logger.addHandler(handler)
        logger.setLevel(_level_for_env())
    return logger


def log_with_context(logger: logging.Logger, level: int, msg: str, **kwargs: Any) -> None:
    """
    Log ``msg`` with keyword fields.

    Correlation ids (document, target, session_id) become record attributes;
    every other keyword is rendered as an extra key=value pair.
    """
    extra: dict[str, Any] = {key: kwargs.pop(key) for key in CORRELATION_FIELDS if key in kwargs}
    extra["extra_data"] = kwargs
    logger.log(level, msg, extra=extra)
