from __future__ import annotations

import logging
from logging.config import dictConfig
from typing import Iterable, Sequence

_DEFAULT_EXTRA_KEYS = (
    "topic",
    "sensor_kind",
    "value",
    "reason",
    "queue_depth",
)


class ContextualFormatter(logging.Formatter):
    def __init__(
        self,
        fmt: str | None = None,
        datefmt: str | None = None,
        style: str = "%",
        extra_keys: Iterable[str] | None = None,
    ) -> None:
        super().__init__(fmt=fmt, datefmt=datefmt, style=style)
        self._extra_keys: Sequence[str] = tuple(extra_keys or _DEFAULT_EXTRA_KEYS)

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        context_parts: list[str] = []
        for key in self._extra_keys:
            value = getattr(record, key, None)
            if value is None:
                continue
            context_parts.append(f"{key}={value}")
        if context_parts:
            return f"{message} | {' '.join(context_parts)}"
        return message


def configure_logging(level: str | int = "INFO") -> None:
    """Install the stream handler used by the service and its background threads."""
    dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "contextual": {
                    "()": ContextualFormatter,
                    "fmt": "%(asctime)s | %(levelname)s | %(threadName)s | %(name)s | %(message)s",
                    "datefmt": "%Y-%m-%dT%H:%M:%S",
                    "style": "%",
                    "extra_keys": list(_DEFAULT_EXTRA_KEYS),
                }
            },
            "handlers": {
                "default": {
                    "class": "logging.StreamHandler",
                    "level": level,
                    "formatter": "contextual",
                }
            },
            "loggers": {
                "sensor_api": {"level": level},
            },
            "root": {"handlers": ["default"], "level": level},
        }
    )
