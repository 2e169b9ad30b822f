# backend/portfolio_engine/utils/logging.py
"""
Logging setup for processes embedding the portfolio engine.

The engine only ever calls logging.getLogger(__name__); the host decides
where records go by calling setup_logging() once at startup.

What gets logged where:
    DEBUG   - Snapshot cache hits/misses/evictions, lot replay summaries
    INFO    - Service initialization, ledger writes, cache invalidations
    WARNING - No price / no rate on or before a requested date
    ERROR   - Inconsistent ledger found while regenerating realized records

Structured context:
    Ledger errors attach their details via extra={"ledger_context": {...}}.
    The JSON formatter emits every such extra under "extra", turning
    Decimal, date and enum values into strings so amounts keep full precision.

Environment:
    LOG_LEVEL=DEBUG|INFO|WARNING|ERROR|CRITICAL
    LOG_FORMAT=text|json
"""

import enum
import json
import logging
import sys
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, TextIO

from portfolio_engine.config import settings
from portfolio_engine.utils.context import get_correlation_id

TEXT_FORMAT = "%(asctime)s | %(levelname)-8s | %(correlation_id)s | %(name)s | %(message)s"
TEXT_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

NO_CORRELATION_ID = "no-correlation-id"

# SQL echo is controlled by settings.debug, not by the log level
NOISY_LOGGERS = ("sqlalchemy", "sqlalchemy.engine", "sqlalchemy.pool")

_LEVELS = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "WARN": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}

# Attributes every LogRecord has; anything else came in through extra=
_RECORD_ATTRS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {
    "message",
    "asctime",
    "correlation_id",
}


class CorrelationIdFilter(logging.Filter):
    """Stamps each record with the caller's correlation id (%(correlation_id)s)."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.correlation_id = get_correlation_id() or NO_CORRELATION_ID
        return True


def _json_default(value: Any) -> str:
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    if isinstance(value, enum.Enum):
        return str(value.value)
    return repr(value)


class JsonFormatter(logging.Formatter):
    """
    One JSON object per line.

    {"timestamp", "level", "logger", "correlation_id", "message",
     "exception"?, "extra"?}
    """

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "correlation_id": getattr(record, "correlation_id", NO_CORRELATION_ID),
            "message": record.getMessage(),
        }
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        extra = {key: value for key, value in vars(record).items() if key not in _RECORD_ATTRS}
        if extra:
            entry["extra"] = extra

        return json.dumps(entry, default=_json_default)


def setup_logging(
        level: str | None = None,
        log_format: str | None = None,
        suppress_noisy_loggers: bool = True,
        stream: TextIO | None = None,
) -> None:
    """
    Install a single root handler with correlation ids.

    Args:
        level: Log level name (default: settings.log_level)
        log_format: "text" or "json" (default: settings.log_format)
        suppress_noisy_loggers: Raise SQLAlchemy loggers to WARNING
        stream: Handler stream (default: sys.stdout)

    Raises:
        ValueError: Unknown level name
    """
    level_name = (level or settings.log_level).strip().upper()
    if level_name not in _LEVELS:
        raise ValueError(
            f"Invalid log level: '{level_name}'. Valid levels are: {', '.join(_LEVELS)}"
        )
    format_name = (log_format or settings.log_format).lower()

    handler = logging.StreamHandler(stream or sys.stdout)
    handler.addFilter(CorrelationIdFilter())
    if format_name == "json":
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(logging.Formatter(fmt=TEXT_FORMAT, datefmt=TEXT_DATE_FORMAT))

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(_LEVELS[level_name])

    if suppress_noisy_loggers:
        for name in NOISY_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)

    logging.getLogger(__name__).info(
        f"Logging configured: level={level_name}, format={format_name}",
        extra={"logging_config": {"level": level_name, "format": format_name}},
    )
