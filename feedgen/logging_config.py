"""JSON logging for the health feed generator.

Every component logs through an ExecutionLogger, which stamps each record
with the id of the feed request (or startup run) it belongs to. Keyword
arguments passed to the logger end up as top-level keys of the JSON line.
"""

import json
import logging
import sys
import time
from datetime import UTC, datetime
from typing import Any

LOGGER_NAMESPACE = "gmh_feed"

# Written right after the base keys, in this order, when present on a record
CONTEXT_FIELDS = (
    "execution_id",
    "component",
    "source",
    "post_uri",
    "cursor",
    "http_method",
    "http_path",
    "status_code",
)

# Attributes every LogRecord carries; anything else came in through `extra`
_RECORD_ATTRIBUTES = frozenset(
    vars(logging.LogRecord("", logging.INFO, "", 0, "", (), None))
) | {"message", "asctime", "taskName"}

# Chatty third-party loggers kept at WARNING unless we run at DEBUG
_LIBRARY_LOGGERS = ("werkzeug", "urllib3", "flask_cors")


class StructuredFormatter(logging.Formatter):
    """Render each record as one JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        for name in CONTEXT_FIELDS:
            if name in record.__dict__:
                entry[name] = record.__dict__[name]

        # Remaining extras, e.g. metrics or posts_count
        for name, value in record.__dict__.items():
            if name not in _RECORD_ATTRIBUTES and name not in entry:
                entry[name] = value

        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        # default=str covers datetimes and exceptions passed as extras
        return json.dumps(entry, ensure_ascii=False, default=str)


class ExecutionLogger:
    """Component logger bound to one execution id."""

    def __init__(self, execution_id: str, component: str = "main"):
        """Initialize execution logger.

        Args:
            execution_id: Id of the feed request or run being logged
            component: Component name (e.g., 'aggregator', 'bluesky_client')
        """
        self.execution_id = execution_id
        self.component = component
        self.logger = logging.getLogger(f"{LOGGER_NAMESPACE}.{component}")
        self._started: float | None = None

    def _emit(self, level: int, message: str, fields: dict[str, Any]) -> None:
        if not self.logger.isEnabledFor(level):
            return
        fields["execution_id"] = self.execution_id
        fields["component"] = self.component
        self.logger.log(level, message, extra=fields)

    def debug(self, message: str, **fields) -> None:
        self._emit(logging.DEBUG, message, fields)

    def info(self, message: str, **fields) -> None:
        self._emit(logging.INFO, message, fields)

    def warning(self, message: str, **fields) -> None:
        self._emit(logging.WARNING, message, fields)

    def error(self, message: str, **fields) -> None:
        self._emit(logging.ERROR, message, fields)

    def with_execution(self, execution_id: str) -> "ExecutionLogger":
        """Same component, different execution id."""
        return ExecutionLogger(execution_id, self.component)

    def log_execution_start(self, **fields) -> None:
        self._started = time.monotonic()
        self.info(f"Starting {self.component} execution", **fields)

    def log_execution_end(self, success: bool = True, **fields) -> None:
        """Log the end of an execution and how long it took.

        The duration is omitted when log_execution_start was never called
        on this logger.
        """
        if self._started is not None:
            fields["duration_ms"] = round((time.monotonic() - self._started) * 1000, 1)
            self._started = None
        self.info(f"Completed {self.component} execution", success=success, **fields)

    def log_source_query(self, source: str, posts_count: int) -> None:
        self.info(
            f"Queried {source}: {posts_count} posts",
            source=source,
            posts_count=posts_count,
        )

    def log_metrics(self, metrics: dict[str, Any]) -> None:
        self.info("Execution metrics", metrics=metrics)


def setup_structured_logging(log_level: str = "INFO") -> None:
    """Send all logging to stdout as JSON lines.

    Args:
        log_level: Level name (DEBUG, INFO, WARNING, ERROR); unknown names
            fall back to INFO
    """
    level = logging.getLevelName(log_level.upper())
    if not isinstance(level, int):
        level = logging.INFO

    # One stdout handler on the root logger
    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(StructuredFormatter())
    root_logger.addHandler(console_handler)
    root_logger.setLevel(level)

    # Component loggers inherit from the namespace logger
    logging.getLogger(LOGGER_NAMESPACE).setLevel(level)

    for name in _LIBRARY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))


def create_execution_logger(
    component: str, execution_id: str | None = None
) -> ExecutionLogger:
    """Create a logger for component.

    Args:
        component: Component name
        execution_id: Execution id; a timestamped one is generated when omitted

    Returns:
        ExecutionLogger instance
    """
    if not execution_id:
        execution_id = f"exec_{datetime.now(UTC).strftime('%Y%m%d_%H%M%S_%f')}"

    return ExecutionLogger(execution_id, component)
