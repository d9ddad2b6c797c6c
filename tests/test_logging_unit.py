"""Unit tests for structured logging."""

import json
import logging
from unittest.mock import patch

from feedgen.logging_config import (
    LOGGER_NAMESPACE,
    StructuredFormatter,
    create_execution_logger,
    setup_structured_logging,
)


def format_record(**extra):
    record = logging.LogRecord(
        f"{LOGGER_NAMESPACE}.aggregator", logging.WARNING, __file__, 10, "msg %s", ("x",), None
    )
    for name, value in extra.items():
        setattr(record, name, value)
    return json.loads(StructuredFormatter().format(record))


class TestStructuredFormatterUnit:
    """Unit tests for StructuredFormatter."""

    def test_base_fields(self):
        entry = format_record()

        assert entry["message"] == "msg x"
        assert entry["level"] == "WARNING"
        assert entry["logger"] == "gmh_feed.aggregator"
        assert entry["line"] == 10
        assert "execution_id" not in entry

    def test_every_extra_field_is_written(self):
        """Extras outside the context fields are kept too."""
        entry = format_record(
            execution_id="req-1", source="search:prep", posts_count=3, error_type="ValueError"
        )

        assert entry["execution_id"] == "req-1"
        assert entry["source"] == "search:prep"
        assert entry["posts_count"] == 3
        assert entry["error_type"] == "ValueError"

    def test_context_fields_come_first(self):
        entry = format_record(posts_count=3, component="aggregator", execution_id="req-1")

        keys = list(entry)
        assert keys.index("execution_id") < keys.index("component") < keys.index("posts_count")

    def test_non_json_values_are_stringified(self):
        entry = format_record(error=ValueError("boom"))

        assert entry["error"] == "boom"


class TestExecutionLoggerUnit:
    """Unit tests for ExecutionLogger."""

    def test_execution_end_reports_duration_and_success(self):
        logger = create_execution_logger("aggregator", "req-2")

        with (
            patch("feedgen.logging_config.time") as mock_time,
            patch.object(logger.logger, "log") as mock_log,
            patch.object(logger.logger, "isEnabledFor", return_value=True),
        ):
            mock_time.monotonic.side_effect = [10.0, 10.25]
            logger.log_execution_start(cursor="abc")
            logger.log_execution_end(success=False, degraded=True)

        start_call, end_call = mock_log.call_args_list
        assert start_call.args[1] == "Starting aggregator execution"
        assert start_call.kwargs["extra"]["cursor"] == "abc"
        end_extra = end_call.kwargs["extra"]
        assert end_extra["duration_ms"] == 250.0
        assert end_extra["success"] is False
        assert end_extra["degraded"] is True
        assert end_extra["execution_id"] == "req-2"

    def test_end_without_start_has_no_duration(self):
        logger = create_execution_logger("server", "req-3")

        with (
            patch.object(logger.logger, "log") as mock_log,
            patch.object(logger.logger, "isEnabledFor", return_value=True),
        ):
            logger.log_execution_end()

        assert "duration_ms" not in mock_log.call_args.kwargs["extra"]

    def test_with_execution_keeps_component(self):
        logger = create_execution_logger("bluesky_client", "startup")

        bound = logger.with_execution("req-4")

        assert bound.component == "bluesky_client"
        assert bound.execution_id == "req-4"
        assert logger.execution_id == "startup"

    def test_generated_execution_id(self):
        assert create_execution_logger("config").execution_id.startswith("exec_")


class TestSetupStructuredLoggingUnit:
    """Unit tests for setup_structured_logging."""

    def setup_method(self):
        self.root = logging.getLogger()
        self.saved_handlers = self.root.handlers[:]
        self.saved_level = self.root.level

    def teardown_method(self):
        for handler in self.root.handlers[:]:
            self.root.removeHandler(handler)
        for handler in self.saved_handlers:
            self.root.addHandler(handler)
        self.root.setLevel(self.saved_level)
        logging.getLogger(LOGGER_NAMESPACE).setLevel(logging.NOTSET)
        logging.getLogger("werkzeug").setLevel(logging.NOTSET)

    def test_single_json_handler(self):
        setup_structured_logging("debug")
        setup_structured_logging("DEBUG")

        assert len(self.root.handlers) == 1
        assert isinstance(self.root.handlers[0].formatter, StructuredFormatter)
        assert logging.getLogger(LOGGER_NAMESPACE).level == logging.DEBUG

    def test_unknown_level_falls_back_to_info(self):
        setup_structured_logging("chatty")

        assert self.root.level == logging.INFO
        assert logging.getLogger("werkzeug").level == logging.WARNING
