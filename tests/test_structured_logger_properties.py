"""
Property-based tests for the StructuredLogger.
"""

import io
import json

import pytest
from hypothesis import given, settings, strategies as st

from namelens.enums import LogLevel
from namelens.exceptions import PersistenceError
from namelens.structured_logger import ComponentLogging, StructuredLogger


# Strategies
component_strategy = st.sampled_from(["Orchestrator", "RateLimiter", "Store", "BatchRunner"])
message_strategy = st.text(min_size=1, max_size=100).filter(lambda s: s.strip())
sensitive_key_strategy = st.sampled_from(
    ["token", "api_key", "password", "secret", "Authorization", "github_token"]
)
safe_key_strategy = st.sampled_from(["endpoint", "name", "count", "profile"])


class TestLoggerFormats:
    """Output formats."""

    @given(component=component_strategy, message=message_strategy)
    @settings(max_examples=50)
    def test_json_output_is_parseable(self, component, message):
        stream = io.StringIO()
        logger = StructuredLogger(output_format="json", output_stream=stream)

        logger.info(component, message, {"endpoint": "pypi.org"})

        record = json.loads(stream.getvalue().strip())
        assert record["component"] == component
        assert record["message"] == message
        assert record["level"] == "info"
        assert record["data"] == {"endpoint": "pypi.org"}

    def test_text_output_layout(self):
        stream = io.StringIO()
        logger = StructuredLogger(output_format="text", output_stream=stream)

        logger.warn("RateLimiter", "Provider rate limit hit", {"endpoint": "crates.io"})

        line = stream.getvalue().strip()
        assert " WARN [RateLimiter] Provider rate limit hit " in line
        assert line.endswith('{"endpoint": "crates.io"}')

    def test_both_formats_written(self):
        stream = io.StringIO()
        logger = StructuredLogger(output_format="both", output_stream=stream)
        logger.info("Store", "Store connected")
        assert len(stream.getvalue().strip().splitlines()) == 2

    def test_invalid_format_rejected(self):
        with pytest.raises(ValueError):
            StructuredLogger(output_format="xml")


class TestLoggerLevels:
    """Minimum level filtering."""

    @given(
        minimum=st.sampled_from(list(LogLevel)),
        level=st.sampled_from(list(LogLevel)),
    )
    @settings(max_examples=50)
    def test_entries_below_minimum_dropped(self, minimum, level):
        order = [LogLevel.DEBUG, LogLevel.INFO, LogLevel.WARN, LogLevel.ERROR]
        logger = StructuredLogger(output_stream=io.StringIO(), level=minimum)

        entry = logger.log(level, "Store", "message")

        if order.index(level) >= order.index(minimum):
            assert entry is not None
            assert logger.entries == [entry]
        else:
            assert entry is None
            assert logger.entries == []

    def test_error_entries_carry_exception_details(self):
        logger = StructuredLogger(output_stream=io.StringIO())
        error = PersistenceError(code="storage_error", message="disk full")

        entry = logger.log_error("Store", "Write failed", error, {"endpoint": "pypi.org"})

        assert entry.level == LogLevel.ERROR
        assert entry.data["error_code"] == "storage_error"
        assert entry.data["error_type"] == "PersistenceError"
        assert entry.data["error_message"] == "disk full"
        assert entry.data["endpoint"] == "pypi.org"

    def test_clear_entries(self):
        logger = StructuredLogger(output_stream=io.StringIO())
        logger.info("Store", "one")
        logger.clear_entries()
        assert logger.entries == []

    @given(max_entries=st.integers(min_value=1, max_value=20), count=st.integers(min_value=0, max_value=60))
    @settings(max_examples=50)
    def test_retained_entries_bounded(self, max_entries, count):
        """Only the most recent entries are retained; output is unaffected."""
        stream = io.StringIO()
        logger = StructuredLogger(output_stream=stream, max_entries=max_entries)

        for i in range(count):
            logger.info("BatchRunner", f"entry {i}")

        kept = [e.message for e in logger.entries]
        assert kept == [f"entry {i}" for i in range(max(0, count - max_entries), count)]
        assert len(stream.getvalue().splitlines()) == count


class TestMasking:
    """Sensitive values never reach the output."""

    @given(
        key=sensitive_key_strategy,
        value=st.text(alphabet="ABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789", min_size=12, max_size=40),
    )
    @settings(max_examples=50)
    def test_sensitive_values_masked(self, key, value):
        stream = io.StringIO()
        logger = StructuredLogger(output_format="json", output_stream=stream)

        logger.info("Checker", "request", {key: value, "nested": {key: value}, "items": [{key: value}]})

        output = stream.getvalue()
        assert value not in output
        assert StructuredLogger.MASK_VALUE in output

    @given(key=safe_key_strategy, value=st.integers())
    @settings(max_examples=30)
    def test_safe_values_kept(self, key, value):
        logger = StructuredLogger(output_stream=io.StringIO())
        entry = logger.info("Checker", "request", {key: value})
        assert entry.data[key] == value


class TestComponentLogging:
    """The mixin used by components."""

    def test_silent_without_logger(self):
        class Quiet(ComponentLogging):
            pass

        Quiet()._log_error("nothing happens", RuntimeError("x"))

    def test_component_name_applied(self):
        class Worker(ComponentLogging):
            _component = "Worker"

            def __init__(self, logger):
                self._logger = logger

        logger = StructuredLogger(output_stream=io.StringIO(), level=LogLevel.DEBUG)
        worker = Worker(logger)
        worker._log_debug("d")
        worker._log_info("i")
        worker._log_warn("w")
        worker._log_error("e", RuntimeError("boom"))

        assert [e.component for e in logger.entries] == ["Worker"] * 4
        assert [e.level for e in logger.entries] == [
            LogLevel.DEBUG,
            LogLevel.INFO,
            LogLevel.WARN,
            LogLevel.ERROR,
        ]
