"""Unit tests for femtologging integration helpers.

Run with:
    pytest tests/unit/test_logging.py
"""

from __future__ import annotations

import pytest

from steward.logging import (
    configure_logging,
    format_event,
    format_log_message,
    log_debug,
    log_error,
    log_event,
    log_exception,
    log_info,
    log_warning,
    normalize_log_level,
)
from tests.helpers.fakes import FakeLogger


class TestNormalizeLogLevel:
    """Tests for normalize_log_level."""

    @pytest.mark.parametrize(
        ("input_level", "expected_level", "invalid_label"),
        [
            ("warning", "WARNING", "valid"),
            (" debug ", "DEBUG", "valid"),
            (None, "INFO", "invalid"),
            ("", "INFO", "invalid"),
            ("nope", "INFO", "invalid"),
        ],
    )
    def test_normalize_log_level(
        self,
        input_level: str | None,
        expected_level: str,
        invalid_label: str,
    ) -> None:
        """Normalize log levels and flag invalid inputs."""
        expected_invalid = invalid_label == "invalid"
        level, invalid = normalize_log_level(input_level)
        assert level == expected_level, (
            f"Expected {input_level!r} to normalize to {expected_level}."
        )
        assert invalid is expected_invalid, (
            f"Expected invalid flag to be {expected_invalid} for {input_level!r}."
        )


def test_format_log_message_uses_percent_formatting() -> None:
    """Percent formatting produces the expected message."""
    assert format_log_message("hello %s (%d)", "world", 3) == "hello world (3)"
    assert format_log_message("100% done") == "100% done"


def test_format_event_renders_fields_in_order() -> None:
    """Structured events render as ``[event] key=value`` pairs."""
    rendered = format_event("reconcile.run.completed", {"tenant": "acme", "failed": 0})
    assert rendered == "[reconcile.run.completed] tenant=acme failed=0"
    assert format_event("bare", {}) == "[bare]"


def test_log_info_formats_and_passes_level() -> None:
    """log_info formats messages and emits INFO level."""
    logger = FakeLogger()

    log_info(logger, "hello %s", "world")

    assert logger.calls == [("INFO", "hello world", None)]


def test_log_debug_emits_debug_level() -> None:
    """log_debug emits DEBUG level."""
    logger = FakeLogger()

    log_debug(logger, "value=%d", 7)

    assert logger.calls == [("DEBUG", "value=7", None)]


def test_log_warning_forwards_exc_info() -> None:
    """log_warning forwards exc_info to the logger."""
    logger = FakeLogger()
    exc = ValueError("boom")

    log_warning(logger, "warning: %s", "oops", exc_info=exc)

    assert logger.calls == [("WARNING", "warning: oops", exc)]


def test_log_error_and_exception_emit_error_level() -> None:
    """log_error and log_exception both emit ERROR."""
    logger = FakeLogger()
    exc = ValueError("boom")

    log_error(logger, "error: %s", "oops")
    log_exception(logger, "failed", exc)

    assert logger.calls == [("ERROR", "error: oops", None), ("ERROR", "failed", exc)]


def test_log_event_renders_structured_message() -> None:
    """log_event passes the level and the rendered event through."""
    logger = FakeLogger()
    exc = RuntimeError("remote down")

    log_event(logger, "ERROR", "reconcile.run.failed", exc_info=exc, tenant="acme")

    assert logger.calls == [("ERROR", "[reconcile.run.failed] tenant=acme", exc)]


@pytest.mark.parametrize(
    ("input_level", "expected_normalized", "invalid_label"),
    [
        ("DEBUG", "DEBUG", "valid"),
        ("nope", "INFO", "invalid"),
    ],
)
def test_configure_logging(
    monkeypatch: pytest.MonkeyPatch,
    input_level: str,
    expected_normalized: str,
    invalid_label: str,
) -> None:
    """configure_logging normalizes input levels and flags invalid values."""
    captured: dict[str, object] = {}

    def fake_basic_config(**kwargs: object) -> None:
        captured.update(kwargs)

    monkeypatch.setattr("steward.logging.basicConfig", fake_basic_config)

    normalized, invalid = configure_logging(input_level)

    assert normalized == expected_normalized
    assert invalid is (invalid_label == "invalid")
    assert captured.get("level") == expected_normalized
    assert captured.get("force") is False, "Expected basicConfig to keep handlers."
