from __future__ import annotations

import io
import pytest
import logging
from typing import Generator
from unittest.mock import patch

import depsync.utils.logger as logger_module
from depsync.utils.logger import (
    ColoredFormatter,
    disable_logging,
    get_logger,
    is_logging_configured,
    setup_logging,
)


@pytest.fixture
def clean_logger_state() -> Generator[None, None, None]:
    """Reset the ``depsync`` logger and the configured flag around a test."""
    root_logger = logging.getLogger("depsync")
    saved_handlers = list(root_logger.handlers)
    root_logger.handlers.clear()
    root_logger.setLevel(logging.NOTSET)
    logger_module._logging_configured = False

    yield

    root_logger.handlers.clear()
    root_logger.handlers.extend(saved_handlers)
    root_logger.setLevel(logging.NOTSET)
    root_logger.propagate = True
    logger_module._logging_configured = False


@pytest.mark.unit
class TestGetLogger:
    """Tests for logger namespacing."""

    def test_default_is_package_logger(self) -> None:
        assert get_logger().name == "depsync"
        assert get_logger("depsync").name == "depsync"

    def test_short_name_is_prefixed(self) -> None:
        assert get_logger("resolver").name == "depsync.resolver"

    def test_qualified_name_kept(self) -> None:
        """Names already under the namespace are not prefixed twice."""
        assert get_logger("depsync.core.manifest").name == "depsync.core.manifest"


@pytest.mark.unit
class TestSetupLogging:
    """Tests for handler installation."""

    def test_configures_level_and_stream(self, clean_logger_state: None) -> None:
        stream = io.StringIO()
        setup_logging(level=logging.INFO, stream=stream)

        get_logger("test").info("resolved %d requirement(s)", 3)

        assert is_logging_configured() is True
        assert "resolved 3 requirement(s)" in stream.getvalue()

    def test_below_level_is_filtered(self, clean_logger_state: None) -> None:
        stream = io.StringIO()
        setup_logging(level=logging.WARNING, stream=stream)

        get_logger("test").info("hidden")

        assert stream.getvalue() == ""

    def test_repeated_setup_does_not_duplicate(self, clean_logger_state: None) -> None:
        """Calling setup twice leaves a single handler."""
        setup_logging(stream=io.StringIO())
        setup_logging(stream=io.StringIO())

        assert len(logging.getLogger("depsync").handlers) == 1

    def test_disable_logging(self, clean_logger_state: None) -> None:
        setup_logging(stream=io.StringIO())
        disable_logging()

        handlers = logging.getLogger("depsync").handlers
        assert is_logging_configured() is False
        assert len(handlers) == 1
        assert isinstance(handlers[0], logging.NullHandler)


@pytest.mark.unit
class TestColoredFormatter:
    """Tests for level-name coloring."""

    def _record(self) -> logging.LogRecord:
        return logging.LogRecord("depsync", logging.ERROR, __file__, 1, "boom", None, None)

    def test_plain_when_disabled(self) -> None:
        formatter = ColoredFormatter("%(levelname)s %(message)s", use_color=False)
        assert formatter.format(self._record()) == "ERROR boom"

    def test_colored_on_tty(self) -> None:
        formatter = ColoredFormatter("%(levelname)s %(message)s")
        record = self._record()
        with patch.object(ColoredFormatter, "_should_use_color", return_value=True):
            output = formatter.format(record)

        assert "\033[31mERROR\033[0m" in output
        assert record.levelname == "ERROR"

    def test_no_color_env_disables(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("NO_COLOR", "1")
        assert ColoredFormatter._should_use_color() is False
