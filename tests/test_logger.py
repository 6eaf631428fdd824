"""
Test suite for the DOMEX logging system.
"""

import logging

import pytest

from domex.constants import LOG_FORMAT
from domex.logger import LogManager, TerminalSafeFormatter, _manager, get_logger


@pytest.fixture
def fresh_manager():
    root = logging.getLogger()
    level = root.level
    _manager.reset()
    yield _manager
    _manager.reset()
    root.setLevel(level)


class TestTerminalSafeFormatter:

    def test_strips_ansi(self):
        assert TerminalSafeFormatter.sanitize("\x1b[31mred\x1b[0m") == "red"

    def test_strips_control_chars(self):
        assert TerminalSafeFormatter.sanitize("a\x00b\rc\x07d") == "abcd"

    def test_keeps_tabs_and_newlines(self):
        assert TerminalSafeFormatter.sanitize("a\tb\nc") == "a\tb\nc"

    def test_format_sanitizes_message(self):
        formatter = TerminalSafeFormatter(fmt="%(message)s")
        record = logging.LogRecord(
            name="t", level=logging.INFO, pathname="", lineno=0,
            msg="pool %s", args=("\x1b[2Jevil",), exc_info=None,
        )
        assert formatter.format(record) == "pool evil"


class TestLogManager:

    def test_singleton(self):
        assert LogManager() is LogManager()

    def test_invalid_format_falls_back(self):
        assert LogManager.validate_log_format("%(bogus") == str(LOG_FORMAT.default())

    def test_valid_format_kept(self):
        fmt = "%(levelname)s %(message)s"
        assert LogManager.validate_log_format(fmt) == fmt

    def test_file_output(self, fresh_manager, tmp_path):
        log_file = tmp_path / "logs" / "domex.log"
        fresh_manager.configure(log_level="INFO", log_file=log_file, console_output=False)
        assert fresh_manager.is_configured
        logging.getLogger("domex.test").info("pool created")
        for handler in logging.getLogger().handlers:
            handler.flush()
        assert "pool created" in log_file.read_text()

    def test_configure_once(self, fresh_manager, tmp_path):
        fresh_manager.configure(log_level="INFO", console_output=False)
        fresh_manager.configure(log_level="DEBUG", log_file=tmp_path / "x.log")
        assert logging.getLogger().level == logging.INFO
        assert not (tmp_path / "x.log").exists()

    def test_get_logger_configures(self, fresh_manager):
        logger = get_logger("domex.sample")
        assert logger.name == "domex.sample"
        assert fresh_manager.is_configured
