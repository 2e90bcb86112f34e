"""
Tests for the logging configuration module.

Tests the centralized logging configuration functionality.
"""

import logging
import os
import time
from pathlib import Path
from unittest.mock import patch

from openphone_sync.utils.logging import (
    CONSOLE_FORMAT,
    DATE_FORMAT,
    DEFAULT_FORMAT,
    ROOT_LOGGER_NAME,
    ColoredFormatter,
    RedactingFilter,
    cleanup_old_logs,
    get_log_file_path,
    get_log_level_from_env,
    get_logger,
    setup_logging,
)


class TestConstants:
    """Tests for module constants."""

    def test_default_format_defined(self):
        """Test DEFAULT_FORMAT is defined."""
        assert "%(message)s" in DEFAULT_FORMAT

    def test_root_logger_name(self):
        """Test the package logger name."""
        assert ROOT_LOGGER_NAME == "openphone_sync"


class TestGetLogLevelFromEnv:
    """Tests for get_log_level_from_env function."""

    @patch.dict(os.environ, {"OPENPHONE_SYNC_DEBUG": "1"}, clear=False)
    def test_debug_mode_from_env_1(self):
        """Test debug mode enabled with '1'."""
        assert get_log_level_from_env() == logging.DEBUG

    @patch.dict(os.environ, {"OPENPHONE_SYNC_DEBUG": "yes"}, clear=False)
    def test_debug_mode_from_env_yes(self):
        """Test debug mode enabled with 'yes'."""
        assert get_log_level_from_env() == logging.DEBUG

    @patch.dict(
        os.environ,
        {"OPENPHONE_SYNC_LOG_LEVEL": "ERROR", "OPENPHONE_SYNC_DEBUG": ""},
        clear=False,
    )
    def test_log_level_error(self):
        """Test ERROR log level from env."""
        assert get_log_level_from_env() == logging.ERROR

    @patch.dict(
        os.environ,
        {"OPENPHONE_SYNC_LOG_LEVEL": "WARN", "OPENPHONE_SYNC_DEBUG": ""},
        clear=False,
    )
    def test_warn_alias_for_warning(self):
        """Test WARN is an alias for WARNING."""
        assert get_log_level_from_env() == logging.WARNING

    @patch.dict(
        os.environ,
        {"OPENPHONE_SYNC_LOG_LEVEL": "INVALID", "OPENPHONE_SYNC_DEBUG": ""},
        clear=False,
    )
    def test_invalid_level_defaults_to_info(self):
        """Test invalid log level defaults to INFO."""
        assert get_log_level_from_env() == logging.INFO


class TestGetLogFilePath:
    """Tests for get_log_file_path function."""

    @patch.dict(os.environ, {"OPENPHONE_SYNC_LOG_FILE": "/custom/path/app.log"})
    def test_custom_log_file_from_env(self):
        """Test custom log file path from environment."""
        assert get_log_file_path() == Path("/custom/path/app.log")

    @patch.dict(os.environ, {"OPENPHONE_SYNC_LOG_FILE": "disabled"})
    def test_log_file_disabled(self):
        """Test log file disabled with 'disabled'."""
        assert get_log_file_path() is None

    def test_default_log_file_name(self):
        """Test default log file is a dated file in the logs directory."""
        with patch.dict(os.environ, {}, clear=True):
            path = get_log_file_path()
        assert path.name.startswith("openphone_sync_")
        assert path.suffix == ".log"


class TestColoredFormatter:
    """Tests for ColoredFormatter class."""

    def test_formatter_with_colors_disabled(self):
        """Test formatter with colors explicitly disabled."""
        formatter = ColoredFormatter(CONSOLE_FORMAT, DATE_FORMAT, use_colors=False)
        assert formatter.use_colors is False

    @patch("sys.stderr")
    def test_formatter_non_tty_disables_colors(self, mock_stderr):
        """Test formatter detects non-TTY and disables colors."""
        mock_stderr.isatty.return_value = False
        formatter = ColoredFormatter(CONSOLE_FORMAT, DATE_FORMAT, use_colors=True)
        assert formatter.use_colors is False

    @patch.dict(os.environ, {"NO_COLOR": "1"})
    @patch("sys.stderr")
    def test_formatter_respects_no_color_env(self, mock_stderr):
        """Test formatter respects NO_COLOR environment variable."""
        mock_stderr.isatty.return_value = True
        formatter = ColoredFormatter(CONSOLE_FORMAT, DATE_FORMAT, use_colors=True)
        assert formatter.use_colors is False

    def test_format_record_without_colors(self):
        """Test formatting a record without colors."""
        formatter = ColoredFormatter(CONSOLE_FORMAT, DATE_FORMAT, use_colors=False)
        record = logging.LogRecord(
            name="test",
            level=logging.INFO,
            pathname="test.py",
            lineno=1,
            msg="Test message",
            args=(),
            exc_info=None,
        )
        result = formatter.format(record)
        assert result == "INFO: Test message"


class TestSetupLogging:
    """Tests for setup_logging function."""

    def test_setup_logging_returns_package_logger(self):
        """Test setup_logging returns the package logger."""
        logger = setup_logging(enable_file_logging=False)
        assert logger.name == "openphone_sync"
        assert logger.propagate is False

    def test_setup_logging_with_verbose(self):
        """Test verbose mode forces DEBUG."""
        logger = setup_logging(
            level=logging.WARNING, verbose=True, enable_file_logging=False
        )
        assert logger.level == logging.DEBUG

    def test_setup_logging_clears_handlers(self):
        """Test repeated setup does not stack handlers."""
        setup_logging(enable_file_logging=False)
        logger = setup_logging(enable_file_logging=False)
        assert len(logger.handlers) == 1

    def test_setup_logging_with_file(self, tmp_path):
        """Test an explicit log file gets a handler and output."""
        log_file = tmp_path / "sync.log"
        logger = setup_logging(log_file=log_file, use_colors=False)
        logger.info("Test message")

        assert len(logger.handlers) == 2
        assert "Test message" in log_file.read_text()

    def test_setup_logging_with_log_dir(self, tmp_path):
        """Test log_dir places a dated file in that directory."""
        setup_logging(log_dir=tmp_path / "logs", use_colors=False)
        files = list((tmp_path / "logs").glob("openphone_sync_*.log"))
        assert len(files) == 1


class TestCleanupOldLogs:
    """Tests for cleanup_old_logs function."""

    def _make_logs(self, directory, count):
        directory.mkdir(parents=True, exist_ok=True)
        paths = []
        for i in range(count):
            path = directory / f"openphone_sync_2025010{i}.log"
            path.write_text("x")
            mtime = time.time() - (count - i) * 60
            os.utime(path, (mtime, mtime))
            paths.append(path)
        return paths

    def test_keeps_newest(self, tmp_path):
        """Test only the newest files are kept."""
        paths = self._make_logs(tmp_path, 5)

        deleted = cleanup_old_logs(tmp_path, keep_count=2)

        assert deleted == 3
        assert sorted(p.name for p in tmp_path.iterdir()) == sorted(
            p.name for p in paths[-2:]
        )

    def test_zero_disables_cleanup(self, tmp_path):
        """Test keep_count=0 deletes nothing."""
        self._make_logs(tmp_path, 3)
        assert cleanup_old_logs(tmp_path, keep_count=0) == 0

    def test_missing_directory(self, tmp_path):
        """Test a missing directory is not an error."""
        assert cleanup_old_logs(tmp_path / "missing") == 0

    def test_other_files_untouched(self, tmp_path):
        """Test files without the log prefix are left alone."""
        self._make_logs(tmp_path, 2)
        (tmp_path / "notes.log").write_text("keep me")

        cleanup_old_logs(tmp_path, keep_count=1)

        assert (tmp_path / "notes.log").exists()


class TestGetLogger:
    """Tests for get_logger function."""

    def test_get_logger_with_module_name(self):
        """Test get_logger keeps a package module name."""
        assert get_logger("openphone_sync.sync").name == "openphone_sync.sync"

    def test_get_logger_without_prefix(self):
        """Test get_logger prepends the package prefix."""
        assert get_logger("mymodule").name == "openphone_sync.mymodule"


def make_record(msg, *args, level=logging.INFO):
    return logging.LogRecord(
        name="openphone_sync.test",
        level=level,
        pathname="test.py",
        lineno=1,
        msg=msg,
        args=args,
        exc_info=None,
    )


class TestColoredOutput:
    """Tests for colored level names."""

    def test_only_level_name_is_colored(self):
        """Test the message text is left uncolored."""
        formatter = ColoredFormatter(CONSOLE_FORMAT, DATE_FORMAT, use_colors=False)
        formatter.use_colors = True

        result = formatter.format(make_record("Created contact", level=logging.ERROR))

        assert result == "\033[31mERROR\033[0m: Created contact"

    def test_record_not_modified(self):
        """Test other handlers still see the plain level name."""
        formatter = ColoredFormatter(CONSOLE_FORMAT, DATE_FORMAT, use_colors=False)
        formatter.use_colors = True
        record = make_record("hello")

        formatter.format(record)

        assert record.levelname == "INFO"


class TestRedactingFilter:
    """Tests for API key masking."""

    def test_masks_key_in_message(self):
        """Test an OpenPhone key inside the message is masked."""
        record = make_record("Using key sk-abc123def456 for request")

        assert RedactingFilter().filter(record) is True
        assert record.getMessage() == "Using key sk-*** for request"

    def test_masks_key_in_arguments(self):
        """Test a key passed as a %-argument is masked."""
        record = make_record("Authorization: %s", "sk-abc123def456")

        RedactingFilter().filter(record)

        assert record.getMessage() == "Authorization: sk-***"

    def test_masks_explicit_secret(self):
        """Test literal secrets without the sk- prefix are masked."""
        record = make_record("key=legacy-key-value")

        RedactingFilter(("legacy-key-value",)).filter(record)

        assert record.getMessage() == "key=sk-***"

    def test_leaves_other_messages_alone(self):
        """Test records without secrets keep their arguments."""
        record = make_record("Synced %d clients", 3)

        RedactingFilter().filter(record)

        assert record.args == (3,)
        assert record.getMessage() == "Synced 3 clients"

    def test_short_prefixes_not_masked(self):
        """Test ordinary words starting with sk- are not treated as keys."""
        record = make_record("sk-1 is not a key")

        RedactingFilter().filter(record)

        assert record.getMessage() == "sk-1 is not a key"

    def test_file_output_is_redacted(self, tmp_path):
        """Test setup_logging installs the filter on the file handler."""
        log_file = tmp_path / "sync.log"
        logger = setup_logging(
            log_file=log_file, use_colors=False, secrets=("plain-secret",)
        )

        logger.info("settings api_key=sk-abcdef123456 other=plain-secret")

        text = log_file.read_text()
        assert "sk-abcdef123456" not in text
        assert "plain-secret" not in text
        assert "api_key=sk-*** other=sk-***" in text


class TestHttpLoggers:
    """Tests for third-party HTTP logger levels."""

    def test_quiet_by_default(self):
        """Test httpx request lines are held back outside verbose mode."""
        setup_logging(enable_file_logging=False)

        assert logging.getLogger("httpx").level == logging.WARNING
        assert logging.getLogger("httpcore").level == logging.WARNING

    def test_verbose_shows_requests(self):
        """Test verbose mode lets httpx debug logging through."""
        setup_logging(verbose=True, enable_file_logging=False)

        assert logging.getLogger("httpx").level == logging.DEBUG

    def test_file_logging_keeps_debug_records(self, tmp_path):
        """Test the file captures DEBUG even when the console is at INFO."""
        log_file = tmp_path / "sync.log"
        logger = setup_logging(
            level=logging.INFO, log_file=log_file, use_colors=False
        )

        logger.getChild("engine").debug("cache loaded")

        assert "cache loaded" in log_file.read_text()
