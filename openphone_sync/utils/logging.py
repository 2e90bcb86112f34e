"""
Logging setup for openphone_sync.

All package modules log through `logging.getLogger(__name__)`; this module
owns the handlers on the package root logger:

- console output on stderr, colored when the terminal allows it
- a daily log file (always at DEBUG) under the project `logs/` directory,
  a configured directory, or OPENPHONE_SYNC_LOG_FILE
- OpenPhone API keys masked in every record before it is written
- httpx/httpcore request logging held at WARNING unless running verbose
"""

import logging
import os
import re
import sys
from datetime import datetime
from pathlib import Path
from typing import Optional

ROOT_LOGGER_NAME = "openphone_sync"

DEFAULT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

CONSOLE_FORMAT = "%(levelname)s: %(message)s"

VERBOSE_FORMAT = (
    "%(asctime)s - %(name)s - %(levelname)s - [%(filename)s:%(lineno)d] - %(message)s"
)

DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

ENV_LOG_LEVEL = "OPENPHONE_SYNC_LOG_LEVEL"
ENV_DEBUG = "OPENPHONE_SYNC_DEBUG"
ENV_LOG_FILE = "OPENPHONE_SYNC_LOG_FILE"

LOG_FILE_PREFIX = "openphone_sync_"

# Third-party loggers that log one line per HTTP request at INFO
HTTP_LOGGERS = ("httpx", "httpcore")

# OpenPhone API keys as they appear in settings reprs, headers or URLs
API_KEY_PATTERN = re.compile(r"\bsk-[A-Za-z0-9_\-]{6,}")
REDACTED = "sk-***"

_LEVELS = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "WARN": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}

# <repo>/openphone_sync/utils/logging.py -> <repo>/logs
PROJECT_LOG_DIR = Path(__file__).resolve().parent.parent.parent / "logs"


class ColoredFormatter(logging.Formatter):
    """Formatter that colors the level name on terminals that support it."""

    COLORS = {
        "DEBUG": "\033[36m",  # Cyan
        "INFO": "\033[32m",  # Green
        "WARNING": "\033[33m",  # Yellow
        "ERROR": "\033[31m",  # Red
        "CRITICAL": "\033[35m",  # Magenta
    }
    RESET = "\033[0m"

    def __init__(
        self,
        fmt: Optional[str] = None,
        datefmt: Optional[str] = None,
        use_colors: bool = True,
    ):
        super().__init__(fmt, datefmt)
        self.use_colors = use_colors and self._supports_color()

    @staticmethod
    def _supports_color() -> bool:
        stream = sys.stderr
        if not hasattr(stream, "isatty") or not stream.isatty():
            return False
        # https://no-color.org/
        if os.environ.get("NO_COLOR"):
            return False
        return os.environ.get("TERM", "") != "dumb"

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelname) if self.use_colors else None
        if color is None:
            return super().format(record)

        # Work on a copy; other handlers see the same record
        colored = logging.makeLogRecord(record.__dict__)
        colored.levelname = f"{color}{record.levelname}{self.RESET}"
        return super().format(colored)


class RedactingFilter(logging.Filter):
    """
    Mask OpenPhone API keys in log records.

    The message is rendered with its arguments first, so a key passed as
    `logger.info("key %s", key)` is caught as well as one inside an
    f-string. Records are modified in place and always let through.
    """

    def __init__(self, secrets: tuple[str, ...] = ()):
        super().__init__()
        self.secrets = tuple(s for s in secrets if s)

    def redact(self, text: str) -> str:
        for secret in self.secrets:
            text = text.replace(secret, REDACTED)
        return API_KEY_PATTERN.sub(REDACTED, text)

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        redacted = self.redact(message)
        if redacted != message:
            record.msg = redacted
            record.args = None
        return True


def get_log_level_from_env() -> int:
    """
    Read the log level from the environment.

    OPENPHONE_SYNC_DEBUG (1/true/yes) wins over OPENPHONE_SYNC_LOG_LEVEL;
    unknown level names fall back to INFO.
    """
    if os.environ.get(ENV_DEBUG, "").lower() in ("1", "true", "yes"):
        return logging.DEBUG
    return _LEVELS.get(os.environ.get(ENV_LOG_LEVEL, "INFO").upper(), logging.INFO)


def _daily_log_name() -> str:
    return f"{LOG_FILE_PREFIX}{datetime.now().strftime('%Y%m%d')}.log"


def get_log_file_path() -> Optional[Path]:
    """
    Resolve the default log file.

    Returns:
        OPENPHONE_SYNC_LOG_FILE if set, None if it is set to "none",
        "disabled" or empty, otherwise today's file in PROJECT_LOG_DIR
    """
    configured = os.environ.get(ENV_LOG_FILE)
    if configured is None:
        return PROJECT_LOG_DIR / _daily_log_name()
    if configured.strip().lower() in ("", "none", "disabled"):
        return None
    return Path(configured)


def _resolve_log_file(
    log_file: Optional[Path], log_dir: Optional[Path]
) -> Optional[Path]:
    if log_file:
        return log_file
    if log_dir:
        return log_dir / _daily_log_name()
    return get_log_file_path()


def _quiet_http_loggers(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.WARNING
    for name in HTTP_LOGGERS:
        logging.getLogger(name).setLevel(level)


def setup_logging(
    level: Optional[int] = None,
    verbose: bool = False,
    log_dir: Optional[Path] = None,
    log_file: Optional[Path] = None,
    enable_file_logging: bool = True,
    use_colors: bool = True,
    secrets: tuple[str, ...] = (),
) -> logging.Logger:
    """
    Configure the package logger. Safe to call more than once; existing
    handlers are replaced.

    Args:
        level: Console level (default: from the environment)
        verbose: DEBUG level, source locations in console output and
                 httpx request logging
        log_dir: Directory for the daily log file
        log_file: Explicit log file; wins over log_dir
        enable_file_logging: Set False to log to the console only
        use_colors: Color level names when the terminal supports it
        secrets: Extra literal values to mask, e.g. a configured API key

    Returns:
        The package root logger

    Example:
        setup_logging(verbose=True)
        setup_logging(log_dir=Path('/var/log/openphone-sync'))
    """
    if verbose:
        level = logging.DEBUG
    elif level is None:
        level = get_log_level_from_env()

    logger = logging.getLogger(ROOT_LOGGER_NAME)
    logger.setLevel(logging.DEBUG if enable_file_logging else level)
    for handler in logger.handlers:
        handler.close()
    logger.handlers.clear()
    logger.propagate = False

    redactor = RedactingFilter(secrets)
    _quiet_http_loggers(verbose)

    console_format = VERBOSE_FORMAT if verbose else CONSOLE_FORMAT
    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(level)
    console_handler.setFormatter(
        ColoredFormatter(console_format, DATE_FORMAT)
        if use_colors
        else logging.Formatter(console_format, DATE_FORMAT)
    )
    console_handler.addFilter(redactor)
    logger.addHandler(console_handler)

    if not enable_file_logging:
        return logger

    file_path = _resolve_log_file(log_file, log_dir)
    if file_path is None:
        return logger

    try:
        file_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(file_path, encoding="utf-8")
    except OSError as e:
        logger.warning(f"Could not create log file {file_path}: {e}")
        return logger

    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(logging.Formatter(VERBOSE_FORMAT, DATE_FORMAT))
    file_handler.addFilter(redactor)
    logger.addHandler(file_handler)
    logger.debug(f"Log file: {file_path}")

    return logger


def cleanup_old_logs(log_dir: Optional[Path] = None, keep_count: int = 10) -> int:
    """
    Delete all but the `keep_count` newest daily log files.

    Returns:
        Number of files deleted (0 when keep_count <= 0 or the directory
        does not exist)
    """
    directory = log_dir or PROJECT_LOG_DIR
    if keep_count <= 0 or not directory.exists():
        return 0

    newest_first = sorted(
        directory.glob(f"{LOG_FILE_PREFIX}*.log"),
        key=lambda p: p.stat().st_mtime,
        reverse=True,
    )

    deleted = 0
    for old_log in newest_first[keep_count:]:
        try:
            old_log.unlink()
        except OSError as e:
            logging.getLogger(ROOT_LOGGER_NAME).debug(
                f"Could not delete old log {old_log}: {e}"
            )
        else:
            deleted += 1

    return deleted


def get_logger(name: str) -> logging.Logger:
    """Return a logger inside the openphone_sync hierarchy."""
    if not name.startswith(ROOT_LOGGER_NAME):
        name = f"{ROOT_LOGGER_NAME}.{name}"
    return logging.getLogger(name)


__all__ = [
    "setup_logging",
    "get_logger",
    "cleanup_old_logs",
    "ColoredFormatter",
    "RedactingFilter",
    "get_log_level_from_env",
    "get_log_file_path",
    "HTTP_LOGGERS",
    "PROJECT_LOG_DIR",
    "ROOT_LOGGER_NAME",
    "DEFAULT_FORMAT",
    "CONSOLE_FORMAT",
    "VERBOSE_FORMAT",
    "DATE_FORMAT",
]
