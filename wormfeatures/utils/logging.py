"""
Logging for the detectors, batch runners and CLI.

Modules log through ``get_logger(__name__)``. The CLI calls
``setup_logging`` once; library users may configure logging themselves.
Quality flags and missing landmarks are logged at WARNING, per-frame
progress at DEBUG.
"""

import logging
import sys
import time
from pathlib import Path
from typing import Optional, Union

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"

_LEVEL_COLORS = {
    logging.DEBUG: '\033[36m',
    logging.INFO: '\033[32m',
    logging.WARNING: '\033[33m',
    logging.ERROR: '\033[31m',
    logging.CRITICAL: '\033[35m',
}
_RESET = '\033[0m'


class ColoredFormatter(logging.Formatter):
    """Colors the level name; used only when stdout is a terminal."""

    def format(self, record: logging.LogRecord) -> str:
        # Copy so a file handler formatting the same record stays plain
        record = logging.makeLogRecord(record.__dict__)
        color = _LEVEL_COLORS.get(record.levelno)
        if color:
            record.levelname = f"{color}{record.levelname}{_RESET}"
        return super().format(record)


_loggers: dict[str, logging.Logger] = {}
_handlers: list[logging.Handler] = []


def get_logger(name: str) -> logging.Logger:
    if name not in _loggers:
        _loggers[name] = logging.getLogger(name)
    return _loggers[name]


def setup_logging(
    level: Union[str, int] = "INFO",
    log_file: Optional[Union[str, Path]] = None,
    console: bool = True,
) -> logging.Logger:
    """
    Configure the root logger for a command-line run.

    Handlers installed by an earlier call are removed first, so calling
    this twice does not duplicate output.

    Args:
        level: Level name or number
        log_file: Also append to this file
        console: Log to stdout

    Returns:
        Root logger
    """
    if isinstance(level, str):
        level = getattr(logging, level.upper(), logging.INFO)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    for handler in _handlers:
        root_logger.removeHandler(handler)
        handler.close()
    _handlers.clear()

    if console:
        handler = logging.StreamHandler(sys.stdout)
        formatter_cls = ColoredFormatter if sys.stdout.isatty() else logging.Formatter
        handler.setFormatter(formatter_cls(LOG_FORMAT))
        _handlers.append(handler)

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handler = logging.FileHandler(log_path, mode='a')
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        _handlers.append(handler)

    for handler in _handlers:
        handler.setLevel(level)
        root_logger.addHandler(handler)
    if log_file:
        root_logger.info("Logging to file: %s", log_file)
    return root_logger


def log_parameters(logger: logging.Logger, params: dict, title: str = "Parameters") -> None:
    """Log a parameter dictionary as an aligned block."""
    width = max((len(str(k)) for k in params), default=0)
    logger.info("%s:", title)
    for key, value in params.items():
        logger.info("  %s : %s", str(key).ljust(width), value)


def format_duration(seconds: float) -> str:
    if seconds >= 3600:
        return f"{seconds / 3600:.1f} hours"
    if seconds >= 60:
        return f"{seconds / 60:.1f} minutes"
    return f"{seconds:.1f} seconds"


class ProcessingTimer:
    """
    Logs the start, end and duration of a batch stage.

    Example:
        with ProcessingTimer(logger, "head detection") as timer:
            ...
        timer.duration  # seconds
    """

    def __init__(self, logger: logging.Logger, operation: str):
        self.logger = logger
        self.operation = operation
        self.start_time: Optional[float] = None
        self.duration: Optional[float] = None

    def __enter__(self):
        self.start_time = time.perf_counter()
        self.logger.info("Starting: %s", self.operation)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.duration = time.perf_counter() - self.start_time
        if exc_type is not None:
            self.logger.error("Failed: %s after %.1fs - %s",
                              self.operation, self.duration, exc_val)
        else:
            self.logger.info("Completed: %s in %s",
                             self.operation, format_duration(self.duration))
        return False
