"""Logging utilities for simplotask.

This module provides:
- Console and file logging setup driven by CLI flags
- Verbosity levels, including a TRACE level for remote shell lines
- Performance timing for runs
- A structured logger adding key=value context to messages

The engine modules only create module-level loggers; handlers are
installed by the CLI through configure_logging().
"""

import logging
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Generator

DEFAULT_FORMAT = "%(levelname)s %(message)s"
DEBUG_FORMAT = "%(asctime)s.%(msecs)03d %(levelname)s [%(name)s] %(message)s"
DEV_FORMAT = "%(asctime)s.%(msecs)03d %(levelname)s [%(name)s:%(funcName)s:%(lineno)d] %(message)s"
DATE_FORMAT = "%Y/%m/%d %H:%M:%S"

# Custom TRACE level, below DEBUG, used for remote shell lines
TRACE = 5
logging.addLevelName(TRACE, "TRACE")

VERBOSITY_LEVELS = {
    0: logging.WARNING,
    1: logging.INFO,      # -v
    2: logging.DEBUG,     # -vv
    3: TRACE,             # -vvv
}

LEVEL_NAMES = {
    "trace": TRACE,
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
    "critical": logging.CRITICAL,
}


def get_level_from_verbosity(verbosity: int) -> int:
    """Convert a count of -v flags to a logging level."""
    return VERBOSITY_LEVELS.get(min(verbosity, 3), TRACE)


def get_level_from_name(level_name: str) -> int:
    """Convert a level name to a logging level.

    Raises:
        ValueError: If the level name is invalid
    """
    level_lower = level_name.lower()
    if level_lower not in LEVEL_NAMES:
        valid = ", ".join(LEVEL_NAMES)
        raise ValueError(f"Invalid log level: {level_name}. Valid levels: {valid}")
    return LEVEL_NAMES[level_lower]


def configure_logging(
    level: int = logging.WARNING,
    format_string: str | None = None,
    dev: bool = False,
    log_file: str | Path | None = None,
    file_level: int | None = None,
) -> None:
    """Configure root logging for a simplotask process.

    Args:
        level: Console logging level
        format_string: Custom format string (chosen from level if None)
        dev: Include caller function and line in every message
        log_file: Optional path to also write logs to
        file_level: Separate level for the log file (defaults to level)

    Example:
        >>> configure_logging(level=logging.INFO)
        >>> configure_logging(level=logging.DEBUG, dev=True)
        >>> configure_logging(level=logging.WARNING, log_file="/tmp/spt.log", file_level=logging.DEBUG)
    """
    if format_string is None:
        if dev:
            format_string = DEV_FORMAT
        elif level <= logging.DEBUG:
            format_string = DEBUG_FORMAT
        else:
            format_string = DEFAULT_FORMAT

    root_logger = logging.getLogger()
    root_logger.setLevel(min(level, file_level or level))

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler()
    console_handler.setLevel(level)
    console_handler.setFormatter(logging.Formatter(format_string, DATE_FORMAT))
    root_logger.addHandler(console_handler)

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.FileHandler(log_path)
        file_handler.setLevel(file_level or level)
        # the file always gets caller details
        file_handler.setFormatter(logging.Formatter(DEV_FORMAT, DATE_FORMAT))
        root_logger.addHandler(file_handler)

    # asyncssh logs every channel at INFO
    logging.getLogger("asyncssh").setLevel(max(level, logging.WARNING))


@contextmanager
def log_performance(
    logger: logging.Logger,
    operation: str,
    level: int = logging.INFO,
    threshold: float | None = None,
    **context: Any,
) -> Generator[None, None, None]:
    """Time an operation and log its duration.

    Args:
        logger: Logger instance to use
        operation: Description of the operation being timed
        level: Log level to use
        threshold: Only log if duration exceeds this threshold (seconds)
        **context: Additional context to include in the message

    Example:
        >>> with log_performance(logger, "Run deploy", hosts=5):
        ...     await process.run(ctx, "deploy", "prod")
        INFO: Run deploy completed in 2.104s (hosts=5)
    """
    start_time = time.perf_counter()
    try:
        yield
    finally:
        duration = time.perf_counter() - start_time
        if threshold is None or duration >= threshold:
            message = f"{operation} completed in {duration:.3f}s"
            if context:
                message += " (" + ", ".join(f"{k}={v}" for k, v in context.items()) + ")"
            logger.log(level, message)


class StructuredLogger:
    """Logger adding structured context to every message.

    Example:
        >>> logger = StructuredLogger("simplotask.runner", task="deploy")
        >>> logger.info("Starting", hosts=3)
        INFO Starting (task=deploy, hosts=3)
    """

    def __init__(self, name: str, **context: Any) -> None:
        self.logger = logging.getLogger(name)
        self.context: dict[str, Any] = context.copy()

    def _format_message(self, message: str, **extra: Any) -> str:
        combined = {**self.context, **extra}
        if not combined:
            return message
        context_str = ", ".join(f"{k}={v}" for k, v in combined.items())
        return f"{message} ({context_str})"

    def log(self, level: int, message: str, **extra: Any) -> None:
        self.logger.log(level, self._format_message(message, **extra))

    def debug(self, message: str, **extra: Any) -> None:
        self.log(logging.DEBUG, message, **extra)

    def info(self, message: str, **extra: Any) -> None:
        self.log(logging.INFO, message, **extra)

    def warning(self, message: str, **extra: Any) -> None:
        self.log(logging.WARNING, message, **extra)

    def error(self, message: str, **extra: Any) -> None:
        self.log(logging.ERROR, message, **extra)

    @contextmanager
    def scope(
        self,
        message: str,
        level: int = logging.DEBUG,
        **context: Any,
    ) -> Generator["StructuredLogger", None, None]:
        """Log entry and exit of a scope with extra context.

        Yields a child logger carrying the scope context, so concurrent
        scopes never share mutable context.

        Example:
            >>> with logger.scope("Host", host="web01") as log:
            ...     log.info("Connected")
            DEBUG Entering: Host (task=deploy, host=web01)
            INFO Connected (task=deploy, host=web01)
            DEBUG Exiting: Host (task=deploy, host=web01)
        """
        child = StructuredLogger(self.logger.name, **{**self.context, **context})
        child.log(level, f"Entering: {message}")
        try:
            yield child
        finally:
            child.log(level, f"Exiting: {message}")


def get_logger(name: str, **context: Any) -> StructuredLogger:
    """Get a structured logger."""
    return StructuredLogger(name, **context)
