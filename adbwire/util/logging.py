"""Utility functions for logging setup."""

import logging
from pathlib import Path
from typing import Any, MutableMapping, Optional, Tuple

from rich.console import Console
from rich.logging import RichHandler

ROOT_LOGGER = "adbwire"

FILE_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(filename)s:%(lineno)d - %(message)s"


class ConnectionLogAdapter(logging.LoggerAdapter):
    """Tags log messages with the sequence number of an ADB connection.

    ``trace`` messages are the per-byte protocol chatter; they are only
    emitted when protocol tracing was switched on for the client.
    """

    def __init__(self, logger: logging.Logger, seq: int, tracing: bool = False) -> None:
        super().__init__(logger, {"seq": seq})
        self.tracing = tracing

    def process(self, msg: Any, kwargs: MutableMapping[str, Any]) -> Tuple[Any, MutableMapping[str, Any]]:
        return f"[{self.extra['seq']}] {msg}", kwargs

    def trace(self, msg: str, *args: Any) -> None:
        if self.tracing:
            self.debug(msg, *args)


def setup_logging(
    level: str = "INFO",
    log_file: Optional[Path] = None,
    console: Optional[Console] = None
) -> logging.Logger:
    """Set up Rich console logging (and optionally a log file) on the adbwire logger.

    Args:
        level: Console log level name
        log_file: File that additionally receives every DEBUG record
        console: Console to log to, stderr by default so command output stays clean
    """
    if console is None:
        console = Console(stderr=True)

    logger = logging.getLogger(ROOT_LOGGER)
    console_level = getattr(logging, level.upper())
    logger.setLevel(logging.DEBUG if log_file else console_level)

    for handler in logger.handlers[:]:
        logger.removeHandler(handler)
        handler.close()

    console_handler = RichHandler(
        console=console,
        show_time=True,
        show_path=True,
        rich_tracebacks=True,
    )
    console_handler.setLevel(console_level)
    console_handler.setFormatter(logging.Formatter(fmt="%(message)s", datefmt="[%X]"))
    logger.addHandler(console_handler)

    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(logging.Formatter(fmt=FILE_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
        logger.addHandler(file_handler)

    return logger


def get_logger(name: str = ROOT_LOGGER) -> logging.Logger:
    """Get a logger instance."""
    return logging.getLogger(name)
