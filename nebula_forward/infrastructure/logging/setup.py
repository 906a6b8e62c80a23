"""
Logging setup and configuration utilities.

Application modules log through the standard ``logging`` module; this
module routes those records (asyncssh's included) into loguru sinks with
console colouring, file rotation and compression.
"""

import inspect
import logging
import sys
from pathlib import Path
from typing import Optional

from loguru import logger as loguru_logger

from ..config.models import LoggingConfig


class InterceptHandler(logging.Handler):
    """Forward standard library log records to loguru."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level: object = loguru_logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        # Find the caller outside of the logging module so loguru reports it
        frame = inspect.currentframe()
        depth = 0
        while frame is not None and (depth == 0 or frame.f_code.co_filename == logging.__file__):
            frame = frame.f_back
            depth += 1

        loguru_logger.opt(depth=depth, exception=record.exc_info).log(level, record.getMessage())


def setup_logging(config: LoggingConfig, console_stream: Optional[object] = None) -> None:
    """
    Configure loguru sinks and bridge standard logging into them.

    Args:
        config: Logging configuration
        console_stream: Stream for the console sink (defaults to stderr)
    """
    loguru_logger.remove()

    if config.console_enabled:
        loguru_logger.add(
            console_stream or sys.stderr,
            format="<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
                   "<level>{level: <8}</level> | "
                   "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - "
                   "<level>{message}</level>",
            level=config.level.upper(),
            colorize=console_stream is None,
            backtrace=True,
            diagnose=False
        )

    if config.file_enabled:
        log_dir = Path(config.log_directory)
        log_dir.mkdir(parents=True, exist_ok=True)

        loguru_logger.add(
            log_dir / "nebula-forward.log",
            format="{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | "
                   "{name}:{function}:{line} - {message}",
            level=config.level.upper(),
            rotation=config.max_file_size,
            retention=config.backup_count,
            compression="zip",
            enqueue=True,
            backtrace=True,
            diagnose=False
        )

    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)

    # asyncssh logs every channel open/close at INFO
    logging.getLogger("asyncssh").setLevel(config.asyncssh_level.upper())
