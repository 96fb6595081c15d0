"""Logging utilities for the bulk migration tool."""

import sys
from pathlib import Path
from typing import Optional

from loguru import logger

DEFAULT_CONSOLE_FORMAT = (
    '<green>{time:YYYY-MM-DD HH:mm:ss}</green> | '
    '<level>{level: <8}</level> | '
    '<level>{message}</level>'
)

DEFAULT_FILE_FORMAT = '{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{function}:{line} | {message}'


def setup_logging(
    level: str = 'INFO',
    log_file: Optional[str] = None,
    log_format: Optional[str] = None,
) -> None:
    """Setup logging configuration using loguru.

    Console output goes to stderr so that stdout stays reserved for values
    the generated scripts parse (the queued migration id).

    Args:
        level: Log level (DEBUG, INFO, SUCCESS, WARNING, ERROR, CRITICAL)
        log_file: Optional log file path
        log_format: Optional custom console log format
    """
    logger.remove()

    logger.add(
        sys.stderr,
        format=log_format or DEFAULT_CONSOLE_FORMAT,
        level=level,
        colorize=True,
        backtrace=True,
        diagnose=level == 'DEBUG',
    )

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        logger.add(
            log_file,
            format=DEFAULT_FILE_FORMAT,
            level=level,
            rotation='10 MB',
            retention='30 days',
            compression='gz',
            backtrace=True,
            diagnose=False,
        )

    logger.debug(f'Logging initialized with level: {level}')
    if log_file:
        logger.debug(f'Log file: {log_file}')
