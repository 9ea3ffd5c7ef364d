"""Process-level logging setup."""

import sys
from pathlib import Path

from loguru import logger

_CONSOLE_FORMAT = "{time:HH:mm:ss.SSS} | {level:<7} | {name}:{function}:{line} | {message}"
_FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level:<7} | {name}:{function}:{line} | {message}"

_configured = False


def configure_logging(level: str = "INFO", log_file: Path | None = None) -> None:
    """Configure loguru sinks once per process.

    Args:
        level: Minimum level (DEBUG, INFO, WARNING, ERROR)
        log_file: Write to this file instead of stderr. Used while the TUI
            owns the terminal.
    """
    global _configured
    if _configured:
        return

    logger.remove()
    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        logger.add(
            log_file,
            level=level.upper(),
            format=_FILE_FORMAT,
            rotation="10 MB",
            retention=5,
            backtrace=False,
            diagnose=False,
        )
    else:
        logger.add(
            sys.stderr,
            level=level.upper(),
            format=_CONSOLE_FORMAT,
            backtrace=False,
            diagnose=False,
        )
    _configured = True
