"""
Application logging configuration.

Engines and adapters log per-file detail through the "filestorage" logger;
operators read per-file outcomes from batch results and the sync log table.
"""
import logging
import sys

from filestorage.config import settings


def setup_logging() -> logging.Logger:
    """
    Configure and return the application logger.

    Output goes to stdout as ``timestamp - name - level - message`` at the
    level named by the LOG_LEVEL setting.

    Returns:
        logging.Logger: Configured logger instance
    """
    logger = logging.getLogger("filestorage")
    level = logging.getLevelName(settings.LOG_LEVEL.upper())
    if not isinstance(level, int):
        level = logging.INFO
    logger.setLevel(level)

    # Prevent duplicate handlers if called multiple times
    if not logger.handlers:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(level)
        console_handler.setFormatter(
            logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
        )
        logger.addHandler(console_handler)

    return logger
