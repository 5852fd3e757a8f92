import sys
from typing import Optional

from loguru import logger


def configure_logging(level: str = "INFO", log_file: Optional[str] = None):
    """JSON logs on stderr; every record carries an `event` field, defaulting to "app"."""
    logger.remove()
    logger.configure(extra={"event": "app"})
    logger.add(sys.stderr, level=level, backtrace=True, diagnose=False, serialize=True)
    if log_file:
        logger.add(log_file, level=level, rotation="10 MB", retention=5, serialize=True, enqueue=True)
    return logger
