import sys
from typing import Optional

from loguru import logger


def setup_logging(level: str = "INFO", log_file: Optional[str] = None):
    logger.remove()
    logger.configure(extra={"component": "iitrader"})
    logger.add(
        sys.stderr,
        level=level,
        format="{time:YYYY-MM-DD HH:mm:ss} | {level:<8} | {extra[component]} | {message}",
        backtrace=True,
        diagnose=False,
    )
    if log_file:
        logger.add(
            log_file,
            rotation="10 MB",
            retention="10 days",
            enqueue=True,
            backtrace=True,
            diagnose=False,
            level=level,
            format="{time:YYYY-MM-DD HH:mm:ss} | {level:<8} | {extra[component]} | {message}",
        )
    return logger
