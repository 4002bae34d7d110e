# log_setup.py
# Description: loguru sink setup, with stdlib loggers (sqlalchemy, httpx) routed into loguru.
#
# Imports
import logging
import sys
from typing import Any, Iterable
#
# Third-Party Imports
from loguru import logger
#
#######################################################################################################################
#
# Functions:

LOG_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | <level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>"
)

DEFAULT_INTERCEPTED_LOGGERS = ("sqlalchemy", "sqlalchemy.engine", "httpx", "httpcore")


class InterceptHandler(logging.Handler):
    def emit(self, record):
        # Get corresponding Loguru level if it exists
        try:
            level = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        # Find caller from where originated the logged message
        frame, depth = logging.currentframe(), 2
        while frame and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(level, record.getMessage())


def setup_logging(level: str = "INFO", sink: Any = sys.stderr,
                  intercept: Iterable[str] = DEFAULT_INTERCEPTED_LOGGERS) -> int:
    """
    Replaces loguru's default handler with one sink at `level` and routes the
    named stdlib loggers through it. Returns the loguru handler id.
    """
    logger.remove()
    handler_id = logger.add(sink, level=level.upper(), format=LOG_FORMAT)

    for logger_name in intercept:
        mod_logger = logging.getLogger(logger_name)
        mod_logger.handlers = [InterceptHandler()]
        mod_logger.propagate = False

    logger.debug(f"Logging configured at {level.upper()}, intercepting {list(intercept)}")
    return handler_id

#
# End of log_setup.py
#######################################################################################################################
