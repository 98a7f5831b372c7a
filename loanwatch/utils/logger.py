# loanwatch/utils/logger.py
"""
Logging for the monitoring jobs and the API.
Console plus a rotating file (LOG_DIR/LOG_FILE). Scan modules prefix their
lines with a job tag ([OVERDUE], [NO-SHOW], [REPEAT], [ALERT], [REPORT]...)
so one job's pass can be grepped out of the shared file.
"""

import logging
import os
from logging.handlers import RotatingFileHandler

from loanwatch.config import settings

LOG_LEVEL = settings.LOG_LEVEL.upper()
LOG_DIR = settings.LOG_DIR or os.path.join(os.path.dirname(os.path.dirname(os.path.dirname(__file__))), "logs")

# Libraries that are chatty at INFO
QUIET_LOGGERS = {
    "sqlalchemy.engine": settings.SQL_LOG_LEVEL.upper(),
    "uvicorn.access": "WARNING",
}

_configured = False


def _file_handler(fmt: logging.Formatter) -> RotatingFileHandler:
    os.makedirs(LOG_DIR, exist_ok=True)
    handler = RotatingFileHandler(
        filename=os.path.join(LOG_DIR, settings.LOG_FILE),
        maxBytes=5 * 1024 * 1024,   # 10 × 5MB
        backupCount=10,
        encoding="utf-8",
    )
    handler.setLevel(LOG_LEVEL)
    handler.setFormatter(fmt)
    return handler


def _configure_root_logger():
    global _configured
    if _configured:
        return
    _configured = True

    fmt = logging.Formatter(
        fmt="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    console = logging.StreamHandler()
    console.setLevel(LOG_LEVEL)
    console.setFormatter(fmt)

    root = logging.getLogger()
    root.setLevel(LOG_LEVEL)
    root.addHandler(console)
    root.addHandler(_file_handler(fmt))

    for name, level in QUIET_LOGGERS.items():
        logging.getLogger(name).setLevel(level)


def get_logger(name: str) -> logging.Logger:
    """Module logger. Call once at import: logger = get_logger(__name__)."""
    _configure_root_logger()
    return logging.getLogger(name)
