import logging
import os
import sys
from typing import Optional

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"
DEFAULT_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()


def configure_logging(level: Optional[str] = None) -> logging.Logger:
    """
    Make sure the root logger has a stdout handler and the requested level.
    Uvicorn installs handlers before importing the app; Celery workers and scripts do not,
    so both entry points call this on import.
    """
    resolved_level = (level or DEFAULT_LEVEL).upper()
    root_logger = logging.getLogger()

    if not root_logger.handlers:
        logging.basicConfig(
            level=resolved_level,
            format=LOG_FORMAT,
            handlers=[logging.StreamHandler(sys.stdout)],
        )
    else:
        root_logger.setLevel(resolved_level)

    # requests/urllib3 的 DEBUG 日志会把签名 URL 打出来
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.captureWarnings(True)
    return logging.getLogger("shop_ops")


logger = configure_logging()
