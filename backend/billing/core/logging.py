"""
Logging setup.

WHY: Modules log through ``logging.getLogger(__name__)``; this sets the
root handler, format and level once at application start so request,
lifecycle and delivery messages share one format.
"""

import logging
from typing import Optional

from billing.core.config import settings

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def configure_logging(level: Optional[str] = None) -> None:
    """
    Configure root logging for the service.

    Args:
        level: Level name override (defaults to settings.LOG_LEVEL)
    """
    logging.basicConfig(
        level=(level or settings.LOG_LEVEL).upper(),
        format=LOG_FORMAT,
    )
    # SQL echo is controlled by DEBUG on the engine, keep the logger quiet otherwise
    if not settings.DEBUG:
        logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
