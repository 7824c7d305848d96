"""Logging setup for processes embedding the routing core."""

import logging
import sys
from typing import Optional

from linguaroute.core.config import Settings, get_settings
from linguaroute.core.pii_filter import add_pii_filter_to_all_loggers

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def configure_logging(settings: Optional[Settings] = None) -> None:
    """Configure stdout logging with PII redaction.

    Args:
        settings: Settings to read LOG_LEVEL / DEBUG from (defaults to get_settings())
    """
    settings = settings or get_settings()
    level = logging.DEBUG if settings.DEBUG else settings.LOG_LEVEL.upper()
    logging.basicConfig(
        level=level,
        format=LOG_FORMAT,
        handlers=[logging.StreamHandler(sys.stdout)],
    )
    # Redact after basicConfig so the root logger is covered as well
    add_pii_filter_to_all_loggers()
    logging.getLogger(__name__).debug(
        "Logging configured (level=%s, environment=%s)", level, settings.ENVIRONMENT
    )
