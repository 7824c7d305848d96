"""PII (Personally Identifiable Information) logging filter.

Redacts sensitive information from log messages so that request text passing
through the router never reaches log sinks verbatim.
"""

import logging
from typing import Any

from linguaroute.core.pii_utils import redact_for_logs


class PIIFilter(logging.Filter):
    """Logging filter that redacts PII from log messages."""

    def filter(self, record: logging.LogRecord) -> bool:
        """Filter log record by redacting PII from message and args.

        Args:
            record: The log record to filter

        Returns:
            True (always allow the record, but with redacted content)
        """
        if record.msg:
            record.msg = redact_for_logs(str(record.msg))

        if record.args:
            if isinstance(record.args, dict):
                record.args = {
                    k: self._redact_value(v) for k, v in record.args.items()
                }
            elif isinstance(record.args, tuple):
                record.args = tuple(self._redact_value(arg) for arg in record.args)

        return True

    @staticmethod
    def _redact_value(value: Any) -> Any:
        if not isinstance(value, str):
            return value
        return redact_for_logs(value)


def add_pii_filter_to_logger(logger: logging.Logger) -> None:
    """Add PII filter to a logger instance, once."""
    if any(isinstance(f, PIIFilter) for f in logger.filters):
        return
    logger.addFilter(PIIFilter())


def add_pii_filter_to_all_loggers() -> None:
    """Add PII filter to all existing loggers and the root logger."""
    add_pii_filter_to_logger(logging.getLogger())

    for logger_name in logging.Logger.manager.loggerDict:
        logger = logging.getLogger(logger_name)
        if isinstance(logger, logging.Logger):
            add_pii_filter_to_logger(logger)
