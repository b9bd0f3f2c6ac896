"""The logging configuration module.

Billing code logs through ``ContextualLogger`` instances that carry dimensions such
as ``component``, ``event_type`` or ``organization_id``. Dimensions end up as a
``custom_dimensions`` object in JSON output and as ``key=value`` pairs in text output.
"""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Optional

TEXT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def _dimensions_of(record: logging.LogRecord) -> dict[str, Any]:
    return getattr(record, "custom_dimensions", None) or {}


class JSONFormatter(logging.Formatter):
    """Formats records as one JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:
        """Format the log record as JSON.

        Args:
        ----
            record (logging.LogRecord): The log record to format

        Returns:
        -------
            str: JSON-formatted log message

        """
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "function": record.funcName,
            "line": record.lineno,
        }

        dimensions = _dimensions_of(record)
        if dimensions:
            entry["custom_dimensions"] = dimensions

        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(entry, default=str)


class TextFormatter(logging.Formatter):
    """Human readable format for local development, dimensions appended to the message."""

    def __init__(self) -> None:
        """Initialize the formatter with the text layout."""
        super().__init__(TEXT_FORMAT)

    def format(self, record: logging.LogRecord) -> str:
        """Format the record and append its dimensions."""
        line = super().format(record)
        dimensions = _dimensions_of(record)
        if not dimensions:
            return line
        pairs = " ".join(f"{key}={value}" for key, value in dimensions.items())
        first, newline, rest = line.partition("\n")
        return f"{first} [{pairs}]{newline}{rest}"


class ContextualLogger(logging.LoggerAdapter):
    """A LoggerAdapter that supports both custom dimensions and prefixes."""

    def __init__(
        self,
        logger: logging.Logger,
        prefix: str = "",
        dimensions: Optional[dict] = None,
    ) -> None:
        """Initialize the contextual logger.

        Args:
        ----
            logger (logging.Logger): Base logger instance
            prefix (str): Optional prefix for log messages
            dimensions (Optional[dict]): Custom dimensions for structured logging

        """
        super().__init__(logger, {})
        self.prefix = prefix
        self.dimensions = dimensions or {}

    def process(self, msg: str, kwargs: dict) -> tuple[str, dict]:
        """Prefix the message and merge the dimensions into the record extras."""
        extra = kwargs.setdefault("extra", {})
        if self.dimensions:
            extra["custom_dimensions"] = {**self.dimensions, **extra.get("custom_dimensions", {})}
        return f"{self.prefix}{msg}", kwargs

    def with_prefix(self, prefix: str) -> "ContextualLogger":
        """Return a logger with a different message prefix and the same dimensions."""
        return ContextualLogger(self.logger, prefix, self.dimensions)

    def with_context(self, **dimensions: Any) -> "ContextualLogger":
        """Return a logger with additional dimensions.

        Dimensions with a None value are dropped, so optional ids can be passed as is.
        """
        merged = {**self.dimensions}
        merged.update({key: value for key, value in dimensions.items() if value is not None})
        return ContextualLogger(self.logger, self.prefix, merged)


class LoggerConfigurator:
    """Configures loggers with support for dimensions and prefixes.

    Text output when ``LOCAL_DEVELOPMENT`` is set, JSON otherwise; the level comes
    from ``LOG_LEVEL``.

    Examples:
    --------
    ```python
    logger = LoggerConfigurator.configure_logger(__name__, dimensions={"component": "billing"})
    logger.with_context(event_type="invoice.payment_failed").warning("Payment failed")
    ```

    """

    @staticmethod
    def configure_logger(
        name: str,
        prefix: str = "",
        dimensions: Optional[dict] = None,
    ) -> ContextualLogger:
        """Configure and return a logger with the given name and initial context.

        Args:
        ----
            name (str): Logger name (typically __name__)
            prefix (str): Initial prefix for log messages
            dimensions (Optional[dict]): Initial custom dimensions

        Returns:
        -------
            ContextualLogger: Configured logger with context support

        """
        # Import settings here to avoid circular imports
        from tollgate.core.config import settings

        base = logging.getLogger(name)
        base.setLevel(getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO))

        if not getattr(base, "_tollgate_configured", False):
            handler = logging.StreamHandler(sys.stdout)
            handler.setFormatter(
                TextFormatter() if settings.LOCAL_DEVELOPMENT else JSONFormatter()
            )
            base.handlers = [handler]
            base.propagate = False
            base._tollgate_configured = True

        return ContextualLogger(base, prefix, dimensions)


# Default logger instance
logger = LoggerConfigurator.configure_logger(__name__)
