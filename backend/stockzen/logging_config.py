# Overview: Log setup for the Flask app and service loggers, with secret redaction.

import logging
import re

_SECRET_PATTERN = re.compile(
    r"(?i)\b(password|token|authorization)(\s*[=:]\s*)(bearer\s+)?([^\s,;&\"']+)"
)

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def redact(message: str) -> str:
    """Mask password/token/authorization values in a log line."""
    return _SECRET_PATTERN.sub(lambda m: f"{m.group(1)}{m.group(2)}[REDACTED]", message)


class RedactingFilter(logging.Filter):
    """
    Rewrites records so secrets never reach a handler.

    SECURITY: Bearer tokens and passwords can show up in request dumps and
    exception messages. The filter formats the message once, redacts it,
    and clears args so handlers do not re-interpolate the raw values.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        try:
            message = record.getMessage()
        except (TypeError, ValueError):
            return True
        record.msg = redact(message)
        record.args = None
        return True


def configure_logging(app) -> None:
    """Attach a formatter and the redaction filter to the app and package loggers."""
    level = getattr(logging, str(app.config.get("LOG_LEVEL", "INFO")).upper(), logging.INFO)

    package_logger = logging.getLogger("stockzen")
    package_logger.setLevel(level)
    if not any(getattr(h, "_stockzen", False) for h in package_logger.handlers):
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        handler.addFilter(RedactingFilter())
        handler._stockzen = True
        package_logger.addHandler(handler)

    app.logger.setLevel(level)
    if not any(isinstance(f, RedactingFilter) for f in app.logger.filters):
        app.logger.addFilter(RedactingFilter())
