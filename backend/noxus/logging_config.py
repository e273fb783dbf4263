import logging
import os
import re
from logging.config import dictConfig
from typing import Optional

DEFAULT_LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"

_TOKEN_PATTERNS = (
    re.compile(r"(?i)(bearer\s+)[A-Za-z0-9._~+/=-]+"),
    re.compile(r"((?:access|refresh)_token=)[^&#\s]+"),
)


def redact_tokens(message: str) -> str:
    for pattern in _TOKEN_PATTERNS:
        message = pattern.sub(r"\1***", message)
    return message


class RedactTokensFilter(logging.Filter):
    """Masks bearer and deep-link tokens in every record passing the handler."""

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        redacted = redact_tokens(message)
        if redacted != message:
            record.msg = redacted
            record.args = None
        return True


def configure_logging(level: Optional[str] = None) -> None:
    """Configure process logging from the NOXUS_* environment flags."""
    resolved = (level or os.getenv("NOXUS_LOG_LEVEL", "INFO")).upper()

    dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "filters": {
                "redact_tokens": {
                    "()": RedactTokensFilter,
                },
            },
            "formatters": {
                "default": {
                    "format": DEFAULT_LOG_FORMAT,
                },
            },
            "handlers": {
                "default": {
                    "class": "logging.StreamHandler",
                    "formatter": "default",
                    "filters": ["redact_tokens"],
                },
            },
            "loggers": {
                "noxus": {
                    "level": resolved,
                },
            },
            "root": {
                "handlers": ["default"],
                "level": resolved,
            },
        }
    )

    # Request lines and headers show up at DEBUG; the filter masks tokens either way.
    http_level = logging.DEBUG if os.getenv("NOXUS_DEBUG_HTTP", "0") == "1" else logging.WARNING
    logging.getLogger("httpx").setLevel(http_level)
    logging.getLogger("httpcore").setLevel(http_level)
