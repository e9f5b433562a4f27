"""
Structured logging setup using structlog.
"""
import re
import sys
import logging
from typing import Optional

import structlog


# Message text is user content; keep it out of log lines
SENSITIVE_FIELDS = ('text', 'token', 'authorization', 'password', 'secret')

SENSITIVE_PATTERNS = [
    re.compile(r'\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b'),  # Email
    re.compile(r'\bBearer\s+[A-Za-z0-9._~+/=-]+', re.IGNORECASE),
]

MAX_VALUE_LENGTH = 200


def setup_logging(log_level: str = "INFO", log_file: Optional[str] = None) -> None:
    """Route structlog JSON lines to stderr, or to ``log_file`` when given."""
    # stdout carries CLI JSON output
    if log_file:
        output = {"handlers": [logging.FileHandler(log_file, encoding="utf-8")]}
    else:
        output = {"stream": sys.stderr}

    logging.basicConfig(
        format="%(message)s",
        level=getattr(logging, log_level.upper(), logging.INFO),
        force=True,
        **output
    )

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.format_exc_info,
            _redact_sensitive_data,
            _truncate_long_values,
            structlog.processors.JSONRenderer(ensure_ascii=False),
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def _redact_sensitive_data(logger, method_name, event_dict):
    """Redact sensitive fields and inline credentials."""
    for name in SENSITIVE_FIELDS:
        if name in event_dict:
            event_dict[name] = "[[REDACTED]]"

    for key, value in event_dict.items():
        if isinstance(value, str):
            for pattern in SENSITIVE_PATTERNS:
                value = pattern.sub("[[REDACTED]]", value)
            event_dict[key] = value

    return event_dict


def _truncate_long_values(logger, method_name, event_dict):
    """Error strings can echo response bodies; cap them."""
    for key, value in event_dict.items():
        if key != "exception" and isinstance(value, str) and len(value) > MAX_VALUE_LENGTH:
            event_dict[key] = value[:MAX_VALUE_LENGTH] + "..."
    return event_dict
