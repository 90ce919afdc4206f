"""
Logging setup and identifier redaction.

SECURITY REQUIREMENTS:
- Bot tokens, webhook secrets and OAuth codes NEVER appear in logs
- Billing customer/subscription ids are masked to their last four characters

Usage:
    from portal.platform.logging_config import configure_logging

    configure_logging()
"""

import logging
import re
import sys
from typing import Any, Optional

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
REDACTED_VALUE = "[REDACTED]"

# Attributes every LogRecord has; anything else came in through extra=
_STANDARD_RECORD_ATTRS = frozenset(
    logging.LogRecord("", 0, "", 0, "", (), None).__dict__.keys()
) | {"message", "asctime"}

_SECRET_KEY_MARKERS = ("token", "secret", "password", "authorization", "code", "api_key")

_BILLING_ID_PATTERN = re.compile(r"\b((?:cus|sub|cs|evt)_)([A-Za-z0-9]+)\b")
_BEARER_PATTERN = re.compile(r"(Bearer\s+)[A-Za-z0-9._~+/=-]+", re.IGNORECASE)
_BOT_PATTERN = re.compile(r"(Bot\s+)[A-Za-z0-9._-]+")
_SIGNING_SECRET_PATTERN = re.compile(r"\b(whsec|sk_live|sk_test|rk_live|rk_test)_[A-Za-z0-9]+\b")

# Keys whose names contain a marker but carry no secret
_ALLOWED_KEYS = frozenset({"error_code", "status_code", "reason_code", "outcome_code"})


def mask_identifier(value: Optional[str], visible: int = 4) -> Optional[str]:
    """
    Mask an identifier to its last `visible` characters.

    Prefixes such as "cus_" are kept so the id type stays recognisable.
    """
    if value is None:
        return None
    match = _BILLING_ID_PATTERN.fullmatch(value)
    if match:
        prefix, body = match.groups()
        return f"{prefix}***{body[-visible:]}" if len(body) > visible else f"{prefix}***"
    if len(value) <= visible:
        return "***"
    return f"***{value[-visible:]}"


def redact_text(text: str) -> str:
    """Redact secrets and mask billing ids inside free text."""
    result = _SIGNING_SECRET_PATTERN.sub(REDACTED_VALUE, text)
    result = _BEARER_PATTERN.sub(lambda m: m.group(1) + REDACTED_VALUE, result)
    result = _BOT_PATTERN.sub(lambda m: m.group(1) + REDACTED_VALUE, result)
    result = _BILLING_ID_PATTERN.sub(lambda m: mask_identifier(m.group(0)), result)
    return result


def _is_secret_key(key: str) -> bool:
    key_lower = key.lower()
    if key_lower in _ALLOWED_KEYS:
        return False
    return any(marker in key_lower for marker in _SECRET_KEY_MARKERS)


def _redact_value(value: Any) -> Any:
    if isinstance(value, str):
        return redact_text(value)
    if isinstance(value, dict):
        return {
            k: REDACTED_VALUE if _is_secret_key(str(k)) else _redact_value(v)
            for k, v in value.items()
        }
    return value


class IdentifierRedactionFilter(logging.Filter):
    """
    Logging filter that masks billing ids and strips credentials from records.

    Applies to the message, positional args and extra fields.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        if isinstance(record.msg, str):
            record.msg = redact_text(record.msg)

        if record.args:
            if isinstance(record.args, dict):
                record.args = _redact_value(record.args)
            elif isinstance(record.args, tuple):
                record.args = tuple(_redact_value(arg) for arg in record.args)

        for key in list(record.__dict__.keys()):
            if key in _STANDARD_RECORD_ATTRS:
                continue
            if _is_secret_key(key):
                setattr(record, key, REDACTED_VALUE)
            else:
                setattr(record, key, _redact_value(getattr(record, key)))

        return True


def configure_logging(level: Optional[str] = None) -> None:
    """
    Install the portal log handler on the root logger.

    Safe to call more than once; the handler is only added the first time.
    """
    if level is None:
        from portal.config.settings import get_settings
        level = get_settings().log_level

    root = logging.getLogger()
    root.setLevel(level)

    for handler in root.handlers:
        if getattr(handler, "_portal_handler", False):
            return

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    handler.addFilter(IdentifierRedactionFilter())
    handler._portal_handler = True
    root.addHandler(handler)

    logging.getLogger(__name__).info("Logging configured", extra={"log_level": level})
