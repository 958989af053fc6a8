"""
Log redaction for partner credentials and key material.

SECURITY REQUIREMENTS:
- Access tokens, shared secrets and the encryption key NEVER appear in logs
- Encrypted tags are redacted too, they are still credential material
- ALLOWED in logs: shop domain, integration id, client IP

Usage:
    from integration_guard.credentials.redaction import setup_credential_logging

    setup_credential_logging()
"""

import logging
import re
from typing import Any

logger = logging.getLogger(__name__)


REDACTED_VALUE = "[REDACTED]"

SECRET_VALUE_PATTERNS = [
    re.compile(r"shpat_[a-zA-Z0-9]+"),  # Shopify Admin API access tokens
    re.compile(r"shpca_[a-zA-Z0-9]+"),  # Shopify custom app tokens
    re.compile(r"shpss_[a-zA-Z0-9]+"),  # Shopify shared secrets
    re.compile(r"\b[0-9a-fA-F]{32}:[0-9a-fA-F]+\b"),  # encrypted tags
    re.compile(r"\b[0-9a-fA-F]{64}\b"),  # 256-bit hex keys
]

SECRET_KEY_NAMES = (
    "token", "secret", "password", "encryption_key", "api_key",
    "apikey", "authorization", "bearer",
)


def is_secret_key(key: str) -> bool:
    """
    Check if a field name indicates a secret.

    Args:
        key: Field or extra name

    Returns:
        True if values under this name must be redacted
    """
    key_lower = key.lower()
    return any(name in key_lower for name in SECRET_KEY_NAMES)


def redact_secret_value(value: Any) -> Any:
    """Replace credential-looking substrings in a string value."""
    if not isinstance(value, str):
        return value

    result = value
    for pattern in SECRET_VALUE_PATTERNS:
        result = pattern.sub(REDACTED_VALUE, result)
    return result


def redact_secret_data(data: Any, _depth: int = 0) -> Any:
    """
    Recursively redact secrets from a data structure.

    Returns a copy; the input is not modified.
    """
    if _depth > 10:
        return data

    if isinstance(data, dict):
        return {
            key: REDACTED_VALUE if is_secret_key(str(key))
            else redact_secret_data(value, _depth + 1)
            for key, value in data.items()
        }

    if isinstance(data, list):
        return [redact_secret_data(item, _depth + 1) for item in data]

    if isinstance(data, str):
        return redact_secret_value(data)

    return data


# LogRecord attributes that are never user supplied
_RECORD_BUILTINS = frozenset(
    logging.LogRecord("", 0, "", 0, "", (), None).__dict__.keys()
) | {"message", "asctime"}


class CredentialLoggingFilter(logging.Filter):
    """
    Logging filter that redacts credential secrets from log records.

    Usage:
        handler.addFilter(CredentialLoggingFilter())
    """

    def filter(self, record: logging.LogRecord) -> bool:
        if isinstance(record.msg, str):
            record.msg = redact_secret_value(record.msg)

        if record.args:
            if isinstance(record.args, dict):
                record.args = redact_secret_data(record.args)
            elif isinstance(record.args, tuple):
                record.args = tuple(
                    redact_secret_value(arg) if isinstance(arg, str) else arg
                    for arg in record.args
                )

        for key in list(record.__dict__.keys()):
            if key in _RECORD_BUILTINS:
                continue
            if is_secret_key(key):
                setattr(record, key, REDACTED_VALUE)
            elif isinstance(getattr(record, key), str):
                setattr(record, key, redact_secret_value(getattr(record, key)))

        return True


# Logger filters only see records created on that exact logger, so every
# module logger in the package is listed.
CREDENTIAL_LOGGERS = (
    "integration_guard",
    "integration_guard.api.app",
    "integration_guard.api.dependencies",
    "integration_guard.api.routes.oauth",
    "integration_guard.api.routes.webhooks_shopify",
    "integration_guard.credentials.redaction",
    "integration_guard.credentials.vault",
    "integration_guard.integrations.shopify.admin_client",
    "integration_guard.middleware.rate_limit",
    "integration_guard.middleware.rate_limit_backends",
    "integration_guard.platform.errors",
    "integration_guard.workers.credential_backfill_job",
)


def setup_credential_logging() -> None:
    """
    Configure credential-safe logging.

    Call this during application startup to ensure all package loggers
    have the redaction filter applied. Records are redacted before they
    reach any handler, including handlers added later by uvicorn or
    ``dictConfig``.
    """
    redaction_filter = CredentialLoggingFilter()

    for logger_name in CREDENTIAL_LOGGERS:
        log = logging.getLogger(logger_name)
        if not any(isinstance(f, CredentialLoggingFilter) for f in log.filters):
            log.addFilter(redaction_filter)

    logger.info("Credential logging configured with redaction filter")
