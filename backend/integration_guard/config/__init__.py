"""Configuration module for the integration protection layer."""

from integration_guard.config.settings import (
    DEFAULT_KEY_PREFIX,
    DEFAULT_SHOPIFY_API_VERSION,
    GuardSettings,
)

__all__ = [
    "DEFAULT_KEY_PREFIX",
    "DEFAULT_SHOPIFY_API_VERSION",
    "GuardSettings",
]
