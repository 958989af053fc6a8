"""
Credentials module for partner access tokens and webhook secrets.

This module provides:
- AES-256-CBC encryption of secrets before storage (CredentialVault)
- Legacy plaintext pass-through and one-time migration helpers
- Log redaction so tokens and key material never reach log output

SECURITY:
- Secrets are encrypted at rest using TOKEN_ENCRYPTION_KEY
- No plaintext tokens outside process memory
- Tokens NEVER appear in logs or API responses

Usage:
    from integration_guard.credentials import CredentialVault

    vault = CredentialVault.from_settings(settings)
    stored = vault.encrypt("shpat_xxx")
    token = vault.decrypt(stored)
"""

from integration_guard.credentials.vault import CredentialVault
from integration_guard.credentials.redaction import (
    CredentialLoggingFilter,
    REDACTED_VALUE,
    redact_secret_data,
    redact_secret_value,
    setup_credential_logging,
)

__all__ = [
    # Vault
    "CredentialVault",
    # Redaction
    "CredentialLoggingFilter",
    "REDACTED_VALUE",
    "redact_secret_data",
    "redact_secret_value",
    "setup_credential_logging",
]
