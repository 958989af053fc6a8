"""
Credential vault for partner access tokens and webhook secrets.

Implements AES-256-CBC encryption of secrets before they touch storage.

SECURITY:
- Key is 32 bytes supplied as 64 hex chars via TOKEN_ENCRYPTION_KEY
- Each encryption uses a fresh random 128-bit IV from the OS CSPRNG
- Key material and plaintext values are NEVER logged
- Decrypt failures raise DecryptionError, never return garbage or ""

Stored format:
    "<ivHex>:<cipherHex>"   (both lowercase hex)

A stored value without ":" is a legacy unencrypted token and is passed
through decrypt() unchanged so rows written before encryption was enabled
keep working until the backfill job migrates them.

Usage:
    from integration_guard.credentials.vault import CredentialVault

    vault = CredentialVault.from_settings(settings)

    # Encrypt before storage
    stored = vault.encrypt(access_token)

    # Decrypt for use (in memory only)
    access_token = vault.decrypt(stored)
"""

import logging
import re
import secrets
from typing import Optional

from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from integration_guard.config.settings import GuardSettings
from integration_guard.platform.errors import ConfigurationError, DecryptionError

logger = logging.getLogger(__name__)


KEY_SIZE = 32    # 256 bits for AES-256
IV_SIZE = 16     # 128 bits, one AES block
BLOCK_SIZE = 128  # AES block size in bits, for PKCS7

SEPARATOR = ":"

_HEX_RE = re.compile(r"^[0-9a-fA-F]+$")


def _is_hex(value: str) -> bool:
    return bool(_HEX_RE.match(value))


def _decrypt_failure(reason: str, error_type: Optional[str] = None) -> DecryptionError:
    """Log why a stored value was rejected; the raised error stays generic."""
    logger.error(
        "Token decryption failed",
        extra={"operation": "decrypt", "reason": reason, "error_type": error_type},
    )
    return DecryptionError()


class CredentialVault:
    """
    AES-256-CBC vault for secrets persisted as opaque strings.

    The vault is "unconfigured" when the key is missing, not 64 characters,
    or not valid hex. Callers check is_configured() before relying on
    encryption; encrypt() raises ConfigurationError otherwise.
    """

    def __init__(self, key_hex: Optional[str] = None):
        self._key: Optional[bytes] = self._decode_key(key_hex)

    @classmethod
    def from_settings(cls, settings: GuardSettings) -> "CredentialVault":
        """Create a vault from process settings."""
        vault = cls(settings.encryption_key)
        if settings.encryption_key and not vault.is_configured():
            logger.warning(
                "TOKEN_ENCRYPTION_KEY is set but invalid; vault unconfigured",
                extra={"expected_hex_length": KEY_SIZE * 2},
            )
        return vault

    @staticmethod
    def _decode_key(key_hex: Optional[str]) -> Optional[bytes]:
        if not key_hex or len(key_hex) != KEY_SIZE * 2 or not _is_hex(key_hex):
            return None
        return bytes.fromhex(key_hex)

    @staticmethod
    def generate_key_hex() -> str:
        """
        Generate a new random 256-bit key as 64 hex characters.

        Returns:
            Hex string suitable for TOKEN_ENCRYPTION_KEY
        """
        return secrets.token_bytes(KEY_SIZE).hex()

    def is_configured(self) -> bool:
        """True iff a key of the correct length is present."""
        return self._key is not None

    def encrypt(self, plaintext: str) -> str:
        """
        Encrypt a secret for storage.

        Args:
            plaintext: Token or secret to encrypt

        Returns:
            "<ivHex>:<cipherHex>" safe for a string column

        Raises:
            ConfigurationError: If no valid key is configured
        """
        if self._key is None:
            logger.error(
                "Encryption not configured. Set TOKEN_ENCRYPTION_KEY.",
                extra={"operation": "encrypt"},
            )
            raise ConfigurationError()

        iv = secrets.token_bytes(IV_SIZE)

        padder = padding.PKCS7(BLOCK_SIZE).padder()
        padded = padder.update(plaintext.encode("utf-8")) + padder.finalize()

        encryptor = Cipher(algorithms.AES(self._key), modes.CBC(iv)).encryptor()
        ciphertext = encryptor.update(padded) + encryptor.finalize()

        return f"{iv.hex()}{SEPARATOR}{ciphertext.hex()}"

    def decrypt(self, value: str) -> str:
        """
        Decrypt a stored secret.

        Values without ":" are legacy plaintext and returned unchanged.

        Args:
            value: Stored value from the database

        Returns:
            Decrypted plaintext (handle with care!)

        Raises:
            DecryptionError: If no key is configured, the tag is malformed,
                or the ciphertext does not decrypt under the key
        """
        if SEPARATOR not in value:
            logger.warning(
                "Token appears to be unencrypted (legacy format)",
                extra={"action": "credential.legacy_plaintext"},
            )
            return value

        if self._key is None:
            raise _decrypt_failure("encryption key not configured")

        iv_hex, cipher_hex = value.split(SEPARATOR, 1)

        if len(iv_hex) != IV_SIZE * 2 or not _is_hex(iv_hex):
            raise _decrypt_failure("bad IV")

        if not cipher_hex or len(cipher_hex) % 2 or not _is_hex(cipher_hex):
            raise _decrypt_failure("bad ciphertext")

        iv = bytes.fromhex(iv_hex)
        ciphertext = bytes.fromhex(cipher_hex)

        if len(ciphertext) % IV_SIZE:
            raise _decrypt_failure("truncated ciphertext")

        decryptor = Cipher(algorithms.AES(self._key), modes.CBC(iv)).decryptor()
        padded = decryptor.update(ciphertext) + decryptor.finalize()

        try:
            unpadder = padding.PKCS7(BLOCK_SIZE).unpadder()
            plaintext = unpadder.update(padded) + unpadder.finalize()
            return plaintext.decode("utf-8")
        except ValueError as e:
            # UnicodeDecodeError is a ValueError subclass
            raise _decrypt_failure(
                "corrupted token or encryption key changed", type(e).__name__
            ) from e

    @staticmethod
    def is_encrypted(value: str) -> bool:
        """
        Check whether a stored value is in the encrypted tag format.

        Encrypted values look like "iv:data" where iv is 32 hex chars.
        """
        if SEPARATOR not in value:
            return False
        iv_hex = value.split(SEPARATOR, 1)[0]
        return len(iv_hex) == IV_SIZE * 2 and _is_hex(iv_hex)

    def migrate(self, value: str) -> Optional[str]:
        """
        Encrypt a legacy plaintext value.

        Used by the backfill job, never by the request path.

        Returns:
            The new encrypted tag, or None if the vault is unconfigured or
            the value is already encrypted
        """
        if not self.is_configured():
            return None

        if self.is_encrypted(value):
            return None

        return self.encrypt(value)

    def __repr__(self) -> str:
        return f"CredentialVault(configured={self.is_configured()})"
