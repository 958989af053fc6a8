"""
Credential backfill job: encrypts access tokens stored before encryption
was enabled.

Walks every stored Shopify integration and passes its access token through
CredentialVault.migrate(). Values already in the "iv:cipher" format are
left alone, so the job is safe to re-run.

CONSTRAINTS:
- Never runs on the request path
- Requires a configured vault (fails fast otherwise)
- Respects CREDENTIAL_BACKFILL_DRY_RUN for safe rollout
- Token values are never logged; only integration ids and shop domains

Run from the portal's scheduler:
    stats = run_backfill(repository, vault)
"""

import logging
import os
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

from integration_guard.credentials.vault import CredentialVault
from integration_guard.integrations.shopify.models import IntegrationRepository
from integration_guard.platform.errors import ConfigurationError

logger = logging.getLogger(__name__)

CREDENTIAL_BACKFILL_DRY_RUN = (
    os.getenv("CREDENTIAL_BACKFILL_DRY_RUN", "false").lower() == "true"
)


@dataclass
class BackfillStats:
    """Statistics from a credential backfill run."""

    started_at: datetime = field(
        default_factory=lambda: datetime.now(timezone.utc)
    )
    integrations_scanned: int = 0
    already_encrypted: int = 0
    credentials_migrated: int = 0
    dry_run: bool = CREDENTIAL_BACKFILL_DRY_RUN
    errors: list = field(default_factory=list)
    completed_at: Optional[datetime] = None

    def to_dict(self) -> dict:
        duration = None
        if self.completed_at:
            duration = (self.completed_at - self.started_at).total_seconds()

        return {
            "started_at": self.started_at.isoformat(),
            "completed_at": (
                self.completed_at.isoformat() if self.completed_at else None
            ),
            "integrations_scanned": self.integrations_scanned,
            "already_encrypted": self.already_encrypted,
            "credentials_migrated": self.credentials_migrated,
            "dry_run": self.dry_run,
            "error_count": len(self.errors),
            "duration_seconds": duration,
        }


def run_backfill(
    repository: IntegrationRepository,
    vault: CredentialVault,
    dry_run: bool = CREDENTIAL_BACKFILL_DRY_RUN,
) -> BackfillStats:
    """
    Encrypt every legacy plaintext access token.

    Args:
        repository: Integration storage
        vault: Configured credential vault
        dry_run: If True, only count without writing

    Returns:
        BackfillStats with results

    Raises:
        ConfigurationError: If the vault has no valid key
    """
    if not vault.is_configured():
        logger.error("Credential backfill requires TOKEN_ENCRYPTION_KEY")
        raise ConfigurationError(
            "Encryption key not configured. Set TOKEN_ENCRYPTION_KEY."
        )

    stats = BackfillStats(dry_run=dry_run)
    logger.info("Credential backfill started", extra={"dry_run": dry_run})

    try:
        for integration in repository.list_shopify_integrations():
            stats.integrations_scanned += 1

            migrated = vault.migrate(integration.access_token)
            if migrated is None:
                stats.already_encrypted += 1
                continue

            if dry_run:
                logger.info(
                    "[DRY RUN] Would encrypt access token",
                    extra={
                        "integration_id": integration.integration_id,
                        "shop_domain": integration.shop_domain,
                    },
                )
                continue

            repository.save_access_token(integration.integration_id, migrated)
            stats.credentials_migrated += 1
            logger.info(
                "Access token encrypted",
                extra={
                    "integration_id": integration.integration_id,
                    "shop_domain": integration.shop_domain,
                },
            )

    except Exception as exc:
        stats.errors.append(f"Credential backfill failed: {type(exc).__name__}")
        stats.completed_at = datetime.now(timezone.utc)
        logger.error(
            "Credential backfill failed",
            extra=stats.to_dict(),
            exc_info=True,
        )
        raise

    stats.completed_at = datetime.now(timezone.utc)
    logger.info("Credential backfill completed", extra=stats.to_dict())
    return stats
