"""Platform-level primitives shared across the integration protection layer."""
