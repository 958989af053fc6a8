"""
Integration protection layer for the warehouse portal's Shopify integration.

- credentials:   CredentialVault (AES-256-CBC at-rest encryption)
- integrations:  Shopify webhook / OAuth HMAC verification, outbound client
- middleware:    Fixed window RateLimiter with Redis and in-memory stores
- api:           FastAPI app factory, dependencies and routes
"""

__version__ = "0.1.0"
