"""
Middleware package for partner traffic protection.

Provides:
- RateLimiter: fixed window limiter with Redis and in-memory counter stores
- rate_limit_dependency: FastAPI dependency returning 429 when over quota
"""
