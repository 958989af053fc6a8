from fastapi import APIRouter, Request

from integration_guard.middleware.rate_limit import is_distributed_enabled

router = APIRouter()


@router.get("/health")
def health(request: Request):
    """Liveness plus which protections are configured (no network probes)."""
    settings = request.app.state.settings
    return {
        "status": "ok",
        "rate_limit_backend": "distributed" if is_distributed_enabled(settings) else "in_memory",
        "rate_limit_enabled": settings.rate_limit_enabled,
        "encryption_configured": request.app.state.vault.is_configured(),
    }
