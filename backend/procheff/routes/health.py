"""
Health check endpoints.
"""
from fastapi import APIRouter, Depends

from procheff.core.logging import get_logger
from procheff.routes.orchestrator import get_orchestrator
from procheff.services.orchestrator import AIOrchestrator

logger = get_logger(__name__)
router = APIRouter()


@router.get("")
async def health_check():
    """
    Basic health check endpoint.
    """
    return {
        "status": "ok",
        "message": "API is running"
    }


@router.get("/providers")
async def providers_health(orchestrator: AIOrchestrator = Depends(get_orchestrator)):
    """
    Registered providers and the state of their circuit breakers.

    Returns:
        - status: "ok" when at least one provider is registered and no
          breaker is open, "degraded" when some breaker is open,
          "unavailable" when no provider is registered
        - providers: one description per provider
        - store_size / store_capacity: context store fill level
    """
    providers = orchestrator.describe_providers()
    open_breakers = [
        p["name"]
        for p in providers
        if p.get("circuit_breaker", {}).get("state") == "open"
    ]

    if not providers:
        status = "unavailable"
        message = "No provider registered. Set provider API keys or ORCHESTRATOR_DEMO_PROVIDERS=true."
    elif open_breakers:
        status = "degraded"
        message = f"Circuit open for: {', '.join(open_breakers)}"
    else:
        status = "ok"
        message = "All providers available"

    if status != "ok":
        logger.warning("providers_health_degraded", status=status, open_breakers=open_breakers)

    return {
        "status": status,
        "message": message,
        "providers": providers,
        "store_size": len(orchestrator.store),
        "store_capacity": orchestrator.store.capacity,
    }
