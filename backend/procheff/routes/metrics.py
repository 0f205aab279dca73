"""
Prometheus metrics endpoint.

GET /metrics
"""
from fastapi import APIRouter, Request, Response

from procheff.core.logging import get_logger
from procheff.core.metrics import get_metrics, get_metrics_content_type, update_context_store_size

logger = get_logger(__name__)
router = APIRouter()


@router.get("", response_class=Response)
async def metrics(request: Request):
    """
    Metrics in Prometheus text format for scraping.

    The context store gauge is re-read from the app's store on every scrape.
    """
    orchestrator = getattr(request.app.state, "orchestrator", None)
    if orchestrator is not None:
        update_context_store_size(len(orchestrator.store))

    try:
        payload = get_metrics()
    except Exception as e:
        logger.error(
            "metrics_collection_failed",
            error=str(e),
            error_type=type(e).__name__,
            exc_info=True,
        )
        payload = b"# metrics collection failed\n"
    return Response(content=payload, media_type=get_metrics_content_type())
