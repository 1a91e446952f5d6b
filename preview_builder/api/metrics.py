"""
Metrics endpoint for Prometheus scraping.
"""
from fastapi import APIRouter
from fastapi.responses import PlainTextResponse

from preview_builder.core.metrics import metrics

router = APIRouter(tags=["metrics"])


@router.get("/metrics", response_class=PlainTextResponse)
async def get_metrics() -> str:
    """Export metrics in Prometheus text format."""
    return metrics.to_prometheus()
