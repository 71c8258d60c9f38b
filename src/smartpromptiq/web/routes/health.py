"""Health check endpoint."""

from fastapi import APIRouter

from smartpromptiq import __version__
from smartpromptiq.core.request_queue import get_request_queue
from smartpromptiq.web.schemas import HealthResponse

router = APIRouter(tags=["health"])


@router.get("/health", response_model=HealthResponse)
async def health_check() -> HealthResponse:
    """Check API health status."""
    return HealthResponse(
        status="ok",
        version=__version__,
        queue=get_request_queue().get_status()["health"],
    )
