"""
Health Routes
=============

FastAPI routes for health check endpoints.
"""

from fastapi import APIRouter, Request

from community_chat.models.schemas import HealthStatus

router = APIRouter(tags=["Health"])


def build_health_status(request: Request) -> HealthStatus:
    """Summarize the state of the chat stream producer."""
    settings = request.app.state.settings
    producer = request.app.state.chat_producer
    return HealthStatus(
        status="healthy",
        version=settings.app_version,
        message="Server running",
        active_streams=producer.active_streams,
        dedup_entries=len(producer.dedup_cache),
    )


@router.get("/health", response_model=HealthStatus)
async def health_check(request: Request) -> HealthStatus:
    """Basic health check endpoint."""
    return build_health_status(request)


@router.get("/api/v1/health", response_model=HealthStatus)
async def api_health_check(request: Request) -> HealthStatus:
    """Health check under the versioned API prefix."""
    return build_health_status(request)
