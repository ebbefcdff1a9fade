"""
FastAPI Application
==================

Main FastAPI application serving the SSE chat stream.
Wires the stream producer, its dedup cache and the collaborators it calls.
"""

from contextlib import asynccontextmanager
import uuid
from typing import AsyncGenerator, Any, Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.responses import Response
import uvicorn

from community_chat.config.settings import get_settings, Settings
from community_chat.config.logging import bind_request_context, clear_request_context, get_logger
from community_chat.api.sse.dedup import DedupCache
from community_chat.api.sse.producer import ChatStreamProducer, ChatStreamError
from community_chat.core.generation import ResponseGenerator, RuleBasedGenerator
from community_chat.core.lookup import ActivityLookup
from community_chat.models.schemas import ErrorResponse

logger = get_logger(__name__)


def create_app(
    settings: Optional[Settings] = None,
    generator: Optional[ResponseGenerator] = None,
    lookup: Optional[ActivityLookup] = None,
    dedup_cache: Optional[DedupCache] = None,
) -> FastAPI:
    """
    Application factory.

    Args:
        settings: Settings to use instead of the global settings
        generator: Response text producer, defaults to the rule-based stub
        lookup: Optional activity lookup feeding activity and image events
        dedup_cache: Dedup cache, defaults to one built from settings

    Returns:
        FastAPI application instance
    """
    settings = settings or get_settings()
    dedup_cache = dedup_cache or DedupCache(
        window_seconds=settings.dedup_window_seconds,
        max_entries=settings.dedup_max_entries,
    )
    producer = ChatStreamProducer(
        generator=generator or RuleBasedGenerator(),
        dedup_cache=dedup_cache,
        settings=settings,
        lookup=lookup,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Application lifespan manager."""
        logger.info("Starting FastAPI application", environment=settings.environment)
        dedup_cache.start_sweeper(settings.dedup_sweep_interval_seconds)
        try:
            yield
        finally:
            logger.info("Shutting down FastAPI application")
            try:
                await dedup_cache.stop_sweeper()
            except Exception as e:
                logger.error("Error stopping dedup sweeper", error=str(e))

    app = FastAPI(
        title=settings.app_name,
        description="Stream community activity recommendations over Server-Sent Events",
        version=settings.app_version,
        lifespan=lifespan,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
    )
    app.state.settings = settings
    app.state.chat_producer = producer

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_hosts,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["*"],
        expose_headers=["Content-Type", "Cache-Control", "Connection", "X-Request-ID"],
    )

    # Request ID and request logging middleware
    @app.middleware("http")
    async def add_request_id(request: Request, call_next) -> Response:  # type: ignore
        """Add request ID to all requests and log who is calling."""
        request_id = str(uuid.uuid4())
        request.state.request_id = request_id
        # Streams produced for this request inherit the bound fields
        bind_request_context(request_id=request_id)

        accepts_stream = "text/event-stream" in request.headers.get("accept", "")
        logger.info(
            "Request received",
            method=request.method,
            path=request.url.path,
            client_ip=request.client.host if request.client else "unknown",
            forwarded_for=request.headers.get("x-forwarded-for"),
            user_agent=request.headers.get("user-agent", "unknown"),
            event_stream=accepts_stream,
        )

        try:
            response = await call_next(request)
        finally:
            clear_request_context()
        response.headers["X-Request-ID"] = request_id

        if response.status_code == 429:
            logger.warning("Request rate limited", path=request.url.path, request_id=request_id)

        return response

    # Exception handlers
    @app.exception_handler(HTTPException)
    async def custom_http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
        """Custom HTTP exception handler with structured error response."""
        error_response = ErrorResponse(
            error=str(exc.detail),
            error_code=str(exc.status_code),
            request_id=getattr(request.state, "request_id", None),
        )

        logger.error(
            "HTTP exception",
            status_code=exc.status_code,
            detail=exc.detail,
            request_id=error_response.request_id,
        )

        return JSONResponse(
            status_code=exc.status_code, content=error_response.model_dump(mode="json")
        )

    @app.exception_handler(ChatStreamError)
    async def chat_stream_exception_handler(request: Request, exc: ChatStreamError) -> JSONResponse:
        """Reject a chat query before its stream opens."""
        error_response = ErrorResponse(
            error=str(exc),
            error_code=exc.error_code,
            request_id=getattr(request.state, "request_id", None),
        )

        logger.warning(
            "Chat query rejected",
            status_code=exc.status_code,
            error_code=exc.error_code,
            request_id=error_response.request_id,
        )

        return JSONResponse(
            status_code=exc.status_code, content=error_response.model_dump(mode="json")
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """General exception handler for unexpected errors."""
        error_response = ErrorResponse(
            error="Internal server error",
            error_code="INTERNAL_ERROR",
            details={"exception": str(exc)} if settings.debug else None,
            request_id=getattr(request.state, "request_id", None),
        )

        logger.error(
            "Unhandled exception",
            exception=str(exc),
            request_id=error_response.request_id,
            exc_info=True,
        )

        return JSONResponse(status_code=500, content=error_response.model_dump(mode="json"))

    from community_chat.api.routes.chat import router as chat_router
    from community_chat.api.routes.health import router as health_router

    app.include_router(chat_router)
    app.include_router(health_router)

    # Root endpoint
    @app.get("/", tags=["General"])
    async def root() -> dict[str, Any]:
        """
        Root endpoint with basic API information.
        """
        return {
            "name": settings.app_name,
            "version": settings.app_version,
            "description": "Stream community activity recommendations over Server-Sent Events",
            "docs_url": "/docs" if settings.debug else None,
            "health_check": "/health",
            "endpoints": {
                "chat_stream": "GET /api/v1/chat/stream?message=...",
                "health": "GET /api/v1/health",
            },
        }

    return app


app = create_app()


# Development server runner
def run_development_server() -> None:
    """Run development server with auto-reload."""
    settings = get_settings()
    uvicorn.run(
        "community_chat.api.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        log_level=settings.log_level.lower(),
        access_log=True,
    )


if __name__ == "__main__":
    run_development_server()
