"""
FastAPI Application Entry Point

This module creates and configures the FastAPI application.
It sets up all routes, middleware, and exception handlers.

Design Decisions:
- Use lifespan events for startup/shutdown
- Add CORS middleware so a browser front end can call the API
- Map service exceptions to HTTP responses in one place
- Expose health check endpoints
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator, List

import httpx
from fastapi import FastAPI, HTTPException, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from azdo_reviewer import __version__
from azdo_reviewer.config import Settings, get_settings
from azdo_reviewer.logging_config import get_logger, setup_logging
from azdo_reviewer.routes import router as api_router
from azdo_reviewer.services.ai_engine import AIConfigurationError, AIReviewError
from azdo_reviewer.services.azure_devops import AzureDevOpsError
from azdo_reviewer.services.batching import AnalysisSessionError
from azdo_reviewer.services.diff_engine import DiffEngineError

# Initialize logging first
setup_logging()

logger = get_logger(__name__)


def configured_providers(settings: Settings) -> List[str]:
    providers = []
    if settings.gemini_api_key:
        providers.append("gemini")
    if settings.glm_api_key:
        providers.append("glm")
    return providers


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Application lifespan manager.

    Handles startup and shutdown events for the application.
    """
    settings = get_settings()

    # Startup
    logger.info(
        "Starting Azure DevOps PR Reviewer",
        host=settings.host,
        port=settings.port,
        ai_providers=configured_providers(settings),
        default_provider=settings.default_ai_provider,
        server_pat_configured=bool(settings.azure_devops_pat)
    )

    if not configured_providers(settings):
        logger.warning("No AI provider API key configured; analysis endpoints will fail")

    yield

    # Shutdown
    logger.info("Shutting down Azure DevOps PR Reviewer")


def _error_response(status_code: int, exc: Exception) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={
            "detail": str(exc),
            "type": type(exc).__name__
        }
    )


def create_app() -> FastAPI:
    """
    Create and configure the FastAPI application.

    Returns:
        Configured FastAPI application instance
    """
    app = FastAPI(
        title="Azure DevOps PR Reviewer",
        description="AI-assisted review, analysis and creation of Azure DevOps pull requests",
        version=__version__,
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json"
    )

    # Add CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Register routes
    app.include_router(api_router)

    @app.exception_handler(AzureDevOpsError)
    async def azure_devops_exception_handler(
        request: Request,
        exc: AzureDevOpsError
    ) -> JSONResponse:
        """Upstream 4xx keep their status; anything else is a bad gateway."""
        code = exc.status_code
        if code is None or not 400 <= code < 500:
            code = status.HTTP_502_BAD_GATEWAY

        logger.warning(
            "Azure DevOps request failed",
            path=request.url.path,
            upstream_status=exc.status_code,
            error=str(exc)
        )
        return _error_response(code, exc)

    @app.exception_handler(httpx.HTTPError)
    async def upstream_transport_exception_handler(
        request: Request,
        exc: httpx.HTTPError
    ) -> JSONResponse:
        """Azure DevOps stayed unreachable after the retries."""
        logger.warning(
            "Upstream request failed",
            path=request.url.path,
            error=str(exc),
            error_type=type(exc).__name__
        )
        return JSONResponse(
            status_code=status.HTTP_502_BAD_GATEWAY,
            content={
                "detail": f"Azure DevOps is unreachable: {exc}",
                "type": type(exc).__name__
            }
        )

    @app.exception_handler(AIReviewError)
    async def ai_review_exception_handler(
        request: Request,
        exc: AIReviewError
    ) -> JSONResponse:
        code = (
            status.HTTP_503_SERVICE_UNAVAILABLE
            if isinstance(exc, AIConfigurationError)
            else status.HTTP_502_BAD_GATEWAY
        )
        logger.warning("AI analysis failed", path=request.url.path, error=str(exc))
        return _error_response(code, exc)

    @app.exception_handler(AnalysisSessionError)
    async def analysis_exception_handler(
        request: Request,
        exc: AnalysisSessionError
    ) -> JSONResponse:
        logger.info("Analysis request rejected", path=request.url.path, error=str(exc))
        return _error_response(exc.status_code, exc)

    @app.exception_handler(DiffEngineError)
    async def diff_exception_handler(
        request: Request,
        exc: DiffEngineError
    ) -> JSONResponse:
        return _error_response(status.HTTP_422_UNPROCESSABLE_ENTITY, exc)

    # Add global exception handler
    @app.exception_handler(Exception)
    async def global_exception_handler(
        request: Request,
        exc: Exception
    ) -> JSONResponse:
        """Handle unexpected exceptions."""
        logger.error(
            "Unhandled exception",
            path=request.url.path,
            method=request.method,
            error=str(exc),
            error_type=type(exc).__name__
        )

        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "detail": "Internal server error",
                "type": type(exc).__name__
            }
        )

    # Add root endpoint
    @app.get("/")
    async def root():
        """Root endpoint with basic info."""
        return {
            "name": "Azure DevOps PR Reviewer",
            "version": __version__,
            "status": "running",
            "docs": "/docs"
        }

    # Add health check endpoint
    @app.get("/health")
    async def health_check():
        """
        Health check endpoint.

        Returns basic health status for load balancers and monitors.
        """
        return {
            "status": "healthy",
            "service": "azdo-pr-reviewer",
            "version": __version__
        }

    # Add readiness check endpoint
    @app.get("/ready")
    async def readiness_check():
        """
        Readiness check endpoint.

        Ready once at least one AI provider has an API key.
        """
        providers = configured_providers(get_settings())
        if not providers:
            logger.error("Readiness check failed", reason="no AI provider configured")
            raise HTTPException(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                detail="Not ready: no AI provider API key configured"
            )

        return {
            "status": "ready",
            "service": "azdo-pr-reviewer",
            "providers": providers
        }

    return app


# Create the application instance
app = create_app()
