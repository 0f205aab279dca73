import os
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .core.logging import configure_logging, get_logger, get_trace_id
from .core.middleware import TraceIDMiddleware
from .core.tracing import (
    configure_tracing,
    instrument_fastapi,
    shutdown_tracing,
    get_trace_id_from_context,
    record_exception,
    set_span_status,
    StatusCode,
)
from .routes import health, metrics, orchestrator as orchestrator_routes
from .services.orchestrator import (
    AIOrchestrator,
    AllProvidersFailedError,
    EpisodeNotFoundError,
    NoEligibleProvidersError,
    OrchestrationError,
    build_orchestrator,
)

# Configure structured logging
# Use JSON output in production (containerized), console output in development
log_level = os.getenv("LOG_LEVEL", "INFO")
json_output = os.getenv("LOG_JSON", "true").lower() == "true"
configure_logging(log_level=log_level, json_output=json_output)

logger = get_logger(__name__)

ERROR_STATUS_CODES = {
    NoEligibleProvidersError: 422,
    EpisodeNotFoundError: 404,
    AllProvidersFailedError: 502,
}


def _error_response(status_code: int, detail, error_type: Optional[str] = None) -> JSONResponse:
    # Trace ID from logging context or OpenTelemetry context
    trace_id = get_trace_id() or get_trace_id_from_context()
    content = {
        "detail": detail,
        "status_code": status_code,
        "trace_id": trace_id,
    }
    if error_type:
        content["error_type"] = error_type
    response = JSONResponse(status_code=status_code, content=content)
    if trace_id:
        response.headers["X-Trace-ID"] = trace_id
    return response


def create_app(orchestrator: Optional[AIOrchestrator] = None) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        orchestrator: Pre-built orchestrator (tests); built from the
            environment during startup when omitted
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("app_startup_started")
        app.state.orchestrator = orchestrator if orchestrator is not None else build_orchestrator()
        providers = app.state.orchestrator.describe_providers()
        if not providers:
            logger.warning(
                "app_startup_no_providers",
                message="No provider registered. Set provider API keys or ORCHESTRATOR_DEMO_PROVIDERS=true.",
            )
        logger.info("app_startup_completed", providers=[p["name"] for p in providers])
        yield
        logger.info("app_shutdown_started")
        shutdown_tracing()
        logger.info("app_shutdown_completed")

    app = FastAPI(
        title="ProCheff AI Orchestration API",
        description="Multi-provider AI orchestration with confidence-scored selection",
        version="1.0.0",
        lifespan=lifespan,
    )

    # CORS for local dev; restrict in production
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Trace ID middleware (must be after CORS middleware)
    app.add_middleware(TraceIDMiddleware)

    # Automatic spans for HTTP requests
    instrument_fastapi(app)

    @app.exception_handler(OrchestrationError)
    async def orchestration_exception_handler(request: Request, exc: OrchestrationError):
        """Map orchestration errors to structured HTTP errors."""
        status_code = ERROR_STATUS_CODES.get(type(exc), 500)
        set_span_status(StatusCode.ERROR, str(exc))
        log = logger.error if status_code >= 500 else logger.warning
        log(
            "orchestration_exception",
            error=str(exc),
            error_type=exc.error_type,
            status_code=status_code,
            path=request.url.path,
            method=request.method,
        )
        return _error_response(status_code, str(exc), exc.error_type)

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException):
        """Handle HTTP exceptions."""
        set_span_status(StatusCode.ERROR if exc.status_code >= 500 else StatusCode.OK, str(exc.detail))
        logger.warning(
            "http_exception",
            status_code=exc.status_code,
            detail=exc.detail,
            path=request.url.path,
            method=request.method,
        )
        return _error_response(exc.status_code, exc.detail, "http_error")

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        """Request body / query validation failures."""
        logger.warning(
            "request_validation_failed",
            path=request.url.path,
            method=request.method,
            errors=len(exc.errors()),
        )
        return _error_response(422, jsonable_errors(exc), "validation_error")

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception):
        """Handle general exceptions."""
        record_exception(exc)
        logger.error(
            "unhandled_exception",
            error=str(exc),
            error_type=type(exc).__name__,
            path=request.url.path,
            method=request.method,
            exc_info=True,
        )
        return _error_response(500, "Internal server error", "internal_error")

    # Include routers
    app.include_router(health.router, prefix="/health", tags=["Health"])
    app.include_router(orchestrator_routes.router, prefix="/orchestrator", tags=["Orchestrator"])
    app.include_router(metrics.router, prefix="/metrics", tags=["Metrics"])

    return app


def jsonable_errors(exc: RequestValidationError) -> list:
    """Validation errors without non-serializable context (e.g. exception instances)."""
    return [
        {"loc": list(err.get("loc", ())), "msg": err.get("msg"), "type": err.get("type")}
        for err in exc.errors()
    ]


# Configure distributed tracing (OTLP export when OTEL_EXPORTER_OTLP_ENDPOINT is set)
configure_tracing()

app = create_app()
