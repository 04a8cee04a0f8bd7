import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import AsyncGenerator

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles

from scene_composer.api import compose
from scene_composer.config import get_settings
from scene_composer.exceptions import ComposerError, RequestValidationFailed
from scene_composer.services.job_runner import JobRunner
from scene_composer.services.job_tracker import JobTracker
from scene_composer.services.orchestrator import CompositionOrchestrator

settings = get_settings()
logger = logging.getLogger(__name__)

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    # Startup
    tracker = JobTracker(ttl_seconds=settings.job_ttl_seconds)
    orchestrator = CompositionOrchestrator(tracker, settings=settings)
    app.state.job_tracker = tracker
    app.state.job_runner = JobRunner(
        tracker, orchestrator, max_concurrent_jobs=settings.max_concurrent_jobs
    )
    logger.info(f"{settings.app_name} {settings.app_version} started ({settings.environment})")
    yield
    # Shutdown
    await app.state.job_runner.shutdown()


app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    lifespan=lifespan,
)


def _validation_message(exc: RequestValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return "Request validation failed"
    first_error = errors[0]
    # Drop the leading "body" so locations read like the JSON field names
    loc = " -> ".join(str(x) for x in first_error.get("loc", []) if x != "body")
    msg = first_error.get("msg", "Validation error")
    return f"{loc}: {msg}" if loc else msg


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Malformed composition requests are a plain 400 with an error body."""
    error = RequestValidationFailed(_validation_message(exc))
    return JSONResponse(status_code=error.status_code, content={"error": error.to_dict()})


@app.exception_handler(ComposerError)
async def composer_exception_handler(request: Request, exc: ComposerError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"error": exc.to_dict()})


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail},
        headers=getattr(exc, "headers", None),
    )


# Global exception handler to ensure errors return proper JSON
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(f"Unhandled exception: {exc}")
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


# Routers
app.include_router(compose.router, tags=["compose"])

# Serve locally stored composites in development
if settings.use_local_storage:
    app.mount(
        "/files",
        StaticFiles(directory=settings.local_storage_path, check_dir=False),
        name="files",
    )


@app.get("/health")
async def health_check() -> dict[str, str]:
    return {
        "status": "ok",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "version": settings.app_version,
    }
