"""
Matchmaker API - Main Application Entry Point

This module initializes the FastAPI application with:
- Logging configuration and database schema initialization
- Weekly allocation scheduler
- Prometheus metrics middleware and /metrics endpoint
- MatchingError → HTTP status mapping
- API router registration

Architecture:
    FastAPI App
    ├── Lifespan Management (startup/shutdown)
    ├── Prometheus Middleware
    └── API Router
        ├── /matches - List, read, respond to and give feedback on matches
        ├── /admin - Trigger allocation runs
        └── /profile - Regenerate profile embeddings
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from matchmaker.api import api_router
from matchmaker.config import get_settings
from matchmaker.database import init_db
from matchmaker.errors import ErrorKind, MatchingError
from matchmaker.middleware import setup_metrics
from matchmaker.scheduler import start_scheduler, stop_scheduler

logger = logging.getLogger(__name__)

STATUS_BY_KIND = {
    ErrorKind.VALIDATION: 400,
    ErrorKind.AUTHENTICATION: 401,
    ErrorKind.RATE_LIMIT: 429,
    ErrorKind.NETWORK: 502,
    ErrorKind.AI_SERVICE: 503,
    ErrorKind.DATABASE: 503,
    ErrorKind.UNKNOWN: 500,
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Manage application lifecycle events.

    Startup:
        1. Configure logging
        2. Initialize database tables
        3. Start the weekly allocation scheduler

    Shutdown:
        1. Gracefully stop the scheduler
    """
    logging.basicConfig(
        level=get_settings().log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    await init_db()
    start_scheduler()
    yield
    stop_scheduler()


app = FastAPI(
    title="Matchmaker API",
    description="Weekly embedding-based introductions with explanations",
    version="0.1.0",
    lifespan=lifespan,
)

setup_metrics(app)
app.include_router(api_router)


@app.exception_handler(MatchingError)
async def matching_error_handler(request: Request, exc: MatchingError):
    status_code = STATUS_BY_KIND.get(exc.kind, 500)
    if status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc!r}")
    return JSONResponse(
        status_code=status_code,
        content={"detail": exc.user_message, "kind": exc.kind.value},
    )


@app.get("/health")
async def health_check():
    return {"status": "healthy"}
