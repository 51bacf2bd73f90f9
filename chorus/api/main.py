"""
chorus.api.main — FastAPI application entry point
===================================================

Run with::

    uvicorn chorus.api.main:app --reload --port 8000
"""

from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

load_dotenv()

from chorus.api.deps import get_services  # noqa: E402
from chorus.api.routes.admin import router as admin_router  # noqa: E402
from chorus.api.routes.engagement import router as engagement_router  # noqa: E402
from chorus.api.routes.public import router as public_router  # noqa: E402
from chorus.errors import EngagementError  # noqa: E402
from chorus.services.contest_rotation import ContestRotation  # noqa: E402

logger = logging.getLogger(__name__)


def _cors_origins() -> list[str]:
    """Resolve allowed CORS origins from ``CORS_ALLOW_ORIGINS`` (comma-separated)."""
    raw = os.getenv("CORS_ALLOW_ORIGINS", "").strip()
    if raw:
        return [origin.strip().rstrip("/") for origin in raw.split(",") if origin.strip()]
    return []


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup/shutdown lifecycle — build services, run contest rotation."""
    services = get_services()
    rotation = None
    interval = services.config.rotation_interval_seconds
    if interval > 0:
        rotation = ContestRotation(services.contests, interval)
        rotation.start()
    logger.info("Chorus API started — engine ready (%s)", services.engine.url.database)
    yield
    if rotation is not None:
        rotation.stop()
    logger.info("Chorus API shutting down")


app = FastAPI(
    title="Chorus Engagement API",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(EngagementError)
async def engagement_error_handler(request: Request, exc: EngagementError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content={"error": "INTERNAL_ERROR", "message": "Internal server error"},
    )


# Mount routers
app.include_router(public_router, prefix="/api")
app.include_router(engagement_router, prefix="/api")
app.include_router(admin_router, prefix="/api")


@app.get("/api/health")
def health():
    return {"status": "ok"}
