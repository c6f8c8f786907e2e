"""FastAPI server for the Medicare Coverage Assistant.

Run with:
    uvicorn coverage_assistant.server:app --reload --host 0.0.0.0 --port 8000
"""

from __future__ import annotations

import logging
import uuid
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware

from coverage_assistant.agent import create_coverage_agent
from coverage_assistant.api.routes import router
from coverage_assistant.config import CORS_ORIGINS, SERVER_HOST, SERVER_PORT
from coverage_assistant.services.metrics import metrics

# ── Logging ──────────────────────────────────────────────────────────
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-8s %(name)s - %(message)s",
)
logger = logging.getLogger(__name__)


# ── Lifespan: initialise / tear-down shared resources ────────────────
@asynccontextmanager
async def lifespan(application: FastAPI):
    """Start-up: build the governor, caches, client and agent once.

    Every request shares the one governor, so rate limits and circuit
    state are per process, not per request.
    """
    logger.info("Building coverage agent…")
    application.state.agent = create_coverage_agent()
    logger.info("Agent ready.")
    yield
    application.state.agent.close()
    metrics.flush()
    logger.info("Agent shut down.")


# ── FastAPI application ──────────────────────────────────────────────
app = FastAPI(
    title="Medicare Coverage Assistant",
    description=(
        "Conversational assistant that explains what Medicare needs to "
        "cover a procedure and helps draft appeals."
    ),
    version="1.0.0",
    lifespan=lifespan,
)

# ── CORS ─────────────────────────────────────────────────────────────
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["X-Request-ID", "X-Error-Kind", "Retry-After"],
)


# ── Request-ID middleware ────────────────────────────────────────────
@app.middleware("http")
async def add_request_id(request: Request, call_next) -> Response:
    """Attach a request ID (echoed or generated) for log correlation."""
    request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))
    request.state.request_id = request_id
    logger.info(
        "[%s] %s %s", request_id, request.method, request.url.path,
    )
    response = await call_next(request)
    response.headers["X-Request-ID"] = request_id
    return response


# ── Register routes ──────────────────────────────────────────────────
app.include_router(router, prefix="/api")


@app.get("/")
async def root():
    """Root endpoint with API info."""
    return {
        "service": "Medicare Coverage Assistant",
        "version": "1.0.0",
        "docs": "/docs",
        "health": "/api/health",
    }


# ── CLI entry point ──────────────────────────────────────────────────

if __name__ == "__main__":
    logger.info("Starting coverage assistant API on %s:%d", SERVER_HOST, SERVER_PORT)
    uvicorn.run(
        "coverage_assistant.server:app",
        host=SERVER_HOST,
        port=SERVER_PORT,
        reload=True,
    )
