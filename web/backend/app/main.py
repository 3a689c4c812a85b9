"""FastAPI application for the genswap web API.

Provides REST API endpoints wrapping the genswap package for:
- Target status and generation history
- Manual rollback of a target
- Update session history and triggering updates
"""

from __future__ import annotations

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from genswap import __version__
from web.backend.app.routers import sessions, targets

app = FastAPI(
    title="genswap API",
    description=(
        "REST API for the genswap update orchestrator. "
        "Provides endpoints for generation history, rollback, "
        "and update session history."
    ),
    version=__version__,
)

# ---------------------------------------------------------------------------
# CORS middleware (allow all origins for development)
# ---------------------------------------------------------------------------
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ---------------------------------------------------------------------------
# Include routers
# ---------------------------------------------------------------------------
app.include_router(targets.router)
app.include_router(sessions.router)


# ---------------------------------------------------------------------------
# Root and health-check endpoints
# ---------------------------------------------------------------------------


@app.get("/", tags=["meta"])
async def root():
    """Return basic API information."""
    return {
        "name": "genswap API",
        "version": __version__,
        "description": "Automated generation update orchestrator REST API",
        "docs": "/docs",
        "openapi": "/openapi.json",
    }


@app.get("/health", tags=["meta"])
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy"}
