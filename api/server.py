"""
MoniBot Tempo Worker API - FastAPI

Endpoints:
- GET /health    Process identity, last poll, cycle/processed/error counters

Read-only. No mutation surface.
"""

import logging
from typing import Callable, Optional

from fastapi import FastAPI
from pydantic import BaseModel

logger = logging.getLogger("monibot.api")


# ============================================================
# MODELS
# ============================================================

class HealthResponse(BaseModel):
    status: str
    worker_id: str
    chain: str
    token: str
    started_at: str
    last_poll: Optional[str] = None
    cycle_count: int
    processed_count: int
    error_count: int
    uptime_seconds: float
    executor: Optional[dict] = None
    ledger: Optional[dict] = None


# ============================================================
# SERVER FACTORY
# ============================================================

def create_app(status_fn: Callable[[], dict], lifespan=None) -> FastAPI:
    """
    Create the health app.

    status_fn: () -> dict, usually CycleScheduler.get_status
    lifespan: optional async context manager running the poll loop
    """
    app = FastAPI(
        title="MoniBot Tempo Worker",
        description="Campaign grants and P2P commands on Tempo Testnet.",
        version="1.0.0",
        lifespan=lifespan,
    )

    @app.get("/health", response_model=HealthResponse)
    async def health():
        """Heartbeat endpoint."""
        return status_fn()

    return app
