import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI

from src.api.deps import get_settings
from src.api.errors import register_error_handlers
from src.rules.loader import load_rules

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler for startup/shutdown."""
    logging.basicConfig(level=logging.INFO)
    settings = get_settings()

    # Load rules on startup (fail-fast)
    try:
        rules = load_rules(settings.rules_path)
    except (FileNotFoundError, ValueError):
        logger.critical("Rules load failed from %s", settings.rules_path, exc_info=True)
        raise
    logger.info(
        "Rules loaded from %s (signatures %s)", settings.rules_path, rules.signatures.version
    )

    yield
    # Shutdown cleanup if needed


app = FastAPI(
    title="Zero Trust Analytics API",
    version="0.1.0",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

register_error_handlers(app)

# --- Routers ---
from src.api.routes import (  # noqa: E402
    funnels,
    goals,
    heatmaps,
    realtime,
    stats,
    track,
)

app.include_router(track.router, prefix="/api/track", tags=["Tracking"])
app.include_router(stats.router, prefix="/api/stats", tags=["Stats"])
app.include_router(realtime.router, prefix="/api/realtime", tags=["Realtime"])
app.include_router(heatmaps.router, prefix="/api/heatmaps", tags=["Heatmaps"])
app.include_router(funnels.router, prefix="/api/funnels", tags=["Funnels"])
app.include_router(goals.router, prefix="/api/goals", tags=["Goals"])


@app.get("/health")
def health_check() -> dict[str, Any]:
    """Health check endpoint."""
    return {"status": "ok", "service": "analytics"}
