"""
Strategy Command Center API Server - REST API for the executive dashboard.
"""
# ruff: noqa: S104
# S104: Development server binding (guarded by __name__ check)

import logging
import os

import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from api.auth import is_auth_enabled
from api.performance_router import performance_router
from command_center import config
from command_center.observability import RunContext, configure_logging

logger = logging.getLogger(__name__)

# FastAPI app initialization
app = FastAPI(
    title="Strategy Command Center API",
    description="Composite strategy, OKR and KPI performance for the org hierarchy",
    version="1.0.0",
)

# CORS middleware - configurable via CORS_ORIGINS env var
# Dev default: allow all origins; Production: set CORS_ORIGINS to comma-separated list
cors_origins_env = os.getenv("CORS_ORIGINS", "*")
cors_origins = (
    ["*"] if cors_origins_env == "*" else [o.strip() for o in cors_origins_env.split(",")]
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def run_context_middleware(request: Request, call_next):
    """One run ID per request; honours an incoming X-Run-ID header."""
    with RunContext(request.headers.get("X-Run-ID")) as ctx:
        response = await call_next(request)
        response.headers["X-Run-ID"] = ctx.run_id
        return response


app.include_router(performance_router, prefix="/api/v1/performance")


@app.on_event("startup")
async def log_startup():
    logger.info("=== Strategy Command Center Startup ===")
    logger.info("DB path: %s", config.DB_PATH)
    logger.info("Source: %s", config.SOURCE_PATH or "<empty>")
    logger.info("Auth enabled: %s", is_auth_enabled())


@app.get("/health")
def health():
    """Liveness check (no auth)."""
    return {"status": "healthy"}


# ==== Main ====


def main():
    """Run the server."""
    configure_logging(config.LOG_LEVEL, json_format=config.LOG_JSON)
    port = int(os.environ.get("PORT", 8420))
    uvicorn.run(app, host="0.0.0.0", port=port)


if __name__ == "__main__":
    main()
