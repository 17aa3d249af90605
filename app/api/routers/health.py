"""Health check API router."""

from fastapi import APIRouter
from fastapi.responses import JSONResponse
from sqlalchemy import text

from app.infra.config import config
from app.infra.database import get_db_session
from app.infra.metrics import get_metrics_response

router = APIRouter()


@router.get("/health", tags=["Health"])
async def health_check():
    """Combined health check endpoint."""
    return {
        "status": "ok",
        "service": "toolgate",
        "version": "1.0.0",
    }


@router.get("/health/live", tags=["Health"])
async def liveness_probe():
    """Liveness probe - indicates if the process is running."""
    return {"status": "alive"}


@router.get("/health/ready", tags=["Health"])
async def readiness_probe():
    """Readiness probe - checks database connectivity when the SQL stores are in use."""
    if config.TOOL_STORE_BACKEND == "memory":
        return {"status": "ready", "store": "memory"}
    try:
        with get_db_session() as session:
            session.execute(text("SELECT 1"))
        return {"status": "ready", "store": "postgres"}
    except Exception:
        return JSONResponse(status_code=503, content={"status": "not_ready", "store": "postgres"})


@router.get("/metrics", tags=["Health"])
async def metrics():
    """Prometheus metrics endpoint."""
    return get_metrics_response()
