"""System status API endpoints."""

import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from buttonhub.api.deps import get_request_id
from buttonhub.api.responses import success_body
from buttonhub.config import settings
from buttonhub.database import engine

logger = logging.getLogger(__name__)

router = APIRouter(tags=["system"])


def _database_ok() -> bool:
    try:
        with engine.connect() as conn:
            conn.exec_driver_sql("SELECT 1")
        return True
    except SQLAlchemyError as e:
        logger.error("Health check database probe failed: %s", e)
        return False


@router.get("/health")
def health(request_id: str = Depends(get_request_id)):
    """Health check (no auth required)."""
    database = _database_ok()
    body = success_body(
        {
            "status": "healthy" if database else "unhealthy",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "environment": settings.environment,
            "version": settings.version,
            "region": settings.region,
            "checks": {"api": True, "database": database},
        },
        request_id,
    )
    return JSONResponse(body, status_code=200 if database else 503)
