"""
Liveness and readiness probes.
"""
import logging

from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from orderdesk.core.config import get_settings
from orderdesk.db.session import get_db

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


def _probe_database(db: Session) -> dict:
    try:
        db.execute(text("SELECT 1"))
    except SQLAlchemyError as e:
        logger.error(f"Database probe failed: {e}")
        return {"status": "error", "message": str(e)}
    return {"status": "ok"}


@router.get("/health")
async def health_check():
    """Liveness probe; never touches the database."""
    return {"status": "ok"}


@router.get("/api/health")
def api_health_check(db: Session = Depends(get_db)):
    """Readiness probe. Answers 503 when the database is unreachable."""
    services = {"database": _probe_database(db)}
    healthy = all(s["status"] == "ok" for s in services.values())
    body = {
        "status": "ok" if healthy else "unhealthy",
        "app": get_settings().APP_NAME,
        "services": services,
    }
    if not healthy:
        return JSONResponse(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, content=body)
    return body
