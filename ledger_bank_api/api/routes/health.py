"""Health, readiness and detailed health endpoints"""

import logging

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ledger_bank_api.api.dependencies import get_cache
from ledger_bank_api.config import settings
from ledger_bank_api.infrastructure.clients.circuit_breaker import circuit_states
from ledger_bank_api.infrastructure.database.session import get_db
from ledger_bank_api.utils.time_utils import utcnow
from ledger_bank_api.workers.queue import JobQueue

logger = logging.getLogger(__name__)

router = APIRouter()


def _database_ok(db: Session) -> bool:
    try:
        db.execute(text("SELECT 1"))
        return True
    except SQLAlchemyError as e:
        logger.error(f"Database health check failed: {e}")
        return False


@router.get("/health")
def health_check():
    return {"status": "ok", "service": settings.service_name, "timestamp": utcnow().isoformat()}


@router.get("/health/ready")
def readiness(db: Session = Depends(get_db), cache=Depends(get_cache)):
    """Ready when the database and cache answer"""
    checks = {"database": _database_ok(db), "cache": cache.ping()}
    ready = all(checks.values())
    return JSONResponse(
        status_code=200 if ready else 503,
        content={"status": "ready" if ready else "not_ready", "checks": checks},
    )


@router.get("/health/detailed")
def detailed_health(db: Session = Depends(get_db), cache=Depends(get_cache)):
    database_ok = _database_ok(db)
    cache_ok = cache.ping()
    cache_check = {"status": "ok" if cache_ok else "error", **cache.stats()}
    body = {
        "status": "ok" if database_ok and cache_ok else "degraded",
        "service": settings.service_name,
        "environment": settings.environment,
        "timestamp": utcnow().isoformat(),
        "checks": {
            "database": {"status": "ok" if database_ok else "error"},
            "cache": cache_check,
            "bank_circuits": circuit_states(),
        },
    }
    if database_ok:
        body["checks"]["jobs"] = JobQueue(db).counts()
    return JSONResponse(status_code=200 if database_ok else 503, content=body)
