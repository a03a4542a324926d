"""
Health Check Endpoints

Liveness, readiness and database pool endpoints for container orchestration
and monitoring pollers.
"""

import os
from datetime import datetime, timezone
from typing import Any, Dict

from fastapi import APIRouter, Request, Response

from irrigation_core.database import Database

from ..responses import ErrorResponse

router = APIRouter(tags=["health"], responses={500: {"model": ErrorResponse}})


def _database(request: Request) -> Database:
    return request.app.state.database


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


@router.get("/health")
async def health_check(request: Request) -> Dict[str, Any]:
    """
    Basic health check.

    Returns 200 if the service is running, with the database status folded in.
    """
    database = await _database(request).health_check()
    return {
        "status": "healthy" if database["status"] == "healthy" else "degraded",
        "database": database,
        "timestamp": _now(),
        "version": os.getenv("APP_VERSION", "1.0.0")
    }


@router.get("/health/live")
async def liveness_check() -> Dict[str, str]:
    """
    Kubernetes liveness probe.

    Returns 200 if the process is alive. Never touches the database.
    """
    return {"status": "alive"}


@router.get("/health/ready")
async def readiness_check(request: Request, response: Response) -> Dict[str, Any]:
    """
    Kubernetes readiness probe.

    Returns 503 while the database is unreachable.
    """
    database = await _database(request).health_check()
    ready = database["status"] == "healthy"
    if not ready:
        response.status_code = 503

    return {
        "status": "ready" if ready else "not_ready",
        "checks": {"database": database},
        "timestamp": _now()
    }


@router.get("/health/db")
async def database_stats(request: Request) -> Dict[str, Any]:
    """
    Connection pool statistics and the most recent slow queries.

    Should be protected in production.
    """
    database = _database(request)
    return {
        "stats": database.get_stats(),
        "slow_queries": database.monitor.slow_query_log(),
        "timestamp": _now()
    }
