"""
Health check endpoints.

Reports the status of the durable storage backend used by verification sessions.
"""

import logging
from typing import Dict, Any
from fastapi import APIRouter, Depends, status
from datetime import datetime, timezone

from otpverify.core.config import settings
from otpverify.core.deps import get_registry
from otpverify.core.registry import SessionRegistry
from otpverify.core.storage import get_durable_store

router = APIRouter(tags=["Health"])
logger = logging.getLogger(__name__)


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


@router.get("/health", status_code=status.HTTP_200_OK)
async def health_check() -> Dict[str, str]:
    """
    Basic health check endpoint.

    Returns 200 OK if the service is running.
    """
    return {
        "status": "healthy",
        "timestamp": _timestamp()
    }


@router.get("/health/detailed", status_code=status.HTTP_200_OK)
async def detailed_health_check(registry: SessionRegistry = Depends(get_registry)) -> Dict[str, Any]:
    """
    Detailed health check with storage backend status and registry size.

    The service stays "healthy" with an unreachable store because identity
    recovery falls back to manual entry; it reports "degraded" instead.
    """
    store_ok = get_durable_store("healthcheck").ping()
    if not store_ok:
        logger.warning(f"Durable store backend '{settings.DURABLE_STORE_BACKEND}' is unreachable")

    return {
        "status": "healthy" if store_ok else "degraded",
        "timestamp": _timestamp(),
        "checks": {
            "durable_store": {
                "backend": settings.DURABLE_STORE_BACKEND,
                "status": "healthy" if store_ok else "unhealthy"
            },
            "auth_api": {
                "base_url": settings.AUTH_API_BASE_URL
            },
            "sessions": registry.stats()
        }
    }
