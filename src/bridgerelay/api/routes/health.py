"""Liveness and readiness endpoints."""

import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Request

from bridgerelay import __version__
from bridgerelay.config import get_settings
from bridgerelay.errors import RegistryError

logger = logging.getLogger(__name__)

router = APIRouter()

SERVICE_NAME = "bridge-relayer"


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


@router.get("/health")
async def health_check():
    return {"status": "ok", "service": SERVICE_NAME, "timestamp": _now()}


@router.get("/health/detailed")
async def detailed_health(request: Request):
    """Health plus registry reachability and redacted configuration.

    Reports "degraded" instead of failing when the address store cannot
    be read, so monitoring can tell a sick store from a dead process.
    """
    settings = get_settings()

    registry_status = {"reachable": True}
    try:
        addresses = await request.app.state.registry.list_addresses()
        registry_status["tracked_addresses"] = len(addresses)
    except RegistryError as e:
        logger.warning(f"Health check could not read the registry: {e}")
        registry_status = {"reachable": False}

    return {
        "status": "ok" if registry_status["reachable"] else "degraded",
        "service": SERVICE_NAME,
        "version": __version__,
        "timestamp": _now(),
        "mode": "dry_run" if settings.dry_run else "live",
        "registry": registry_status,
        "config": settings.get_safe_dict(),
    }
