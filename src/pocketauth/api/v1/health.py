# Health router.
# Created: 2026-02-20

from __future__ import annotations

import logging

from fastapi import APIRouter
from fastapi.responses import JSONResponse

from pocketauth.api.v1.schemas.oauth2 import HealthResponse
from pocketauth.oauth2.errors import StorageError

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Health"])


@router.get("/health", response_model=HealthResponse)
def get_health_status():
    """Liveness plus a round trip to the credential store."""
    from pocketauth.oauth2.server import get_oauth_server

    try:
        get_oauth_server().store.get_client("")
    except StorageError:
        logger.warning("Health check: credential store unavailable", exc_info=True)
        return JSONResponse(
            status_code=503,
            content=HealthResponse(status="degraded", storage="unavailable").model_dump(),
        )
    return HealthResponse()
