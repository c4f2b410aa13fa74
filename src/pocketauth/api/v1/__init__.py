# API router aggregation.
# Created: 2026-02-20
#
# mount_v1_routers(app) registers all domain routers at the root path, since
# relying parties hard-code the OAuth2 endpoint locations.

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from fastapi import FastAPI

logger = logging.getLogger(__name__)

# Domain routers, imported lazily inside mount_v1_routers() to avoid circular imports.
_V1_ROUTERS: list[tuple[str, str, str]] = [
    # (module_path, attr_name, tag)
    ("pocketauth.api.v1.oauth2", "router", "OAuth2"),
    ("pocketauth.api.v1.userinfo", "router", "User Info"),
    ("pocketauth.api.v1.well_known", "router", "Discovery"),
    ("pocketauth.api.v1.health", "router", "Health"),
]


def mount_v1_routers(app: FastAPI) -> None:
    """Mount all domain routers on *app*.

    Unlike optional feature routers, every router here is required for the
    server to be useful, so an import failure propagates.
    """
    import importlib

    from fastapi import APIRouter

    for module_path, attr_name, tag in _V1_ROUTERS:
        mod = importlib.import_module(module_path)
        router: APIRouter = getattr(mod, attr_name)
        app.include_router(router)
        logger.debug("Mounted router: %s (%s)", module_path, tag)
