"""
==============================================================================
Main API Router
==============================================================================

Mounts the v1 endpoint groups under /api/v1. The scanner WebSocket is
registered separately by the application.

==============================================================================
"""

from fastapi import APIRouter

from gtin_scanner.api.v1 import devices, health, scan


API_PREFIX = "/api/v1"

V1_ROUTERS = (health.router, devices.router, scan.router)


class MainAPIRouter:
    """Single entry point for the versioned REST endpoints."""

    def __init__(self, prefix: str = API_PREFIX):
        self._router = APIRouter(prefix=prefix)
        for router in V1_ROUTERS:
            self._router.include_router(router)

    @property
    def router(self) -> APIRouter:
        return self._router


api_router = MainAPIRouter().router
