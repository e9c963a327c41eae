"""
==============================================================================
GTIN Barcode Scanner - Application Entry Point
==============================================================================

FastAPI application with:
- Camera scanning over WebSocket (/ws/scan)
- Still image upload decoding, HEIC/HEIF included
- Camera listing and health endpoints

Usage:
------
    # Development
    uvicorn gtin_scanner.main:app --reload

    # Production
    uvicorn gtin_scanner.main:app --host 0.0.0.0 --port 8000

==============================================================================
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from gtin_scanner.api.router import api_router
from gtin_scanner.capture import DeviceEnumerator
from gtin_scanner.config import Settings, get_settings
from gtin_scanner.core.dependencies import get_decode_engine, get_device_provider
from gtin_scanner.core.exceptions import register_exception_handlers
from gtin_scanner.websockets import scanner_router


# ============================================================================
# LOGGING SETUP
# ============================================================================

settings = get_settings()

logging.basicConfig(
    level=logging.DEBUG if settings.debug else logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s"
)

logger = logging.getLogger(__name__)


# ============================================================================
# APPLICATION FACTORY
# ============================================================================

class Application:
    """
    Builds the scanner service.

    Startup logs the decoder status and the cameras visible to the
    process; neither blocks the service from coming up, since uploads
    and manual entry work without a camera.
    """

    def __init__(self, settings: Optional[Settings] = None):
        self._settings = settings or get_settings()
        self._app = self._create_app()

    def _create_app(self) -> FastAPI:
        app = FastAPI(
            title=self._settings.app_name,
            version="1.0.0",
            description="Barcode capture from cameras and uploaded images",
            lifespan=self._lifespan,
            docs_url=None if self._settings.is_production else "/docs",
            redoc_url=None if self._settings.is_production else "/redoc",
        )

        app.add_middleware(
            CORSMiddleware,
            allow_origins=self._settings.cors_origins_list,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )
        register_exception_handlers(app)

        app.include_router(api_router)
        app.include_router(scanner_router)
        self._register_root(app)

        return app

    @asynccontextmanager
    async def _lifespan(self, app: FastAPI):
        await self._startup(app)
        yield
        logger.info("🛑 Scanner service stopped")

    async def _startup(self, app: FastAPI) -> None:
        """Log configuration and check the capture components."""
        base = f"http://{self._settings.host}:{self._settings.port}"
        logger.info("=" * 60)
        logger.info(f"🚀 Starting {self._settings.app_name} ({self._settings.app_env})")

        try:
            engine = app.dependency_overrides.get(get_decode_engine, get_decode_engine)()
            logger.info(f"🔍 Decoder ready: {type(engine).__name__}")
        except Exception as e:
            logger.error(f"❌ Decoder unavailable, live and upload scans will fail: {e}")

        provider = app.dependency_overrides.get(get_device_provider, get_device_provider)()
        cameras = await DeviceEnumerator(provider).list_devices()
        if cameras:
            for i, camera in enumerate(cameras):
                logger.info(f"📷 Camera {i}: {camera.label} ({camera.device_id})")
        else:
            logger.warning("⚠️ No cameras found; upload and manual entry only")

        logger.info(f"⏱  Poll interval: {self._settings.poll_interval_ms}ms")
        logger.info(f"🔌 WebSocket: ws://{self._settings.host}:{self._settings.port}/ws/scan")
        if not self._settings.is_production:
            logger.info(f"📖 API Docs: {base}/docs")
        logger.info("=" * 60)

    def _register_root(self, app: FastAPI) -> None:

        @app.get("/")
        async def root():
            """Service entry points."""
            return {
                "name": self._settings.app_name,
                "api": api_router.prefix,
                "websocket": "/ws/scan",
                "docs": app.docs_url,
            }

    @property
    def app(self) -> FastAPI:
        """Get the FastAPI application instance."""
        return self._app


# ============================================================================
# APPLICATION INSTANCE
# ============================================================================

application = Application()
app = application.app


# ============================================================================
# ENTRY POINT
# ============================================================================

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "gtin_scanner.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        log_level="debug" if settings.debug else "info"
    )
