"""
==============================================================================
WebSocket Package
==============================================================================

Real-time WebSocket handlers for camera scanning.

Handlers:
---------
- scanner: Live camera scanning with pause, switch and upload

==============================================================================
"""

from .scanner import router as scanner_router

__all__ = ["scanner_router"]
