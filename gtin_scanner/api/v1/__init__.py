"""
==============================================================================
API v1 Endpoints
==============================================================================

Version 1 of the REST API.

Routers:
--------
- health: Health check endpoints
- devices: Camera listing
- scan: Still image and manual entry scanning

==============================================================================
"""

from . import health, devices, scan

__all__ = ["health", "devices", "scan"]
