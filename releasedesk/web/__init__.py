"""
releasedesk web layer.

HTTP API for the release wizard and the admin catalog, built on FastAPI.

Components:
- WebServer: FastAPI application with all routes
- auth: bearer/cookie token dependency
- errors: core exception -> JSON response mapping
"""

from releasedesk.web.server import WebServer

__all__ = [
    "WebServer",
]
