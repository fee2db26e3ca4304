"""
HTTP API for the clinic booking service.
"""

from .server import app, create_app

__all__ = ["app", "create_app"]
