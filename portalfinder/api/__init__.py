"""FastAPI application for the PortalFinder cache."""

from portalfinder.api.app import create_app
from portalfinder.api.routes import create_routes

__all__ = ["create_app", "create_routes"]
