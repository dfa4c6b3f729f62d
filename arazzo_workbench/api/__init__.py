"""FastAPI application and routes."""

from arazzo_workbench.api.app import create_app
from arazzo_workbench.api.routes import router

__all__ = ["create_app", "router"]
