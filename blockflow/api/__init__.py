"""FastAPI application and routes."""

from blockflow.api.app import create_app
from blockflow.api.routes import router

__all__ = ["create_app", "router"]
