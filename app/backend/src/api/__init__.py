"""Public API routers exposed by the FastAPI application."""

from . import billing, health

__all__ = ["billing", "health"]
