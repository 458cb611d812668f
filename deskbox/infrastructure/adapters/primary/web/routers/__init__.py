"""FastAPI routers for the deskbox API."""

from deskbox.infrastructure.adapters.primary.web.routers import sessions

__all__ = ["sessions"]
