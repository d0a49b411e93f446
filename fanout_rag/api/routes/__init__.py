"""API routes module.

Exports all API routers for registration in main.py.
"""

from fanout_rag.api.routes.health import router as health_router
from fanout_rag.api.routes.retrieve import router as retrieve_router


__all__ = [
    "health_router",
    "retrieve_router",
]
