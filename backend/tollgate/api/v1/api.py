"""API routes for the FastAPI application."""

from tollgate.api.router import TrailingSlashRouter
from tollgate.api.v1.endpoints import billing, health

api_router = TrailingSlashRouter()
api_router.include_router(health.router, prefix="/health", tags=["health"])
api_router.include_router(billing.router, prefix="/billing", tags=["billing"])
