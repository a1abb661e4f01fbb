"""API routes for DocStream."""

from fastapi import APIRouter

from .audit import router as audit_router
from .requests import router as requests_router
from .users import router as users_router

# Main API router
api_router = APIRouter()

# Include all route modules
api_router.include_router(requests_router)
api_router.include_router(audit_router)
api_router.include_router(users_router)

__all__ = ["api_router"]
