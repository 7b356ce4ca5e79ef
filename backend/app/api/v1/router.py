"""
API v1 router aggregating all endpoint routers.
"""

from fastapi import APIRouter

from app.api.v1.endpoints import reference

api_router = APIRouter()

api_router.include_router(
    reference.router,
    prefix="/reference",
    tags=["Medicare Reference"],
)
