"""Master API router that includes all sub-routers."""

from fastapi import APIRouter

from .routes.activity import router as activity_router
from .routes.auth import router as auth_router

api_router = APIRouter(prefix="/api/v1")

api_router.include_router(auth_router)
api_router.include_router(activity_router)
