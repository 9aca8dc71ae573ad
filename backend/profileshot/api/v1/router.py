from fastapi import APIRouter

from profileshot.api.v1 import health, profile

api_router = APIRouter(prefix="/api")

api_router.include_router(profile.router, tags=["Profile"])
api_router.include_router(health.router, tags=["Health"])
