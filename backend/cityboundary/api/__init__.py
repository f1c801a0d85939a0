from fastapi import APIRouter
from cityboundary.api.routes import health, boundaries

api_router = APIRouter()

api_router.include_router(health.router)
api_router.include_router(boundaries.router)
