from fastapi import APIRouter

from app.routers import (
    commission,
    creator,
    health,
)

api_router = APIRouter()

api_router.include_router(health.router, tags=["Health"])
api_router.include_router(commission.router, prefix="/admin/commission", tags=["Commission Admin"])
api_router.include_router(creator.router, prefix="/creator", tags=["Creator"])
