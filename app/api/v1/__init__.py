"""V1 API router aggregation."""

from fastapi import APIRouter

from app.api.v1.stores import router as stores_router
from app.api.v1.system import router as system_router

v1_router = APIRouter(prefix="/v1")
v1_router.include_router(stores_router)
v1_router.include_router(system_router)
