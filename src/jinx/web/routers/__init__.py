from fastapi import APIRouter

from jinx.web.routers.dream import router as dream_router
from jinx.web.routers.exports import router as exports_router

api_router = APIRouter()

api_router.include_router(
    dream_router,
)

api_router.include_router(
    exports_router,
)

__all__ = ["api_router"]
