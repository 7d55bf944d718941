from fastapi import APIRouter

from report_engine.routers import reporting

api_router = APIRouter()
api_router.include_router(reporting.router)

__all__ = ["api_router"]
