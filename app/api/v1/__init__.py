from fastapi import APIRouter

from app.api.v1.routers import cap_table, documents, health, jobs, rsu_grants

api_router = APIRouter()
api_router.include_router(health.router)
api_router.include_router(rsu_grants.router)
api_router.include_router(cap_table.router)
api_router.include_router(jobs.router)
api_router.include_router(documents.router)

__all__ = ["api_router"]
