"""
Top-level API router.
Combines all sub-routers into a single router.
"""

from fastapi import APIRouter

from certmap.api.health import router as health_router
from certmap.api.documents import router as documents_router
from certmap.api.mappings import router as mappings_router
from certmap.api.events import router as events_router
from certmap.api.jobs import router as jobs_router

api_router = APIRouter()

api_router.include_router(health_router)
api_router.include_router(documents_router)
api_router.include_router(mappings_router)
api_router.include_router(events_router)
api_router.include_router(jobs_router)
