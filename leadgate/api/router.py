"""
Main API router - aggregates all route modules.
"""
from fastapi import APIRouter

from leadgate.api.admin import router as admin_router
from leadgate.api.health import router as health_router
from leadgate.api.leads import router as leads_router
from leadgate.api.pages import router as pages_router
from leadgate.api.webhooks import router as webhooks_router

api_router = APIRouter()

api_router.include_router(health_router)
api_router.include_router(leads_router)
api_router.include_router(webhooks_router)
api_router.include_router(admin_router)
api_router.include_router(pages_router)
