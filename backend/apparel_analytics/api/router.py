from fastapi import APIRouter

from apparel_analytics.api.routes import analytics, cron, health

api_router = APIRouter()
api_router.include_router(health.router)
api_router.include_router(analytics.router)
api_router.include_router(cron.router)
