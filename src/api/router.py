from fastapi import APIRouter

from src.api.crawl import router as crawl_router
from src.api.cron import router as cron_router

api_router = APIRouter()
api_router.include_router(crawl_router)
api_router.include_router(cron_router)
