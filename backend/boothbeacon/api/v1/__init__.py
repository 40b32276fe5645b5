"""API v1 router aggregation."""

from fastapi import APIRouter

from boothbeacon.api.v1.sources import router as sources_router
from boothbeacon.api.v1.metrics import router as metrics_router
from boothbeacon.api.v1.booths import router as booths_router
from boothbeacon.api.v1.crawl import router as crawl_router

router = APIRouter(prefix="/api/v1")

router.include_router(sources_router)
router.include_router(metrics_router)
router.include_router(booths_router)
router.include_router(crawl_router)
