from fastapi import APIRouter

from leadsignal.api.v1.endpoints import health, leads

router = APIRouter(prefix="/api/v1")

router.include_router(leads.router)
router.include_router(health.router)
