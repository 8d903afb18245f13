from fastapi import APIRouter

from .api.bills_router import router as bills_router
from .api.obligations_router import router as obligations_router
from .api.projections_router import router as projections_router
from .api.recurring_router import router as recurring_router

router = APIRouter()

router.include_router(obligations_router)
router.include_router(recurring_router)
router.include_router(bills_router)
router.include_router(projections_router)
