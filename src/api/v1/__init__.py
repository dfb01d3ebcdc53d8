"""API v1 router configuration."""

from fastapi import APIRouter

from api.v1.routes.messages import router as messages_router
from api.v1.routes.notifications import router as notifications_router
from api.v1.routes.preferences import router as preferences_router
from api.v1.routes.signals import router as signals_router

router = APIRouter()
router.include_router(signals_router)
router.include_router(messages_router)
router.include_router(notifications_router)
router.include_router(preferences_router)
