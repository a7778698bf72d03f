# API Version 1 routes
from fastapi import APIRouter

from .commands import router as commands_router
from .events import router as events_router
from .messages import router as messages_router
from .telegram import router as telegram_router
from .verification import router as verification_router

# Create main v1 router
api_v1_router = APIRouter(prefix="/api/v1")

# Include all route modules
api_v1_router.include_router(commands_router)
api_v1_router.include_router(messages_router)
api_v1_router.include_router(verification_router)
api_v1_router.include_router(events_router)
api_v1_router.include_router(telegram_router)

__all__ = ["api_v1_router"]
