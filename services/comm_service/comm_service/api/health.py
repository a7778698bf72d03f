"""
Health check API endpoints.
Monitors application and Redis health.
"""

import datetime

from fastapi import APIRouter, Depends, status

from comm_service.api.deps import get_container
from comm_service.services.container import ServiceContainer

router = APIRouter(tags=["health"])


@router.get("/health", status_code=status.HTTP_200_OK)
async def full_health_check(container: ServiceContainer = Depends(get_container)) -> dict:
    """
    Health check endpoint.

    Returns:
        dict: Health status with keys: status, timestamp, services (application, redis), message
    """
    redis_healthy = await container.store.ping()
    health_status = {
        "status": "healthy" if redis_healthy else "degraded",
        "timestamp": datetime.datetime.now(datetime.timezone.utc).isoformat(),
        "services": {
            "application": "healthy",
            "redis": "healthy" if redis_healthy else "unhealthy",
        },
        "background_tasks": container.tasks.pending,
    }

    if redis_healthy:
        health_status["message"] = "All services are healthy"
    else:
        health_status["message"] = "Application is running but Redis is unreachable"

    return health_status
