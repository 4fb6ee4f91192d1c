"""
Health check endpoints for monitoring service status.
"""

from typing import Any, Dict

from fastapi import APIRouter, Depends, status

from backend.src.api.dependencies import get_account_store
from backend.src.core.auth import merchant_auth
from backend.src.core.config import settings
from backend.src.core.exceptions import APIException
from backend.src.core.logging import get_logger
from backend.src.models.base import DetailedHealthStatus, HealthStatus

logger = get_logger(__name__)

router = APIRouter(tags=["Health"])

APP_VERSION = "1.0.0"


@router.get(
    "/health",
    response_model=HealthStatus,
    status_code=status.HTTP_200_OK,
    summary="Basic health check",
    description="Returns basic health status without authentication",
)
async def health_check() -> HealthStatus:
    """
    Basic health check endpoint.

    Example:
        ```bash
        curl http://localhost:8000/health
        ```
    """
    return HealthStatus(status="healthy")


async def check_store_health(store) -> Dict[str, Any]:
    """
    Check that the account store answers.

    Returns:
        Health status dictionary
    """
    try:
        healthy = await store.ping()
    except Exception as e:
        logger.error(
            "Account store health check failed",
            extra={"error": str(e)},
            exc_info=True,
        )
        return {"status": "unhealthy", "service": "account_store", "error": str(e)}

    if not healthy:
        return {
            "status": "unhealthy",
            "service": "account_store",
            "error": "Invalid response from account store",
        }
    return {"status": "healthy", "service": "account_store"}


@router.get(
    "/v1/health/detailed",
    response_model=DetailedHealthStatus,
    status_code=status.HTTP_200_OK,
    summary="Detailed health check",
    description="Component status for operators (requires a merchant key)",
    dependencies=[Depends(merchant_auth)],
)
async def detailed_health_check(store=Depends(get_account_store)) -> DetailedHealthStatus:
    components: Dict[str, Any] = {
        "account_store": await check_store_health(store),
        "application": {
            "status": "healthy",
            "environment": settings.ENVIRONMENT,
            "debug": settings.DEBUG,
        },
    }
    overall_status = "healthy"
    if components["account_store"]["status"] != "healthy":
        overall_status = "degraded"
        logger.warning("Account store unhealthy", extra=components["account_store"])

    return DetailedHealthStatus(
        status=overall_status,
        components=components,
        version=APP_VERSION,
        environment=settings.ENVIRONMENT,
    )


@router.get(
    "/v1/health/ready",
    status_code=status.HTTP_200_OK,
    summary="Readiness check",
    description="Kubernetes-style readiness probe",
)
async def readiness_check(store=Depends(get_account_store)) -> Dict[str, str]:
    """
    Verify the service can reach its account store.

    Raises:
        APIException: SERVICE_UNAVAILABLE when the store does not answer
    """
    store_status = await check_store_health(store)
    if store_status["status"] != "healthy":
        raise APIException.from_code(
            "SERVICE_UNAVAILABLE", message="Service not ready - account store unavailable"
        )
    return {"status": "ready"}


@router.get(
    "/v1/health/live",
    status_code=status.HTTP_200_OK,
    summary="Liveness check",
    description="Kubernetes-style liveness probe",
)
async def liveness_check() -> Dict[str, str]:
    return {"status": "alive"}


__all__ = ["router", "APP_VERSION"]
