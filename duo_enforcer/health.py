"""
Health Check Module
===================
Liveness and readiness of the enforcer and its dependencies.
"""

import time
from enum import Enum
from typing import Dict, Optional

import structlog
from fastapi import APIRouter
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from .errors import EnforcerError

logger = structlog.get_logger(__name__)


class HealthStatus(str, Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"


class ComponentHealth(BaseModel):
    status: str
    latency_ms: Optional[float] = None
    error: Optional[str] = None


class HealthResponse(BaseModel):
    status: HealthStatus
    service: str
    version: str
    components: Dict[str, ComponentHealth]
    timestamp: float


async def _probe(component: str, ping, errors) -> ComponentHealth:
    started = time.perf_counter()
    try:
        await ping()
    except errors as e:
        logger.error("Health probe failed", component=component, error=str(e))
        return ComponentHealth(status="error", error=str(e))
    elapsed = (time.perf_counter() - started) * 1000
    return ComponentHealth(status="connected", latency_ms=round(elapsed, 2))


async def check_upstream(transport) -> ComponentHealth:
    """Signed ``check`` call: proves reachability and valid integration keys."""
    return await _probe("upstream", lambda: transport.call("check"), EnforcerError)


async def check_redis(redis_client) -> ComponentHealth:
    return await _probe("redis", redis_client.ping, Exception)


def create_health_router(
    service_name: str,
    version: str = "0.1.0",
    transport=None,
    redis_client=None,
) -> APIRouter:
    """
    Create a health check router.

    An unreachable provider makes the enforcer unhealthy and not ready;
    an unreachable lockout store only degrades it.

    Args:
        service_name: Name of the service
        version: Service version
        transport: SignedTransportClient (optional)
        redis_client: Redis client backing the lockout store (optional)

    Returns:
        FastAPI router with /health, /health/live, and /health/ready endpoints
    """
    router = APIRouter(tags=["Health"])

    @router.get("/health", response_model=HealthResponse)
    async def health_check() -> HealthResponse:
        components: Dict[str, ComponentHealth] = {}
        if transport is not None:
            components["upstream"] = await check_upstream(transport)
        if redis_client is not None:
            components["redis"] = await check_redis(redis_client)

        failed = {name for name, c in components.items() if c.status == "error"}
        if "upstream" in failed:
            status = HealthStatus.UNHEALTHY
        elif failed:
            status = HealthStatus.DEGRADED
        else:
            status = HealthStatus.HEALTHY

        return HealthResponse(
            status=status,
            service=service_name,
            version=version,
            components=components,
            timestamp=time.time(),
        )

    @router.get("/health/live")
    async def liveness_probe():
        return {"status": "alive"}

    @router.get("/health/ready")
    async def readiness_probe():
        """Ready only when the provider answers signed calls."""
        if transport is not None and (await check_upstream(transport)).status == "error":
            return JSONResponse(
                status_code=503,
                content={"status": "not_ready", "reason": "upstream_unavailable"},
            )
        return {"status": "ready"}

    return router
