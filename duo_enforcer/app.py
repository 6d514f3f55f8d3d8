"""
Service Factory
===============
Wire configuration, transport, cache, lockout, audit and the HTTP
surface into one FastAPI application.

Usage:
    uvicorn duo_enforcer.app:create_app --factory
"""

import os
from contextlib import asynccontextmanager
from typing import Mapping, Optional

import redis.asyncio as redis
import structlog
from fastapi import FastAPI

from . import __version__
from .adapter import EnforcementPoint, create_enforcement_router
from .audit import AuditLogger
from .health import create_health_router
from .lockout import InMemoryLockoutStore, LockoutTracker, RedisLockoutStore
from .logs import RequestContextMiddleware, setup_logging
from .policy import PolicyConfig, PolicyEngine
from .transport import SignedTransportClient

logger = structlog.get_logger(__name__)

SERVICE_NAME = "duo-enforcer"


def create_app(
    config: Optional[PolicyConfig] = None,
    environ: Optional[Mapping[str, str]] = None,
    transport: Optional[SignedTransportClient] = None,
    redis_client=None,
) -> FastAPI:
    """
    Build the enforcer service.

    Args:
        config: Policy (read from ``DUO_*`` environment variables when omitted)
        environ: Environment mapping used for config and logging
        transport: Pre-built transport (tests inject one over httpx.MockTransport)
        redis_client: Redis client for lockout persistence; ``DUO_REDIS_URL``
            is used when omitted, and an in-memory store when neither is set

    Returns:
        FastAPI application
    """
    env = os.environ if environ is None else environ

    setup_logging(
        service_name=SERVICE_NAME,
        level=env.get("LOG_LEVEL", "INFO"),
        json_output=env.get("LOG_FORMAT", "json") == "json",
    )

    config = config or PolicyConfig.from_env(env)
    transport = transport or SignedTransportClient(config.credentials, config.transport)

    if redis_client is None and env.get("DUO_REDIS_URL"):
        redis_client = redis.from_url(env["DUO_REDIS_URL"])

    if redis_client is not None:
        store = RedisLockoutStore(redis_client)
    else:
        logger.warning("No Redis configured, lockouts will not survive a restart")
        store = InMemoryLockoutStore()

    engine = PolicyEngine(
        config,
        transport,
        lockout=LockoutTracker(store=store, config=config.lockout),
        audit=AuditLogger(service_name=SERVICE_NAME),
    )
    point = EnforcementPoint(engine)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(
            "Enforcer started",
            api_host=config.credentials.host,
            fail_mode=config.fail_mode.value,
            lockout_threshold=config.lockout.threshold,
        )
        yield
        await transport.aclose()
        if redis_client is not None:
            await redis_client.aclose()

    app = FastAPI(title="Duo Enforcer", version=__version__, lifespan=lifespan)
    app.add_middleware(RequestContextMiddleware)
    app.include_router(create_enforcement_router(point))
    app.include_router(
        create_health_router(SERVICE_NAME, __version__, transport=transport, redis_client=redis_client)
    )

    app.state.engine = engine
    app.state.point = point
    return app
