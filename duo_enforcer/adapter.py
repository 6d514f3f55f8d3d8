"""
Enforcement Point Adapter
=========================
The boundary between a protected action and the policy engine.

Usage (programmatic):
    point = EnforcementPoint(engine)
    decision = await point.evaluate("alice", "ssh-login", "push",
                                    context=ClientContext(source_address="10.0.0.5"))
    if not decision.allowed:
        deny(decision.message)

Usage (HTTP, e.g. behind a reverse proxy auth subrequest):
    app.include_router(create_enforcement_router(point))
"""

import asyncio
import uuid
from typing import Iterable, List, Optional, Union

import structlog
from fastapi import APIRouter, Request, Response
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from .factors import FactorKind, parse_factor
from .logs import current_request_id
from .metrics import CONTENT_TYPE_LATEST, get_metrics_text, record_decision
from .models import (
    ClientContext,
    Decision,
    DecisionOutcome,
    EnforcementRequest,
    Principal,
    ReasonCode,
)

logger = structlog.get_logger(__name__)

HTTP_STATUS = {
    DecisionOutcome.ALLOW: 200,
    DecisionOutcome.DENY: 403,
    DecisionOutcome.ERROR: 503,
}


class EnforcementPoint:
    """
    Turn a protected action's request into a Decision.

    No retries and no caching here; the engine owns both. The only thing
    added is a hard deadline so callers never hang.
    """

    def __init__(self, engine, timeout: Optional[float] = None):
        self.engine = engine
        self.timeout = timeout if timeout is not None else engine.config.request_timeout + 5.0

    async def evaluate(
        self,
        principal: Union[str, Principal],
        resource: str,
        requested_factor: str = "auto",
        context: Optional[ClientContext] = None,
        passcode: Optional[str] = None,
        enrolled_factors: Optional[Iterable[str]] = None,
        request_id: Optional[str] = None,
    ) -> Decision:
        """
        Evaluate one attempt.

        Args:
            principal: Principal id or Principal
            resource: Protected resource identifier
            requested_factor: push, passcode, phone, sms, bypass_code or auto
            context: Source address and application id
            passcode: Code for passcode and bypass-code factors
            enrolled_factors: Factor names the principal is enrolled for, if known
            request_id: Correlation id (generated when omitted)

        Returns:
            Decision (ALLOW, DENY or ERROR) with a reason
        """
        try:
            factor = parse_factor(requested_factor, passcode)
            if isinstance(principal, str):
                enrolled = (
                    frozenset(FactorKind(f) for f in enrolled_factors)
                    if enrolled_factors is not None else None
                )
                principal = Principal(id=principal, enrolled_factors=enrolled)
        except ValueError as e:
            logger.warning("Rejected malformed enforcement request", error=str(e))
            decision = Decision(
                outcome=DecisionOutcome.ERROR,
                reason=ReasonCode.FACTOR_NOT_PERMITTED,
                message=str(e),
            )
            record_decision(decision.outcome.value, decision.reason.value)
            return decision

        request = EnforcementRequest(
            principal=principal,
            resource=resource,
            factor=factor,
            context=context or ClientContext(),
            request_id=request_id or str(uuid.uuid4()),
        )

        try:
            return await asyncio.wait_for(self.engine.evaluate(request), timeout=self.timeout)
        except asyncio.TimeoutError:
            logger.error(
                "Enforcement deadline exceeded",
                request_id=request.request_id,
                principal=principal.id,
                resource=resource,
                timeout=self.timeout,
            )
            decision = Decision(
                outcome=DecisionOutcome.ERROR,
                reason=ReasonCode.TIMEOUT,
                message="Enforcement did not complete in time",
            )
            record_decision(decision.outcome.value, decision.reason.value)
            return decision

    async def cancel(self, principal: str, resource: Optional[str] = None) -> int:
        return await self.engine.cancel(principal, resource)


class EnforceRequestBody(BaseModel):
    principal: str
    resource: str
    factor: str = "auto"
    passcode: Optional[str] = None
    enrolled_factors: Optional[List[str]] = None
    application_id: Optional[str] = None
    source_address: Optional[str] = None


class CancelRequestBody(BaseModel):
    principal: str
    resource: Optional[str] = None


class DecisionBody(BaseModel):
    outcome: str
    reason: str
    message: str
    fail_open: bool = False
    factor: Optional[str] = None
    trail: List[str] = []


def create_enforcement_router(point: EnforcementPoint) -> APIRouter:
    """
    Create the HTTP surface of the enforcement point.

    ALLOW answers 200, DENY 403 and ERROR 503 so that reverse-proxy
    subrequest auth can act on the status code alone.

    Returns:
        FastAPI router with /v1/enforce, /v1/enforce/cancel and /metrics
    """
    router = APIRouter(tags=["Enforcement"])

    @router.post("/v1/enforce", response_model=DecisionBody)
    async def enforce(body: EnforceRequestBody, request: Request):
        request_id = current_request_id() or request.headers.get("X-Request-ID") or str(uuid.uuid4())
        source = body.source_address or (request.client.host if request.client else None)

        decision = await point.evaluate(
            body.principal,
            body.resource,
            body.factor,
            context=ClientContext(source_address=source, application_id=body.application_id),
            passcode=body.passcode,
            enrolled_factors=body.enrolled_factors,
            request_id=request_id,
        )

        return JSONResponse(
            status_code=HTTP_STATUS[decision.outcome],
            content=decision.to_dict(),
        )

    @router.post("/v1/enforce/cancel")
    async def cancel(body: CancelRequestBody):
        cancelled = await point.cancel(body.principal, body.resource)
        return {"cancelled": cancelled}

    @router.get("/metrics")
    async def metrics():
        return Response(content=get_metrics_text(), media_type=CONTENT_TYPE_LATEST)

    return router
