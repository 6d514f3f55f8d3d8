"""
Policy Engine
=============
Drives one enforcement request from receipt to a final Decision.

    RECEIVED -> LOCKOUT_CHECK -> LIST_CHECK -> FACTOR_CHECK -> CACHE_CHECK
             -> UPSTREAM_CALL -> CHALLENGE_SENT -> POLLING -> ALLOWED | DENIED

Locked principals, deny-listed and bypass-listed requests never reach the
transport. Lockout bookkeeping runs inside the shared upstream computation:
duplicates sharing a flight are counted once, and a provider answer that
arrives after every waiter has given up is still counted.
"""

import asyncio
import math
import time
from typing import List, Optional

import structlog

from ..audit import AuditEventType, AuditLogger
from ..cache import VerdictCache
from ..errors import (
    MalformedResponse,
    PolicyViolation,
    ProviderRejected,
    RateLimited,
    ServiceUnavailable,
    SignatureError,
    TransportError,
    Unauthorized,
)
from ..factors import FactorKind
from ..lockout import LockoutTracker
from ..metrics import record_decision
from ..models import (
    Decision,
    DecisionOutcome,
    EnforcementRequest,
    ReasonCode,
    Verdict,
    VerdictStatus,
)
from .config import FailMode, PolicyConfig
from .poller import ChallengePoller
from .states import EnforcementState, StateTrail

logger = structlog.get_logger(__name__)

S = EnforcementState

MESSAGES = {
    ReasonCode.ALLOWED: "Second factor approved",
    ReasonCode.BYPASS: "Bypass policy grants access without a second factor",
    ReasonCode.DENY_LIST: "Access denied by policy",
    ReasonCode.LOCKOUT: "Too many failed attempts",
    ReasonCode.REJECTED: "Second factor rejected",
    ReasonCode.FRAUD: "Attempt reported as fraudulent",
    ReasonCode.TIMEOUT: "Second factor not answered in time",
    ReasonCode.CANCELLED: "Pending challenge was cancelled",
    ReasonCode.UPSTREAM_UNAVAILABLE: "Authentication service unavailable",
    ReasonCode.UPSTREAM_RATE_LIMITED: "Authentication service is throttling requests",
    ReasonCode.INTEGRATION_UNAUTHORIZED: "Authentication service rejected this integration",
    ReasonCode.INVALID_RESPONSE: "Authentication service returned an invalid response",
    ReasonCode.NOT_ENROLLED: "Principal is not enrolled for this factor",
    ReasonCode.FACTOR_NOT_PERMITTED: "Factor not permitted for this resource",
    ReasonCode.PASSCODES_SENT: "New passcodes sent; retry with a passcode",
    ReasonCode.PREAUTH_ALLOW: "Access allowed by provider without a challenge",
    ReasonCode.LOCKOUT_STORE_UNAVAILABLE: "Lockout state unavailable",
    ReasonCode.INTERNAL_ERROR: "Internal enforcement error",
}


class PolicyEngine:
    """
    Evaluate enforcement requests against policy and the provider.

    ``evaluate`` never raises: every error resolves to a Decision.
    """

    def __init__(
        self,
        config: PolicyConfig,
        transport,
        cache: Optional[VerdictCache] = None,
        lockout: Optional[LockoutTracker] = None,
        audit: Optional[AuditLogger] = None,
        poller: Optional[ChallengePoller] = None,
    ):
        self.config = config
        self.transport = transport
        self.cache = cache or VerdictCache(config.cache)
        self.lockout = lockout or LockoutTracker(config=config.lockout)
        self.audit = audit
        self.poller = poller or ChallengePoller(
            transport,
            interval=config.poll_interval,
            timeout=config.poll_timeout,
            max_polls=config.max_polls,
        )
        if self.lockout.on_lock is None:
            self.lockout.on_lock = self._on_lock

    def _on_lock(self, principal: str) -> None:
        self.cache.invalidate_principal(principal)
        if self.audit is not None:
            self.audit.log(AuditEventType.LOCKOUT_TRIGGERED, outcome="deny", principal=principal)

    async def evaluate(self, request: EnforcementRequest) -> Decision:
        """
        Decide ALLOW, DENY or ERROR for one request.

        Args:
            request: The enforcement request

        Returns:
            Decision with reason and the lifecycle trail
        """
        trail = StateTrail()
        log = logger.bind(
            request_id=request.request_id,
            principal=request.principal.id,
            resource=request.resource,
            factor=request.factor.kind.value,
        )

        try:
            decision = await self._evaluate(request, trail, log)
        except Exception:
            log.exception("Enforcement failed unexpectedly")
            trail.abort(S.FAILED)
            decision = self._decision(DecisionOutcome.ERROR, ReasonCode.INTERNAL_ERROR, trail)

        record_decision(decision.outcome.value, decision.reason.value)
        self._audit_decision(request, decision)
        log.info(
            "Enforcement decision",
            outcome=decision.outcome.value,
            reason=decision.reason.value,
            fail_open=decision.fail_open,
        )
        return decision

    async def cancel(self, principal_id: str, resource: Optional[str] = None) -> int:
        """
        Cancel pending challenges, releasing every waiter with DENY/cancelled.

        Args:
            principal_id: Principal whose challenge is cancelled
            resource: Limit to one resource; all resources when omitted

        Returns:
            Number of challenges cancelled
        """
        if resource is not None:
            cancelled = 1 if self.cache.cancel((principal_id, resource)) else 0
        else:
            cancelled = self.cache.cancel_principal(principal_id)

        if cancelled and self.audit is not None:
            self.audit.log(
                AuditEventType.CHALLENGE_CANCELLED,
                outcome="deny",
                principal=principal_id,
                resource=resource,
                payload={"cancelled": cancelled},
            )
        return cancelled

    async def _evaluate(self, request: EnforcementRequest, trail: StateTrail, log) -> Decision:
        principal = request.principal.id
        key = request.cache_key

        trail.advance(S.LOCKOUT_CHECK)
        try:
            locked_for = await self.lockout.retry_after(principal)
        except Exception as e:
            log.error("Lockout store unavailable", error=str(e))
            trail.abort(S.FAILED)
            return self._apply_fail_mode(request, ReasonCode.LOCKOUT_STORE_UNAVAILABLE, trail, log)

        if locked_for > 0:
            trail.advance(S.DENIED_LOCKOUT)
            return self._decision(
                DecisionOutcome.DENY,
                ReasonCode.LOCKOUT,
                trail,
                message=f"{MESSAGES[ReasonCode.LOCKOUT]}; retry in {math.ceil(locked_for)}s",
            )

        trail.advance(S.LIST_CHECK)
        try:
            self._check_deny_lists(request)
        except PolicyViolation as e:
            trail.advance(S.DENIED)
            return self._decision(DecisionOutcome.DENY, e.details, trail)

        rule = self.config.rule_for(request.resource)
        allow_ttl = rule.allow_ttl if rule is not None else None

        if self._is_bypassed(request):
            trail.advance(S.BYPASSED)
            verdict = Verdict(
                status=VerdictStatus.ALLOW,
                reason=ReasonCode.BYPASS,
                factor=request.factor.kind,
            )
            self.cache.put(key, verdict, allow_ttl)
            log.warning("Bypass policy granted access")
            if self.audit is not None:
                self.audit.log(
                    AuditEventType.SECURITY_BYPASS_GRANT,
                    outcome="allow",
                    principal=principal,
                    resource=request.resource,
                    request_id=request.request_id,
                )
            trail.advance(S.ALLOWED)
            return self._decision(DecisionOutcome.ALLOW, ReasonCode.BYPASS, trail, verdict=verdict)

        trail.advance(S.FACTOR_CHECK)
        try:
            self._check_factor(request)
        except PolicyViolation as e:
            trail.advance(S.DENIED)
            return self._decision(DecisionOutcome.DENY, e.details, trail)

        if self.config.supersede_pending:
            superseded = self.cache.cancel_principal(principal, except_key=key)
            if superseded:
                log.info("Superseded pending challenges", cancelled=superseded)

        trail.advance(S.CACHE_CHECK)
        cached = self.cache.get(key)
        if cached is not None:
            trail.advance(S.CACHED_RESULT)
            trail.advance(S.ALLOWED if cached.status == VerdictStatus.ALLOW else S.DENIED)
            return self._from_verdict(cached, trail)

        flight: List[EnforcementState] = []
        led = False

        async def compute() -> Verdict:
            nonlocal led
            led = True
            verdict = await self._challenge(request, flight, log)
            await self._record_outcome(principal, verdict, log)
            return verdict

        try:
            verdict = await asyncio.wait_for(
                self.cache.get_or_compute(key, compute, allow_ttl),
                timeout=self.config.request_timeout,
            )
        except asyncio.TimeoutError:
            log.warning("Request timeout waiting for verdict")
            trail.abort(S.TIMED_OUT)
            return self._apply_fail_mode(request, ReasonCode.TIMEOUT, trail, log)
        except SignatureError as e:
            trail.abort(S.FAILED)
            self._security_event(request, e)
            return self._decision(DecisionOutcome.ERROR, ReasonCode.INVALID_RESPONSE, trail)
        except MalformedResponse as e:
            trail.abort(S.FAILED)
            self._security_event(request, e)
            return self._decision(DecisionOutcome.ERROR, ReasonCode.INVALID_RESPONSE, trail)
        except ProviderRejected as e:
            log.warning("Provider rejected request", code=e.code, error=e.message)
            trail.abort(S.FAILED)
            return self._decision(
                DecisionOutcome.DENY,
                ReasonCode.REJECTED,
                trail,
                message=e.message,
            )
        except TransportError as e:
            trail.abort(S.FAILED)
            return self._apply_fail_mode(request, _transport_reason(e), trail, log)

        if led:
            for state in flight:
                trail.advance(state)
        else:
            trail.advance(S.SHARED_RESULT)

        return self._finalize(request, verdict, trail, log)

    def _check_deny_lists(self, request: EnforcementRequest) -> None:
        if (
            request.principal.id in self.config.deny_principals
            or request.resource in self.config.deny_resources
        ):
            raise PolicyViolation("Request matches deny list", details=ReasonCode.DENY_LIST)

    def _is_bypassed(self, request: EnforcementRequest) -> bool:
        return (
            request.principal.id in self.config.bypass_principals
            or request.resource in self.config.bypass_resources
        )

    def _check_factor(self, request: EnforcementRequest) -> None:
        kind = request.factor.kind
        rule = self.config.rule_for(request.resource)
        if rule is not None and not rule.permits(kind):
            raise PolicyViolation(
                f"Factor {kind.value} not permitted for {request.resource}",
                details=ReasonCode.FACTOR_NOT_PERMITTED,
            )

        enrolled = request.principal.enrolled_factors
        if (
            enrolled is not None
            and kind not in (FactorKind.AUTO, FactorKind.BYPASS_CODE)
            and kind not in enrolled
        ):
            raise PolicyViolation(
                f"Principal not enrolled for {kind.value}",
                details=ReasonCode.NOT_ENROLLED,
            )

    async def _challenge(
        self,
        request: EnforcementRequest,
        flight: List[EnforcementState],
        log,
    ) -> Verdict:
        """Run the upstream part of the lifecycle. Executed once per flight."""
        flight.append(S.UPSTREAM_CALL)
        factor = request.factor
        params = {"username": request.principal.id}
        if request.context.source_address:
            params["ipaddr"] = request.context.source_address

        if self.config.use_preauth:
            preauth = await self.transport.call("preauth", params)
            result = (preauth.result or "").lower()
            if result == "allow":
                return Verdict(
                    status=VerdictStatus.ALLOW,
                    reason=ReasonCode.PREAUTH_ALLOW,
                    factor=factor.kind,
                    definitive=True,
                    message=preauth.status_msg,
                )
            if result == "deny":
                return Verdict(
                    status=VerdictStatus.DENY,
                    reason=ReasonCode.REJECTED,
                    factor=factor.kind,
                    definitive=True,
                    message=preauth.status_msg,
                )
            if result == "enroll":
                return Verdict(
                    status=VerdictStatus.DENY,
                    reason=ReasonCode.NOT_ENROLLED,
                    factor=factor.kind,
                    message=preauth.status_msg,
                )
            if result != "auth":
                raise MalformedResponse(f"Unexpected preauth result: {preauth.result!r}", endpoint="preauth")

        auth_params = {**params, **factor.auth_params()}
        if factor.kind == FactorKind.PUSH and request.context.application_id:
            auth_params["type"] = request.context.application_id

        response = await self.transport.call("auth", auth_params)

        if not factor.is_async:
            return _verdict_from_auth(response, factor.kind)

        if not response.txid:
            raise MalformedResponse("Asynchronous auth response without txid", endpoint="auth")

        flight.append(S.CHALLENGE_SENT)
        pending = Verdict.pending(factor.kind, response.txid, time.time() + self.config.poll_timeout)
        self.cache.mark_pending(request.cache_key, pending)
        log.info("Challenge sent", txid=response.txid)
        if self.audit is not None:
            self.audit.log(
                AuditEventType.CHALLENGE_SENT,
                principal=request.principal.id,
                resource=request.resource,
                request_id=request.request_id,
                payload={"factor": factor.kind.value, "txid": response.txid},
            )

        flight.append(S.POLLING)
        return await self.poller.poll(pending)

    async def _record_outcome(self, principal: str, verdict: Verdict, log) -> None:
        """Lockout bookkeeping for a provider answer, once per upstream computation."""
        if not verdict.definitive:
            return
        if verdict.status == VerdictStatus.ALLOW:
            await self._lockout_update(self.lockout.record_success, principal, log)
        elif verdict.status == VerdictStatus.DENY and verdict.reason in (ReasonCode.REJECTED, ReasonCode.FRAUD):
            await self._lockout_update(self.lockout.record_failure, principal, log)

    def _finalize(
        self,
        request: EnforcementRequest,
        verdict: Verdict,
        trail: StateTrail,
        log,
    ) -> Decision:
        if verdict.status == VerdictStatus.ALLOW:
            trail.advance(S.ALLOWED)
            return self._from_verdict(verdict, trail)

        if verdict.status == VerdictStatus.DENY:
            if verdict.reason == ReasonCode.CANCELLED:
                trail.abort(S.CANCELLED)
            else:
                trail.advance(S.DENIED)
            return self._from_verdict(verdict, trail)

        if verdict.reason == ReasonCode.TIMEOUT:
            trail.abort(S.TIMED_OUT)
        else:
            trail.abort(S.FAILED)
        return self._apply_fail_mode(request, verdict.reason, trail, log, verdict=verdict)

    async def _lockout_update(self, update, principal: str, log) -> None:
        # The verdict stands; a store outage only loses the bookkeeping
        try:
            await update(principal)
        except Exception as e:
            log.error("Lockout update failed", error=str(e))

    def _apply_fail_mode(
        self,
        request: EnforcementRequest,
        reason: ReasonCode,
        trail: StateTrail,
        log,
        verdict: Optional[Verdict] = None,
    ) -> Decision:
        mode = self.config.fail_mode_for(request.resource)
        if mode == FailMode.OPEN:
            log.warning("Failing open", reason=reason.value)
            return self._decision(
                DecisionOutcome.ALLOW,
                reason,
                trail,
                message=f"{MESSAGES[reason]} (fail-open)",
                verdict=verdict,
                fail_open=True,
            )
        return self._decision(DecisionOutcome.DENY, reason, trail, verdict=verdict)

    def _from_verdict(self, verdict: Verdict, trail: StateTrail) -> Decision:
        outcome = DecisionOutcome.ALLOW if verdict.status == VerdictStatus.ALLOW else DecisionOutcome.DENY
        return self._decision(outcome, verdict.reason, trail, verdict=verdict)

    def _decision(
        self,
        outcome: DecisionOutcome,
        reason: ReasonCode,
        trail: StateTrail,
        message: Optional[str] = None,
        verdict: Optional[Verdict] = None,
        fail_open: bool = False,
    ) -> Decision:
        return Decision(
            outcome=outcome,
            reason=reason,
            message=message or MESSAGES.get(reason, reason.value),
            verdict=verdict,
            fail_open=fail_open,
            trail=trail.as_tuple(),
        )

    def _security_event(self, request: EnforcementRequest, error: Exception) -> None:
        logger.error(
            "Security event: provider response rejected",
            request_id=request.request_id,
            principal=request.principal.id,
            resource=request.resource,
            error_type=type(error).__name__,
            error=str(error),
        )
        if self.audit is not None:
            self.audit.log(
                AuditEventType.SECURITY_INVALID_RESPONSE,
                outcome="error",
                principal=request.principal.id,
                resource=request.resource,
                request_id=request.request_id,
                source_address=request.context.source_address,
                payload={"error_type": type(error).__name__, "error": str(error)},
            )

    def _audit_decision(self, request: EnforcementRequest, decision: Decision) -> None:
        if self.audit is None:
            return
        if decision.fail_open:
            event_type = AuditEventType.DECISION_FAIL_OPEN
        elif decision.outcome == DecisionOutcome.ALLOW:
            event_type = AuditEventType.DECISION_ALLOW
        elif decision.outcome == DecisionOutcome.DENY:
            event_type = AuditEventType.DECISION_DENY
        else:
            event_type = AuditEventType.DECISION_ERROR

        self.audit.log(
            event_type,
            outcome=decision.outcome.value.lower(),
            principal=request.principal.id,
            resource=request.resource,
            request_id=request.request_id,
            source_address=request.context.source_address,
            payload={
                "reason": decision.reason.value,
                "factor": request.factor.kind.value,
                "trail": list(decision.trail),
            },
        )


def _verdict_from_auth(response, kind: FactorKind) -> Verdict:
    """Verdict for factors the provider answers synchronously."""
    result = (response.result or "").lower()
    if result == "allow":
        return Verdict(
            status=VerdictStatus.ALLOW,
            reason=ReasonCode.ALLOWED,
            factor=kind,
            definitive=True,
            message=response.status_msg,
        )
    if result == "deny":
        if response.status == "sent":
            return Verdict(
                status=VerdictStatus.DENY,
                reason=ReasonCode.PASSCODES_SENT,
                factor=kind,
                message=response.status_msg,
            )
        reason = ReasonCode.FRAUD if response.status == "fraud" else ReasonCode.REJECTED
        return Verdict(
            status=VerdictStatus.DENY,
            reason=reason,
            factor=kind,
            definitive=True,
            message=response.status_msg,
        )
    raise MalformedResponse(f"Unexpected auth result: {response.result!r}", endpoint="auth")


def _transport_reason(error: TransportError) -> ReasonCode:
    if isinstance(error, Unauthorized):
        return ReasonCode.INTEGRATION_UNAUTHORIZED
    if isinstance(error, RateLimited):
        return ReasonCode.UPSTREAM_RATE_LIMITED
    if isinstance(error, ServiceUnavailable):
        return ReasonCode.UPSTREAM_UNAVAILABLE
    return ReasonCode.UPSTREAM_UNAVAILABLE
