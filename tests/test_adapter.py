"""
Unit Tests for the Enforcement Point
====================================
Programmatic adapter, HTTP routes, health checks and the service factory.
"""

import asyncio
from types import SimpleNamespace

import pytest
from fastapi import FastAPI
from starlette.testclient import TestClient

from tests.fakes import FakeTransport, make_config, resp


def _point(transport, **overrides):
    from duo_enforcer.adapter import EnforcementPoint
    from duo_enforcer.policy import PolicyEngine

    return EnforcementPoint(PolicyEngine(make_config(**overrides), transport))


class SlowEngine:
    config = SimpleNamespace(request_timeout=1.0)

    async def evaluate(self, request):
        await asyncio.sleep(10)


class TestEnforcementPoint:
    """Tests for EnforcementPoint.evaluate."""

    @pytest.mark.asyncio
    async def test_allows_through_engine(self):
        transport = FakeTransport({"auth": [resp(result="allow", status="allow")]})
        point = _point(transport)

        decision = await point.evaluate("alice", "vpn", "passcode", passcode="123456")

        assert decision.allowed
        assert transport.calls[0][1]["passcode"] == "123456"

    @pytest.mark.asyncio
    async def test_unknown_factor_is_error(self):
        from duo_enforcer.models import DecisionOutcome

        transport = FakeTransport()
        decision = await _point(transport).evaluate("alice", "vpn", "carrier-pigeon")

        assert decision.outcome == DecisionOutcome.ERROR
        assert transport.calls == []

    @pytest.mark.asyncio
    async def test_passcode_required(self):
        from duo_enforcer.models import DecisionOutcome

        decision = await _point(FakeTransport()).evaluate("alice", "vpn", "passcode")

        assert decision.outcome == DecisionOutcome.ERROR

    @pytest.mark.asyncio
    async def test_enrolled_factors_forwarded(self):
        from duo_enforcer.models import ReasonCode

        decision = await _point(FakeTransport()).evaluate("alice", "vpn", "sms", enrolled_factors=["push"])

        assert decision.reason == ReasonCode.NOT_ENROLLED


    @pytest.mark.asyncio
    async def test_phone_call_spelling_accepted(self):
        transport = FakeTransport({
            "auth": [resp(txid="tx-call")],
            "auth_status": [resp(result="allow", status="allow")],
        })
        point = _point(transport)

        decision = await point.evaluate("alice", "vpn", "phone-call", enrolled_factors=["phone-call"])

        assert decision.allowed
        assert transport.calls[0][1]["factor"] == "phone"
    @pytest.mark.asyncio
    async def test_hard_deadline(self):
        """The caller is answered even if the engine hangs."""
        from duo_enforcer.adapter import EnforcementPoint
        from duo_enforcer.models import DecisionOutcome, ReasonCode

        point = EnforcementPoint(SlowEngine(), timeout=0.01)

        decision = await point.evaluate("alice", "vpn", "push")

        assert decision.outcome == DecisionOutcome.ERROR
        assert decision.reason == ReasonCode.TIMEOUT

    @pytest.mark.asyncio
    async def test_push_denied_after_deadline_counts_toward_lockout(self):
        """The caller is answered at the deadline; the push keeps polling and its denial is counted."""
        from duo_enforcer.adapter import EnforcementPoint
        from duo_enforcer.models import ReasonCode
        from duo_enforcer.policy import PolicyEngine

        gate = asyncio.Event()
        transport = FakeTransport(
            {"auth": [resp(txid="tx-frank")], "auth_status": [resp(result="deny", status="deny")]},
            gates={"auth_status": gate},
        )
        point = EnforcementPoint(PolicyEngine(make_config(), transport), timeout=0.05)

        decision = await point.evaluate("frank", "vpn", "push")
        assert decision.reason == ReasonCode.TIMEOUT
        assert point.engine.cache.in_flight(("frank", "vpn"))

        gate.set()
        for _ in range(50):
            if not point.engine.cache.in_flight(("frank", "vpn")):
                break
            await asyncio.sleep(0.01)

        assert transport.count("auth_status") == 1
        assert await point.engine.lockout.failure_count("frank") == 1

    def test_default_deadline_exceeds_engine_timeout(self):
        from duo_enforcer.adapter import EnforcementPoint

        assert EnforcementPoint(SlowEngine()).timeout > SlowEngine.config.request_timeout


class TestEnforcementRouter:
    """Tests for the HTTP routes."""

    def _client(self, transport, **overrides):
        from duo_enforcer.adapter import create_enforcement_router
        from duo_enforcer.logs import RequestContextMiddleware

        app = FastAPI()
        app.add_middleware(RequestContextMiddleware)
        app.include_router(create_enforcement_router(_point(transport, **overrides)))
        return TestClient(app)

    def test_allow_is_200(self):
        client = self._client(FakeTransport(), bypass_principals=frozenset({"svc-backup"}))

        response = client.post("/v1/enforce", json={"principal": "svc-backup", "resource": "vpn"})

        assert response.status_code == 200
        body = response.json()
        assert body["outcome"] == "ALLOW"
        assert body["reason"] == "bypass"
        assert body["trail"][-1] == "ALLOWED"

    def test_deny_is_403(self):
        client = self._client(FakeTransport(), deny_principals=frozenset({"mallory"}))

        response = client.post("/v1/enforce", json={"principal": "mallory", "resource": "vpn", "factor": "push"})

        assert response.status_code == 403
        assert response.json()["reason"] == "deny-list"

    def test_error_is_503(self):
        client = self._client(FakeTransport())

        response = client.post("/v1/enforce", json={"principal": "alice", "resource": "vpn", "factor": "telepathy"})

        assert response.status_code == 503
        assert response.json()["outcome"] == "ERROR"

    def test_request_id_echoed(self):
        client = self._client(FakeTransport(), bypass_resources=frozenset({"wiki"}))

        response = client.post(
            "/v1/enforce",
            json={"principal": "alice", "resource": "wiki"},
            headers={"X-Request-ID": "req-42"},
        )

        assert response.headers["x-request-id"] == "req-42"

    def test_invalid_body_rejected(self):
        client = self._client(FakeTransport())

        response = client.post("/v1/enforce", json={"resource": "vpn"})

        assert response.status_code == 422

    def test_cancel_without_pending(self):
        client = self._client(FakeTransport())

        response = client.post("/v1/enforce/cancel", json={"principal": "alice"})

        assert response.status_code == 200
        assert response.json() == {"cancelled": 0}

    def test_metrics_exposed(self):
        client = self._client(FakeTransport(), bypass_principals=frozenset({"svc-backup"}))
        client.post("/v1/enforce", json={"principal": "svc-backup", "resource": "vpn"})

        response = client.get("/metrics")

        assert response.status_code == 200
        assert "duo_enforcer_decisions_total" in response.text


class TestHealthRouter:
    """Tests for health probes."""

    def _client(self, transport=None, redis_client=None):
        from duo_enforcer.health import create_health_router

        app = FastAPI()
        app.include_router(create_health_router("duo-enforcer", "0.1.0", transport=transport, redis_client=redis_client))
        return TestClient(app)

    def test_liveness(self):
        response = self._client().get("/health/live")

        assert response.json() == {"status": "alive"}

    def test_healthy_upstream(self):
        from tests.fakes import FakeRedis

        transport = FakeTransport({"check": [resp(time=1_700_000_000)]})
        response = self._client(transport, FakeRedis()).get("/health")

        body = response.json()
        assert body["status"] == "healthy"
        assert body["components"]["upstream"]["status"] == "connected"
        assert body["components"]["redis"]["status"] == "connected"

    def test_unreachable_upstream_not_ready(self):
        from duo_enforcer.errors import ServiceUnavailable

        transport = FakeTransport({"check": [ServiceUnavailable("down")]})
        client = self._client(transport)

        assert client.get("/health/ready").status_code == 503
        assert client.get("/health").json()["status"] == "unhealthy"

    def test_ready(self):
        transport = FakeTransport({"check": [resp(time=1_700_000_000)]})

        assert self._client(transport).get("/health/ready").json() == {"status": "ready"}


class TestCreateApp:
    """Tests for the service factory."""

    def test_wires_routes(self):
        from duo_enforcer.app import create_app
        from tests.fakes import FakeRedis

        app = create_app(
            config=make_config(bypass_principals=frozenset({"svc-backup"})),
            environ={"LOG_FORMAT": "console"},
            transport=FakeTransport({"check": [resp(time=1_700_000_000)]}),
            redis_client=FakeRedis(),
        )
        client = TestClient(app)

        assert client.post("/v1/enforce", json={"principal": "svc-backup", "resource": "vpn"}).status_code == 200
        assert client.get("/health/ready").status_code == 200

    def test_config_from_environment(self):
        from duo_enforcer.app import create_app
        from duo_enforcer.policy import FailMode
        from tests.fakes import CREDS

        app = create_app(
            environ={
                "DUO_IKEY": CREDS.ikey,
                "DUO_SKEY": CREDS.skey,
                "DUO_API_HOST": CREDS.host,
                "DUO_FAIL_MODE": "open",
            },
            transport=FakeTransport(),
        )

        assert app.state.engine.config.fail_mode == FailMode.OPEN
