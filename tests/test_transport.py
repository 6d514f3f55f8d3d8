"""
Unit Tests for the Signed Transport
===================================
Canonical signing, response validation, error mapping and retries.
"""

import base64
import email.utils
import hashlib
import hmac
from urllib.parse import parse_qsl

import httpx
import pytest

from tests.fakes import CREDS

NOW = 1_700_000_000.0


def _ok(payload, status=200, server_time=NOW):
    return httpx.Response(
        status,
        json={"stat": "OK", "response": payload},
        headers={"Date": email.utils.formatdate(server_time, usegmt=True)},
    )


def _client(handler, **config):
    from duo_enforcer.transport import SignedTransportClient, TransportConfig

    http = httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url=CREDS.base_url)
    settings = dict(backoff_base=0.001, backoff_cap=0.002)
    settings.update(config)
    return SignedTransportClient(CREDS, TransportConfig(**settings), client=http, clock=lambda: NOW)


class TestCanonicalSigning:
    """Tests for the canonical request form and HMAC."""

    def test_canonical_params_sorted_and_encoded(self):
        """Keys sort by UTF-8 bytes; only ~ stays unescaped."""
        from duo_enforcer.transport import canonicalize_params

        canon = canonicalize_params({"username": "root", "realname": "First Last", "ñ": "a~b/c"})

        assert canon == "realname=First%20Last&username=root&%C3%B1=a~b%2Fc"

    def test_canonical_params_independent_of_insertion_order(self):
        """Same pairs in any order give the same canonical string."""
        from duo_enforcer.transport import canonicalize_params

        first = canonicalize_params({"b": "2", "a": "1", "async": True})
        second = canonicalize_params({"async": True, "a": "1", "b": "2"})

        assert first == second
        assert "async=true" in first

    def test_canonical_request_layout(self):
        """Date, upper method, lower host, path and params joined by newlines."""
        from duo_enforcer.transport import canonical_request

        canon = canonical_request(
            "Tue, 21 Aug 2012 17:29:18 -0000",
            "post",
            "API-XXXXXXXX.duosecurity.com",
            "/accounts/v1/account/list",
            {"realname": "First Last", "username": "root"},
        )

        assert canon == (
            "Tue, 21 Aug 2012 17:29:18 -0000\n"
            "POST\n"
            "api-xxxxxxxx.duosecurity.com\n"
            "/accounts/v1/account/list\n"
            "realname=First%20Last&username=root"
        )

    def test_sign_call_is_deterministic(self):
        """Same inputs and time produce the same signature and headers."""
        from duo_enforcer.transport import sign_call

        a = sign_call(CREDS.ikey, CREDS.skey, "POST", CREDS.host, "/auth/v2/auth", {"username": "alice", "factor": "push"}, now=NOW)
        b = sign_call(CREDS.ikey, CREDS.skey, "POST", CREDS.host, "/auth/v2/auth", {"factor": "push", "username": "alice"}, now=NOW)

        assert a.signature == b.signature
        assert a.headers(CREDS.ikey) == b.headers(CREDS.ikey)
        assert len(a.signature) == 128  # SHA-512 hex

    def test_authorization_header_carries_ikey_and_signature(self):
        """Basic auth is base64(ikey:hex-hmac)."""
        from duo_enforcer.transport import sign_call

        signed = sign_call(CREDS.ikey, CREDS.skey, "GET", CREDS.host, "/auth/v2/check", {}, now=NOW)
        token = signed.headers(CREDS.ikey)["Authorization"].split(" ", 1)[1]

        assert base64.b64decode(token).decode() == f"{CREDS.ikey}:{signed.signature}"

    def test_legacy_sha1_digest(self):
        """sha1 is accepted for older integrations."""
        from duo_enforcer.transport import compute_signature

        assert len(compute_signature("secret", "canon", digest="sha1")) == 40
        with pytest.raises(ValueError):
            compute_signature("secret", "canon", digest="md5")


class TestResponseTimestamp:
    """Tests for the response skew window."""

    def test_within_window(self):
        """Responses within the window pass."""
        from duo_enforcer.transport import check_response_timestamp

        check_response_timestamp(NOW - 299, now=NOW)
        check_response_timestamp(NOW + 299, now=NOW)

    def test_outside_window_rejected(self):
        """Responses older or newer than the window are rejected."""
        from duo_enforcer.errors import SignatureError
        from duo_enforcer.transport import check_response_timestamp

        with pytest.raises(SignatureError):
            check_response_timestamp(NOW - 301, now=NOW)
        with pytest.raises(SignatureError):
            check_response_timestamp(NOW + 301, now=NOW)

    def test_body_time_preferred_over_date_header(self):
        """The JSON time field wins over the Date header."""
        from duo_enforcer.transport import parse_server_time

        header = email.utils.formatdate(NOW - 1000, usegmt=True)

        assert parse_server_time(int(NOW), header) == NOW
        assert parse_server_time(None, header) == NOW - 1000

    def test_missing_timestamp_rejected(self):
        """A response vouching for no time is rejected."""
        from duo_enforcer.errors import SignatureError
        from duo_enforcer.transport import parse_server_time

        with pytest.raises(SignatureError):
            parse_server_time(None, None)
        with pytest.raises(SignatureError):
            parse_server_time(None, "not a date")


class TestCredentials:
    """Tests for integration credential validation."""

    def test_missing_fields_rejected(self):
        from duo_enforcer.errors import ConfigurationError
        from duo_enforcer.transport import IntegrationCredentials

        with pytest.raises(ConfigurationError):
            IntegrationCredentials(ikey="DI123", skey="", host="api-test.duosecurity.com")

    def test_host_must_be_bare(self):
        from duo_enforcer.errors import ConfigurationError
        from duo_enforcer.transport import IntegrationCredentials

        with pytest.raises(ConfigurationError):
            IntegrationCredentials(ikey="DI123", skey="s", host="https://api-test.duosecurity.com")

    def test_secret_not_in_repr(self):
        assert CREDS.skey not in repr(CREDS)


class TestSignedTransportClient:
    """Tests for SignedTransportClient against a mocked provider."""

    @pytest.mark.asyncio
    async def test_post_body_is_signed_canonical_params(self):
        """The form body equals the canonical string the signature covers."""
        from duo_enforcer.transport import canonical_request, canonicalize_params

        seen = {}

        def handler(request: httpx.Request):
            seen["request"] = request
            return _ok({"result": "allow", "status": "allow", "status_msg": "Success"})

        client = _client(handler)
        params = {"username": "alice", "factor": "passcode", "passcode": "123456"}
        response = await client.call("auth", params)

        request = seen["request"]
        body = request.content.decode()
        assert body == canonicalize_params(params)
        assert dict(parse_qsl(body)) == params
        assert request.headers["Content-Type"] == "application/x-www-form-urlencoded"

        canon = canonical_request(request.headers["Date"], "POST", CREDS.host, "/auth/v2/auth", params)
        expected = hmac.new(CREDS.skey.encode(), canon.encode(), hashlib.sha512).hexdigest()
        token = request.headers["Authorization"].split(" ", 1)[1]
        assert base64.b64decode(token).decode() == f"{CREDS.ikey}:{expected}"

        assert response.result == "allow"
        await client.aclose()

    @pytest.mark.asyncio
    async def test_get_params_in_query_string(self):
        """GET calls carry the canonical params in the URL."""
        seen = {}

        def handler(request: httpx.Request):
            seen["url"] = request.url
            return _ok({"result": "waiting", "status": "pushed"})

        client = _client(handler)
        await client.call("auth_status", {"txid": "tx-1"})

        assert seen["url"].path == "/auth/v2/auth_status"
        assert seen["url"].params["txid"] == "tx-1"
        await client.aclose()

    @pytest.mark.asyncio
    async def test_ping_is_unsigned(self):
        """ping carries no Authorization header."""
        seen = {}

        def handler(request: httpx.Request):
            seen["headers"] = request.headers
            return _ok({"time": int(NOW)})

        client = _client(handler)
        response = await client.call("ping")

        assert "Authorization" not in seen["headers"]
        assert response.time == int(NOW)
        await client.aclose()

    @pytest.mark.asyncio
    async def test_skewed_response_rejected(self):
        """A well-formed response with a stale timestamp is a SignatureError."""
        from duo_enforcer.errors import SignatureError

        client = _client(lambda request: _ok({"result": "allow"}, server_time=NOW - 600))

        with pytest.raises(SignatureError):
            await client.call("auth", {"username": "alice", "factor": "passcode", "passcode": "1"})
        await client.aclose()

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "status, error_name",
        [
            (401, "Unauthorized"),
            (403, "Unauthorized"),
            (429, "RateLimited"),
            (400, "ProviderRejected"),
        ],
    )
    async def test_status_mapping(self, status, error_name):
        """HTTP failures map to typed errors."""
        from duo_enforcer import errors

        def handler(request):
            return httpx.Response(status, json={"stat": "FAIL", "code": 40002, "message": "Invalid request parameters"})

        client = _client(handler)

        with pytest.raises(getattr(errors, error_name)) as exc_info:
            await client.call("auth", {"username": "alice", "factor": "push", "device": "auto", "async": "1"})

        assert exc_info.value.status_code == status
        assert exc_info.value.code == 40002
        await client.aclose()

    @pytest.mark.asyncio
    async def test_fail_envelope_on_success_status(self):
        """stat FAIL inside a 200 is a provider rejection."""
        from duo_enforcer.errors import ProviderRejected

        def handler(request):
            return httpx.Response(200, json={"stat": "FAIL", "code": 40401, "message": "Resource not found"})

        client = _client(handler)

        with pytest.raises(ProviderRejected):
            await client.call("check")
        await client.aclose()

    @pytest.mark.asyncio
    async def test_malformed_body(self):
        """Non-JSON bodies are MalformedResponse."""
        from duo_enforcer.errors import MalformedResponse

        client = _client(lambda request: httpx.Response(200, content=b"<html>oops</html>"))

        with pytest.raises(MalformedResponse):
            await client.call("auth", {"username": "alice", "factor": "push"})
        await client.aclose()

    @pytest.mark.asyncio
    async def test_idempotent_call_retried_on_unavailable(self):
        """auth_status is retried through 5xx and succeeds."""
        attempts = []

        def handler(request):
            attempts.append(request)
            if len(attempts) < 3:
                return httpx.Response(503, json={"stat": "FAIL", "code": 50000})
            return _ok({"result": "allow", "status": "allow"})

        client = _client(handler)
        response = await client.call("auth_status", {"txid": "tx-1"})

        assert response.result == "allow"
        assert len(attempts) == 3
        # Each attempt carries its own signature headers
        assert all("Authorization" in r.headers for r in attempts)
        await client.aclose()

    @pytest.mark.asyncio
    async def test_retries_bounded(self):
        """After max_attempts the last error surfaces."""
        from duo_enforcer.errors import ServiceUnavailable

        attempts = []

        def handler(request):
            attempts.append(request)
            return httpx.Response(503)

        client = _client(handler, max_attempts=3)

        with pytest.raises(ServiceUnavailable):
            await client.call("check")
        assert len(attempts) == 3
        await client.aclose()

    @pytest.mark.asyncio
    async def test_auth_never_retried(self):
        """Starting a challenge is sent exactly once even on 5xx."""
        from duo_enforcer.errors import ServiceUnavailable

        attempts = []

        def handler(request):
            attempts.append(request)
            return httpx.Response(503)

        client = _client(handler)

        with pytest.raises(ServiceUnavailable):
            await client.call("auth", {"username": "alice", "factor": "push"})
        assert len(attempts) == 1
        await client.aclose()

    @pytest.mark.asyncio
    async def test_network_timeout_mapped(self):
        """httpx timeouts become ServiceTimeout."""
        from duo_enforcer.errors import ServiceTimeout

        def handler(request):
            raise httpx.ReadTimeout("timed out", request=request)

        client = _client(handler, max_attempts=2)

        with pytest.raises(ServiceTimeout):
            await client.call("auth_status", {"txid": "tx-1"})
        await client.aclose()

    @pytest.mark.asyncio
    async def test_connect_error_mapped(self):
        """Connection failures become ServiceUnavailable."""
        from duo_enforcer.errors import ServiceTimeout, ServiceUnavailable

        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        client = _client(handler, max_attempts=1)

        with pytest.raises(ServiceUnavailable) as exc_info:
            await client.call("preauth", {"username": "alice"})
        assert not isinstance(exc_info.value, ServiceTimeout)
        await client.aclose()

    @pytest.mark.asyncio
    async def test_unknown_endpoint(self):
        """Only the known logical endpoints can be called."""
        client = _client(lambda request: _ok({}))

        with pytest.raises(KeyError):
            await client.call("enroll")
        await client.aclose()
