import logging
import time
from typing import Any, Callable, Mapping, Optional

import httpx
import structlog
from pydantic import ValidationError
from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from ..errors import (
    EnforcerError,
    MalformedResponse,
    ProviderRejected,
    RateLimited,
    ServiceTimeout,
    ServiceUnavailable,
    SignatureError,
    Unauthorized,
)
from ..metrics import record_upstream_call
from .config import IntegrationCredentials, TransportConfig
from .endpoints import Endpoint, get_endpoint
from .models import ProviderResponse, ResponseEnvelope
from .signature import ParamValue, check_response_timestamp, parse_server_time, sign_call

logger = logging.getLogger(__name__)
security_log = structlog.get_logger("duo_enforcer.security")


class SignedTransportClient:
    """
    Async client for the authentication provider's Auth API.

    Features:
    - Every request signed with a fresh timestamp.
    - Responses checked against a clock-skew window.
    - Bounded exponential retries for read-style endpoints only.
    - Standardized exception mapping.
    """

    def __init__(
        self,
        credentials: IntegrationCredentials,
        config: Optional[TransportConfig] = None,
        client: Optional[httpx.AsyncClient] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.credentials = credentials
        self.config = config or TransportConfig()
        self.clock = clock

        self.client = client or httpx.AsyncClient(
            base_url=credentials.base_url,
            timeout=self.config.timeout,
            headers={
                "User-Agent": self.config.user_agent,
                "Accept": "application/json",
            },
            verify=True,
        )

    async def aclose(self):
        """Close the underlying HTTP client."""
        await self.client.aclose()

    async def __aenter__(self) -> "SignedTransportClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.aclose()
        return False

    def _map_exception(self, endpoint: str, exc: httpx.HTTPError) -> EnforcerError:
        """Map httpx transport exceptions to enforcer exceptions."""
        if isinstance(exc, httpx.TimeoutException):
            return ServiceTimeout("Request timed out", endpoint=endpoint)
        if isinstance(exc, httpx.TransportError):
            return ServiceUnavailable(f"Failed to connect: {exc}", endpoint=endpoint)
        return ServiceUnavailable(f"Unexpected HTTP error: {exc}", endpoint=endpoint)

    def _map_status(self, endpoint: str, response: httpx.Response) -> EnforcerError:
        """Map a non-2xx provider response to an enforcer exception."""
        status = response.status_code
        code = message = None
        try:
            envelope = ResponseEnvelope.model_validate(response.json())
            code, message = envelope.code, envelope.message
        except (ValueError, ValidationError):
            pass

        kwargs = {"endpoint": endpoint, "status_code": status, "code": code, "details": message}
        if status in (401, 403):
            return Unauthorized("Integration credentials rejected", **kwargs)
        if status == 429:
            return RateLimited("Provider rate limit reached", **kwargs)
        if status >= 500:
            return ServiceUnavailable("Provider error", **kwargs)
        return ProviderRejected(message or f"HTTP {status} Error", **kwargs)

    def _parse(self, endpoint: Endpoint, response: httpx.Response) -> ProviderResponse:
        try:
            envelope = ResponseEnvelope.model_validate(response.json())
        except (ValueError, ValidationError) as e:
            raise MalformedResponse(
                f"Invalid response body: {e}",
                endpoint=endpoint.name,
                status_code=response.status_code,
            )

        if envelope.stat != "OK":
            raise ProviderRejected(
                envelope.message or "Provider returned FAIL",
                endpoint=endpoint.name,
                status_code=response.status_code,
                code=envelope.code,
                details=envelope.message_detail,
            )

        try:
            parsed = ProviderResponse.from_payload(envelope.response)
        except ValidationError as e:
            raise MalformedResponse(f"Invalid response payload: {e}", endpoint=endpoint.name)

        try:
            server_time = parse_server_time(parsed.time, response.headers.get("Date"))
            check_response_timestamp(
                server_time,
                now=self.clock(),
                max_skew=self.config.response_skew_seconds,
            )
        except SignatureError as e:
            e.endpoint = endpoint.name
            security_log.error(
                "Rejected provider response",
                endpoint=endpoint.name,
                error=e.message,
                details=e.details,
            )
            raise

        return parsed

    async def _send(self, endpoint: Endpoint, params: Mapping[str, ParamValue]) -> ProviderResponse:
        """Sign, send and validate a single request. No retries here."""
        signed = sign_call(
            self.credentials.ikey,
            self.credentials.skey,
            endpoint.method,
            self.credentials.host,
            endpoint.path,
            params,
            digest=self.config.signature_digest,
            now=self.clock(),
        )
        headers = signed.headers(self.credentials.ikey) if endpoint.signed else {"Date": signed.date}

        request_kwargs: dict = {"headers": headers}
        url = endpoint.path
        if endpoint.method == "GET":
            if signed.canonical_params:
                url = f"{endpoint.path}?{signed.canonical_params}"
        else:
            # The body is the exact canonical string the signature covers
            headers["Content-Type"] = "application/x-www-form-urlencoded"
            request_kwargs["content"] = signed.canonical_params.encode("utf-8")

        start = time.perf_counter()
        try:
            response = await self.client.request(endpoint.method, url, **request_kwargs)
        except httpx.HTTPError as e:
            mapped = self._map_exception(endpoint.name, e)
            record_upstream_call(endpoint.name, "unavailable", time.perf_counter() - start)
            raise mapped
        duration = time.perf_counter() - start

        if not response.is_success:
            mapped = self._map_status(endpoint.name, response)
            record_upstream_call(endpoint.name, type(mapped).__name__.lower(), duration)
            raise mapped

        try:
            parsed = self._parse(endpoint, response)
        except EnforcerError as e:
            record_upstream_call(endpoint.name, type(e).__name__.lower(), duration)
            raise

        record_upstream_call(endpoint.name, "success", duration)
        return parsed

    async def call(self, endpoint: str, parameters: Optional[Mapping[str, Any]] = None) -> ProviderResponse:
        """
        Call a logical endpoint.

        Read-style endpoints are retried on ServiceUnavailable with bounded
        exponential backoff, re-signing each attempt. Endpoints that start a
        challenge are sent exactly once.

        Args:
            endpoint: Logical endpoint name (ping, check, preauth, auth, auth_status)
            parameters: Request parameters

        Returns:
            ProviderResponse

        Raises:
            TransportError: Provider unreachable, throttling, or rejecting the call
            SignatureError: Response failed local validation
        """
        target = get_endpoint(endpoint)
        params = dict(parameters or {})

        if not target.idempotent:
            return await self._send(target, params)

        retrying = AsyncRetrying(
            retry=retry_if_exception_type(ServiceUnavailable),
            stop=stop_after_attempt(self.config.max_attempts),
            wait=wait_exponential(multiplier=self.config.backoff_base, max=self.config.backoff_cap),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )
        result = None
        async for attempt in retrying:
            with attempt:
                result = await self._send(target, params)
        return result
