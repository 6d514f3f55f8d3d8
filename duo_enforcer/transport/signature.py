"""
Request Signing
===============
Canonical parameter serialization and HMAC signing for the Auth API.

The canonical form is what the provider re-derives on its side, so it must
be reproduced bit-for-bit:

    <Date header>\\n<METHOD>\\n<host lowercased>\\n<path>\\n<canonical params>

Parameters are sorted by their UTF-8 encoded key and percent-encoded with
``~`` as the only extra unreserved character.
"""

import base64
import email.utils
import hashlib
import hmac
import time
from dataclasses import dataclass
from typing import Dict, Mapping, Optional, Union
from urllib.parse import quote

from ..errors import SignatureError

# Configuration
MAX_RESPONSE_SKEW_SECONDS = 300  # 5 minutes
SIGNATURE_ALGORITHM = "sha512"
SUPPORTED_DIGESTS = {
    "sha512": hashlib.sha512,
    "sha1": hashlib.sha1,
}

ParamValue = Union[str, int, bool]


def _encode_value(value: ParamValue) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def canonicalize_params(params: Mapping[str, ParamValue]) -> str:
    """
    Serialize parameters into their canonical query-string form.

    Two mappings holding the same keys and values produce identical output,
    whatever their insertion order.

    Args:
        params: Request parameters (keys unique)

    Returns:
        ``k1=v1&k2=v2`` with keys sorted by UTF-8 bytes
    """
    encoded = []
    for key, value in params.items():
        key_bytes = key.encode("utf-8")
        value_bytes = _encode_value(value).encode("utf-8")
        encoded.append((key_bytes, value_bytes))

    encoded.sort()
    return "&".join(
        f"{quote(k, safe='~')}={quote(v, safe='~')}" for k, v in encoded
    )


def canonical_request(
    date: str,
    method: str,
    host: str,
    path: str,
    params: Mapping[str, ParamValue],
) -> str:
    """Build the newline-joined string covered by the signature."""
    return "\n".join([
        date,
        method.upper(),
        host.lower(),
        path,
        canonicalize_params(params),
    ])


def compute_signature(secret: str, canon: str, digest: str = SIGNATURE_ALGORITHM) -> str:
    """
    Compute the hex HMAC of a canonical request.

    Args:
        secret: Integration secret key
        canon: Output of ``canonical_request``
        digest: "sha512" (default) or "sha1" for legacy integrations

    Returns:
        Hex-encoded HMAC
    """
    digestmod = SUPPORTED_DIGESTS.get(digest)
    if digestmod is None:
        raise ValueError(f"Unsupported signature digest: {digest}")
    return hmac.new(secret.encode("utf-8"), canon.encode("utf-8"), digestmod).hexdigest()


def build_auth_headers(ikey: str, signature: str, date: str) -> Dict[str, str]:
    """Headers carrying the integration id, signature and signed date."""
    token = base64.b64encode(f"{ikey}:{signature}".encode("utf-8")).decode("ascii")
    return {
        "Date": date,
        "Authorization": f"Basic {token}",
    }


@dataclass(frozen=True)
class SignedAPICall:
    """An outbound call, signed once and never modified afterwards."""
    method: str
    host: str
    path: str
    params: Dict[str, str]
    canonical_params: str
    signature: str
    date: str
    issued_at: float

    def headers(self, ikey: str) -> Dict[str, str]:
        return build_auth_headers(ikey, self.signature, self.date)


def sign_call(
    ikey: str,
    skey: str,
    method: str,
    host: str,
    path: str,
    params: Mapping[str, ParamValue],
    digest: str = SIGNATURE_ALGORITHM,
    now: Optional[float] = None,
) -> SignedAPICall:
    """
    Sign a call with a fresh timestamp.

    Args:
        ikey: Integration key, attached to the Authorization header
        skey: Secret key used for the HMAC
        method: HTTP method
        host: API hostname
        path: Request path (e.g., /auth/v2/auth)
        params: Request parameters
        digest: HMAC digest name
        now: Override the signing time (seconds since epoch)

    Returns:
        SignedAPICall ready to send
    """
    issued_at = time.time() if now is None else now
    date = email.utils.formatdate(issued_at)
    canon = canonical_request(date, method, host, path, params)
    signature = compute_signature(skey, canon, digest)

    return SignedAPICall(
        method=method.upper(),
        host=host.lower(),
        path=path,
        params={k: _encode_value(v) for k, v in params.items()},
        canonical_params=canonicalize_params(params),
        signature=signature,
        date=date,
        issued_at=issued_at,
    )


def parse_server_time(body_time: Optional[int], date_header: Optional[str]) -> float:
    """
    Pick the timestamp a response vouches for.

    The JSON ``time`` field wins; the HTTP ``Date`` header is the fallback.

    Raises:
        SignatureError: When the response carries no usable timestamp
    """
    if body_time is not None:
        return float(body_time)
    if date_header:
        try:
            parsed = email.utils.parsedate_to_datetime(date_header)
        except (TypeError, ValueError):
            parsed = None
        if parsed is not None:
            return parsed.timestamp()
    raise SignatureError("Response carries no usable timestamp")


def check_response_timestamp(
    server_time: float,
    now: Optional[float] = None,
    max_skew: int = MAX_RESPONSE_SKEW_SECONDS,
) -> None:
    """
    Reject responses whose timestamp falls outside the skew window.

    Raises:
        SignatureError: When |now - server_time| > max_skew
    """
    current_time = time.time() if now is None else now
    skew = abs(current_time - server_time)
    if skew > max_skew:
        raise SignatureError(
            f"Response timestamp outside skew window ({skew:.0f}s > {max_skew}s)",
            details={"server_time": server_time, "local_time": current_time},
        )
