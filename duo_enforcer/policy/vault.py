"""
Vault Credentials
=================
Load integration credentials from HashiCorp Vault (KV v2).

Usage:
    from duo_enforcer.policy.vault import load_credentials_from_vault

    credentials = load_credentials_from_vault("duo/ssh-gateway")
"""

import os
from typing import Optional

import hvac
from hvac.exceptions import VaultError
from requests.exceptions import RequestException
import structlog

from ..errors import ConfigurationError
from ..transport.config import IntegrationCredentials

logger = structlog.get_logger(__name__)


def load_credentials_from_vault(
    path: str,
    url: Optional[str] = None,
    token: Optional[str] = None,
    mount_point: str = "secret",
    client: Optional[hvac.Client] = None,
) -> IntegrationCredentials:
    """
    Read ``ikey``, ``skey`` and ``host`` from a Vault secret.

    Args:
        path: Secret path under the mount point
        url: Vault address (defaults to VAULT_ADDR)
        token: Vault token (defaults to VAULT_TOKEN)
        mount_point: KV v2 mount
        client: Pre-built hvac client

    Returns:
        IntegrationCredentials

    Raises:
        ConfigurationError: Vault unreachable, unauthenticated or secret incomplete
    """
    if client is None:
        client = hvac.Client(
            url=url or os.environ.get("VAULT_ADDR", "http://127.0.0.1:8200"),
            token=token or os.environ.get("VAULT_TOKEN"),
        )

    try:
        authenticated = client.is_authenticated()
    except (VaultError, RequestException) as e:
        logger.error("Vault unreachable", url=client.url, error=str(e))
        raise ConfigurationError(f"Cannot reach Vault at {client.url}: {e}") from e
    if not authenticated:
        raise ConfigurationError("Vault authentication failed. Check VAULT_TOKEN.")

    try:
        secret = client.secrets.kv.v2.read_secret_version(path=path, mount_point=mount_point)
    except VaultError as e:
        logger.error("Failed to read credentials from Vault", path=f"{mount_point}/{path}", error=str(e))
        raise ConfigurationError(f"Cannot read Vault secret {mount_point}/{path}: {e}") from e

    data = secret["data"]["data"]
    logger.info("Loaded integration credentials from Vault", path=f"{mount_point}/{path}")
    return IntegrationCredentials(
        ikey=data.get("ikey", ""),
        skey=data.get("skey", ""),
        host=data.get("host") or data.get("api_host", ""),
    )
