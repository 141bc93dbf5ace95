"""
HashiCorp Vault access for the billing engine's connection secrets.

AppRole authentication, configured from the environment. Every path is read
under the 'billing/' mount prefix, so the engine can never reach another
project's secrets. Whole secrets are cached per process; a Vault outage after
startup does not take billing down.
"""

import os
import logging
import threading
from typing import Dict

import hvac
from hvac.exceptions import InvalidPath, Unauthorized, Forbidden

logger = logging.getLogger(__name__)

_SECRET_PREFIX = "billing"

# Process-wide client and secret cache (path -> fields)
_vault_client_instance: "VaultClient | None" = None
_secret_cache: Dict[str, Dict[str, str]] = {}
_cache_lock = threading.Lock()


def _ensure_vault_client() -> "VaultClient":
    global _vault_client_instance
    if _vault_client_instance is None:
        _vault_client_instance = VaultClient()
    return _vault_client_instance


def reset_vault_client() -> None:
    """Drop the shared client and every cached secret."""
    global _vault_client_instance
    with _cache_lock:
        _vault_client_instance = None
        _secret_cache.clear()


class VaultClient:
    """AppRole-authenticated reader for secrets under billing/."""

    def __init__(
        self,
        vault_addr: str | None = None,
        vault_namespace: str | None = None,
    ):
        """
        Read configuration from the environment and log in.

        Raises:
            ValueError: If VAULT_ADDR or the AppRole credentials are missing
            PermissionError: If Vault rejects the credentials
        """
        self.vault_addr = vault_addr or os.getenv("VAULT_ADDR")
        self.vault_namespace = vault_namespace or os.getenv("VAULT_NAMESPACE")
        self.vault_role_id = os.getenv("VAULT_ROLE_ID")
        self.vault_secret_id = os.getenv("VAULT_SECRET_ID")

        if not self.vault_addr:
            raise ValueError("VAULT_ADDR environment variable is required")

        if not self.vault_role_id or not self.vault_secret_id:
            raise ValueError(
                "VAULT_ROLE_ID and VAULT_SECRET_ID environment variables are required"
            )

        client_kwargs = {"url": self.vault_addr}
        if self.vault_namespace:
            client_kwargs["namespace"] = self.vault_namespace

        self.client = hvac.Client(**client_kwargs)
        self._login()

        logger.info(f"Vault client ready: {self.vault_addr}")

    def _login(self) -> None:
        try:
            auth_response = self.client.auth.approle.login(
                role_id=self.vault_role_id,
                secret_id=self.vault_secret_id,
            )
        except Exception as e:
            logger.error(f"AppRole authentication failed: {e}")
            raise PermissionError(f"AppRole authentication failed: {e}")

        self.client.token = auth_response["auth"]["client_token"]
        if not self.client.is_authenticated():
            raise PermissionError("Vault authentication failed")

    def _ensure_authenticated(self) -> None:
        """Log in again if the AppRole token has expired."""
        if not self.client.is_authenticated():
            logger.info("Vault token expired, re-authenticating")
            self._login()

    def read_secret(self, path: str) -> Dict[str, str]:
        """
        Read every field of a KV v2 secret under billing/.

        Args:
            path: Secret path relative to billing/ (e.g., 'database', 'documents')

        Raises:
            PermissionError: Path missing or not readable by this role
        """
        full_path = f"{_SECRET_PREFIX}/{path}"
        self._ensure_authenticated()

        try:
            response = self.client.secrets.kv.v2.read_secret_version(
                path=full_path, raise_on_deleted_version=True
            )
        except InvalidPath:
            logger.error(f"Secret path not found: {full_path}")
            raise PermissionError(f"Secret path '{full_path}' not found in Vault")
        except (Unauthorized, Forbidden) as e:
            logger.error(f"Access denied to secret {full_path}: {e}")
            raise PermissionError(f"Access denied to secret '{full_path}': {e}")

        return response["data"]["data"]

    def get_secret(self, path: str, field: str) -> str:
        """
        Read one field of a secret under billing/.

        Raises:
            PermissionError: Path missing or not readable by this role
            KeyError: Field not present in the secret
        """
        return _require_fields(path, self.read_secret(path), (field,))[field]


def _require_fields(path: str, secret: Dict[str, str], fields) -> Dict[str, str]:
    missing = [name for name in fields if name not in secret]
    if missing:
        raise KeyError(
            f"Secret '{_SECRET_PREFIX}/{path}' is missing {', '.join(missing)}. "
            f"Available: {', '.join(sorted(secret))}"
        )
    return {name: secret[name] for name in fields}


def _cached_fields(path: str, *fields: str) -> Dict[str, str]:
    with _cache_lock:
        secret = _secret_cache.get(path)
    if secret is None:
        secret = _ensure_vault_client().read_secret(path)
        with _cache_lock:
            _secret_cache[path] = secret
    return _require_fields(path, secret, fields)


def get_database_url() -> str:
    """PostgreSQL connection URL (billing/database, field 'url')."""
    return _cached_fields("database", "url")["url"]


def get_valkey_url() -> str:
    """Valkey connection URL (billing/valkey, field 'url')."""
    return _cached_fields("valkey", "url")["url"]


def get_document_config() -> Dict[str, str]:
    """
    Document gateway settings (billing/documents).

    Returns:
        Dict with keys: gateway_url, api_key, hmac_secret
    """
    return _cached_fields("documents", "gateway_url", "api_key", "hmac_secret")
