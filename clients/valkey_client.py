"""
Valkey (Redis-compatible) counter store.

Holds the shared counters the billing engine needs across processes, chiefly
the per-month invoice number sequences. Every key is namespaced so several
deployments can share one Valkey instance. Connection URL from Vault.
Fail-fast: raises on connection failure, never returns fallback values.
"""

import logging

import redis

logger = logging.getLogger(__name__)


class ValkeyClient:
    """
    Namespaced atomic counters on Valkey.

    Usage:
        counters = ValkeyClient("redis://localhost:6379/0")
        counters.set_if_absent("invoice_seq:INV:2503", 41)
        sequence = counters.incr("invoice_seq:INV:2503")  # 42
    """

    def __init__(self, url: str, namespace: str = "billing"):
        """
        Connect to Valkey.

        Args:
            url: Redis-compatible connection URL (e.g., redis://localhost:6379/0)
            namespace: Prefix applied to every key

        Raises:
            redis.ConnectionError: If the server is unreachable
        """
        self.namespace = namespace
        self._client = redis.from_url(url, decode_responses=True)
        self._client.ping()
        logger.info(f"ValkeyClient connected (namespace {namespace})")

    def _key(self, key: str) -> str:
        return f"{self.namespace}:{key}"

    def ping(self) -> bool:
        """Health check. Raises redis.ConnectionError if unreachable."""
        self._client.ping()
        return True

    def get_int(self, key: str) -> int | None:
        """Current counter value, or None if the counter was never set."""
        value = self._client.get(self._key(key))
        return None if value is None else int(value)

    def set_if_absent(self, key: str, value: int, expire_seconds: int | None = None) -> bool:
        """
        Start a counter at a value unless it already exists.

        Returns:
            True if the counter was created, False if it was already there
        """
        return bool(self._client.set(self._key(key), value, nx=True, ex=expire_seconds))

    def incr(self, key: str, expire_seconds: int | None = None) -> int:
        """
        Atomically increment a counter and return the new value.

        A missing counter starts from zero. When expire_seconds is given the
        counter's TTL is set in the same round trip.
        """
        if expire_seconds is None:
            return self._client.incr(self._key(key))

        pipe = self._client.pipeline()
        pipe.incr(self._key(key))
        pipe.expire(self._key(key), expire_seconds)
        value, _ = pipe.execute()
        return value

    def delete(self, key: str) -> bool:
        """Remove a counter. Returns True if it existed."""
        return self._client.delete(self._key(key)) > 0

    def close(self) -> None:
        self._client.close()
        logger.info("ValkeyClient closed")
