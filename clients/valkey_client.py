"""
Valkey (Redis-compatible) client for short-lived coordination keys.

Simple wrapper around redis-py. Connection URL from Vault.
Fail-fast: raises on connection failure, never returns fallback values.
"""

import logging

import redis

logger = logging.getLogger(__name__)

# Delete the key only if it still holds our token, so an expired lock that
# was re-acquired by another request is never released by us.
_RELEASE_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
end
return 0
"""


class ValkeyClient:
    """
    Redis-compatible client for Valkey.

    Usage:
        client = ValkeyClient("redis://localhost:6379/0")
        if client.set_if_absent("lock:x", token, expire_seconds=30):
            try:
                ...
            finally:
                client.delete_if_equals("lock:x", token)
    """

    def __init__(self, url: str):
        """
        Initialize Valkey connection.

        Args:
            url: Redis-compatible connection URL (e.g., redis://localhost:6379/0)

        Raises:
            redis.ConnectionError: If connection fails
        """
        self._client = redis.from_url(url, decode_responses=True)
        # Verify connectivity immediately (fail-fast)
        self._client.ping()
        logger.info("ValkeyClient connected")

    def ping(self) -> bool:
        """
        Health check.

        Returns True if Valkey responds.
        Raises redis.ConnectionError if unreachable.
        """
        self._client.ping()
        return True

    def set_if_absent(self, key: str, value: str, expire_seconds: int) -> bool:
        """
        Set key only if it does not exist, with a TTL.

        Returns True if the key was set, False if it already existed.
        """
        return bool(self._client.set(key, value, nx=True, ex=expire_seconds))

    def delete_if_equals(self, key: str, value: str) -> bool:
        """
        Delete key only if it currently holds value.

        Returns True if the key was deleted.
        """
        return bool(self._client.eval(_RELEASE_SCRIPT, 1, key, value))

    def close(self) -> None:
        """Close the connection."""
        self._client.close()
        logger.info("ValkeyClient closed")
