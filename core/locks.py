"""Per-enrollment lock around invoice creation.

Invoice creation reads the previous invoice and the enrollment's arrear
snapshot, then writes a new invoice that depends on both. Two concurrent
creations for one enrollment would read the same state, so they are
serialised here. The lock lives in Valkey with a TTL, so a crashed request
cannot hold it forever.
"""

import logging
from contextlib import contextmanager
from uuid import UUID, uuid4

from clients.valkey_client import ValkeyClient
from core.exceptions import ConcurrentInvoiceError

logger = logging.getLogger(__name__)


class EnrollmentLock:
    """Fail-fast mutual exclusion per enrollment."""

    KEY_PREFIX = "lock:invoice:enrollment:"

    def __init__(self, valkey: ValkeyClient, ttl_seconds: int):
        self._valkey = valkey
        self._ttl_seconds = ttl_seconds

    def _key(self, enrollment_id: UUID) -> str:
        return f"{self.KEY_PREFIX}{enrollment_id}"

    @contextmanager
    def hold(self, enrollment_id: UUID):
        """
        Hold the lock for the duration of the block.

        Raises:
            ConcurrentInvoiceError: If another request holds it
        """
        key = self._key(enrollment_id)
        token = str(uuid4())

        if not self._valkey.set_if_absent(key, token, expire_seconds=self._ttl_seconds):
            raise ConcurrentInvoiceError(
                f"An invoice is already being created for enrollment {enrollment_id}. "
                f"Retry shortly."
            )

        try:
            yield
        finally:
            if not self._valkey.delete_if_equals(key, token):
                logger.warning(
                    "Invoice lock for enrollment %s expired before release", enrollment_id
                )
