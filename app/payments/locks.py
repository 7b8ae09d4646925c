"""
Concurrency control utilities for donation and refund processing.

DistributedLock:
   - Redis-based mutual exclusion across web workers and Celery workers
   - TTL prevents deadlocks from crashed processes
   - Serializes everything that talks to the provider for one donation
     or one refund decision, and keeps refund sweeps from overlapping

Lock keys:
    donation:{donation_id}          DonationStateMachine.advance
    refund-decision:{decision_id}   RefundDecisionEngine.execute
    refund-sweep                    RefundSweep.run (non-blocking)

Usage:
    from payments.locks import DistributedLock, donation_lock_key

    with DistributedLock(donation_lock_key(donation.id), ttl=60):
        DonationStateMachine.advance(donation.id)
"""

from __future__ import annotations

import time
import uuid as uuid_module
from typing import TYPE_CHECKING

from django_redis import get_redis_connection

from payments.exceptions import LockAcquisitionError

if TYPE_CHECKING:
    from typing import Any

    from redis import Redis

REFUND_SWEEP_LOCK_KEY = "refund-sweep"


def donation_lock_key(donation_id: Any) -> str:
    return f"donation:{donation_id}"


def refund_decision_lock_key(decision_id: Any) -> str:
    return f"refund-decision:{decision_id}"


# =============================================================================
# Distributed Locks
# =============================================================================


class DistributedLock:
    """
    Redis-based distributed lock with TTL.

    Acquisition is a single ``SET key token NX EX ttl``; release and
    extension run as Lua scripts that compare the token first, so a
    process can never release a lock that expired and was taken by
    someone else.

    Example:
        # Blocking (donation processing)
        with DistributedLock("donation:123", ttl=60, timeout=10):
            advance_donation()

        # Single-flight (refund sweep)
        try:
            with DistributedLock("refund-sweep", ttl=1800, blocking=False) as lock:
                for campaign in campaigns:
                    process(campaign)
                    lock.extend()
        except LockAcquisitionError:
            return "already running"

    Args:
        key: Lock identifier (will be prefixed with "lock:")
        ttl: Lock TTL in seconds (auto-releases after this time)
        blocking: If True, acquire() waits until lock is available
        timeout: Maximum wait time in seconds (only if blocking=True)
    """

    RELEASE_SCRIPT = """
    if redis.call("get", KEYS[1]) == ARGV[1] then
        return redis.call("del", KEYS[1])
    else
        return 0
    end
    """

    EXTEND_SCRIPT = """
    if redis.call("get", KEYS[1]) == ARGV[1] then
        return redis.call("expire", KEYS[1], ARGV[2])
    else
        return 0
    end
    """

    POLL_INTERVAL = 0.05

    def __init__(
        self,
        key: str,
        ttl: int = 30,
        blocking: bool = True,
        timeout: float = 10.0,
    ) -> None:
        self.key = f"lock:{key}"
        self.ttl = ttl
        self.blocking = blocking
        self.timeout = timeout
        self._token: str | None = None
        self._redis: Redis | None = None

    def _get_redis(self) -> Redis:
        if self._redis is None:
            self._redis = get_redis_connection("default")
        return self._redis

    def acquire(self) -> bool:
        """
        Acquire the lock.

        Returns:
            True once the lock is held

        Raises:
            LockAcquisitionError: Lock held elsewhere (non-blocking) or not
                obtained within timeout (blocking)
        """
        token = str(uuid_module.uuid4())
        redis = self._get_redis()

        if not self.blocking:
            if not redis.set(self.key, token, nx=True, ex=self.ttl):
                raise LockAcquisitionError(
                    f"Lock '{self.key}' is already held",
                    details={"key": self.key},
                )
            self._token = token
            return True

        deadline = time.monotonic() + self.timeout
        while True:
            if redis.set(self.key, token, nx=True, ex=self.ttl):
                self._token = token
                return True
            if time.monotonic() >= deadline:
                raise LockAcquisitionError(
                    f"Failed to acquire lock '{self.key}' within {self.timeout}s",
                    details={"key": self.key, "timeout": self.timeout},
                )
            time.sleep(self.POLL_INTERVAL)

    def release(self) -> bool:
        """
        Release the lock if we hold it.

        Returns:
            True if lock was released, False if we didn't hold it (never
            acquired, already released, or expired)
        """
        if self._token is None:
            return False

        result = self._get_redis().eval(self.RELEASE_SCRIPT, 1, self.key, self._token)
        self._token = None
        return bool(result)

    def extend(self, ttl: int | None = None) -> bool:
        """
        Reset the lock TTL if we still hold it.

        Args:
            ttl: New TTL in seconds (defaults to the original TTL)
        """
        if self._token is None:
            return False

        result = self._get_redis().eval(
            self.EXTEND_SCRIPT, 1, self.key, self._token, ttl or self.ttl
        )
        return bool(result)

    @property
    def is_held(self) -> bool:
        return self._token is not None

    def __enter__(self) -> DistributedLock:
        self.acquire()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: Any,
    ) -> bool:
        self.release()
        return False


__all__ = [
    "DistributedLock",
    "REFUND_SWEEP_LOCK_KEY",
    "donation_lock_key",
    "refund_decision_lock_key",
]
