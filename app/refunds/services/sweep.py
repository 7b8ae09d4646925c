"""
Daily refund sweep.

One run = trigger scan + deadline auto-refunds + retry of failed
executions, guarded by a non-blocking DistributedLock("refund-sweep") so
two runs never overlap. A second caller gets LockAcquisitionError
instead of waiting. Each phase extends the lock after every trigger or
decision it handles.

Usage:
    from refunds.services import RefundSweep

    summary = RefundSweep.run().data
    summary.to_dict()
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from django.utils import timezone

from core.services import BaseService, ServiceResult
from payments.locks import REFUND_SWEEP_LOCK_KEY, DistributedLock

from refunds.services.decision_engine import RefundDecisionEngine
from refunds.services.scanner import RefundTriggerScanner

if TYPE_CHECKING:
    from datetime import datetime
    from typing import Any

SWEEP_LOCK_TTL = 1800


@dataclass
class SweepSummary:
    processed_count: int = 0
    campaigns: list[dict[str, Any]] = field(default_factory=list)
    auto_refunded_count: int = 0
    retried_count: int = 0
    errors: int = 0
    timestamp: str = ""
    duration_ms: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "processed_count": self.processed_count,
            "campaigns": self.campaigns,
            "auto_refunded_count": self.auto_refunded_count,
            "retried_count": self.retried_count,
            "errors": self.errors,
            "timestamp": self.timestamp,
            "duration_ms": self.duration_ms,
        }


class RefundSweep(BaseService):
    """Single-flight combination of the scanner and the decision sweep."""

    @classmethod
    def run(cls, now: datetime | None = None) -> ServiceResult[SweepSummary]:
        """
        Run one sweep.

        Raises:
            LockAcquisitionError: Another sweep is running
        """
        logger = cls.get_logger()
        now = now or timezone.now()
        start_time = time.monotonic()

        with DistributedLock(REFUND_SWEEP_LOCK_KEY, ttl=SWEEP_LOCK_TTL, blocking=False) as lock:
            scan = RefundTriggerScanner.scan(now, heartbeat=lock.extend)
            auto_refunds = RefundDecisionEngine.auto_refund_expired(
                now, heartbeat=lock.extend
            )
            retries = RefundDecisionEngine.retry_incomplete_executions(
                now, heartbeat=lock.extend
            )

        summary = SweepSummary(
            processed_count=scan.processed_count,
            campaigns=scan.campaigns,
            auto_refunded_count=auto_refunds.processed,
            retried_count=retries.executed,
            errors=scan.errors + auto_refunds.failed + retries.failed,
            timestamp=now.isoformat(),
            duration_ms=int((time.monotonic() - start_time) * 1000),
        )

        logger.info(
            "Refund sweep finished",
            extra={
                "processed_count": summary.processed_count,
                "auto_refunded_count": summary.auto_refunded_count,
                "retried_count": summary.retried_count,
                "errors": summary.errors,
                "duration_ms": summary.duration_ms,
            },
        )
        return ServiceResult.success(summary)
