"""
Celery tasks for the refund workflow.

run_refund_sweep is scheduled daily through django-celery-beat (see
migrations/0002_add_refund_sweep_schedule.py). The scheduler endpoint
runs the same sweep synchronously.
"""

from __future__ import annotations

import logging

from celery import shared_task

from payments.exceptions import LockAcquisitionError

logger = logging.getLogger(__name__)


@shared_task(acks_late=True)
def run_refund_sweep() -> dict:
    """
    Scan for refund triggers and auto-refund lapsed decisions.

    Returns:
        Sweep summary, or {"status": "skipped"} when another sweep holds
        the lock
    """
    from refunds.services import RefundSweep

    try:
        summary = RefundSweep.run().data
    except LockAcquisitionError:
        logger.info("Refund sweep already running, skipping")
        return {"status": "skipped"}

    return {"status": "completed", **summary.to_dict()}
