"""
Refund services.

- RefundTriggerScanner: Opens refund requests for rejected milestones and
  cancelled or expired under-goal campaigns
- RefundDecisionEngine: Donor decisions, deadline auto-refunds, execution
- RefundSweep: Daily single-flight job running both

Usage:
    from refunds.services import RefundDecisionEngine, RefundSweep

    outcome = RefundDecisionEngine.submit_decision(
        decision_id, request.user, "refund"
    ).data

    summary = RefundSweep.run().data
"""

from refunds.services.decision_engine import (
    BatchResult,
    DecisionOutcome,
    RefundDecisionEngine,
)
from refunds.services.scanner import RefundTrigger, RefundTriggerScanner, ScanResult
from refunds.services.sweep import RefundSweep, SweepSummary

__all__ = [
    "BatchResult",
    "DecisionOutcome",
    "RefundDecisionEngine",
    "RefundSweep",
    "RefundTrigger",
    "RefundTriggerScanner",
    "ScanResult",
    "SweepSummary",
]
