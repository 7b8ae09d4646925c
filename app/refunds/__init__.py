"""
Refunds application.

Opens refund obligations for donations tied to rejected milestones and
to cancelled or under-goal expired campaigns, and resolves each donor's
share through a decision window:
- RefundTriggerScanner: finds triggers and opens RefundRequests
- RefundDecisionEngine: donor decisions, auto-refunds, execution
- RefundSweep: the daily single-flight job combining both

Usage:
    from refunds.services import RefundDecisionEngine

    RefundDecisionEngine.submit_decision(
        decision_id, donor, DecisionType.REDIRECT_TO_CAMPAIGN, target_campaign_id
    )
"""
