"""
Campaigns application.

Owns the ledger-relevant view of fundraising campaigns and their milestones:
- Campaign: raised amount, donor count, goal, end date, status
- Milestone: per-campaign deliverable whose rejection opens a refund
- CampaignLedgerService: the only writer of campaign totals

Usage:
    from campaigns.services import CampaignLedgerService

    totals = CampaignLedgerService.apply_delta(campaign.id, 97000, 1)
"""
