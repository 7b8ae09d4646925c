"""
Payment services for coordinating donation payments.

This module provides:
- CheckoutService: Starts a donation and creates its payment source
- DonationStateMachine: Drives donations to completed/failed and credits
  the campaign exactly once
- EventLedger: Durable dedup store for inbound provider events

Usage:
    from payments.services import CheckoutService, DonationStateMachine

    # Start a checkout
    result = CheckoutService.start_checkout(
        donor=user,
        campaign_id=campaign.id,
        amount_cents=100000,
    )

    # Drive a donation forward after the donor returns from Stripe
    outcome = DonationStateMachine.advance(result.data.donation_id).data
    outcome.status   # "completed", "failed" or the pending session status

    # Deduplicate a webhook delivery
    from payments.services import EventLedger

    recorded = EventLedger.record_if_new("evt_123", "source.chargeable", payload)
    recorded.is_new
"""

from payments.services.checkout import CheckoutResult, CheckoutService
from payments.services.donation_state_machine import (
    DonationOutcome,
    DonationStateMachine,
)
from payments.services.event_ledger import EventLedger, RecordResult

__all__ = [
    "CheckoutResult",
    "CheckoutService",
    "DonationOutcome",
    "DonationStateMachine",
    "EventLedger",
    "RecordResult",
]
