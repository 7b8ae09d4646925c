"""
Payments app for donation checkout and verification.

This app handles:
- Fee calculation (platform and provider fees, net amount)
- Checkout: Stripe source creation and payment sessions
- Payment verification and charge creation
- Webhook event handling with an idempotent event ledger
- The donation state machine and campaign credit

Related apps:
    - campaigns: CampaignLedgerService credits completed donations
    - notifications: donation event notifications

Usage:
    from payments.services import CheckoutService

    result = CheckoutService.start_checkout(
        donor=user, campaign_id=campaign.id, amount_cents=100000
    )
"""
