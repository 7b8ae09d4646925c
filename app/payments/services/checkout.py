"""
Checkout service.

Starts a donation: validates the request, computes the fee breakdown once,
persists a pending Donation with its PaymentSession and creates the
redirect-based payment source at Stripe.

Flow:
    1. Validate campaign and amount (no database writes)
    2. Create Donation + PaymentSession atomically (fee metadata frozen)
    3. Create the Stripe source OUTSIDE the transaction
    4. Store the source id / redirect URL, or fail the donation if Stripe
       rejected the request

Usage:
    from payments.services import CheckoutService

    result = CheckoutService.start_checkout(
        donor=request.user,
        campaign_id=campaign.id,
        amount_cents=100000,
    )
    if result.success:
        redirect(result.data.redirect_url)
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from typing import TYPE_CHECKING

from django.conf import settings
from django.utils import timezone

from campaigns.models import Campaign, CampaignStatus
from core.exceptions import NotFoundError
from core.services import BaseService, ServiceResult

from payments.adapters import IdempotencyKeyGenerator, StripeAdapter
from payments.exceptions import PaymentValidationError, StripeError
from payments.fees import (
    CAMPAIGN_ABSORBS,
    DONOR_COVERS_ALL,
    FeeBreakdown,
    FeeConfig,
    calculate_fees,
)
from payments.models import Donation, PaymentSession
from payments.services.donation_state_machine import DonationStateMachine
from payments.state_machines import PaymentMethod

if TYPE_CHECKING:
    from uuid import UUID

    from authentication.models import User


@dataclass
class CheckoutResult:
    """Data returned to the donor after a checkout was started."""

    donation_id: UUID
    source_id: str
    redirect_url: str
    fees: FeeBreakdown


class CheckoutService(BaseService):
    """Creates donations and their payment sources."""

    # Stripe adapter - can be injected for testing
    _stripe_adapter: type | None = None

    @classmethod
    def get_stripe_adapter(cls) -> type:
        return cls._stripe_adapter or StripeAdapter

    @classmethod
    def set_stripe_adapter(cls, adapter: type | None) -> None:
        cls._stripe_adapter = adapter

    @classmethod
    def fee_config_for(cls, cover_fees: bool | None) -> FeeConfig:
        """
        Fee configuration for one checkout.

        cover_fees=True makes the donor pay every fee on top, False makes
        the campaign absorb them, None keeps the configured policy.
        """
        config = FeeConfig.from_settings()
        if cover_fees is None:
            return config
        return FeeConfig(
            platform_fee_percent=config.platform_fee_percent,
            provider_fee_percent=config.provider_fee_percent,
            provider_fee_fixed=config.provider_fee_fixed,
            policy=DONOR_COVERS_ALL if cover_fees else CAMPAIGN_ABSORBS,
        )

    @classmethod
    def start_checkout(
        cls,
        donor: User,
        campaign_id: UUID | str,
        amount_cents: int,
        cover_fees: bool | None = None,
    ) -> ServiceResult[CheckoutResult]:
        """
        Start a donation checkout.

        Args:
            donor: Authenticated donor
            campaign_id: Campaign to donate to
            amount_cents: Donor-facing amount in the smallest currency unit
            cover_fees: Optional donor fee preference

        Returns:
            ServiceResult with CheckoutResult on success

        Raises:
            NotFoundError: Unknown campaign
            PaymentValidationError: Campaign not accepting donations or
                amount outside limits
            StripeError: Stripe refused or failed to create the source
        """
        logger = cls.get_logger()

        campaign = Campaign.objects.filter(pk=campaign_id).first()
        if campaign is None:
            raise NotFoundError(
                f"Campaign {campaign_id} not found",
                error_code="CAMPAIGN_NOT_FOUND",
            )
        cls._validate(campaign, amount_cents)

        fees = calculate_fees(amount_cents, cls.fee_config_for(cover_fees))
        if fees.net_amount < settings.MIN_NET_AMOUNT_CENTS:
            raise PaymentValidationError(
                "Donation amount is too small after fees",
                error_code="NET_AMOUNT_TOO_SMALL",
                details={
                    "net_amount": fees.net_amount,
                    "minimum": settings.MIN_NET_AMOUNT_CENTS,
                },
            )

        currency = settings.PAYMENT_CURRENCY

        # Phase 1: persist pending records
        with cls.atomic():
            donation = Donation.objects.create(
                campaign=campaign,
                donor=donor,
                amount_cents=amount_cents,
                currency=currency,
                payment_method=PaymentMethod.PROVIDER_SOURCE,
                metadata={"fees": fees.to_metadata()},
            )
            session = PaymentSession.objects.create(
                donation=donation,
                amount_cents=fees.total_charge,
                currency=currency,
                fee_metadata=fees.to_metadata(),
                expires_at=timezone.now()
                + timedelta(minutes=settings.PAYMENT_SESSION_TTL_MINUTES),
            )

        # Phase 2: provider call outside the transaction
        try:
            source = cls.get_stripe_adapter().create_source(
                amount_cents=fees.total_charge,
                currency=currency,
                source_type=settings.STRIPE_SOURCE_TYPE,
                return_url=f"{settings.CHECKOUT_SUCCESS_URL}?donation_id={donation.id}",
                idempotency_key=IdempotencyKeyGenerator.generate(
                    "create_source", donation.id
                ),
                metadata={
                    "donation_id": str(donation.id),
                    "campaign_id": str(campaign.id),
                },
            )
        except StripeError as e:
            logger.warning(
                "Source creation failed, failing donation",
                extra={"donation_id": str(donation.id), "error_code": e.error_code},
            )
            DonationStateMachine.fail(donation.id, f"Could not start payment: {e.message}")
            raise

        # Phase 3: store provider references
        with cls.atomic():
            session = PaymentSession.objects.select_for_update().get(pk=session.pk)
            session.provider_source_id = source.id
            session.redirect_url = source.redirect_url or ""
            session.save(update_fields=["provider_source_id", "redirect_url", "updated_at"])

        logger.info(
            "Checkout started",
            extra={
                "donation_id": str(donation.id),
                "campaign_id": str(campaign.id),
                "source_id": source.id,
                "amount_cents": amount_cents,
                "total_charge": fees.total_charge,
                "net_amount": fees.net_amount,
            },
        )

        return ServiceResult.success(
            CheckoutResult(
                donation_id=donation.id,
                source_id=source.id,
                redirect_url=session.redirect_url,
                fees=fees,
            )
        )

    @classmethod
    def _validate(cls, campaign: Campaign, amount_cents: int) -> None:
        if campaign.status != CampaignStatus.ACTIVE:
            raise PaymentValidationError(
                "Campaign is not accepting donations",
                error_code="CAMPAIGN_NOT_ACTIVE",
                details={"status": campaign.status},
            )
        if campaign.end_date is not None and campaign.end_date <= timezone.now():
            raise PaymentValidationError(
                "Campaign has ended",
                error_code="CAMPAIGN_ENDED",
            )
        if not settings.MIN_DONATION_CENTS <= amount_cents <= settings.MAX_DONATION_CENTS:
            raise PaymentValidationError(
                "Donation amount is outside the allowed range",
                error_code="AMOUNT_OUT_OF_RANGE",
                details={
                    "amount_cents": amount_cents,
                    "minimum": settings.MIN_DONATION_CENTS,
                    "maximum": settings.MAX_DONATION_CENTS,
                },
            )
