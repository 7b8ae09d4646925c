"""
Donation model.

A Donation is one donor's contribution to one campaign. Its status moves
through a django-fsm state machine; the campaign ledger credit that
accompanies the COMPLETED transition is tracked separately by the
ledger_credited flag so it is applied exactly once even when the credit
has to be retried after the transition committed.

Usage:
    from payments.models import Donation
    from payments.state_machines import DonationStatus

    donation = Donation.objects.create(
        campaign=campaign,
        donor=user,
        amount_cents=100000,
        currency="php",
    )

    donation.complete(charge_id="ch_123", fees=breakdown.to_metadata())
    donation.save()
"""

from __future__ import annotations

from django.conf import settings
from django.db import models
from django.utils import timezone

from django_fsm import FSMField, transition

from core.model_mixins import UUIDPrimaryKeyMixin, VersionedMixin
from core.models import BaseModel

from payments.state_machines import DonationStatus, PaymentMethod


class Donation(UUIDPrimaryKeyMixin, VersionedMixin, BaseModel):
    """
    A donation to a campaign.

    State Flow:
        PENDING -> COMPLETED -> REFUNDED
        PENDING -> FAILED

    Fields:
        campaign: Campaign receiving the funds
        donor: User making the donation
        amount_cents: Gross, donor-facing amount
        currency: ISO 4217 currency code
        status: Current FSM state
        payment_method: provider_source or redirected
        provider_charge_id: Stripe Charge ID once charged
        metadata: JSON; "fees" holds the breakdown copied from the session
        failure_reason: Human-readable reason for FAILED donations
        ledger_credited: Whether the net amount has been credited to the
            campaign ledger
        redirected_from: Original donation when funds were redirected here
        version: Change counter, incremented in SQL on every save
    """

    # ==========================================================================
    # Relationships
    # ==========================================================================

    campaign = models.ForeignKey(
        "campaigns.Campaign",
        on_delete=models.PROTECT,
        related_name="donations",
        help_text="Campaign receiving this donation",
    )

    donor = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="donations",
        help_text="User making the donation",
    )

    redirected_from = models.ForeignKey(
        "self",
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="redirected_to",
        help_text="Original donation whose funds were redirected here",
    )

    # ==========================================================================
    # Amount & Currency
    # ==========================================================================

    amount_cents = models.PositiveBigIntegerField(
        help_text="Gross donation amount in smallest currency unit",
    )

    currency = models.CharField(
        max_length=3,
        default="php",
        help_text="ISO 4217 currency code (lowercase)",
    )

    # ==========================================================================
    # State
    # ==========================================================================

    status = FSMField(
        default=DonationStatus.PENDING,
        choices=DonationStatus.choices,
        db_index=True,
        protected=True,
        help_text="Current state of the donation (managed by FSM)",
    )

    payment_method = models.CharField(
        max_length=20,
        choices=PaymentMethod.choices,
        default=PaymentMethod.PROVIDER_SOURCE,
        help_text="How the funds arrived",
    )

    # ==========================================================================
    # Provider Integration
    # ==========================================================================

    provider_charge_id = models.CharField(
        max_length=255,
        null=True,
        blank=True,
        unique=True,
        help_text="Stripe Charge ID (ch_xxx)",
    )

    # ==========================================================================
    # Ledger Tracking
    # ==========================================================================

    ledger_credited = models.BooleanField(
        default=False,
        db_index=True,
        help_text="Whether the net amount has been credited to the campaign",
    )

    credited_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When the campaign ledger credit was applied",
    )

    # ==========================================================================
    # State Timestamps
    # ==========================================================================

    completed_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When the donation completed",
    )

    failed_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When the donation failed",
    )

    refunded_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When the donation was refunded in full",
    )

    # ==========================================================================
    # Metadata & Error Info
    # ==========================================================================

    metadata = models.JSONField(
        default=dict,
        blank=True,
        help_text="Fee breakdown and other JSON metadata",
    )

    failure_reason = models.TextField(
        null=True,
        blank=True,
        help_text="Human-readable reason if the donation failed",
    )

    # ==========================================================================
    # Meta & Methods
    # ==========================================================================

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Donation"
        verbose_name_plural = "Donations"
        indexes = [
            models.Index(fields=["campaign", "status"], name="payments_do_campaig_1d2a7e_idx"),
            models.Index(fields=["donor", "status"], name="payments_do_donor_i_8c41b0_idx"),
            models.Index(
                fields=["status", "ledger_credited"], name="payments_do_status_5e9f3a_idx"
            ),
        ]
        constraints = [
            models.CheckConstraint(
                check=models.Q(amount_cents__gt=0),
                name="donation_amount_positive",
            ),
        ]

    def __str__(self) -> str:
        amount_display = f"{self.amount_cents / 100:.2f} {self.currency.upper()}"
        return f"Donation({self.id}, {self.status}, {amount_display})"

    @property
    def fees(self) -> dict:
        return self.metadata.get("fees", {})

    @property
    def net_amount_cents(self) -> int:
        """
        Amount credited to the campaign ledger.

        Redirected donations carry no fees; their gross is their net.
        """
        if "net_amount" in self.fees:
            return int(self.fees["net_amount"])
        return self.amount_cents

    # ==========================================================================
    # State Transitions (django-fsm)
    # ==========================================================================

    @transition(
        field=status,
        source=DonationStatus.PENDING,
        target=DonationStatus.COMPLETED,
    )
    def complete(self, charge_id: str | None = None, fees: dict | None = None):
        """
        Mark the donation as completed.

        Transition: PENDING -> COMPLETED

        Copies the frozen fee breakdown down from the payment session.
        The ledger credit is applied separately (see ledger_credited).
        """
        self.completed_at = timezone.now()
        if charge_id:
            self.provider_charge_id = charge_id
        if fees is not None:
            self.metadata = {**self.metadata, "fees": fees}
        self.failure_reason = None

    @transition(
        field=status,
        source=DonationStatus.PENDING,
        target=DonationStatus.FAILED,
    )
    def fail(self, reason: str | None = None):
        """
        Mark the donation as failed.

        Transition: PENDING -> FAILED

        Args:
            reason: Human-readable failure reason shown to the donor
        """
        self.failed_at = timezone.now()
        if reason:
            self.failure_reason = reason

    @transition(
        field=status,
        source=DonationStatus.COMPLETED,
        target=DonationStatus.REFUNDED,
    )
    def refund(self):
        """
        Mark the donation as refunded.

        Transition: COMPLETED -> REFUNDED
        """
        self.refunded_at = timezone.now()
