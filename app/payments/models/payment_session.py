"""
PaymentSession model.

One PaymentSession per provider-paid Donation. It holds the provider
source reference and the fee breakdown computed at checkout. The fee
breakdown is frozen: it is written once on insert and any later attempt
to change it raises, so the amount charged and the amount credited can
never drift apart.
"""

from __future__ import annotations

from django.db import models
from django.utils import timezone

from django_fsm import FSMField, transition

from core.model_mixins import UUIDPrimaryKeyMixin
from core.models import BaseModel

from payments.state_machines import PaymentSessionStatus


class PaymentSession(UUIDPrimaryKeyMixin, BaseModel):
    """
    Provider-side payment attempt backing a donation.

    State Flow:
        PENDING -> CHARGEABLE -> SUCCEEDED
        PENDING -> SUCCEEDED
        PENDING/CHARGEABLE -> FAILED

    Fields:
        donation: Owning donation (one-to-one)
        provider_source_id: Stripe Source ID (src_xxx)
        status: Current FSM state
        amount_cents: Total charge (fee_metadata["total_charge"])
        currency: ISO 4217 currency code
        fee_metadata: Frozen FeeBreakdown.to_metadata()
        redirect_url: Provider authorization page for the donor
        expires_at: When an unfinished session is failed by the expiry task
    """

    donation = models.OneToOneField(
        "payments.Donation",
        on_delete=models.CASCADE,
        related_name="payment_session",
        help_text="Donation this session pays for",
    )

    provider_source_id = models.CharField(
        max_length=255,
        null=True,
        blank=True,
        unique=True,
        help_text="Stripe Source ID (src_xxx)",
    )

    status = FSMField(
        default=PaymentSessionStatus.PENDING,
        choices=PaymentSessionStatus.choices,
        db_index=True,
        protected=True,
        help_text="Current state of the payment session (managed by FSM)",
    )

    amount_cents = models.PositiveBigIntegerField(
        help_text="Total amount to charge at the provider",
    )

    currency = models.CharField(
        max_length=3,
        default="php",
        help_text="ISO 4217 currency code (lowercase)",
    )

    fee_metadata = models.JSONField(
        default=dict,
        help_text="Fee breakdown computed at checkout (immutable)",
    )

    redirect_url = models.URLField(
        max_length=2048,
        blank=True,
        default="",
        help_text="Provider authorization URL",
    )

    expires_at = models.DateTimeField(
        db_index=True,
        help_text="When an unfinished session expires",
    )

    succeeded_at = models.DateTimeField(null=True, blank=True)
    failed_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Payment Session"
        verbose_name_plural = "Payment Sessions"
        indexes = [
            models.Index(fields=["status", "expires_at"], name="payments_pa_status_2b7c41_idx"),
        ]

    def __str__(self) -> str:
        return f"PaymentSession({self.id}, {self.status}, {self.provider_source_id})"

    @classmethod
    def from_db(cls, db, field_names, values):
        instance = super().from_db(db, field_names, values)
        instance._loaded_fee_metadata = instance.__dict__.get("fee_metadata")
        return instance

    def save(self, *args, **kwargs):
        """Save, refusing to overwrite the fee breakdown of an existing session."""
        loaded = getattr(self, "_loaded_fee_metadata", None)
        if not self._state.adding and loaded is not None and loaded != self.fee_metadata:
            raise ValueError("PaymentSession.fee_metadata is immutable once stored")
        super().save(*args, **kwargs)
        self._loaded_fee_metadata = self.fee_metadata

    @property
    def is_expired(self) -> bool:
        return (
            self.status in (PaymentSessionStatus.PENDING, PaymentSessionStatus.CHARGEABLE)
            and timezone.now() > self.expires_at
        )

    # ==========================================================================
    # State Transitions (django-fsm)
    # ==========================================================================

    @transition(
        field=status,
        source=PaymentSessionStatus.PENDING,
        target=PaymentSessionStatus.CHARGEABLE,
    )
    def mark_chargeable(self):
        """Transition: PENDING -> CHARGEABLE (donor authorized the source)."""

    @transition(
        field=status,
        source=[PaymentSessionStatus.PENDING, PaymentSessionStatus.CHARGEABLE],
        target=PaymentSessionStatus.SUCCEEDED,
    )
    def succeed(self):
        """Transition: PENDING/CHARGEABLE -> SUCCEEDED (charge succeeded)."""
        self.succeeded_at = timezone.now()

    @transition(
        field=status,
        source=[PaymentSessionStatus.PENDING, PaymentSessionStatus.CHARGEABLE],
        target=PaymentSessionStatus.FAILED,
    )
    def fail(self):
        """Transition: PENDING/CHARGEABLE -> FAILED."""
        self.failed_at = timezone.now()
