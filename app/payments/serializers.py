"""
DRF serializers for payments app.

This module provides serializers for:
- Checkout requests and responses
- Donation verification responses
- Donation display

Related files:
    - models/donation.py: Donation
    - views.py: Payment API views
"""

from __future__ import annotations

from rest_framework import serializers

from payments.models import Donation


class CheckoutRequestSerializer(serializers.Serializer):
    """
    Request body for starting a donation.

    Fields:
        campaign_id: Campaign receiving the donation
        amount_cents: Donor-facing amount in the smallest currency unit
        cover_fees: Optional; true = donor pays all fees on top,
            false = campaign absorbs the fees, omitted = platform default
    """

    campaign_id = serializers.UUIDField()
    amount_cents = serializers.IntegerField(min_value=1)
    cover_fees = serializers.BooleanField(required=False, allow_null=True, default=None)


class FeeBreakdownSerializer(serializers.Serializer):
    gross_amount = serializers.IntegerField()
    provider_fee = serializers.IntegerField()
    platform_fee = serializers.IntegerField()
    net_amount = serializers.IntegerField()
    total_charge = serializers.IntegerField()
    platform_fee_percent = serializers.CharField()
    policy = serializers.CharField()


class CheckoutResponseSerializer(serializers.Serializer):
    donation_id = serializers.UUIDField()
    source_id = serializers.CharField()
    redirect_url = serializers.CharField(allow_blank=True)
    fees = FeeBreakdownSerializer()


class VerifyResponseSerializer(serializers.Serializer):
    """Result of driving a donation forward: {success, status, message}."""

    success = serializers.BooleanField()
    status = serializers.CharField()
    message = serializers.CharField()
    donation_id = serializers.UUIDField()


class DonationSerializer(serializers.ModelSerializer):
    """Donation as shown to its donor."""

    net_amount_cents = serializers.IntegerField(read_only=True)

    class Meta:
        model = Donation
        fields = [
            "id",
            "campaign",
            "amount_cents",
            "net_amount_cents",
            "currency",
            "status",
            "payment_method",
            "failure_reason",
            "completed_at",
            "created_at",
        ]
        read_only_fields = fields
