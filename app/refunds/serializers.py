"""
DRF serializers for the refunds app.

Related files:
    - models.py: DonorRefundDecision, RefundRequest
    - views.py: Donor decision and scheduler endpoints
"""

from __future__ import annotations

from rest_framework import serializers

from refunds.models import DecisionType, DonorRefundDecision


class DonorRefundDecisionSerializer(serializers.ModelSerializer):
    """A refund decision as shown to its donor."""

    campaign_id = serializers.UUIDField(source="refund_request.campaign_id", read_only=True)
    trigger_type = serializers.CharField(source="refund_request.trigger_type", read_only=True)
    reason = serializers.CharField(source="refund_request.rejection_reason", read_only=True)
    redirect_campaign_id = serializers.UUIDField(read_only=True, allow_null=True)

    class Meta:
        model = DonorRefundDecision
        fields = [
            "id",
            "campaign_id",
            "trigger_type",
            "reason",
            "refund_amount_cents",
            "decision_deadline",
            "status",
            "decision_type",
            "redirect_campaign_id",
            "decided_at",
            "executed_at",
            "metadata",
        ]
        read_only_fields = fields


class SubmitDecisionSerializer(serializers.Serializer):
    """
    Request body for a donor decision.

    redirect_campaign_id is required for redirect_to_campaign.
    """

    decision_type = serializers.ChoiceField(choices=DecisionType.choices)
    redirect_campaign_id = serializers.UUIDField(required=False, allow_null=True)

    def validate(self, attrs):
        if (
            attrs["decision_type"] == DecisionType.REDIRECT_TO_CAMPAIGN
            and not attrs.get("redirect_campaign_id")
        ):
            raise serializers.ValidationError(
                {"redirect_campaign_id": "Required when redirecting to a campaign."}
            )
        return attrs


class SubmitDecisionResponseSerializer(serializers.Serializer):
    success = serializers.BooleanField()
    message = serializers.CharField()
    decision = DonorRefundDecisionSerializer()


class SweepCampaignSerializer(serializers.Serializer):
    campaign_id = serializers.UUIDField()
    milestone_id = serializers.UUIDField(allow_null=True)
    refund_request_id = serializers.UUIDField()
    trigger_type = serializers.CharField()
    total_amount_cents = serializers.IntegerField()
    donors_count = serializers.IntegerField()


class SweepResponseSerializer(serializers.Serializer):
    """Scheduler endpoint summary."""

    success = serializers.BooleanField()
    processed_count = serializers.IntegerField()
    campaigns = SweepCampaignSerializer(many=True)
    auto_refunded_count = serializers.IntegerField()
    timestamp = serializers.CharField()
    duration_ms = serializers.IntegerField()
