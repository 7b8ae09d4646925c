"""
Refund admin configuration.

Refund requests and decisions are read-only in the admin: decisions are
resolved by donors or by the refund sweep, never edited by hand.
"""

from django.contrib import admin

from refunds.models import (
    DonorRefundDecision,
    PlatformContribution,
    RefundLineItem,
    RefundRequest,
)


class ReadOnlyAdmin(admin.ModelAdmin):
    def get_readonly_fields(self, request, obj=None):
        return [field.name for field in self.model._meta.fields]

    def has_add_permission(self, request) -> bool:
        return False

    def has_delete_permission(self, request, obj=None) -> bool:
        return False


class DecisionInline(admin.TabularInline):
    model = DonorRefundDecision
    extra = 0
    can_delete = False
    fields = ["donor", "refund_amount_cents", "status", "decision_type", "execution_attempts"]
    readonly_fields = fields
    show_change_link = True


@admin.register(RefundRequest)
class RefundRequestAdmin(ReadOnlyAdmin):
    list_display = [
        "id",
        "campaign",
        "milestone",
        "trigger_type",
        "status",
        "total_amount_cents",
        "total_donors_count",
        "decision_deadline",
    ]
    list_filter = ["trigger_type", "status"]
    search_fields = ["id", "campaign__title"]
    date_hierarchy = "created_at"
    inlines = [DecisionInline]


@admin.register(DonorRefundDecision)
class DonorRefundDecisionAdmin(ReadOnlyAdmin):
    list_display = [
        "id",
        "donor",
        "refund_amount_cents",
        "status",
        "decision_type",
        "decision_deadline",
        "execution_attempts",
    ]
    list_filter = ["status", "decision_type"]
    search_fields = ["id", "donor__email"]


@admin.register(RefundLineItem)
class RefundLineItemAdmin(ReadOnlyAdmin):
    list_display = [
        "id",
        "donation",
        "amount_cents",
        "provider_refund_id",
        "payout_attempt",
        "refunded_at",
    ]
    search_fields = ["id", "donation__id", "provider_refund_id"]


@admin.register(PlatformContribution)
class PlatformContributionAdmin(ReadOnlyAdmin):
    list_display = ["id", "donor", "source_campaign", "amount_cents", "created_at"]
    search_fields = ["donor__email"]
