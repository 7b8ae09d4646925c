"""
Django admin configuration for campaigns.

Ledger fields are read-only here: totals change only through
CampaignLedgerService.
"""

from django.contrib import admin

from campaigns.models import Campaign, Milestone


class MilestoneInline(admin.TabularInline):
    model = Milestone
    extra = 0
    readonly_fields = ("refund_initiated", "refund_initiated_at", "rejected_at")


@admin.register(Campaign)
class CampaignAdmin(admin.ModelAdmin):
    list_display = (
        "title",
        "status",
        "current_amount_cents",
        "goal_amount_cents",
        "donors_count",
        "end_date",
        "refund_initiated",
    )
    list_filter = ("status", "refund_initiated")
    search_fields = ("title",)
    readonly_fields = (
        "current_amount_cents",
        "donors_count",
        "refund_initiated",
        "refund_initiated_at",
    )
    inlines = [MilestoneInline]
