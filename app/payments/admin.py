"""
Payment admin configuration.

Donations, payment sessions and webhook events are read-mostly in the
admin: state changes go through DonationStateMachine, never through
admin forms.
"""

from django.contrib import admin

from payments.models import Donation, PaymentSession, WebhookEvent

__all__ = [
    "DonationAdmin",
    "PaymentSessionAdmin",
    "WebhookEventAdmin",
]


class PaymentSessionInline(admin.StackedInline):
    model = PaymentSession
    extra = 0
    can_delete = False
    readonly_fields = [
        "provider_source_id",
        "status",
        "amount_cents",
        "currency",
        "fee_metadata",
        "redirect_url",
        "expires_at",
        "succeeded_at",
        "failed_at",
    ]


@admin.register(Donation)
class DonationAdmin(admin.ModelAdmin):
    """
    Admin configuration for Donation.

    Provides visibility into donations, their fee breakdown and whether
    the campaign ledger was credited.
    """

    list_display = [
        "id",
        "donor",
        "campaign",
        "amount_display",
        "status",
        "payment_method",
        "ledger_credited",
        "created_at",
    ]
    list_filter = ["status", "payment_method", "ledger_credited", "currency", "created_at"]
    search_fields = ["id", "provider_charge_id", "donor__email", "campaign__title"]
    readonly_fields = [
        "id",
        "status",
        "provider_charge_id",
        "ledger_credited",
        "credited_at",
        "completed_at",
        "failed_at",
        "refunded_at",
        "created_at",
        "updated_at",
        "version",
    ]
    date_hierarchy = "created_at"
    ordering = ["-created_at"]
    inlines = [PaymentSessionInline]

    fieldsets = (
        (
            None,
            {
                "fields": ("id", "donor", "campaign", "status", "payment_method"),
            },
        ),
        (
            "Amount",
            {
                "fields": ("amount_cents", "currency", "provider_charge_id"),
            },
        ),
        (
            "Ledger",
            {
                "fields": ("ledger_credited", "credited_at", "redirected_from"),
            },
        ),
        (
            "State Timestamps",
            {
                "fields": ("completed_at", "failed_at", "refunded_at"),
                "classes": ("collapse",),
            },
        ),
        (
            "Failure Info",
            {
                "fields": ("failure_reason",),
                "classes": ("collapse",),
            },
        ),
        (
            "Metadata",
            {
                "fields": ("metadata", "version"),
                "classes": ("collapse",),
            },
        ),
    )

    def amount_display(self, obj: Donation) -> str:
        """Display the amount formatted as currency."""
        return f"{obj.amount_cents / 100:.2f} {obj.currency.upper()}"

    amount_display.short_description = "Amount"

    def has_delete_permission(self, request, obj=None) -> bool:
        """Disable delete for donations (audit trail)."""
        return False


@admin.register(PaymentSession)
class PaymentSessionAdmin(admin.ModelAdmin):
    list_display = ["id", "donation", "provider_source_id", "status", "expires_at"]
    list_filter = ["status"]
    search_fields = ["id", "provider_source_id", "donation__id"]
    readonly_fields = [field.name for field in PaymentSession._meta.fields]
    ordering = ["-created_at"]

    def has_add_permission(self, request) -> bool:
        return False

    def has_delete_permission(self, request, obj=None) -> bool:
        return False


@admin.register(WebhookEvent)
class WebhookEventAdmin(admin.ModelAdmin):
    """
    Admin configuration for WebhookEvent.

    Provides visibility into webhook processing status.
    Webhook events are immutable once received.
    """

    list_display = [
        "id",
        "provider_event_id",
        "event_type",
        "status",
        "retry_count",
        "processed_at",
        "received_at",
    ]
    list_filter = ["status", "event_type", "received_at"]
    search_fields = ["id", "provider_event_id", "event_type"]
    readonly_fields = [
        "id",
        "created_at",
        "updated_at",
        "provider_event_id",
        "event_type",
        "payload",
        "received_at",
        "processed_at",
    ]
    date_hierarchy = "received_at"
    ordering = ["-received_at"]

    fieldsets = (
        (
            None,
            {
                "fields": ("id", "provider_event_id", "event_type", "status"),
            },
        ),
        (
            "Processing",
            {
                "fields": ("received_at", "processed_at", "retry_count"),
            },
        ),
        (
            "Error Info",
            {
                "fields": ("error_message",),
                "classes": ("collapse",),
            },
        ),
        (
            "Payload",
            {
                "fields": ("payload",),
                "classes": ("collapse",),
            },
        ),
    )

    def has_delete_permission(self, request, obj=None) -> bool:
        """Disable delete for webhook events (audit trail)."""
        return False

    def has_add_permission(self, request) -> bool:
        """Disable adding webhook events through admin."""
        return False
