"""
Django admin configuration for notifications.
"""

from django.contrib import admin

from notifications.models import Notification


@admin.register(Notification)
class NotificationAdmin(admin.ModelAdmin):
    list_display = ["event_type", "recipient", "is_read", "created_at"]
    list_filter = ["event_type", "is_read"]
    search_fields = ["recipient__email", "idempotency_key"]
    readonly_fields = ["recipient", "event_type", "data", "idempotency_key", "created_at"]
    ordering = ["-created_at"]
