"""
Webhook event handlers for Stripe events.

This module provides a handler registry and the handlers for the
source and charge events a donation goes through.

Handled events:
    source.chargeable   -> DonationStateMachine.advance (creates the charge)
    source.failed       -> donation failed
    source.canceled     -> donation failed
    charge.succeeded    -> donation completed, campaign credited once
    charge.failed       -> donation failed

Every handler resolves the donation from the object's metadata
(donation_id, set at checkout) and falls back to the PaymentSession
holding the source id. Business-level idempotency lives in the state
machine, so a handler can safely run for an already settled donation.

Usage:
    from payments.webhooks.handlers import dispatch_webhook, register_handler

    # Register a custom handler
    @register_handler("custom.event")
    def handle_custom_event(webhook_event: WebhookEvent) -> ServiceResult:
        ...

    # Dispatch an event to its handler
    result = dispatch_webhook(webhook_event)
"""

from __future__ import annotations

import logging
from typing import Any, Callable

from core.services import ServiceResult

from payments.models import Donation, PaymentSession, WebhookEvent
from payments.services.donation_state_machine import DonationStateMachine

logger = logging.getLogger(__name__)


# =============================================================================
# Handler Registry
# =============================================================================


# Maps event type strings to handler functions
WEBHOOK_HANDLERS: dict[str, Callable[[WebhookEvent], ServiceResult]] = {}


def register_handler(event_type: str) -> Callable:
    """
    Decorator to register a webhook event handler.

    Usage:
        @register_handler("source.chargeable")
        def handle_source_chargeable(webhook_event: WebhookEvent) -> ServiceResult:
            ...

    Args:
        event_type: The Stripe event type (e.g., "charge.succeeded")

    Returns:
        Decorator function that registers the handler
    """

    def decorator(func: Callable[[WebhookEvent], ServiceResult]) -> Callable:
        WEBHOOK_HANDLERS[event_type] = func
        logger.debug(f"Registered webhook handler for {event_type}")
        return func

    return decorator


def dispatch_webhook(webhook_event: WebhookEvent) -> ServiceResult:
    """
    Dispatch a webhook event to the appropriate handler.

    Unknown event types are acknowledged with a success result so they
    are marked processed and never retried.
    """
    handler = WEBHOOK_HANDLERS.get(webhook_event.event_type)

    if not handler:
        logger.info(
            f"No handler registered for event type: {webhook_event.event_type}",
            extra={"provider_event_id": webhook_event.provider_event_id},
        )
        return ServiceResult.success(None)

    logger.info(
        f"Dispatching {webhook_event.event_type} to handler",
        extra={"provider_event_id": webhook_event.provider_event_id},
    )

    return handler(webhook_event)


# =============================================================================
# Donation Resolution
# =============================================================================


def _source_id_of(obj: dict[str, Any]) -> str | None:
    if obj.get("object") == "source":
        return obj.get("id")
    source = obj.get("source")
    if isinstance(source, dict):
        return source.get("id")
    if isinstance(source, str):
        return source
    return (obj.get("metadata") or {}).get("source_id")


def resolve_donation_id(webhook_event: WebhookEvent) -> str | None:
    """
    Find the donation an event refers to.

    Checks metadata.donation_id first, then the payment session that
    owns the event's source.
    """
    obj = webhook_event.get_object()

    donation_id = (obj.get("metadata") or {}).get("donation_id")
    if donation_id and Donation.objects.filter(pk=donation_id).exists():
        return str(donation_id)

    source_id = _source_id_of(obj)
    if source_id:
        session = (
            PaymentSession.objects.filter(provider_source_id=source_id)
            .only("donation_id")
            .first()
        )
        if session is not None:
            return str(session.donation_id)

    return None


def _donation_not_found(webhook_event: WebhookEvent) -> ServiceResult:
    logger.error(
        f"{webhook_event.event_type}: no donation for event object",
        extra={
            "provider_event_id": webhook_event.provider_event_id,
            "object_id": webhook_event.get_object_id(),
        },
    )
    return ServiceResult.failure(
        "No donation found for webhook object",
        error_code="DONATION_NOT_FOUND",
    )


# =============================================================================
# Source Handlers
# =============================================================================


@register_handler("source.chargeable")
def handle_source_chargeable(webhook_event: WebhookEvent) -> ServiceResult:
    """
    Handle a source the donor has authorized.

    Creates the charge for the stored total. For a donation that is
    already completed this only makes sure the campaign was credited.
    """
    donation_id = resolve_donation_id(webhook_event)
    if donation_id is None:
        return _donation_not_found(webhook_event)

    logger.info(
        "Processing source.chargeable",
        extra={
            "provider_event_id": webhook_event.provider_event_id,
            "donation_id": donation_id,
            "source_id": webhook_event.get_object_id(),
        },
    )
    return DonationStateMachine.advance(donation_id, source_status="chargeable")


@register_handler("source.failed")
@register_handler("source.canceled")
def handle_source_failed(webhook_event: WebhookEvent) -> ServiceResult:
    """Handle a source that can no longer be charged."""
    donation_id = resolve_donation_id(webhook_event)
    if donation_id is None:
        return _donation_not_found(webhook_event)

    source_status = webhook_event.get_object().get("status") or (
        "canceled" if webhook_event.event_type == "source.canceled" else "failed"
    )
    logger.info(
        f"Processing {webhook_event.event_type}",
        extra={
            "provider_event_id": webhook_event.provider_event_id,
            "donation_id": donation_id,
            "source_status": source_status,
        },
    )
    return DonationStateMachine.advance(donation_id, source_status=source_status)


# =============================================================================
# Charge Handlers
# =============================================================================


@register_handler("charge.succeeded")
def handle_charge_succeeded(webhook_event: WebhookEvent) -> ServiceResult:
    """
    Handle a successful charge.

    The charge is normally created by the source.chargeable handler; this
    event confirms it, or completes the donation if that handler's
    response was lost.
    """
    donation_id = resolve_donation_id(webhook_event)
    if donation_id is None:
        return _donation_not_found(webhook_event)

    charge_id = webhook_event.get_object_id()
    logger.info(
        "Processing charge.succeeded",
        extra={
            "provider_event_id": webhook_event.provider_event_id,
            "donation_id": donation_id,
            "charge_id": charge_id,
        },
    )
    return DonationStateMachine.record_charge_result(
        donation_id,
        charge_id=charge_id,
        succeeded=True,
    )


@register_handler("charge.failed")
def handle_charge_failed(webhook_event: WebhookEvent) -> ServiceResult:
    """Handle a failed charge; the failure message is shown to the donor."""
    donation_id = resolve_donation_id(webhook_event)
    if donation_id is None:
        return _donation_not_found(webhook_event)

    obj = webhook_event.get_object()
    logger.info(
        "Processing charge.failed",
        extra={
            "provider_event_id": webhook_event.provider_event_id,
            "donation_id": donation_id,
            "charge_id": obj.get("id"),
            "failure_code": obj.get("failure_code"),
        },
    )
    return DonationStateMachine.record_charge_result(
        donation_id,
        charge_id=obj.get("id"),
        succeeded=False,
        failure_message=obj.get("failure_message"),
    )
