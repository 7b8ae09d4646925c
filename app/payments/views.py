"""
Payment API views.

Endpoints:
    POST /api/v1/payments/donations/                     Start a checkout
    GET  /api/v1/payments/donations/{donation_id}/       Donation detail
    POST /api/v1/payments/donations/{donation_id}/verify/ Verify a payment

The Stripe webhook endpoint lives in payments.webhooks.views.

Related files:
    - serializers.py: Request/response serialization
    - services/: CheckoutService, DonationStateMachine
"""

from __future__ import annotations

from drf_spectacular.utils import extend_schema
from rest_framework import status
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from core.exceptions import PermissionDeniedError
from payments.exceptions import DonationNotFoundError
from payments.models import Donation
from payments.serializers import (
    CheckoutRequestSerializer,
    CheckoutResponseSerializer,
    DonationSerializer,
    VerifyResponseSerializer,
)
from payments.services import CheckoutService, DonationStateMachine
from payments.state_machines import DonationStatus


class DonationCheckoutView(APIView):
    """
    Start a donation.

    POST: Create a pending donation and its Stripe source

    URL: /api/v1/payments/donations/
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(
        summary="Start a donation checkout",
        description=(
            "Computes the fee breakdown, creates a pending donation and returns "
            "the provider URL where the donor authorizes the payment."
        ),
        tags=["Payments"],
        request=CheckoutRequestSerializer,
        responses={201: CheckoutResponseSerializer},
    )
    def post(self, request):
        """
        Request body:
            {
                "campaign_id": "uuid",
                "amount_cents": 100000,
                "cover_fees": true      // Optional
            }
        """
        serializer = CheckoutRequestSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        result = CheckoutService.start_checkout(
            donor=request.user,
            campaign_id=serializer.validated_data["campaign_id"],
            amount_cents=serializer.validated_data["amount_cents"],
            cover_fees=serializer.validated_data.get("cover_fees"),
        )
        checkout = result.data

        response = CheckoutResponseSerializer(
            {
                "donation_id": checkout.donation_id,
                "source_id": checkout.source_id,
                "redirect_url": checkout.redirect_url,
                "fees": checkout.fees.to_metadata(),
            }
        )
        return Response(response.data, status=status.HTTP_201_CREATED)


class DonationDetailView(APIView):
    """
    GET: Retrieve one of the current user's donations

    URL: /api/v1/payments/donations/{donation_id}/
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(
        summary="Get a donation",
        tags=["Payments"],
        responses={200: DonationSerializer},
    )
    def get(self, request, donation_id):
        donation = Donation.objects.filter(pk=donation_id).first()
        if donation is None:
            raise DonationNotFoundError(f"Donation {donation_id} not found")
        if donation.donor_id != request.user.pk and not request.user.is_platform_admin:
            raise PermissionDeniedError(
                "You can only view your own donations",
                error_code="NOT_DONATION_OWNER",
            )
        return Response(DonationSerializer(donation).data)


class DonationVerifyView(APIView):
    """
    Verify a donation after the donor returns from Stripe.

    POST: Query the source/charge status and drive the donation forward

    URL: /api/v1/payments/donations/{donation_id}/verify/
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(
        summary="Verify a donation payment",
        description=(
            "Synchronously advances the donation one step. Returns the "
            "resulting status and a message for the donor."
        ),
        tags=["Payments"],
        request=None,
        responses={200: VerifyResponseSerializer},
    )
    def post(self, request, donation_id):
        """
        Returns:
            {
                "success": true,
                "status": "completed",
                "message": "Payment completed successfully",
                "donation_id": "uuid"
            }
        """
        outcome = DonationStateMachine.verify(donation_id, request.user).data

        serializer = VerifyResponseSerializer(
            {
                "success": outcome.status != DonationStatus.FAILED,
                "status": outcome.status,
                "message": outcome.message,
                "donation_id": outcome.donation.id,
            }
        )
        return Response(serializer.data)
