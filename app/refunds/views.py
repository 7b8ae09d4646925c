"""
Refund API views.

Endpoints:
    GET  /api/v1/refunds/decisions/                 Current donor's open decisions
    POST /api/v1/refunds/decisions/{decision_id}/   Submit a decision
    POST /api/v1/refunds/scheduler/run/             Run the refund sweep (scheduler)

Related files:
    - serializers.py: Request/response serialization
    - authentication.py: Scheduler bearer-secret authentication
    - services/: RefundDecisionEngine, RefundSweep
"""

from __future__ import annotations

from drf_spectacular.utils import OpenApiParameter, extend_schema
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from refunds.authentication import IsScheduler, SchedulerSecretAuthentication
from refunds.models import DecisionStatus, DonorRefundDecision
from refunds.serializers import (
    DonorRefundDecisionSerializer,
    SubmitDecisionResponseSerializer,
    SubmitDecisionSerializer,
    SweepResponseSerializer,
)
from refunds.services import RefundDecisionEngine, RefundSweep


class DecisionListView(APIView):
    """
    GET: List the current donor's refund decisions

    URL: /api/v1/refunds/decisions/
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(
        summary="List my refund decisions",
        description="Pending decisions by default; pass ?status=all for every decision.",
        tags=["Refunds"],
        parameters=[OpenApiParameter("status", str, required=False)],
        responses={200: DonorRefundDecisionSerializer(many=True)},
    )
    def get(self, request):
        decisions = DonorRefundDecision.objects.filter(donor=request.user).select_related(
            "refund_request"
        )
        status_filter = request.query_params.get("status", DecisionStatus.PENDING)
        if status_filter != "all":
            decisions = decisions.filter(status=status_filter)

        return Response(DonorRefundDecisionSerializer(decisions, many=True).data)


class DecisionSubmitView(APIView):
    """
    POST: Submit a decision for one of the donor's refunds

    URL: /api/v1/refunds/decisions/{decision_id}/
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(
        summary="Submit a refund decision",
        description=(
            "Refund, redirect to another campaign or donate to the platform. "
            "Rejected once the decision was made or its deadline passed."
        ),
        tags=["Refunds"],
        request=SubmitDecisionSerializer,
        responses={200: SubmitDecisionResponseSerializer},
    )
    def post(self, request, decision_id):
        """
        Request body:
            {
                "decision_type": "redirect_to_campaign",
                "redirect_campaign_id": "uuid"     // redirect only
            }
        """
        serializer = SubmitDecisionSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        outcome = RefundDecisionEngine.submit_decision(
            decision_id,
            request.user,
            serializer.validated_data["decision_type"],
            serializer.validated_data.get("redirect_campaign_id"),
        ).data

        response = SubmitDecisionResponseSerializer(
            {
                "success": True,
                "message": outcome.message,
                "decision": outcome.decision,
            }
        )
        return Response(response.data)


class RefundSchedulerView(APIView):
    """
    POST: Run the refund sweep now

    URL: /api/v1/refunds/scheduler/run/

    Authenticated with the SCHEDULER_SECRET bearer token, not a user JWT.
    Returns 409 when a sweep is already running.
    """

    authentication_classes = [SchedulerSecretAuthentication]
    permission_classes = [IsScheduler]

    @extend_schema(
        summary="Run the refund sweep",
        tags=["Refunds"],
        request=None,
        responses={200: SweepResponseSerializer},
    )
    def post(self, request):
        summary = RefundSweep.run().data

        response = SweepResponseSerializer(
            {
                "success": True,
                "processed_count": summary.processed_count,
                "campaigns": summary.campaigns,
                "auto_refunded_count": summary.auto_refunded_count,
                "timestamp": summary.timestamp,
                "duration_ms": summary.duration_ms,
            }
        )
        return Response(response.data)
