"""
Bearer-secret authentication for the scheduler endpoint.

The external scheduler (cron, Cloud Scheduler) calls
POST /api/v1/refunds/scheduler/run/ with

    Authorization: Bearer <SCHEDULER_SECRET>

A missing header yields 401 through IsScheduler; a wrong secret raises
AuthenticationFailed (401). Tokens are compared in constant time.
"""

from __future__ import annotations

import hmac

from django.conf import settings
from django.contrib.auth.models import AnonymousUser
from rest_framework.authentication import BaseAuthentication, get_authorization_header
from rest_framework.exceptions import AuthenticationFailed
from rest_framework.permissions import BasePermission

SCHEDULER_AUTH = "scheduler"


class SchedulerSecretAuthentication(BaseAuthentication):
    keyword = "Bearer"

    def authenticate(self, request):
        header = get_authorization_header(request).split()
        if not header or header[0].lower() != self.keyword.lower().encode():
            return None
        if len(header) != 2:
            raise AuthenticationFailed("Invalid scheduler authorization header.")

        expected = getattr(settings, "SCHEDULER_SECRET", "")
        token = header[1].decode(errors="replace")
        if not expected or not hmac.compare_digest(token, expected):
            raise AuthenticationFailed("Invalid scheduler token.")

        return (AnonymousUser(), SCHEDULER_AUTH)

    def authenticate_header(self, request):
        return self.keyword


class IsScheduler(BasePermission):
    """Allow only requests authenticated by SchedulerSecretAuthentication."""

    def has_permission(self, request, view):
        return request.auth == SCHEDULER_AUTH
