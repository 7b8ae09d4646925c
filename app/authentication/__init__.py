"""
Authentication application.

Provides the email-identified User model and the platform role
(donor, charity, admin) used by permission checks in the refund workflow.

Usage:
    from authentication.models import User, UserRole
"""
