"""
Factory Boy factories for campaign models.

Usage:
    from campaigns.tests.factories import CampaignFactory, MilestoneFactory

    campaign = CampaignFactory(goal_amount_cents=1_000_000)
    milestone = MilestoneFactory(campaign=campaign, target_amount_cents=250_000)
"""

from datetime import timedelta

import factory
from django.utils import timezone

from authentication.models import UserRole
from authentication.tests.factories import UserFactory
from campaigns.models import Campaign, CampaignStatus, Milestone, MilestoneStatus


class CampaignFactory(factory.django.DjangoModelFactory):
    """Active campaign ending in 30 days with an empty ledger."""

    class Meta:
        model = Campaign

    charity = factory.SubFactory(UserFactory, role=UserRole.CHARITY)
    title = factory.Sequence(lambda n: f"Campaign {n}")
    goal_amount_cents = 1_000_000
    current_amount_cents = 0
    donors_count = 0
    end_date = factory.LazyFunction(lambda: timezone.now() + timedelta(days=30))
    status = CampaignStatus.ACTIVE


class MilestoneFactory(factory.django.DjangoModelFactory):
    class Meta:
        model = Milestone

    campaign = factory.SubFactory(CampaignFactory)
    title = factory.Sequence(lambda n: f"Milestone {n}")
    target_amount_cents = 250_000
    status = MilestoneStatus.PENDING
