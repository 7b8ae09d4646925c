"""
Fee calculation for donations.

calculate_fees() is a pure function: it takes the donation amount and an
explicit FeeConfig and returns the full breakdown. It is called exactly
once per donation, at checkout; the result is frozen onto the
PaymentSession and every later step (charging, crediting, refunding)
reads the stored breakdown instead of recomputing it.

All amounts are integers in the smallest currency unit. Percentages are
applied with Decimal arithmetic and rounded half-up to whole units.

Fee policies:
    platform_on_top (default)
        The provider fee comes out of the donation, the platform fee is
        charged on top of what the campaign receives.
            net      = gross - provider_fee
            platform = net * platform_pct
            total    = net + provider_fee + platform = gross + platform
    donor_covers_all
        The donor pays both fees on top; the campaign receives the gross.
            net      = gross
            total    = gross + provider_fee + platform
    campaign_absorbs
        The donor pays exactly the gross; both fees come out of it.
            total    = gross
            net      = gross - provider_fee - platform

In every policy: total_charge == net_amount + provider_fee + platform_fee.

Usage:
    from payments.fees import FeeConfig, calculate_fees

    breakdown = calculate_fees(100000, FeeConfig.from_settings())
    breakdown.net_amount    # 97000 with a 3000 flat provider fee
    breakdown.to_metadata() # stored on PaymentSession.fee_metadata
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

from django.conf import settings

from payments.exceptions import PaymentValidationError

PLATFORM_ON_TOP = "platform_on_top"
DONOR_COVERS_ALL = "donor_covers_all"
CAMPAIGN_ABSORBS = "campaign_absorbs"

FEE_POLICIES = (PLATFORM_ON_TOP, DONOR_COVERS_ALL, CAMPAIGN_ABSORBS)

MIN_PLATFORM_FEE_PERCENT = Decimal("0")
MAX_PLATFORM_FEE_PERCENT = Decimal("20")


@dataclass(frozen=True)
class FeeConfig:
    """
    Immutable fee configuration injected into calculate_fees().

    Attributes:
        platform_fee_percent: Platform fee, 0-20 (percent, not fraction)
        provider_fee_percent: Provider's percentage fee
        provider_fee_fixed: Provider's flat fee per charge
        policy: One of FEE_POLICIES
    """

    platform_fee_percent: Decimal
    provider_fee_percent: Decimal = Decimal("0")
    provider_fee_fixed: int = 0
    policy: str = PLATFORM_ON_TOP

    def __post_init__(self) -> None:
        pct = Decimal(str(self.platform_fee_percent))
        if not MIN_PLATFORM_FEE_PERCENT <= pct <= MAX_PLATFORM_FEE_PERCENT:
            raise PaymentValidationError(
                "Platform fee percentage must be between 0 and 20",
                error_code="INVALID_FEE_CONFIG",
                details={"platform_fee_percent": str(pct)},
            )
        if self.policy not in FEE_POLICIES:
            raise PaymentValidationError(
                f"Unknown fee policy '{self.policy}'",
                error_code="INVALID_FEE_CONFIG",
                details={"policy": self.policy},
            )
        if self.provider_fee_fixed < 0 or Decimal(str(self.provider_fee_percent)) < 0:
            raise PaymentValidationError(
                "Provider fees cannot be negative",
                error_code="INVALID_FEE_CONFIG",
            )
        # Normalize so callers may pass ints/floats/strings
        object.__setattr__(self, "platform_fee_percent", pct)
        object.__setattr__(
            self, "provider_fee_percent", Decimal(str(self.provider_fee_percent))
        )

    @classmethod
    def from_settings(cls) -> FeeConfig:
        """Build the configuration from Django settings."""
        return cls(
            platform_fee_percent=Decimal(str(settings.PLATFORM_FEE_PERCENT)),
            provider_fee_percent=Decimal(str(settings.PROVIDER_FEE_PERCENT)),
            provider_fee_fixed=int(settings.PROVIDER_FEE_FIXED_CENTS),
            policy=settings.FEE_POLICY,
        )


@dataclass(frozen=True)
class FeeBreakdown:
    """Computed fee breakdown for one donation."""

    gross_amount: int
    provider_fee: int
    platform_fee: int
    net_amount: int
    total_charge: int
    platform_fee_percent: str
    policy: str

    def to_metadata(self) -> dict[str, Any]:
        """JSON-safe representation stored on PaymentSession and Donation."""
        return asdict(self)

    @classmethod
    def from_metadata(cls, data: dict[str, Any]) -> FeeBreakdown:
        return cls(
            gross_amount=int(data["gross_amount"]),
            provider_fee=int(data["provider_fee"]),
            platform_fee=int(data["platform_fee"]),
            net_amount=int(data["net_amount"]),
            total_charge=int(data["total_charge"]),
            platform_fee_percent=str(data["platform_fee_percent"]),
            policy=data["policy"],
        )


def _percent_of(amount: int, percent: Decimal) -> int:
    value = Decimal(amount) * percent / Decimal(100)
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def _provider_fee(amount: int, config: FeeConfig) -> int:
    return _percent_of(amount, config.provider_fee_percent) + config.provider_fee_fixed


def calculate_fees(gross_amount: int, config: FeeConfig) -> FeeBreakdown:
    """
    Compute the fee breakdown for a donation.

    Args:
        gross_amount: Donor-facing donation amount (smallest currency unit)
        config: Fee configuration

    Returns:
        FeeBreakdown satisfying total_charge == net + provider + platform

    Raises:
        PaymentValidationError: Non-positive amount, or fees that consume
            the whole donation
    """
    if gross_amount <= 0:
        raise PaymentValidationError(
            "Donation amount must be positive",
            details={"amount": gross_amount},
        )

    if config.policy == PLATFORM_ON_TOP:
        provider_fee = _provider_fee(gross_amount, config)
        net_amount = gross_amount - provider_fee
        platform_fee = _percent_of(net_amount, config.platform_fee_percent)
    elif config.policy == DONOR_COVERS_ALL:
        provider_fee = _provider_fee(gross_amount, config)
        net_amount = gross_amount
        platform_fee = _percent_of(gross_amount, config.platform_fee_percent)
    else:
        provider_fee = _provider_fee(gross_amount, config)
        platform_fee = _percent_of(gross_amount, config.platform_fee_percent)
        net_amount = gross_amount - provider_fee - platform_fee

    if net_amount <= 0:
        raise PaymentValidationError(
            "Donation amount does not cover the processing fees",
            error_code="AMOUNT_BELOW_FEES",
            details={"amount": gross_amount, "provider_fee": provider_fee},
        )

    return FeeBreakdown(
        gross_amount=gross_amount,
        provider_fee=provider_fee,
        platform_fee=platform_fee,
        net_amount=net_amount,
        total_charge=net_amount + provider_fee + platform_fee,
        platform_fee_percent=str(config.platform_fee_percent),
        policy=config.policy,
    )
