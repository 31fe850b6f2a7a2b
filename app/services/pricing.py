"""
Pricing rules
Platform fee and companion payout, all amounts in cents
"""

from decimal import Decimal, ROUND_FLOOR
from typing import Dict

from app.core.config import settings

def platform_fee(base_cents: int) -> int:
    """Flat platform fee: small up to and including the threshold, large above it"""
    if base_cents <= settings.PLATFORM_FEE_THRESHOLD_CENTS:
        return settings.PLATFORM_FEE_SMALL_CENTS
    return settings.PLATFORM_FEE_LARGE_CENTS

def client_price(base_cents: int) -> int:
    """Price the client pays for a companion's base price"""
    return base_cents + platform_fee(base_cents)

def companion_base_from_client_price(price_cents: int) -> int:
    """
    Invert client_price

    A base at the threshold is charged the small fee, so any price up to
    threshold + small fee came from the small tier.
    """
    if price_cents <= settings.PLATFORM_FEE_THRESHOLD_CENTS + settings.PLATFORM_FEE_SMALL_CENTS:
        return price_cents - settings.PLATFORM_FEE_SMALL_CENTS
    return price_cents - settings.PLATFORM_FEE_LARGE_CENTS

def companion_payout(base_cents: int) -> int:
    """Companion share of a base price, rounded down"""
    payout = Decimal(base_cents) * Decimal(str(settings.COMPANION_PAYOUT_RATE))
    return int(payout.to_integral_value(rounding=ROUND_FLOOR))

def quote(base_cents: int) -> Dict[str, int]:
    """Full price breakdown for a base price"""
    return {
        "base_cents": base_cents,
        "platform_fee_cents": platform_fee(base_cents),
        "client_price_cents": client_price(base_cents),
        "companion_payout_cents": companion_payout(base_cents),
    }
