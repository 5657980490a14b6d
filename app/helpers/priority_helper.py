# app/helpers/priority_helper.py

from typing import Optional

BLACK_PREMIUM = "Black Premium"
PREMIUM = "Premium"
BASIC = "Basic"
FREE = "Free"

TOP_PRIORITY = 1
UNRECOGNIZED_PRIORITY = 5

# Substring match order matters: "black premium" also contains "premium"
_TIER_KEYWORDS = (
    ("black", 1),
    ("premium", 2),
    ("basic", 3),
    ("free", 4),
)

_TIER_BY_PRIORITY = {
    1: BLACK_PREMIUM,
    2: PREMIUM,
    3: BASIC,
    4: FREE,
}

# Coins credited to a customer whose booking is displaced, by victim tier
COMPENSATION_COINS = {
    BLACK_PREMIUM: 15,
    PREMIUM: 10,
    BASIC: 3,
    FREE: 0,
}

# Victim search order: lowest priority group first, Black Premium never
DISPLACEABLE_TIERS = (FREE, BASIC, PREMIUM)


def base_priority(tier_label: Optional[str]) -> int:
    if not tier_label or not tier_label.strip():
        return 3
    lowered = tier_label.lower()
    for keyword, value in _TIER_KEYWORDS:
        if keyword in lowered:
            return value
    return UNRECOGNIZED_PRIORITY


def priority(tier_label: Optional[str], is_offline: bool = False) -> float:
    """
    Total-ordered scheduling priority, lower is more important.

    Offline bookings sit half a step behind online bookings of the same tier.
    """
    value = base_priority(tier_label)
    return value + 0.5 if is_offline else value


def booking_priority(booking: dict) -> float:
    return priority(booking.get("appointment_type"), bool(booking.get("is_offline_booking")))


def canonical_tier(tier_label: Optional[str]) -> Optional[str]:
    """Named tier a label falls into, None for unrecognized labels"""
    return _TIER_BY_PRIORITY.get(base_priority(tier_label))


def is_top_tier(tier_label: Optional[str]) -> bool:
    return base_priority(tier_label) == TOP_PRIORITY


def compensation_for(tier_label: Optional[str]) -> int:
    return COMPENSATION_COINS.get(canonical_tier(tier_label), 0)
