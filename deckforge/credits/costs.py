# ABOUTME: Declares per-operation credit costs, free allowances and subscription tier limits.
# ABOUTME: Keeps billing policy in one place so the ledger and pipeline share the same numbers.

from __future__ import annotations

from dataclasses import dataclass
import math
from typing import Literal


Tier = Literal["FREE", "STARTER", "PRO", "ENTERPRISE"]

OUTLINE_GENERATION_COST = 1
DECK_GENERATION_COST = 1
SLIDE_MODIFICATION_COST = 1
IMAGE_GENERATION_COST = 1
CHAT_MESSAGE_COST = 1
FREE_CHAT_MESSAGES_PER_DECK = 10
FREE_SIGNUP_CREDITS = 5


@dataclass(frozen=True)
class TierLimits:
    max_slides_per_deck: int | None
    images_allowed: bool


TIER_LIMITS: dict[str, TierLimits] = {
    "FREE": TierLimits(max_slides_per_deck=4, images_allowed=False),
    "STARTER": TierLimits(max_slides_per_deck=15, images_allowed=True),
    "PRO": TierLimits(max_slides_per_deck=None, images_allowed=True),
    "ENTERPRISE": TierLimits(max_slides_per_deck=None, images_allowed=True),
}

DEFAULT_SLIDE_RANGES: dict[str, tuple[int, int]] = {
    "STANDARD": (8, 16),
    "VC_PITCH": (10, 14),
    "TECHNICAL": (12, 18),
    "EXECUTIVE": (8, 12),
}


def tier_limits(tier: str) -> TierLimits:
    return TIER_LIMITS.get(str(tier).upper(), TIER_LIMITS["FREE"])


def slide_range(presentation_type: str, *, min_slides: int | None = None, max_slides: int | None = None) -> tuple[int, int]:
    default_min, default_max = DEFAULT_SLIDE_RANGES.get(presentation_type, DEFAULT_SLIDE_RANGES["STANDARD"])
    low = min_slides if min_slides is not None else default_min
    high = max_slides if max_slides is not None else default_max
    if low < 1 or high < low:
        raise ValueError(f"Invalid slide range: {low}-{high}.")
    return low, high


def slide_ceiling(planned_count: int, *, headroom: float, tier_max: int | None) -> int:
    """Upper bound on slides once split insertions are counted."""
    ceiling = math.ceil(planned_count * headroom)
    if tier_max is not None:
        ceiling = min(ceiling, tier_max)
    return ceiling


def chat_message_cost(user_message_count: int) -> int:
    """Cost of the next chat reply given how many user messages the deck already holds."""
    return CHAT_MESSAGE_COST if user_message_count > FREE_CHAT_MESSAGES_PER_DECK else 0
