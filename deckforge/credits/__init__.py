# ABOUTME: Exposes the credit ledger and billing policy constants for pipeline wiring.
# ABOUTME: Keeps a stable import location for reservation-based charging.

from deckforge.credits.costs import (
    CHAT_MESSAGE_COST,
    DECK_GENERATION_COST,
    FREE_CHAT_MESSAGES_PER_DECK,
    IMAGE_GENERATION_COST,
    OUTLINE_GENERATION_COST,
    SLIDE_MODIFICATION_COST,
    TIER_LIMITS,
    TierLimits,
)
from deckforge.credits.ledger import CreditAccount, CreditLedger

__all__ = [
    "CHAT_MESSAGE_COST",
    "DECK_GENERATION_COST",
    "FREE_CHAT_MESSAGES_PER_DECK",
    "IMAGE_GENERATION_COST",
    "OUTLINE_GENERATION_COST",
    "SLIDE_MODIFICATION_COST",
    "TIER_LIMITS",
    "CreditAccount",
    "CreditLedger",
    "TierLimits",
]
