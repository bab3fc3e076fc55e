# ABOUTME: Re-exports runtime contracts, errors and the structured-generation entrypoint.
# ABOUTME: Keeps imports stable for pipeline modules that only need the shared primitives.

from deckforge.runtime.contracts import (
    Deck,
    GenerationRequest,
    Outline,
    OutlineSlide,
    ReviewResult,
    Slide,
    StreamEvent,
)
from deckforge.runtime.errors import (
    ContractViolation,
    DeckforgeError,
    InsufficientCredit,
    ProviderError,
    ReviewerFailure,
    SplitBudgetExhausted,
    ValidationRequired,
)
from deckforge.runtime.llm_loop import complete_structured

__all__ = [
    "ContractViolation",
    "Deck",
    "DeckforgeError",
    "GenerationRequest",
    "InsufficientCredit",
    "Outline",
    "OutlineSlide",
    "ProviderError",
    "ReviewResult",
    "ReviewerFailure",
    "Slide",
    "SplitBudgetExhausted",
    "StreamEvent",
    "ValidationRequired",
    "complete_structured",
]
