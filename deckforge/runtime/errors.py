# ABOUTME: Defines the typed failure taxonomy raised across generation, billing and review paths.
# ABOUTME: Each error carries a stable machine-readable code surfaced on error stream events.

from __future__ import annotations

from typing import Any


class DeckforgeError(RuntimeError):
    code = "INTERNAL_ERROR"


class ContractViolation(DeckforgeError):
    """Model output stayed unparseable or invalid after every allowed attempt."""

    code = "MODEL_OUTPUT_INVALID"

    def __init__(
        self,
        message: str,
        *,
        attempt_count: int,
        last_output: str = "",
        errors: list[str] | None = None,
        usage: Any = None,
    ) -> None:
        super().__init__(message)
        self.attempt_count = attempt_count
        self.last_output = last_output
        self.errors = list(errors or [])
        self.usage = usage


class ProviderError(DeckforgeError):
    """Timeout, rate limit or transport failure talking to the model provider."""

    code = "PROVIDER_ERROR"

    def __init__(self, message: str, *, retryable: bool = True, status_code: int | None = None) -> None:
        super().__init__(message)
        self.retryable = retryable
        self.status_code = status_code


class InsufficientCredit(DeckforgeError):
    code = "INSUFFICIENT_CREDIT"

    def __init__(self, *, user_id: str, required: int, available: int) -> None:
        super().__init__(f"Insufficient credits: {required} required, {available} available.")
        self.user_id = user_id
        self.required = required
        self.available = available


class AccountNotFound(DeckforgeError):
    code = "ACCOUNT_NOT_FOUND"


class ReservationNotFound(DeckforgeError):
    code = "RESERVATION_NOT_FOUND"


class ValidationRequired(DeckforgeError):
    """A slide is waiting on human confirmation. This is a pause, not a failure."""

    code = "VALIDATION_REQUIRED"

    def __init__(self, *, deck_id: str, slide_id: str) -> None:
        super().__init__(f"Slide {slide_id} in deck {deck_id} is awaiting validation.")
        self.deck_id = deck_id
        self.slide_id = slide_id


class ReviewerFailure(DeckforgeError):
    code = "REVIEWER_FAILURE"


class SplitBudgetExhausted(DeckforgeError):
    code = "SPLIT_BUDGET_EXHAUSTED"

    def __init__(self, *, slide_number: int, current_total: int, parts: int, ceiling: int) -> None:
        super().__init__(
            f"Split of slide {slide_number} into {parts} parts would exceed the ceiling "
            f"({current_total + parts - 1} > {ceiling})."
        )
        self.slide_number = slide_number
        self.current_total = current_total
        self.parts = parts
        self.ceiling = ceiling


class OutlineNotFound(DeckforgeError):
    code = "OUTLINE_NOT_FOUND"


class DeckNotFound(DeckforgeError):
    code = "DECK_NOT_FOUND"


class StateTransitionError(DeckforgeError):
    code = "INVALID_STATE_TRANSITION"
