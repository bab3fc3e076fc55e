# ABOUTME: Queues generated slides for accept, edit or reject decisions with optional auto-approval.
# ABOUTME: Applies edits and rejections to the deck store and records corrections for later prompt tuning.

from __future__ import annotations

from dataclasses import dataclass, field
import logging
import time
from typing import Callable, Literal

from deckforge.ports.protocol import DeckStore, EventSink
from deckforge.runtime.contracts import DECORATIVE_SLIDE_TYPES, ValidationItem, utc_now_rfc3339
from deckforge.runtime.errors import ValidationRequired
from deckforge.runtime.ttl_store import TtlStore


logger = logging.getLogger(__name__)

ValidationAction = Literal["accept", "edit", "reject"]
CorrectionCategory = Literal["style", "density", "tone", "concept"]

VALIDATION_EXEMPT_SLIDE_TYPES = DECORATIVE_SLIDE_TYPES
DEFAULT_PENDING_TTL_SEC = 15 * 60
DEFAULT_PENDING_MAX_ENTRIES = 5000
DEFAULT_AUTO_APPROVE_TTL_SEC = 24 * 60 * 60


@dataclass
class ValidationResponse:
    action: ValidationAction
    title: str | None = None
    body: str | None = None
    speaker_notes: str | None = None

    @property
    def has_edits(self) -> bool:
        return any(value is not None for value in (self.title, self.body, self.speaker_notes))


@dataclass
class ValidationOutcome:
    message: str
    slide_updated: bool
    item: ValidationItem | None = None


@dataclass
class CorrectionRecord:
    user_id: str
    deck_id: str
    slide_id: str
    category: CorrectionCategory
    original: str
    corrected: str
    created_at: str = field(default_factory=utc_now_rfc3339)


def infer_correction_category(item: ValidationItem, response: ValidationResponse) -> CorrectionCategory:
    if response.title is not None and response.title != item.title:
        return "style"
    if response.body is not None:
        original_words = len(item.body.split())
        edited_words = len(response.body.split())
        if edited_words < original_words * 0.7:
            return "density"
    if response.speaker_notes is not None and response.title is None and response.body is None:
        return "tone"
    return "style"


class ValidationGate:
    def __init__(
        self,
        store: DeckStore,
        *,
        events: EventSink | None = None,
        pending_ttl_sec: float = DEFAULT_PENDING_TTL_SEC,
        pending_max_entries: int = DEFAULT_PENDING_MAX_ENTRIES,
        auto_approve_ttl_sec: float = DEFAULT_AUTO_APPROVE_TTL_SEC,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._store = store
        self._events = events
        self._clock = clock
        self._pending: TtlStore[ValidationItem] = TtlStore(
            ttl_sec=pending_ttl_sec,
            max_entries=pending_max_entries,
            clock=clock,
        )
        self._auto_approve: TtlStore[bool] = TtlStore(
            ttl_sec=auto_approve_ttl_sec,
            max_entries=pending_max_entries,
            clock=clock,
        )
        self.corrections: list[CorrectionRecord] = []

    def queue_validation(self, item: ValidationItem) -> bool:
        """Queue a slide; returns True when a human has to confirm it."""
        if item.slide_type in VALIDATION_EXEMPT_SLIDE_TYPES:
            item.state = "ACCEPTED"
            return False
        if self.is_auto_approve_enabled(item.deck_id) and item.review_passed:
            logger.debug("Auto-approved slide %d of deck %s", item.slide_number, item.deck_id)
            item.state = "ACCEPTED"
            return False
        item.state = "PENDING"
        item.created_at_monotonic = self._clock()
        self._pending.set(f"{item.deck_id}:{item.slide_id}", item)
        return True

    def has_pending_validation(self, deck_id: str) -> bool:
        return bool(self._pending.items_with_prefix(f"{deck_id}:"))

    def get_next_validation(self, deck_id: str) -> ValidationItem | None:
        pending = self._pending.items_with_prefix(f"{deck_id}:")
        return pending[0][1] if pending else None

    def pending_validations(self, deck_id: str) -> list[ValidationItem]:
        return [item for _, item in self._pending.items_with_prefix(f"{deck_id}:")]

    async def process_validation(
        self,
        user_id: str,
        deck_id: str,
        slide_id: str,
        response: ValidationResponse,
    ) -> ValidationOutcome:
        key = f"{deck_id}:{slide_id}"
        item = self._pending.get(key)
        if item is None:
            return ValidationOutcome(message="No pending validation for this slide.", slide_updated=False)

        if response.action == "accept":
            self._pending.delete(key)
            item.state = "ACCEPTED"
            return ValidationOutcome(message=f"Slide {item.slide_number} accepted.", slide_updated=False, item=item)

        if response.action == "edit":
            if not response.has_edits:
                return ValidationOutcome(
                    message="Edit requires a new title, body or speaker notes.",
                    slide_updated=False,
                    item=item,
                )
            self._pending.delete(key)
            fields = {
                name: value
                for name, value in (
                    ("title", response.title),
                    ("body", response.body),
                    ("speaker_notes", response.speaker_notes),
                )
                if value is not None
            }
            slide = await self._store.update_slide(slide_id, **fields)
            if self._events is not None:
                await self._events.slide_updated(deck_id, slide)
            category = infer_correction_category(item, response)
            self.corrections.append(
                CorrectionRecord(
                    user_id=user_id,
                    deck_id=deck_id,
                    slide_id=slide_id,
                    category=category,
                    original=f"{item.title}\n{item.body}",
                    corrected=f"{response.title or item.title}\n{response.body or item.body}",
                )
            )
            item.state = "EDITED"
            logger.debug("Slide %d edited, correction logged as %s", item.slide_number, category)
            return ValidationOutcome(
                message=f"Slide {item.slide_number} updated with your edits.",
                slide_updated=True,
                item=item,
            )

        self._pending.delete(key)
        await self._store.delete_slide(slide_id)
        remaining = await self._store.list_slides(deck_id)
        for position, slide in enumerate(remaining, start=1):
            if slide.number != position:
                await self._store.update_slide(slide.id, number=position)
        if self._events is not None:
            await self._events.slide_removed(deck_id, slide_id)
        self.corrections.append(
            CorrectionRecord(
                user_id=user_id,
                deck_id=deck_id,
                slide_id=slide_id,
                category="concept",
                original=f"[{item.slide_type}] {item.title}\n{item.body}",
                corrected=f"[REJECTED] Slide {item.slide_number} ({item.slide_type}) removed by the user",
            )
        )
        item.state = "REJECTED"
        logger.debug("Slide %d rejected and removed", item.slide_number)
        return ValidationOutcome(
            message=f"Slide {item.slide_number} removed. Remaining slides renumbered.",
            slide_updated=True,
            item=item,
        )

    def set_auto_approve(self, deck_id: str, enabled: bool) -> None:
        self._auto_approve.set(deck_id, bool(enabled))
        logger.debug("Auto-approve %s for deck %s", "enabled" if enabled else "disabled", deck_id)

    def is_auto_approve_enabled(self, deck_id: str) -> bool:
        return bool(self._auto_approve.get(deck_id))

    def clear_pending_validations(self, deck_id: str) -> int:
        return self._pending.delete_prefix(f"{deck_id}:")

    def require_validated(self, deck_id: str) -> None:
        """Raise ValidationRequired while any slide of the deck awaits a decision."""
        item = self.get_next_validation(deck_id)
        if item is not None:
            raise ValidationRequired(deck_id=deck_id, slide_id=item.slide_id)
