# ABOUTME: Validates slide validation queueing, auto-approval and accept, edit and reject handling.
# ABOUTME: Ensures rejections renumber the remaining slides and edits record correction categories.

from __future__ import annotations

import pytest

from deckforge.gates.validation_gate import ValidationGate, ValidationResponse
from deckforge.ports.memory import InMemoryDeckStore, RecordingEventSink
from deckforge.runtime.contracts import Deck, Slide, ValidationItem
from deckforge.runtime.errors import ValidationRequired


async def _seed(store: InMemoryDeckStore, count: int) -> list[Slide]:
    store.add_deck(Deck(id="deck-1", user_id="u1"))
    slides = []
    for number in range(1, count + 1):
        slide = Slide(
            id=f"s{number}",
            deck_id="deck-1",
            number=number,
            title=f"Slide {number}",
            body="- one two three four five six seven eight nine ten",
            slide_type="CONTENT",
        )
        slides.append(await store.create_slide(slide))
    return slides


def _item(slide: Slide, *, review_passed: bool = True, slide_type: str | None = None) -> ValidationItem:
    return ValidationItem(
        deck_id=slide.deck_id,
        slide_id=slide.id,
        slide_number=slide.number,
        title=slide.title,
        body=slide.body,
        speaker_notes=slide.speaker_notes,
        slide_type=slide_type or slide.slide_type,
        review_passed=review_passed,
    )


@pytest.mark.asyncio
async def test_queue_orders_pending_items_and_exempts_decorative_slides() -> None:
    store = InMemoryDeckStore()
    slides = await _seed(store, 3)
    gate = ValidationGate(store)

    assert gate.queue_validation(_item(slides[0])) is True
    assert gate.queue_validation(_item(slides[1], slide_type="SECTION_DIVIDER")) is False
    assert gate.queue_validation(_item(slides[2])) is True

    assert gate.has_pending_validation("deck-1") is True
    assert gate.get_next_validation("deck-1").slide_id == "s1"
    assert [item.slide_id for item in gate.pending_validations("deck-1")] == ["s1", "s3"]


@pytest.mark.asyncio
async def test_auto_approve_skips_only_slides_that_passed_review() -> None:
    store = InMemoryDeckStore()
    slides = await _seed(store, 2)
    gate = ValidationGate(store)
    gate.set_auto_approve("deck-1", True)

    assert gate.queue_validation(_item(slides[0], review_passed=True)) is False
    assert gate.queue_validation(_item(slides[1], review_passed=False)) is True
    gate.set_auto_approve("deck-1", False)
    assert gate.is_auto_approve_enabled("deck-1") is False


@pytest.mark.asyncio
async def test_accept_clears_item_without_touching_slide() -> None:
    store = InMemoryDeckStore()
    slides = await _seed(store, 1)
    gate = ValidationGate(store)
    gate.queue_validation(_item(slides[0]))

    outcome = await gate.process_validation("u1", "deck-1", "s1", ValidationResponse(action="accept"))

    assert outcome.slide_updated is False
    assert outcome.item.state == "ACCEPTED"
    assert gate.has_pending_validation("deck-1") is False


@pytest.mark.asyncio
async def test_edit_updates_slide_and_records_density_correction() -> None:
    store = InMemoryDeckStore()
    slides = await _seed(store, 1)
    events = RecordingEventSink()
    gate = ValidationGate(store, events=events)
    gate.queue_validation(_item(slides[0]))

    outcome = await gate.process_validation(
        "u1",
        "deck-1",
        "s1",
        ValidationResponse(action="edit", body="- one two"),
    )

    assert outcome.slide_updated is True
    updated = await store.get_slide("s1")
    assert updated.body == "- one two"
    assert updated.content_hash
    assert events.events == [("updated", "deck-1", "s1")]
    assert gate.corrections[0].category == "density"


@pytest.mark.asyncio
async def test_edit_without_fields_keeps_item_pending() -> None:
    store = InMemoryDeckStore()
    slides = await _seed(store, 1)
    gate = ValidationGate(store)
    gate.queue_validation(_item(slides[0]))

    outcome = await gate.process_validation("u1", "deck-1", "s1", ValidationResponse(action="edit"))

    assert outcome.slide_updated is False
    assert gate.has_pending_validation("deck-1") is True


@pytest.mark.asyncio
async def test_reject_deletes_slide_and_renumbers_remaining() -> None:
    store = InMemoryDeckStore()
    slides = await _seed(store, 3)
    events = RecordingEventSink()
    gate = ValidationGate(store, events=events)
    gate.queue_validation(_item(slides[1]))

    outcome = await gate.process_validation("u1", "deck-1", "s2", ValidationResponse(action="reject"))

    assert outcome.slide_updated is True
    remaining = await store.list_slides("deck-1")
    assert [(slide.id, slide.number) for slide in remaining] == [("s1", 1), ("s3", 2)]
    assert ("removed", "deck-1", "s2") in events.events
    assert gate.corrections[0].category == "concept"


@pytest.mark.asyncio
async def test_unknown_slide_reports_nothing_pending() -> None:
    gate = ValidationGate(InMemoryDeckStore())

    outcome = await gate.process_validation("u1", "deck-1", "missing", ValidationResponse(action="accept"))

    assert outcome.message == "No pending validation for this slide."
    assert outcome.item is None


@pytest.mark.asyncio
async def test_require_validated_blocks_until_queue_is_clear() -> None:
    store = InMemoryDeckStore()
    slides = await _seed(store, 2)
    gate = ValidationGate(store)
    gate.require_validated("deck-1")
    gate.queue_validation(_item(slides[1]))

    with pytest.raises(ValidationRequired) as raised:
        gate.require_validated("deck-1")

    assert raised.value.slide_id == "s2"
    assert raised.value.code == "VALIDATION_REQUIRED"
    assert gate.clear_pending_validations("deck-1") == 1
    gate.require_validated("deck-1")
