# ABOUTME: Validates wave-based deck generation from an approved outline, including splits, gates and billing.
# ABOUTME: Ensures slide numbering stays contiguous and failures release the deck-generation reservation.

from __future__ import annotations

import json
import re

import pytest

from deckforge.app import DeckforgeApp, build_in_memory_app
from deckforge.runtime.contracts import Deck, GenerationRequest
from deckforge.runtime.errors import ProviderError
from deckforge.runtime.llm_client import ModelCompletion, StructuredGenerationUsage
from deckforge.runtime.settings import DeckforgeSettings, PipelineSettings


OUTLINE_MARKER = "Plan a structured outline"
SLIDE_MARKER = "You are a slide content writer"
REVIEW_MARKER = "You are a slide content reviewer"
STYLE_MARKER = "You are the style enforcer"
FACT_MARKER = "You verify the factual claims"
NARRATIVE_MARKER = "for story arc and flow"

_SLIDE_NUMBER = re.compile(r"Write slide (\d+) ")
DENSE_BODY = "\n".join(
    "- " + " ".join(f"metric{row}{word}" for word in range(14)) for row in range(4)
)


class _RoutingModelClient:
    model_provider = "fake"

    def __init__(self, routes: dict[str, object]) -> None:
        self._routes = routes
        self.user_prompts: dict[str, list[str]] = {marker: [] for marker in routes}

    async def complete(self, messages, *, model_name, json_mode=True, temperature=None, max_output_tokens=None, cache_hint=None):  # noqa: ANN001, ANN201
        del model_name, json_mode, temperature, max_output_tokens, cache_hint
        system = messages[0].content
        for marker, item in self._routes.items():
            if marker not in system:
                continue
            self.user_prompts[marker].append(messages[1].content)
            if callable(item):
                item = item(messages)
            if isinstance(item, Exception):
                raise item
            return ModelCompletion(text=json.dumps(item), usage=StructuredGenerationUsage(tokens_in=20, tokens_out=20))
        raise AssertionError(f"No fake route for prompt: {system[:60]}")


def outline_payload(types: list[str]) -> dict[str, object]:
    return {
        "title": "Acme Series A",
        "slides": [
            {
                "slideNumber": number,
                "title": f"Section {number}",
                "bulletPoints": [f"Point {number}a", f"Point {number}b"],
                "slideType": slide_type,
            }
            for number, slide_type in enumerate(types, start=1)
        ],
    }


def slide_writer(*, dense: tuple[int, ...] = (), invalid: tuple[int, ...] = ()):  # noqa: ANN201
    def _respond(messages) -> dict[str, object]:  # noqa: ANN001
        number = int(_SLIDE_NUMBER.search(messages[1].content).group(1))
        if number in invalid:
            return {"title": "", "body": ""}
        body = DENSE_BODY if number in dense else f"- Point {number}a\n- Point {number}b"
        return {
            "title": f"Written {number}",
            "body": body,
            "speakerNotes": f"Notes for {number}",
            "imagePromptHint": "city skyline at dusk",
        }

    return _respond


SPLIT_REVIEW = {
    "verdict": "NEEDS_SPLIT",
    "score": 0.3,
    "issues": [{"rule": "max_words", "severity": "error", "message": "56 words."}],
    "suggestedSplits": [
        {"title": "Part A", "body": "- metric first half"},
        {"title": "Part B", "body": "- metric second half"},
    ],
}


def _settings(**pipeline: object) -> DeckforgeSettings:
    fields: dict[str, object] = {
        "theme_gate_timeout_ms": 1,
        "layout_gate_timeout_ms": 1,
        "backoff_base_sec": 0.0,
        "structured_max_retries": 0,
        "reviewer_max_retries": 0,
    }
    fields.update(pipeline)
    return DeckforgeSettings(pipeline=PipelineSettings(**fields))


async def _collect(stream) -> list:  # noqa: ANN001
    return [event async for event in stream]


async def _app_with_outline(
    client: _RoutingModelClient,
    *,
    slide_count: int = 4,
    balance: int = 5,
    tier: str = "PRO",
    theme_id: str | None = "paper",
    quality: bool = False,
    **pipeline: object,
) -> DeckforgeApp:
    app = build_in_memory_app(_settings(**pipeline), client=client, with_quality_review=quality)
    app.ledger.open_account("u1", balance=balance, tier=tier)
    app.store.add_deck(Deck(id="deck-1", user_id="u1"))
    request = GenerationRequest(
        topic="Acme Series A",
        presentation_type="VC_PITCH",
        min_slides=slide_count,
        max_slides=slide_count,
        theme_id=theme_id,
    )
    events = await _collect(app.outlines.generate_outline("u1", "deck-1", request))
    assert events[-1].type == "done"
    return app


def _actions(events: list, name: str) -> list[dict[str, object]]:
    return [event.metadata for event in events if event.type == "action" and event.metadata["action"] == name]


@pytest.mark.asyncio
async def test_dense_slide_splits_into_two_with_contiguous_numbering() -> None:
    client = _RoutingModelClient(
        {
            OUTLINE_MARKER: outline_payload(["TITLE", "CONTENT", "CONTENT", "CTA"]),
            SLIDE_MARKER: slide_writer(dense=(2,)),
            REVIEW_MARKER: SPLIT_REVIEW,
        }
    )
    app = await _app_with_outline(client)

    events = await _collect(app.orchestrator.execute_outline("u1", "deck-1"))

    slides = await app.store.list_slides("deck-1")
    assert [slide.number for slide in slides] == [1, 2, 3, 4, 5]
    assert [slide.title for slide in slides] == ["Written 1", "Part A", "Part B", "Written 3", "Written 4"]
    assert len(client.user_prompts[REVIEW_MARKER]) == 1

    [complete] = _actions(events, "generation_complete")
    assert complete["slideCount"] == 5
    assert complete["splitsApplied"] == 1
    assert complete["imagesQueued"] == 4
    assert len(_actions(events, "slide_preview")) == 6
    assert len(_actions(events, "validation_request")) == 5
    assert events[-1].type == "done"
    assert events[-1].metadata == {"deckId": "deck-1", "slideCount": 5}

    deck = await app.store.get_deck("deck-1")
    assert deck.status == "COMPLETED"
    assert deck.title == "Acme Series A"
    assert await app.ledger.balance("u1") == 3
    added = [kind for kind, _, _ in app.events.events if kind == "added"]
    assert len(added) == 5
    statuses = [message.metadata.get("status") for message in await app.store.list_messages("deck-1")]
    assert "completed" in statuses
    assert app.outlines.has_pending_outline("deck-1") is False


@pytest.mark.asyncio
async def test_slides_within_a_wave_only_see_previous_waves() -> None:
    client = _RoutingModelClient(
        {
            OUTLINE_MARKER: outline_payload(["TITLE", "CASE_STUDY", "CASE_STUDY", "CTA"]),
            SLIDE_MARKER: slide_writer(),
        }
    )
    app = await _app_with_outline(client, wave_size=2)

    await _collect(app.orchestrator.execute_outline("u1", "deck-1"))

    prompts = {
        int(_SLIDE_NUMBER.search(prompt).group(1)): prompt for prompt in client.user_prompts[SLIDE_MARKER]
    }
    assert "(none yet)" in prompts[1]
    assert "(none yet)" in prompts[2]
    assert "1. Written 1\n2. Written 2" in prompts[3]
    assert "3. Written 3" not in prompts[4]
    assert "1. - Point 1a - Point 1b" in prompts[3]
    assert "Point 2b" in prompts[4]
    assert "Point 3a" not in prompts[4]


@pytest.mark.asyncio
async def test_split_beyond_ceiling_is_dropped_and_count_unchanged() -> None:
    client = _RoutingModelClient(
        {
            OUTLINE_MARKER: outline_payload(["TITLE", "CONTENT", "CONTENT", "CTA"]),
            SLIDE_MARKER: slide_writer(dense=(2,)),
            REVIEW_MARKER: SPLIT_REVIEW,
        }
    )
    app = await _app_with_outline(client, tier="FREE")

    events = await _collect(app.orchestrator.execute_outline("u1", "deck-1"))

    slides = await app.store.list_slides("deck-1")
    assert [slide.number for slide in slides] == [1, 2, 3, 4]
    assert slides[1].title == "Written 2"
    [complete] = _actions(events, "generation_complete")
    assert complete["splitsApplied"] == 0
    assert complete["imagesQueued"] == 0
    assert app.images.batches == []


@pytest.mark.asyncio
async def test_free_tier_truncates_outline_to_sample_preview() -> None:
    client = _RoutingModelClient(
        {
            OUTLINE_MARKER: outline_payload(["TITLE", "CASE_STUDY", "CASE_STUDY", "CASE_STUDY", "CASE_STUDY", "CTA"]),
            SLIDE_MARKER: slide_writer(),
        }
    )
    app = await _app_with_outline(client, slide_count=6, tier="FREE")

    events = await _collect(app.orchestrator.execute_outline("u1", "deck-1"))

    assert len(await app.store.list_slides("deck-1")) == 4
    assert any("sample preview" in event.content for event in events if event.type == "token")


@pytest.mark.asyncio
async def test_insufficient_credit_persists_nothing_and_keeps_outline_pending() -> None:
    client = _RoutingModelClient(
        {
            OUTLINE_MARKER: outline_payload(["TITLE", "CONTENT", "CONTENT", "CTA"]),
            SLIDE_MARKER: slide_writer(),
        }
    )
    app = await _app_with_outline(client, balance=1)

    events = await _collect(app.orchestrator.execute_outline("u1", "deck-1"))

    assert events[-1].type == "error"
    assert events[-1].metadata["code"] == "INSUFFICIENT_CREDIT"
    assert await app.store.list_slides("deck-1") == []
    assert client.user_prompts[SLIDE_MARKER] == []
    assert app.outlines.has_pending_outline("deck-1") is True
    assert (await app.store.get_deck("deck-1")).status == "EMPTY"


@pytest.mark.asyncio
async def test_invalid_slide_output_falls_back_to_outline_content() -> None:
    client = _RoutingModelClient(
        {
            OUTLINE_MARKER: outline_payload(["TITLE", "CASE_STUDY", "CASE_STUDY", "CTA"]),
            SLIDE_MARKER: slide_writer(invalid=(3,)),
        }
    )
    app = await _app_with_outline(client)

    events = await _collect(app.orchestrator.execute_outline("u1", "deck-1"))

    slides = await app.store.list_slides("deck-1")
    assert slides[2].title == "Section 3"
    assert slides[2].body == "- Point 3a\n- Point 3b"
    assert slides[2].content_hash
    assert any("used outline content" in event.content for event in events if event.type == "token")
    assert (await app.store.get_deck("deck-1")).status == "COMPLETED"


@pytest.mark.asyncio
async def test_theme_and_layout_gates_apply_user_choices() -> None:
    client = _RoutingModelClient(
        {
            OUTLINE_MARKER: outline_payload(["TITLE", "CONTENT", "CONTENT", "CTA"]),
            SLIDE_MARKER: slide_writer(),
        }
    )
    app = await _app_with_outline(
        client,
        theme_id=None,
        theme_gate_timeout_ms=5_000,
        layout_gate_timeout_ms=5_000,
    )

    events = []
    async for event in app.orchestrator.execute_outline("u1", "deck-1"):
        events.append(event)
        metadata = event.metadata or {}
        if metadata.get("action") == "theme_selection":
            assert metadata["options"] == ["midnight", "sunrise", "boardroom"]
            app.gate.respond("deck-1", "theme_selection", metadata["contextId"], "sunrise")
        elif metadata.get("action") == "layout_selection":
            assert metadata["options"] == ["CONTENT", "COMPARISON", "PROCESS"]
            choice = "COMPARISON" if metadata["slideNumber"] == 2 else metadata["default"]
            app.gate.respond("deck-1", "layout_selection", metadata["contextId"], choice)

    assert len(_actions(events, "layout_selection")) == 2
    assert (await app.store.get_deck("deck-1")).theme_id == "sunrise"
    slides = await app.store.list_slides("deck-1")
    assert [slide.slide_type for slide in slides] == ["TITLE", "COMPARISON", "CONTENT", "CTA"]


@pytest.mark.asyncio
async def test_unanswered_theme_gate_uses_first_recommendation() -> None:
    client = _RoutingModelClient(
        {
            OUTLINE_MARKER: outline_payload(["TITLE", "CASE_STUDY", "CASE_STUDY", "CTA"]),
            SLIDE_MARKER: slide_writer(),
        }
    )
    app = await _app_with_outline(client, theme_id=None)

    events = await _collect(app.orchestrator.execute_outline("u1", "deck-1"))

    [theme_request] = _actions(events, "theme_selection")
    assert theme_request["themes"] == ["Midnight", "Sunrise", "Boardroom"]
    assert (await app.store.get_deck("deck-1")).theme_id == "midnight"


@pytest.mark.asyncio
async def test_quality_pass_applies_style_fixes_in_place() -> None:
    def _style(messages) -> dict[str, object]:  # noqa: ANN001
        if "Slide 3 (" in messages[1].content:
            return {"verdict": "NEEDS_FIX", "score": 0.6, "issues": [], "rewrittenTitle": "Written 3, sharpened"}
        return {"verdict": "PASS", "score": 0.9, "issues": []}

    client = _RoutingModelClient(
        {
            OUTLINE_MARKER: outline_payload(["TITLE", "CASE_STUDY", "CASE_STUDY", "CTA"]),
            SLIDE_MARKER: slide_writer(),
            STYLE_MARKER: _style,
            FACT_MARKER: {"verdict": "VERIFIED", "score": 0.9, "claims": []},
            NARRATIVE_MARKER: {"overallScore": 0.85, "arcAssessment": "Coherent.", "issues": []},
        }
    )
    app = await _app_with_outline(client, quality=True)

    events = await _collect(app.orchestrator.execute_outline("u1", "deck-1"))

    slides = await app.store.list_slides("deck-1")
    assert slides[2].title == "Written 3, sharpened"
    assert ("updated", "deck-1", slides[2].id) in app.events.events
    [report] = [
        event.metadata
        for event in events
        if event.type == "progress" and event.metadata.get("step") == "quality_review" and event.metadata["status"] == "done"
    ]
    assert report["slidesFixed"] == 1
    assert report["passed"] is True


@pytest.mark.asyncio
async def test_missing_outline_is_reported() -> None:
    client = _RoutingModelClient({})
    app = build_in_memory_app(_settings(), client=client, with_quality_review=False)
    app.ledger.open_account("u1", balance=5)
    app.store.add_deck(Deck(id="deck-1", user_id="u1"))

    events = await _collect(app.orchestrator.execute_outline("u1", "deck-1"))

    assert events[-1].metadata["code"] == "OUTLINE_NOT_FOUND"
    assert await app.ledger.available_balance("u1") == 5


@pytest.mark.asyncio
async def test_unexpected_failure_releases_reservation_and_marks_deck_failed() -> None:
    client = _RoutingModelClient(
        {
            OUTLINE_MARKER: outline_payload(["TITLE", "CASE_STUDY", "CASE_STUDY", "CTA"]),
            SLIDE_MARKER: RuntimeError("renderer crashed"),
        }
    )
    app = await _app_with_outline(client)

    with pytest.raises(RuntimeError):
        await _collect(app.orchestrator.execute_outline("u1", "deck-1"))

    assert await app.ledger.balance("u1") == 4
    assert await app.ledger.available_balance("u1") == 4
    assert (await app.store.get_deck("deck-1")).status == "FAILED"


@pytest.mark.asyncio
async def test_image_queue_failure_still_completes_the_billed_deck() -> None:
    client = _RoutingModelClient(
        {
            OUTLINE_MARKER: outline_payload(["TITLE", "CASE_STUDY", "CASE_STUDY", "CTA"]),
            SLIDE_MARKER: slide_writer(),
        }
    )
    app = await _app_with_outline(client)

    async def _broken_enqueue(deck_id, user_id, slides):  # noqa: ANN001, ANN202
        raise RuntimeError("image worker unavailable")

    app.images.enqueue_batch = _broken_enqueue

    events = await _collect(app.orchestrator.execute_outline("u1", "deck-1"))

    assert events[-1].type == "done"
    [complete] = _actions(events, "generation_complete")
    assert complete["imagesQueued"] == 0
    assert (await app.store.get_deck("deck-1")).status == "COMPLETED"
    assert await app.ledger.balance("u1") == 3
    assert await app.ledger.available_balance("u1") == 3
    assert app.outlines.has_pending_outline("deck-1") is False


@pytest.mark.asyncio
async def test_reviewer_outage_keeps_slide_and_asks_for_validation() -> None:
    client = _RoutingModelClient(
        {
            OUTLINE_MARKER: outline_payload(["TITLE", "CONTENT", "CONTENT", "CTA"]),
            SLIDE_MARKER: slide_writer(dense=(2,)),
            REVIEW_MARKER: ProviderError("reviewer down", retryable=False),
        }
    )
    app = await _app_with_outline(client)
    app.validation.set_auto_approve("deck-1", True)

    events = await _collect(app.orchestrator.execute_outline("u1", "deck-1"))

    slides = await app.store.list_slides("deck-1")
    assert [slide.number for slide in slides] == [1, 2, 3, 4]
    assert slides[1].title == "Written 2"
    assert slides[1].body == DENSE_BODY
    assert len(client.user_prompts[REVIEW_MARKER]) == 1
    requests = _actions(events, "validation_request")
    assert [item["slideNumber"] for item in requests] == [2]
    [complete] = _actions(events, "generation_complete")
    assert complete["splitsApplied"] == 0
    assert events[-1].type == "done"


@pytest.mark.asyncio
async def test_split_parts_keep_notes_and_image_prompt_and_are_truncated() -> None:
    long_part = "\n".join(f"- detail {index}" for index in range(1, 7))
    client = _RoutingModelClient(
        {
            OUTLINE_MARKER: outline_payload(["TITLE", "CONTENT", "CONTENT", "CTA"]),
            SLIDE_MARKER: slide_writer(dense=(2,)),
            REVIEW_MARKER: {
                **SPLIT_REVIEW,
                "suggestedSplits": [
                    {"title": "Part A", "body": "- metric first half"},
                    {"title": "Part B", "body": long_part},
                ],
            },
        }
    )
    app = await _app_with_outline(client)

    await _collect(app.orchestrator.execute_outline("u1", "deck-1"))

    slides = await app.store.list_slides("deck-1")
    part_a, part_b = slides[1], slides[2]
    assert (part_a.title, part_b.title) == ("Part A", "Part B")
    assert part_a.speaker_notes == "Notes for 2"
    assert part_a.image_prompt == "city skyline at dusk"
    assert part_b.image_prompt == "city skyline at dusk"
    assert part_b.body == "\n".join(f"- detail {index}" for index in range(1, 5))
    assert part_b.speaker_notes == "Notes for 2\n\nAdditional details: detail 5; detail 6"
    assert part_b.content_hash
