# ABOUTME: Validates chat routing across slash commands, outline approval and revision, validation answers and replies.
# ABOUTME: Drives the in-memory app end to end with a scripted fake model client.

from __future__ import annotations

import json

import pytest

from deckforge.app import DeckforgeApp, build_in_memory_app
from deckforge.chat.dispatcher import OUTLINE_NUDGE
from deckforge.runtime.contracts import Deck, DeckMessage, Slide, StrategyProfile
from deckforge.runtime.llm_client import ModelCompletion, StructuredGenerationUsage
from deckforge.runtime.settings import DeckforgeSettings, PipelineSettings


OUTLINE_MARKER = "Plan a structured outline"
EDIT_MARKER = "revising one slide"
SLIDE_MARKER = "You are a slide content writer"
CHAT_MARKER = "You are a presentation assistant"


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
            return ModelCompletion(text=json.dumps(item), usage=StructuredGenerationUsage())
        raise AssertionError(f"No fake route for prompt: {system[:60]}")


def outline_payload(count: int) -> dict[str, object]:
    slides = []
    for number in range(1, count + 1):
        slide_type = "TITLE" if number == 1 else "CTA" if number == count else "CASE_STUDY"
        slides.append(
            {
                "slideNumber": number,
                "title": f"Section {number}",
                "bulletPoints": [f"Point {number}"],
                "slideType": slide_type,
            }
        )
    return {"title": "Acme Logistics", "slides": slides}


def _slide(messages) -> dict[str, object]:  # noqa: ANN001
    user_prompt = messages[1].content
    number = user_prompt.split("Write slide ", 1)[1].split(" ", 1)[0]
    return {"title": f"Written {number}", "body": f"- Point {number}"}


def _routes() -> dict[str, object]:
    return {
        OUTLINE_MARKER: outline_payload(10),
        EDIT_MARKER: {
            "slideNumber": 3,
            "title": "Traction in numbers",
            "bulletPoints": ["$2M ARR"],
            "slideType": "DATA_METRICS",
        },
        SLIDE_MARKER: _slide,
        CHAT_MARKER: {"reply": "Try a darker palette for the title slide."},
    }


def _app(client: _RoutingModelClient, *, balance: int = 10) -> DeckforgeApp:
    settings = DeckforgeSettings(
        pipeline=PipelineSettings(
            theme_gate_timeout_ms=1,
            layout_gate_timeout_ms=1,
            backoff_base_sec=0.0,
            structured_max_retries=0,
        )
    )
    app = build_in_memory_app(settings, client=client, with_quality_review=False)
    app.ledger.open_account("u1", balance=balance, tier="PRO")
    app.store.add_deck(Deck(id="deck-1", user_id="u1"))
    return app


async def _send(app: DeckforgeApp, text: str) -> list:
    return [event async for event in app.dispatcher.handle_message("u1", "deck-1", text)]


def _text(events: list) -> str:
    return "".join(event.content for event in events if event.type == "token")


@pytest.mark.asyncio
async def test_generation_request_then_approval_builds_the_deck() -> None:
    client = _RoutingModelClient(_routes())
    app = _app(client)

    outline_events = await _send(app, "Create a pitch deck about Acme logistics")
    assert outline_events[-2].metadata["action"] == "outline_ready"
    assert app.outlines.has_pending_outline("deck-1") is True

    deck_events = await _send(app, "Looks good!")

    assert deck_events[-1].type == "done"
    assert deck_events[-1].metadata["slideCount"] == 10
    assert len(await app.store.list_slides("deck-1")) == 10
    assert await app.ledger.balance("u1") == 8
    roles = [message.role for message in await app.store.list_messages("deck-1")]
    assert roles.count("user") == 2


@pytest.mark.asyncio
async def test_first_message_on_empty_deck_is_treated_as_topic() -> None:
    client = _RoutingModelClient(_routes())
    app = _app(client)

    events = await _send(app, "Acme logistics for investors")

    assert events[-1].type == "done"
    assert client.user_prompts[OUTLINE_MARKER] == ["Topic: Acme logistics for investors"]


@pytest.mark.asyncio
async def test_pending_outline_without_approval_gets_a_nudge() -> None:
    client = _RoutingModelClient(_routes())
    app = _app(client)
    await _send(app, "Create a pitch deck about Acme logistics")

    events = await _send(app, "hmm, let me think about it")

    assert _text(events) == OUTLINE_NUDGE
    assert app.outlines.has_pending_outline("deck-1") is True


@pytest.mark.asyncio
async def test_revision_feedback_regenerates_outline_with_previous_request() -> None:
    client = _RoutingModelClient(_routes())
    app = _app(client)
    await _send(app, "Create a pitch deck about Acme logistics")

    events = await _send(app, "make it shorter and focus on traction")

    assert events[-2].metadata["action"] == "outline_ready"
    assert len(client.user_prompts[OUTLINE_MARKER]) == 2
    assert "Revision feedback: make it shorter and focus on traction" in client.user_prompts[OUTLINE_MARKER][1]
    pending = await app.outlines.peek("deck-1")
    assert pending.request.presentation_type == "VC_PITCH"


@pytest.mark.asyncio
async def test_slide_instruction_edits_one_outline_entry() -> None:
    client = _RoutingModelClient(_routes())
    app = _app(client)
    await _send(app, "Create a pitch deck about Acme logistics")

    await _send(app, "slide 3: make it about traction")

    pending = await app.outlines.peek("deck-1")
    assert pending.outline.slides[2].title == "Traction in numbers"
    assert client.user_prompts[EDIT_MARKER] == ["make it about traction"]


@pytest.mark.asyncio
async def test_validation_answers_apply_to_next_pending_slide() -> None:
    client = _RoutingModelClient(_routes())
    app = _app(client)
    await _send(app, "Create a pitch deck about Acme logistics")
    await _send(app, "approve")
    first = app.validation.get_next_validation("deck-1")
    blocked = await _send(app, "/export pdf")
    assert blocked[-1].metadata["code"] == "VALIDATION_REQUIRED"
    assert app.exports.requests == []

    accepted = await _send(app, "accept")
    edit = json.dumps({"action": "edit", "editedContent": {"title": "Sharper title"}})
    edited = await _send(app, edit)
    rejected = await _send(app, "reject")

    assert _text(accepted) == f"Slide {first.slide_number} accepted."
    assert _text(edited) == "Slide 2 updated with your edits."
    assert _text(rejected) == "Slide 3 removed. Remaining slides renumbered."
    slides = await app.store.list_slides("deck-1")
    assert len(slides) == 9
    assert slides[1].title == "Sharper title"
    assert [slide.number for slide in slides] == list(range(1, 10))


@pytest.mark.asyncio
async def test_chat_replies_are_free_until_allowance_is_used() -> None:
    client = _RoutingModelClient(_routes())
    app = _app(client, balance=1)
    await app.store.create_slide(
        Slide(id="s1", deck_id="deck-1", number=1, title="Intro", body="- hello", slide_type="TITLE")
    )

    free = await _send(app, "what do you think of the colours?")
    assert _text(free) == "Try a darker palette for the title slide."
    assert await app.ledger.balance("u1") == 1

    for index in range(9):
        await app.store.add_message(DeckMessage(deck_id="deck-1", role="user", content=f"earlier {index}"))
    billed = await _send(app, "and the fonts?")
    assert billed[-1].type == "done"
    assert await app.ledger.balance("u1") == 0

    refused = await _send(app, "one more thing")
    assert refused[-1].metadata["code"] == "INSUFFICIENT_CREDIT"
    assert client.user_prompts[CHAT_MARKER] == ["what do you think of the colours?", "and the fonts?"]


@pytest.mark.asyncio
async def test_slash_commands_for_help_export_and_auto_approve() -> None:
    client = _RoutingModelClient(_routes())
    app = _app(client)

    help_events = await _send(app, "/help")
    export_events = await _send(app, "/export pdf")
    unknown_events = await _send(app, "/export docx")
    auto_events = await _send(app, "/auto-approve off")

    assert "/export" in _text(help_events)
    assert export_events[-2].metadata == {"action": "export_ready", "format": "pdf", "jobId": "export-1"}
    assert app.exports.requests == [("deck-1", "pdf")]
    assert 'Unknown format "docx"' in _text(unknown_events)
    assert "disabled" in _text(auto_events)
    assert app.validation.is_auto_approve_enabled("deck-1") is False


@pytest.mark.asyncio
async def test_outline_command_requires_topic() -> None:
    client = _RoutingModelClient(_routes())
    app = _app(client)

    empty = await _send(app, "/outline")
    drafted = await _send(app, "/outline Acme logistics investor update")

    assert "Please provide a topic" in _text(empty)
    assert drafted[-2].metadata["action"] == "outline_ready"


@pytest.mark.asyncio
async def test_config_command_reads_and_updates_strategy_profile() -> None:
    client = _RoutingModelClient(_routes())
    app = _app(client)

    missing = await _send(app, "/config bullets 3")
    assert _text(missing) == "No strategy profile is linked to this deck."

    app.strategies.add(StrategyProfile(id="p1"))
    await app.store.update_deck("deck-1", strategy_profile_id="p1")
    listing = await _send(app, "/config")
    updated = await _send(app, "/config bullets 3")
    invalid = await _send(app, "/config bullets 9")

    assert "**Max bullets per slide** (`bullets`): default" in _text(listing)
    assert _text(updated) == "Max bullets per slide set to **3**. Applies to the next generation."
    assert (await app.strategies.get("p1")).max_bullets == 3
    assert "Invalid value" in _text(invalid)


@pytest.mark.asyncio
async def test_pipeline_errors_surface_as_error_events() -> None:
    client = _RoutingModelClient(_routes())
    app = build_in_memory_app(client=client, with_quality_review=False)
    app.store.add_deck(Deck(id="deck-1", user_id="u1"))

    events = await _send(app, "Create a pitch deck about Acme logistics")

    assert events[-1].type == "error"
    assert events[-1].metadata["code"] == "ACCOUNT_NOT_FOUND"


@pytest.mark.asyncio
async def test_failed_billed_reply_returns_the_held_credit() -> None:
    routes = _routes()
    routes[CHAT_MARKER] = {"reply": ""}
    app = _app(_RoutingModelClient(routes), balance=1)
    await app.store.create_slide(
        Slide(id="s1", deck_id="deck-1", number=1, title="Intro", body="- hello", slide_type="TITLE")
    )
    for index in range(10):
        await app.store.add_message(DeckMessage(deck_id="deck-1", role="user", content=f"earlier {index}"))

    events = await _send(app, "and the fonts?")

    assert events[-1].type == "error"
    assert events[-1].metadata["code"] == "MODEL_OUTPUT_INVALID"
    assert await app.ledger.balance("u1") == 1
    assert await app.ledger.available_balance("u1") == 1
