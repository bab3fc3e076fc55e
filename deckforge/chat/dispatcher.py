# ABOUTME: Routes each chat message to slash commands, outline approval, validation answers, generation or a reply.
# ABOUTME: Persists the conversation and bills chat replies beyond the free per-deck allowance.

from __future__ import annotations

from contextlib import nullcontext
import json
import logging
import re
from typing import AsyncIterator

from deckforge.chat.commands import (
    CONFIG_SETTINGS,
    EXPORT_FORMATS,
    SlashCommand,
    help_text,
    parse_auto_approve,
    parse_config_change,
    parse_slash_command,
)
from deckforge.credits.costs import chat_message_cost
from deckforge.credits.ledger import CreditLedger
from deckforge.gates.validation_gate import ValidationGate, ValidationResponse
from deckforge.generation.orchestrator import GenerationOrchestrator
from deckforge.generation.outline import OutlineService, is_approval, is_retry_request
from deckforge.ports.protocol import DeckStore, ExportService, StrategyProfileStore
from deckforge.runtime.contracts import (
    DeckMessage,
    GenerationRequest,
    PresentationType,
    StreamEvent,
    action,
    done,
    error,
    token,
)
from deckforge.runtime.errors import ContractViolation, DeckforgeError, InsufficientCredit, ProviderError
from deckforge.runtime.llm_client import ChatMessage, RuntimeModelClient
from deckforge.runtime.llm_loop import complete_structured
from deckforge.runtime.prompt_registry import get_prompt_definition
from deckforge.runtime.validation import schema_validator


logger = logging.getLogger(__name__)

OUTLINE_NUDGE = "Please **approve** the outline to generate slides, or tell me what to change."

_GENERATION_PATTERNS = (
    re.compile(r"\b(create|make|generate|build)\b.*\b(presentation|deck|pitch|slides?)\b"),
    re.compile(r"\b(pitch deck|presentation|slides?|deck)\s+(about|on|for)\b"),
)
_OUTLINE_EDIT_PATTERN = re.compile(r"^(?:edit |change |revise )?slide\s+(\d+)\s*[:\-]\s*(.+)$", re.IGNORECASE | re.DOTALL)
_ACCEPT_PHRASES = {"accept", "accept slide", "looks good"}
_REJECT_PHRASES = {"reject", "reject slide", "remove slide", "delete slide"}


def infer_presentation_type(text: str) -> PresentationType:
    lower = text.lower()
    if "pitch" in lower or "investor" in lower or "vc " in lower:
        return "VC_PITCH"
    if "technical" in lower or "architecture" in lower or "engineering" in lower:
        return "TECHNICAL"
    if "executive" in lower or "briefing" in lower or "board" in lower:
        return "EXECUTIVE"
    return "STANDARD"


def detect_generation_intent(text: str) -> GenerationRequest | None:
    lower = text.lower()
    if not any(pattern.search(lower) for pattern in _GENERATION_PATTERNS):
        return None
    return GenerationRequest(topic=text.strip(), presentation_type=infer_presentation_type(text))


def parse_validation_response(text: str) -> ValidationResponse | None:
    stripped = text.strip()
    lower = stripped.lower()
    if lower in _ACCEPT_PHRASES:
        return ValidationResponse(action="accept")
    if lower in _REJECT_PHRASES:
        return ValidationResponse(action="reject")
    if not stripped.startswith("{"):
        return None
    try:
        parsed = json.loads(stripped)
    except json.JSONDecodeError:
        return None
    if not isinstance(parsed, dict) or parsed.get("action") != "edit":
        return None
    edited = parsed.get("editedContent")
    if not isinstance(edited, dict):
        return None
    return ValidationResponse(
        action="edit",
        title=edited.get("title"),
        body=edited.get("body"),
        speaker_notes=edited.get("speakerNotes"),
    )


class ChatDispatcher:
    def __init__(
        self,
        *,
        store: DeckStore,
        ledger: CreditLedger,
        outlines: OutlineService,
        orchestrator: GenerationOrchestrator,
        validation: ValidationGate,
        client: RuntimeModelClient,
        model_name: str,
        strategies: StrategyProfileStore | None = None,
        exports: ExportService | None = None,
        max_retries: int = 2,
        backoff_base_sec: float = 1.0,
    ) -> None:
        self._store = store
        self._ledger = ledger
        self._outlines = outlines
        self._orchestrator = orchestrator
        self._validation = validation
        self._client = client
        self._model_name = model_name
        self._strategies = strategies
        self._exports = exports
        self._max_retries = max_retries
        self._backoff_base_sec = backoff_base_sec
        self._reply_prompt = get_prompt_definition("chat_reply_v1")

    async def handle_message(self, user_id: str, deck_id: str, text: str) -> AsyncIterator[StreamEvent]:
        await self._store.add_message(DeckMessage(deck_id=deck_id, role="user", content=text))
        try:
            async for event in self._route(user_id, deck_id, text):
                yield event
        except DeckforgeError as exc:
            logger.warning("Chat message on deck %s failed: %s", deck_id, exc)
            yield error(str(exc), code=exc.code)

    async def _route(self, user_id: str, deck_id: str, text: str) -> AsyncIterator[StreamEvent]:
        command = parse_slash_command(text)
        if command is not None:
            async for event in self._handle_command(user_id, deck_id, command):
                yield event
            return

        if is_approval(text) and await self._outlines.has_pending_or_recoverable(deck_id):
            async for event in self._orchestrator.execute_outline(user_id, deck_id):
                yield event
            return

        if self._outlines.has_pending_outline(deck_id):
            edit = _OUTLINE_EDIT_PATTERN.match(text.strip())
            if edit is not None:
                async for event in self._outlines.edit_outline_slide(
                    user_id, deck_id, int(edit.group(1)), edit.group(2).strip()
                ):
                    yield event
                return
            if is_retry_request(text):
                async for event in self._regenerate_outline(user_id, deck_id, text):
                    yield event
                return
            async for event in self._say(deck_id, OUTLINE_NUDGE):
                yield event
            return

        response = parse_validation_response(text)
        if response is not None and self._validation.has_pending_validation(deck_id):
            item = self._validation.get_next_validation(deck_id)
            if item is not None:
                outcome = await self._validation.process_validation(user_id, deck_id, item.slide_id, response)
                async for event in self._say(deck_id, outcome.message):
                    yield event
                return

        request = detect_generation_intent(text)
        if request is None and await self._is_first_message_on_empty_deck(deck_id):
            request = GenerationRequest(topic=text.strip(), presentation_type=infer_presentation_type(text))
        if request is not None:
            async for event in self._outlines.generate_outline(user_id, deck_id, request):
                yield event
            return

        async for event in self._chat_reply(user_id, deck_id, text):
            yield event

    async def _say(self, deck_id: str, text: str) -> AsyncIterator[StreamEvent]:
        await self._store.add_message(DeckMessage(deck_id=deck_id, role="assistant", content=text))
        yield token(text)
        yield done()

    async def _user_message_count(self, deck_id: str) -> int:
        return sum(1 for message in await self._store.list_messages(deck_id) if message.role == "user")

    async def _is_first_message_on_empty_deck(self, deck_id: str) -> bool:
        if await self._store.list_slides(deck_id):
            return False
        return await self._user_message_count(deck_id) <= 1

    async def _regenerate_outline(self, user_id: str, deck_id: str, feedback: str) -> AsyncIterator[StreamEvent]:
        pending = await self._outlines.peek(deck_id)
        await self._outlines.clear_pending_outline(deck_id)
        if pending is None:
            request = GenerationRequest(topic=feedback, presentation_type=infer_presentation_type(feedback))
        else:
            previous = pending.request
            request = GenerationRequest(
                topic=f"{previous.topic}\n\nRevision feedback: {feedback}",
                presentation_type=previous.presentation_type,
                min_slides=previous.min_slides,
                max_slides=previous.max_slides,
                theme_id=previous.theme_id,
                auto_generate_images=previous.auto_generate_images,
            )
        async for event in self._outlines.generate_outline(user_id, deck_id, request):
            yield event

    async def _handle_command(self, user_id: str, deck_id: str, command: SlashCommand) -> AsyncIterator[StreamEvent]:
        if command.command == "help":
            async for event in self._say(deck_id, help_text()):
                yield event
        elif command.command == "outline":
            topic = " ".join(command.args)
            if not topic:
                async for event in self._say(deck_id, "Please provide a topic: `/outline Your Topic Here`"):
                    yield event
                return
            request = GenerationRequest(topic=topic, presentation_type=infer_presentation_type(topic))
            async for event in self._outlines.generate_outline(user_id, deck_id, request):
                yield event
        elif command.command == "export":
            async for event in self._export(deck_id, command.args):
                yield event
        elif command.command == "auto-approve":
            enabled = parse_auto_approve(command.args)
            self._validation.set_auto_approve(deck_id, enabled)
            message = (
                "Auto-approve **enabled**. Slides that pass content review will be accepted automatically."
                if enabled
                else "Auto-approve **disabled**. Each slide will need manual approval."
            )
            async for event in self._say(deck_id, message):
                yield event
        elif command.command == "config":
            async for event in self._config(deck_id, command.args):
                yield event

    async def _export(self, deck_id: str, args: tuple[str, ...]) -> AsyncIterator[StreamEvent]:
        export_format = args[0].lower() if args else "pptx"
        if export_format not in EXPORT_FORMATS:
            message = f'Unknown format "{export_format}". Supported: {", ".join(EXPORT_FORMATS)}.'
            async for event in self._say(deck_id, message):
                yield event
            return
        if self._exports is None:
            yield error("Export is not available in this environment.", code="EXPORT_UNAVAILABLE")
            return
        self._validation.require_validated(deck_id)
        yield token(f"Starting {export_format.upper()} export...\n\n")
        job_id = await self._exports.export(deck_id, export_format)
        message = f"Export complete! Your {export_format.upper()} file is ready."
        await self._store.add_message(DeckMessage(deck_id=deck_id, role="assistant", content=message))
        yield token(message)
        yield action("export_ready", format=export_format, jobId=job_id)
        yield done()

    async def _config(self, deck_id: str, args: tuple[str, ...]) -> AsyncIterator[StreamEvent]:
        deck = await self._store.get_deck(deck_id)
        profile = None
        if deck is not None and deck.strategy_profile_id and self._strategies is not None:
            profile = await self._strategies.get(deck.strategy_profile_id)
        if profile is None:
            async for event in self._say(deck_id, "No strategy profile is linked to this deck."):
                yield event
            return
        if not args:
            lines = ["**Current configuration:**"]
            for setting, (field_name, _, _, label) in CONFIG_SETTINGS.items():
                value = getattr(profile, field_name)
                lines.append(f"- **{label}** (`{setting}`): {value if value is not None else 'default'}")
            async for event in self._say(deck_id, "\n".join(lines)):
                yield event
            return
        try:
            change = parse_config_change(args)
        except ValueError as exc:
            async for event in self._say(deck_id, str(exc)):
                yield event
            return
        await self._strategies.update(profile.id, **{change.field_name: change.value})
        logger.info("Deck %s profile %s: %s=%d", deck_id, profile.id, change.field_name, change.value)
        async for event in self._say(deck_id, f"{change.label} set to **{change.value}**. Applies to the next generation."):
            yield event

    async def _chat_reply(self, user_id: str, deck_id: str, text: str) -> AsyncIterator[StreamEvent]:
        cost = chat_message_cost(await self._user_message_count(deck_id))
        deck = await self._store.get_deck(deck_id)
        slides = await self._store.list_slides(deck_id)
        summary = "\n".join(f"{slide.number}. {slide.title}" for slide in slides) or "(no slides yet)"
        billing = self._ledger.hold(user_id, cost, "chat_message", deck_id) if cost > 0 else nullcontext()
        try:
            async with billing:
                result = await complete_structured(
                    client=self._client,
                    messages=[
                        ChatMessage(
                            role="system",
                            content=self._reply_prompt.render(
                                deck_title=deck.title if deck is not None and deck.title else "Untitled deck",
                                deck_topic=deck.topic if deck is not None and deck.topic else "(not set)",
                                slide_summary=summary,
                            ),
                        ),
                        ChatMessage(role="user", content=text),
                    ],
                    model_name=self._model_name,
                    validator=schema_validator(self._reply_prompt.response_schema),
                    max_retries=self._max_retries,
                    backoff_base_sec=self._backoff_base_sec,
                )
        except InsufficientCredit as exc:
            yield error(str(exc), code=exc.code, required=exc.required, available=exc.available)
            return
        except (ContractViolation, ProviderError) as exc:
            logger.warning("Chat reply failed on deck %s: %s", deck_id, exc)
            yield error("I couldn't answer that just now. Please try again.", code=exc.code)
            return
        async for event in self._say(deck_id, str(result.output["reply"]).strip()):
            yield event
