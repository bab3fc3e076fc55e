# ABOUTME: Generates, caches, recovers and hands off pending deck outlines awaiting user approval.
# ABOUTME: Enforces the NONE -> PENDING -> EXECUTED/DISCARDED lifecycle with delete-before-execute handoff.

from __future__ import annotations

from dataclasses import asdict, dataclass, field
import logging
import re
import time
from typing import Any, AsyncIterator, Callable

from deckforge.credits.costs import OUTLINE_GENERATION_COST, SLIDE_MODIFICATION_COST, slide_range
from deckforge.credits.ledger import CreditLedger
from deckforge.generation.context import (
    knowledge_context,
    resolve_strategy,
    retrieve_snippets,
    strategy_context,
)
from deckforge.ports.protocol import DeckStore, KnowledgeProvider, StrategyProfileStore
from deckforge.runtime.contracts import (
    DeckMessage,
    GenerationRequest,
    Outline,
    OutlineSlide,
    OutlineState,
    StreamEvent,
    action,
    done,
    error,
    new_id,
    thinking,
    token,
)
from deckforge.runtime.errors import (
    ContractViolation,
    DeckNotFound,
    InsufficientCredit,
    OutlineNotFound,
    ProviderError,
    StateTransitionError,
)
from deckforge.runtime.llm_client import ChatMessage, RuntimeModelClient
from deckforge.runtime.llm_loop import complete_structured
from deckforge.runtime.prompt_registry import get_prompt_definition
from deckforge.runtime.ttl_store import KeyedStore, TtlStore
from deckforge.runtime.validation import check_outline, check_outline_slide, schema_validator


logger = logging.getLogger(__name__)

OUTLINE_MESSAGE_TYPE = "outline"
DEFAULT_OUTLINE_TTL_SEC = 30 * 60
DEFAULT_OUTLINE_MAX_ENTRIES = 1000
APPROVAL_PROMPT = "\n\nReply **approve** to generate the deck, or tell me what to change."

APPROVAL_PHRASES = (
    "approve",
    "approved",
    "yes",
    "go ahead",
    "looks good",
    "generate",
    "do it",
    "ok",
    "okay",
    "perfect",
    "let's go",
    "ship it",
    "proceed",
    "confirm",
    "build it",
    "create it",
)

_RETRY_PATTERN = re.compile(
    r"\b(try again|regenerate|redo|start over|another|different|change|instead|replace|"
    r"add|remove|drop|fewer|more|shorter|longer|focus|rework|revise)\b"
)

TYPE_GUIDANCE = {
    "STANDARD": "Introduce the topic, develop two or three focused sections, and close with next steps.",
    "VC_PITCH": (
        "Follow the investor narrative: problem, solution, market size, traction, business model, "
        "competition, team, financials and the ask."
    ),
    "TECHNICAL": (
        "Start from context and goals, then architecture, key components, data flow, trade-offs and the roadmap."
    ),
    "EXECUTIVE": "Lead with the recommendation, then the supporting evidence, risks and the decision needed.",
}

_ALLOWED_TRANSITIONS: dict[OutlineState, set[OutlineState]] = {
    "NONE": {"PENDING"},
    "PENDING": {"EXECUTED", "DISCARDED"},
    "EXECUTED": set(),
    "DISCARDED": set(),
}


class OutlineStateMachine:
    def __init__(self) -> None:
        self._state: OutlineState = "NONE"

    @property
    def state(self) -> OutlineState:
        return self._state

    def transition(self, next_state: OutlineState) -> None:
        if next_state not in _ALLOWED_TRANSITIONS[self._state]:
            raise StateTransitionError(f"Invalid outline transition: {self._state} -> {next_state}.")
        self._state = next_state


@dataclass
class PendingOutline:
    id: str
    deck_id: str
    user_id: str
    request: GenerationRequest
    outline: Outline
    message_id: str | None = None
    machine: OutlineStateMachine = field(default_factory=OutlineStateMachine)

    @property
    def state(self) -> OutlineState:
        return self.machine.state

    def to_metadata(self, status: str) -> dict[str, Any]:
        return {
            "outline_id": self.id,
            "user_id": self.user_id,
            "status": status,
            "request": asdict(self.request),
            "outline": self.outline.to_payload(),
        }


def _normalize(text: str) -> str:
    return text.strip().lower().rstrip("!.")


def is_approval(text: str) -> bool:
    normalized = _normalize(text)
    return any(
        normalized == phrase or normalized.startswith((f"{phrase} ", f"{phrase},", f"{phrase}!"))
        for phrase in APPROVAL_PHRASES
    )


def is_retry_request(text: str) -> bool:
    return bool(_RETRY_PATTERN.search(_normalize(text)))


def _stream_markdown(markdown: str) -> list[StreamEvent]:
    return [token(line) for line in markdown.splitlines(keepends=True)]


class OutlineService:
    def __init__(
        self,
        client: RuntimeModelClient,
        store: DeckStore,
        ledger: CreditLedger,
        *,
        model_name: str,
        knowledge: KnowledgeProvider | None = None,
        strategies: StrategyProfileStore | None = None,
        cache: KeyedStore[PendingOutline] | None = None,
        ttl_sec: float = DEFAULT_OUTLINE_TTL_SEC,
        max_entries: int = DEFAULT_OUTLINE_MAX_ENTRIES,
        max_retries: int = 2,
        backoff_base_sec: float = 1.0,
        knowledge_snippet_limit: int = 5,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._client = client
        self._store = store
        self._ledger = ledger
        self._model_name = model_name
        self._knowledge = knowledge
        self._strategies = strategies
        self._cache: KeyedStore[PendingOutline] = (
            cache if cache is not None else TtlStore(ttl_sec=ttl_sec, max_entries=max_entries, clock=clock)
        )
        # Outline ids already handed to execution; recovery must never revive them.
        self._executed: TtlStore[bool] = TtlStore(ttl_sec=ttl_sec, max_entries=max_entries * 4, clock=clock)
        self._max_retries = max_retries
        self._backoff_base_sec = backoff_base_sec
        self._knowledge_snippet_limit = knowledge_snippet_limit
        self._outline_prompt = get_prompt_definition("outline_generation_v1")
        self._edit_prompt = get_prompt_definition("outline_slide_edit_v1")

    async def generate_outline(
        self,
        user_id: str,
        deck_id: str,
        request: GenerationRequest,
    ) -> AsyncIterator[StreamEvent]:
        deck = await self._store.get_deck(deck_id)
        if deck is None:
            yield error(f"Deck {deck_id} not found.", code=DeckNotFound.code)
            return
        try:
            min_slides, max_slides = slide_range(
                request.presentation_type,
                min_slides=request.min_slides,
                max_slides=request.max_slides,
            )
        except ValueError as exc:
            yield error(str(exc), code="INVALID_REQUEST")
            return

        def _check(payload: dict[str, Any]) -> list[str]:
            return check_outline(payload, min_slides=min_slides, max_slides=max_slides)

        yield thinking("Planning your presentation outline...")
        try:
            async with self._ledger.hold(user_id, OUTLINE_GENERATION_COST, "outline_generation", deck_id):
                profile = await resolve_strategy(deck, self._strategies)
                snippets = await retrieve_snippets(
                    self._knowledge,
                    user_id,
                    request.topic,
                    limit=self._knowledge_snippet_limit,
                )
                system_prompt = self._outline_prompt.render(
                    presentation_type=request.presentation_type,
                    min_slides=min_slides,
                    max_slides=max_slides,
                    type_guidance=TYPE_GUIDANCE.get(request.presentation_type, TYPE_GUIDANCE["STANDARD"]),
                    strategy_context=strategy_context(profile),
                    knowledge_context=knowledge_context(snippets),
                )
                result = await complete_structured(
                    client=self._client,
                    messages=[
                        ChatMessage(role="system", content=system_prompt),
                        ChatMessage(role="user", content=f"Topic: {request.topic}"),
                    ],
                    model_name=self._model_name,
                    validator=schema_validator(self._outline_prompt.response_schema, _check),
                    max_retries=self._max_retries,
                    cache_hint=f"outline:{self._outline_prompt.prompt_template_hash}",
                    backoff_base_sec=self._backoff_base_sec,
                )
        except InsufficientCredit as exc:
            yield error(str(exc), code=exc.code, required=exc.required, available=exc.available)
            return
        except (ContractViolation, ProviderError) as exc:
            logger.warning("Outline generation failed for deck %s: %s", deck_id, exc)
            yield error("I couldn't draft an outline this time. Please try again.", code=exc.code)
            return

        outline = Outline.from_payload(result.output)
        await self.clear_pending_outline(deck_id)
        pending = PendingOutline(id=new_id(), deck_id=deck_id, user_id=user_id, request=request, outline=outline)
        pending.machine.transition("PENDING")
        markdown = outline.to_markdown()
        message = await self._store.add_message(
            DeckMessage(
                deck_id=deck_id,
                role="assistant",
                content=markdown,
                message_type=OUTLINE_MESSAGE_TYPE,
                metadata=pending.to_metadata("pending"),
            )
        )
        pending.message_id = message.id
        self._cache.set(deck_id, pending)
        logger.info(
            "Outline %s ready for deck %s (%d slides, %d attempt(s))",
            pending.id,
            deck_id,
            len(outline.slides),
            result.attempt_count,
        )

        for event in _stream_markdown(markdown):
            yield event
        yield token(APPROVAL_PROMPT)
        yield action("outline_ready", outlineId=pending.id, slideCount=len(outline.slides))
        yield done(outlineId=pending.id)

    def has_pending_outline(self, deck_id: str) -> bool:
        return self._cache.has(deck_id)

    async def has_pending_or_recoverable(self, deck_id: str) -> bool:
        if self._cache.has(deck_id):
            return True
        return await self._recover(deck_id) is not None

    async def peek(self, deck_id: str) -> PendingOutline | None:
        pending = self._cache.get(deck_id)
        if pending is not None:
            return pending
        recovered = await self._recover(deck_id)
        if recovered is not None and not self._executed.has(recovered.id) and not self._cache.has(deck_id):
            self._cache.set(deck_id, recovered)
        return recovered

    async def take_for_execution(self, deck_id: str) -> PendingOutline | None:
        """Hand the pending outline to execution exactly once.

        The cache entry is removed and the id marked executed before any await, so a
        concurrent approval finds neither a cache entry nor a recoverable copy.
        """
        pending = self._cache.get(deck_id)
        if pending is None:
            pending = await self._recover(deck_id)
            if pending is None or self._executed.has(pending.id):
                return None
        self._cache.delete(deck_id)
        self._executed.set(pending.id, True)
        pending.machine.transition("EXECUTED")
        if pending.message_id is not None:
            await self._mark_message(deck_id, pending.message_id, "executed")
        logger.info("Outline %s taken for execution on deck %s", pending.id, deck_id)
        return pending

    async def mark_completed(self, pending: PendingOutline) -> None:
        if pending.message_id is not None:
            await self._mark_message(pending.deck_id, pending.message_id, "completed")

    async def clear_pending_outline(self, deck_id: str) -> bool:
        pending = self._cache.get(deck_id)
        self._cache.delete(deck_id)
        if pending is not None:
            pending.machine.transition("DISCARDED")
        discarded = pending is not None
        for message in await self._store.list_messages(deck_id):
            if message.message_type == OUTLINE_MESSAGE_TYPE and message.metadata.get("status") == "pending":
                await self._store.update_message(message.id, metadata={**message.metadata, "status": "discarded"})
                discarded = True
        if discarded:
            logger.debug("Discarded pending outline for deck %s", deck_id)
        return discarded

    async def edit_outline_slide(
        self,
        user_id: str,
        deck_id: str,
        slide_number: int,
        instruction: str,
    ) -> AsyncIterator[StreamEvent]:
        pending = await self.peek(deck_id)
        if pending is None:
            yield error("There is no pending outline to edit.", code=OutlineNotFound.code)
            return
        if not 1 <= slide_number <= len(pending.outline.slides):
            yield error(
                f"Slide {slide_number} is not in the outline (1-{len(pending.outline.slides)}).",
                code="INVALID_SLIDE_NUMBER",
            )
            return

        def _check(payload: dict[str, Any]) -> list[str]:
            return check_outline_slide(payload, expected_number=slide_number)

        yield thinking(f"Revising slide {slide_number} of the outline...")
        try:
            async with self._ledger.hold(user_id, SLIDE_MODIFICATION_COST, "outline_edit", deck_id):
                result = await complete_structured(
                    client=self._client,
                    messages=[
                        ChatMessage(
                            role="system",
                            content=self._edit_prompt.render(
                                outline_markdown=pending.outline.to_markdown(),
                                slide_number=slide_number,
                            ),
                        ),
                        ChatMessage(role="user", content=instruction),
                    ],
                    model_name=self._model_name,
                    validator=schema_validator(self._edit_prompt.response_schema, _check),
                    max_retries=self._max_retries,
                    backoff_base_sec=self._backoff_base_sec,
                )
        except InsufficientCredit as exc:
            yield error(str(exc), code=exc.code, required=exc.required, available=exc.available)
            return
        except (ContractViolation, ProviderError) as exc:
            logger.warning("Outline edit failed for deck %s slide %d: %s", deck_id, slide_number, exc)
            yield error("I couldn't revise that slide. Please try again.", code=exc.code)
            return

        revised = OutlineSlide.from_payload(result.output)
        pending.outline.slides[slide_number - 1] = revised
        markdown = pending.outline.to_markdown()
        if pending.message_id is not None:
            await self._store.update_message(
                pending.message_id,
                content=markdown,
                metadata=pending.to_metadata("pending"),
            )
        for event in _stream_markdown(markdown):
            yield event
        yield token(APPROVAL_PROMPT)
        yield done(outlineId=pending.id)

    async def _recover(self, deck_id: str) -> PendingOutline | None:
        messages = await self._store.list_messages(deck_id)
        for message in reversed(messages):
            if message.message_type != OUTLINE_MESSAGE_TYPE:
                continue
            metadata = message.metadata
            if metadata.get("status") != "pending" or self._executed.has(str(metadata.get("outline_id"))):
                return None
            pending = PendingOutline(
                id=str(metadata["outline_id"]),
                deck_id=deck_id,
                user_id=str(metadata.get("user_id") or ""),
                request=GenerationRequest(**metadata["request"]),
                outline=Outline.from_payload(metadata["outline"]),
                message_id=message.id,
            )
            pending.machine.transition("PENDING")
            logger.debug("Recovered pending outline %s for deck %s", pending.id, deck_id)
            return pending
        return None

    async def _mark_message(self, deck_id: str, message_id: str, status: str) -> None:
        for message in await self._store.list_messages(deck_id):
            if message.id == message_id:
                await self._store.update_message(message_id, metadata={**message.metadata, "status": status})
                return
