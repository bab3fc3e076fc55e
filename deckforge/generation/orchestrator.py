# ABOUTME: Executes an approved outline into persisted slides in concurrent waves with ordered post-processing.
# ABOUTME: Owns the deck-generation reservation, theme/layout gates, density review, split budget and quality pass.

from __future__ import annotations

import asyncio
from dataclasses import dataclass, replace
import logging
from typing import AsyncIterator, Sequence

from deckforge.credits.costs import DECK_GENERATION_COST, slide_ceiling
from deckforge.credits.ledger import CreditLedger
from deckforge.gates.interaction_gate import InteractionGate
from deckforge.gates.validation_gate import ValidationGate
from deckforge.generation.context import knowledge_context, resolve_strategy, retrieve_snippets
from deckforge.generation.layouts import layout_options
from deckforge.generation.outline import OutlineService, PendingOutline
from deckforge.generation.slide_writer import SlideWriter, fallback_content
from deckforge.ports.protocol import (
    DeckStore,
    EventSink,
    ImageQueue,
    KnowledgeProvider,
    StrategyProfileStore,
    ThemeCatalog,
)
from deckforge.review.content_reviewer import ContentReviewer
from deckforge.review.density import DensityLimits, passes_density_check, truncate_to_limits
from deckforge.review.quality_ensemble import QualityReviewEnsemble, QualityReviewOptions
from deckforge.runtime.contracts import (
    DECORATIVE_SLIDE_TYPES,
    CreditReservation,
    Deck,
    DeckMessage,
    InteractionRequest,
    OutlineSlide,
    Slide,
    SlideContent,
    StrategyProfile,
    StreamEvent,
    SuggestedSplit,
    Theme,
    ValidationItem,
    action,
    done,
    error,
    new_id,
    progress,
    thinking,
    token,
)
from deckforge.runtime.errors import (
    ContractViolation,
    DeckNotFound,
    InsufficientCredit,
    OutlineNotFound,
    ProviderError,
    ReviewerFailure,
    SplitBudgetExhausted,
)
from deckforge.runtime.settings import PipelineSettings


logger = logging.getLogger(__name__)

THEME_SELECTION = "theme_selection"
LAYOUT_SELECTION = "layout_selection"
THEME_RECOMMENDATION_LIMIT = 3


@dataclass
class _WaveResult:
    entry: OutlineSlide
    content: SlideContent
    used_fallback: bool


@dataclass
class _RunState:
    deck: Deck
    theme: Theme
    profile: StrategyProfile
    limits: DensityLimits
    ceiling: int
    projected_total: int = 0
    next_number: int = 1
    splits_applied: int = 0
    fallbacks: int = 0


def _gate_event(request: InteractionRequest, **extra: object) -> StreamEvent:
    return StreamEvent(type="action", metadata={**request.to_metadata(), **extra})


def _enforce_section_labels(slides: Sequence[OutlineSlide], enabled: bool) -> list[OutlineSlide]:
    if not enabled:
        return [replace(slide, section_label=None) for slide in slides]
    labelled: list[OutlineSlide] = []
    current: str | None = None
    for slide in slides:
        if slide.section_label:
            current = slide.section_label
        if slide.slide_type in {"TITLE", "CTA"}:
            labelled.append(slide)
            continue
        labelled.append(replace(slide, section_label=slide.section_label or current or "Overview"))
    return labelled


def _fit_split(split: SuggestedSplit, notes: str, limits: DensityLimits) -> tuple[SuggestedSplit, str, str]:
    # Split parts share the source slide's notes; anything cut from a part lands after them.
    truncation = truncate_to_limits(split.body, limits)
    if truncation.overflow:
        notes = f"{notes}\n\n{truncation.overflow}".strip()
    return split, truncation.body, notes


class GenerationOrchestrator:
    def __init__(
        self,
        *,
        outlines: OutlineService,
        store: DeckStore,
        ledger: CreditLedger,
        writer: SlideWriter,
        reviewer: ContentReviewer,
        validation: ValidationGate,
        gate: InteractionGate,
        themes: ThemeCatalog,
        strategies: StrategyProfileStore | None = None,
        knowledge: KnowledgeProvider | None = None,
        quality: QualityReviewEnsemble | None = None,
        images: ImageQueue | None = None,
        events: EventSink | None = None,
        settings: PipelineSettings | None = None,
    ) -> None:
        self._outlines = outlines
        self._store = store
        self._ledger = ledger
        self._writer = writer
        self._reviewer = reviewer
        self._validation = validation
        self._gate = gate
        self._themes = themes
        self._strategies = strategies
        self._knowledge = knowledge
        self._quality = quality
        self._images = images
        self._events = events
        self._settings = settings or PipelineSettings()

    async def execute_outline(self, user_id: str, deck_id: str) -> AsyncIterator[StreamEvent]:
        if not await self._outlines.has_pending_or_recoverable(deck_id):
            yield error(
                "No pending outline to approve. Use /outline or ask me to create a deck.",
                code=OutlineNotFound.code,
            )
            return
        deck = await self._store.get_deck(deck_id)
        if deck is None:
            yield error(f"Deck {deck_id} not found.", code=DeckNotFound.code)
            return

        # Reserve before taking the outline so a failed reservation leaves it pending.
        try:
            reservation = await self._ledger.reserve(user_id, DECK_GENERATION_COST, "deck_generation", deck_id)
        except InsufficientCredit as exc:
            yield error(str(exc), code=exc.code, required=exc.required, available=exc.available)
            return

        pending = await self._outlines.take_for_execution(deck_id)
        if pending is None:
            await self._ledger.release(reservation.id)
            yield error("This outline is already being generated.", code=OutlineNotFound.code)
            return

        try:
            async for event in self._run(user_id, deck, pending, reservation):
                yield event
        except BaseException:
            if reservation.state == "COMMITTED":
                logger.error("Deck %s was completed and billed before a later step failed", deck_id)
                raise
            logger.error("Deck generation failed for deck %s; releasing reservation %s", deck_id, reservation.id)
            await self._ledger.release(reservation.id)
            await self._store.update_deck(deck_id, status="FAILED")
            raise

    async def _run(
        self,
        user_id: str,
        deck: Deck,
        pending: PendingOutline,
        reservation: CreditReservation,
    ) -> AsyncIterator[StreamEvent]:
        request = pending.request
        outline = pending.outline
        tier = self._ledger.get_account(user_id).limits
        yield thinking("Generating your deck from the approved outline...")

        entries = list(outline.slides)
        max_slides = tier.max_slides_per_deck
        if max_slides is not None and len(entries) > max_slides:
            outline = outline.renumbered(entries[:max_slides])
            entries = list(outline.slides)
            yield token(
                f"Your plan includes up to {max_slides} slides per deck, so this is a sample preview "
                f"of the first {max_slides} slides.\n\n"
            )

        profile = await resolve_strategy(deck, self._strategies)
        theme = None
        if request.theme_id:
            theme = await self._themes.get(request.theme_id)
        if theme is None:
            recommended = await self._themes.recommend(
                request.presentation_type,
                profile.audience,
                limit=THEME_RECOMMENDATION_LIMIT,
            )
            if recommended:
                gate_request = self._gate.open_request(
                    deck.id,
                    THEME_SELECTION,
                    pending.id,
                    default=recommended[0].id,
                    timeout_ms=self._settings.theme_gate_timeout_ms,
                    options=[item.id for item in recommended],
                )
                yield _gate_event(gate_request, themes=[item.display_name for item in recommended])
                chosen = await self._gate.wait(gate_request)
                theme = next((item for item in recommended if item.id == chosen), recommended[0])
                logger.debug("Theme for deck %s resolved to %s", deck.id, theme.id)
            else:
                theme = await self._themes.default()

        limits = DensityLimits.for_profile(profile)
        image_frequency = profile.image_frequency if profile.image_frequency is not None else theme.default_image_frequency
        entries = _enforce_section_labels(entries, profile.show_section_labels)

        deck = await self._store.update_deck(
            deck.id,
            title=outline.title,
            topic=request.topic,
            presentation_type=request.presentation_type,
            status="PROCESSING",
            theme_id=theme.id,
        )
        removed = await self._store.delete_slides(deck.id)
        if removed:
            logger.info("Cleared %d existing slide(s) from deck %s", removed, deck.id)
        state = _RunState(
            deck=deck,
            theme=theme,
            profile=profile,
            limits=limits,
            ceiling=slide_ceiling(len(entries), headroom=self._settings.split_headroom, tier_max=max_slides),
            projected_total=len(entries),
        )

        snippets = await retrieve_snippets(
            self._knowledge,
            user_id,
            request.topic,
            limit=self._settings.knowledge_snippet_limit,
        )
        system_prompt = self._writer.system_prompt(
            limits=limits,
            presentation_type=request.presentation_type,
            theme=theme,
            profile=profile,
            image_frequency=image_frequency,
            knowledge=knowledge_context(snippets),
        )

        produced: list[Slide] = []
        wave_size = self._settings.wave_size
        for start in range(0, len(entries), wave_size):
            wave = entries[start : start + wave_size]
            yield progress(
                f"Writing slides {wave[0].number}-{wave[-1].number} of {len(entries)}",
                step="wave",
                status="running",
            )
            chosen_entries: list[OutlineSlide] = []
            for entry in wave:
                options = layout_options(entry.slide_type)
                if not options:
                    chosen_entries.append(entry)
                    continue
                gate_request = self._gate.open_request(
                    deck.id,
                    LAYOUT_SELECTION,
                    f"{pending.id}:{entry.number}",
                    default=entry.slide_type,
                    timeout_ms=self._settings.layout_gate_timeout_ms,
                    options=options,
                )
                yield _gate_event(gate_request, slideNumber=entry.number, title=entry.title)
                chosen = await self._gate.wait(gate_request)
                slide_type = chosen if chosen in options else entry.slide_type
                chosen_entries.append(replace(entry, slide_type=slide_type))

            snapshot = tuple(produced)
            results = await asyncio.gather(
                *(
                    self._write(entry, system_prompt=system_prompt, deck_title=outline.title, prior=snapshot)
                    for entry in chosen_entries
                )
            )
            for result in results:
                async for event in self._process(state, result, produced):
                    yield event

        if self._quality is not None and produced:
            async for event in self._quality_pass(user_id, state, request.presentation_type):
                yield event

        await self._store.update_deck(deck.id, status="COMPLETED")
        await self._outlines.mark_completed(pending)
        await self._ledger.commit(reservation.id)
        final_slides = await self._store.list_slides(deck.id)

        summary = f"Your deck **{outline.title}** is ready with {len(final_slides)} slides."
        if state.splits_applied:
            summary += f" {state.splits_applied} dense slide(s) were split for readability."
        if state.fallbacks:
            summary += f" {state.fallbacks} slide(s) used outline content and may need a touch-up."
        yield token(f"\n\n{summary}")

        images_queued = 0
        if request.auto_generate_images and tier.images_allowed and self._images is not None and image_frequency > 0:
            try:
                images_queued = await self._images.enqueue_batch(deck.id, user_id, final_slides)
            except Exception as exc:
                logger.warning("Image queueing failed for deck %s, continuing without images: %s", deck.id, exc)
            if images_queued:
                yield token(f" Generating {images_queued} image(s) in the background.")

        yield action(
            "generation_complete",
            deckId=deck.id,
            slideCount=len(final_slides),
            splitsApplied=state.splits_applied,
            imagesQueued=images_queued,
        )
        await self._store.add_message(DeckMessage(deck_id=deck.id, role="assistant", content=summary))
        logger.info(
            "Deck %s completed with %d slides (%d split(s), %d fallback(s))",
            deck.id,
            len(final_slides),
            state.splits_applied,
            state.fallbacks,
        )
        yield done(deckId=deck.id, slideCount=len(final_slides))

    async def _write(
        self,
        entry: OutlineSlide,
        *,
        system_prompt: str,
        deck_title: str,
        prior: Sequence[Slide],
    ) -> _WaveResult:
        try:
            content = await self._writer.write(
                entry,
                system_prompt=system_prompt,
                deck_title=deck_title,
                prior_slides=prior,
            )
        except (ContractViolation, ProviderError) as exc:
            logger.warning("Slide %d fell back to outline content: %s", entry.number, exc)
            return _WaveResult(entry=entry, content=fallback_content(entry), used_fallback=True)
        return _WaveResult(entry=entry, content=content, used_fallback=False)

    async def _announce(self, deck_id: str, slide: Slide, *, added: bool) -> StreamEvent:
        if self._events is not None:
            if added:
                await self._events.slide_added(deck_id, slide)
            else:
                await self._events.slide_updated(deck_id, slide)
        return action(
            "slide_preview",
            slideId=slide.id,
            slideNumber=slide.number,
            title=slide.title,
            slideType=slide.slide_type,
        )

    async def _process(
        self,
        state: _RunState,
        result: _WaveResult,
        produced: list[Slide],
    ) -> AsyncIterator[StreamEvent]:
        entry, content = result.entry, result.content
        deck_id = state.deck.id
        if result.used_fallback:
            state.fallbacks += 1

        truncation = truncate_to_limits(content.body, state.limits)
        notes = content.speaker_notes
        if truncation.overflow:
            notes = f"{notes}\n\n{truncation.overflow}".strip()
        slide = Slide(
            id=new_id(),
            deck_id=deck_id,
            number=state.next_number,
            title=content.title,
            body=truncation.body,
            slide_type=entry.slide_type,
            speaker_notes=notes,
            image_prompt=content.image_prompt,
            section_label=entry.section_label,
        )
        slide.refresh_hash()
        await self._store.create_slide(slide)
        state.next_number += 1
        yield await self._announce(deck_id, slide, added=True)

        parts = [slide]
        review_passed = True
        if slide.slide_type not in DECORATIVE_SLIDE_TYPES and not passes_density_check(slide.body, state.limits):
            try:
                review = await self._reviewer.review_slide(slide, state.limits)
            except ReviewerFailure as exc:
                logger.warning("Keeping slide %d unreviewed: %s", slide.number, exc)
                review_passed = False
            else:
                review_passed = review.verdict == "PASS"
                splits = review.suggested_splits[: self._settings.max_split_parts]
                if review.verdict == "NEEDS_SPLIT" and len(splits) >= 2:
                    if state.projected_total + len(splits) - 1 <= state.ceiling:
                        parts = await self._apply_split(state, slide, splits)
                        review_passed = True
                        for position, part in enumerate(parts):
                            yield await self._announce(deck_id, part, added=position > 0)
                    else:
                        exhausted = SplitBudgetExhausted(
                            slide_number=slide.number,
                            current_total=state.projected_total,
                            parts=len(splits),
                            ceiling=state.ceiling,
                        )
                        logger.warning("Dropping split: %s", exhausted)

        produced.extend(parts)
        for part in parts:
            item = ValidationItem(
                deck_id=deck_id,
                slide_id=part.id,
                slide_number=part.number,
                title=part.title,
                body=part.body,
                speaker_notes=part.speaker_notes,
                slide_type=part.slide_type,
                review_passed=review_passed,
            )
            if self._validation.queue_validation(item):
                yield action("validation_request", slideId=part.id, slideNumber=part.number, title=part.title)

    async def _apply_split(self, state: _RunState, slide: Slide, splits: Sequence[SuggestedSplit]) -> list[Slide]:
        deck_id = state.deck.id
        fitted = [_fit_split(split, slide.speaker_notes, state.limits) for split in splits]
        (first, first_body, first_notes), rest = fitted[0], fitted[1:]
        updated = await self._store.update_slide(
            slide.id,
            title=first.title,
            body=first_body,
            speaker_notes=first_notes,
        )
        parts = [updated]
        for offset, (split, body, notes) in enumerate(rest, start=1):
            number = slide.number + offset
            await self._store.shift_slides(deck_id, from_number=number, delta=1)
            part = Slide(
                id=new_id(),
                deck_id=deck_id,
                number=number,
                title=split.title,
                body=body,
                slide_type=slide.slide_type,
                speaker_notes=notes,
                image_prompt=slide.image_prompt,
                section_label=slide.section_label,
            )
            part.refresh_hash()
            await self._store.create_slide(part)
            parts.append(part)
        inserted = len(rest)
        state.next_number += inserted
        state.projected_total += inserted
        state.splits_applied += 1
        logger.info(
            "Split slide %d into %d parts (projected %d/%d)",
            slide.number,
            len(parts),
            state.projected_total,
            state.ceiling,
        )
        return parts

    async def _quality_pass(self, user_id: str, state: _RunState, presentation_type: str) -> AsyncIterator[StreamEvent]:
        deck_id = state.deck.id
        yield progress("Running quality review", step="quality_review", status="running")
        try:
            slides = await self._store.list_slides(deck_id)
            report = await self._quality.review_deck(
                slides,
                QualityReviewOptions(
                    theme=state.theme,
                    presentation_type=presentation_type,
                    user_id=user_id,
                    framework=state.profile.framework,
                ),
            )
            by_number = {slide.number: slide for slide in slides}
            for fix in report.fixes:
                target = by_number.get(fix.slide_number)
                if target is None:
                    continue
                updated = await self._store.update_slide(target.id, title=fix.fixed_title, body=fix.fixed_body)
                by_number[fix.slide_number] = updated
                if self._events is not None:
                    await self._events.slide_updated(deck_id, updated)
        except Exception as exc:
            logger.warning("Quality review failed for deck %s, keeping slides as generated: %s", deck_id, exc)
            yield progress("Quality review skipped", step="quality_review", status="skipped")
            return
        yield progress(
            f"Quality review {'passed' if report.passed else 'flagged issues'}; {len(report.fixes)} fix(es) applied",
            step="quality_review",
            status="done",
            passed=report.passed,
            slidesFixed=report.metrics.slides_fixed,
            errorsFound=report.metrics.errors_found,
        )
