# ABOUTME: Asks the model for a per-slide density and quality verdict with optional two-part split suggestions.
# ABOUTME: Wraps contract and provider failures in ReviewerFailure so callers can degrade gracefully.

from __future__ import annotations

from dataclasses import dataclass
import logging

from deckforge.review.density import DensityLimits
from deckforge.runtime.contracts import ReviewResult, Slide
from deckforge.runtime.errors import ContractViolation, ProviderError, ReviewerFailure
from deckforge.runtime.llm_client import ChatMessage, RuntimeModelClient
from deckforge.runtime.llm_loop import complete_structured
from deckforge.runtime.prompt_registry import get_prompt_definition
from deckforge.runtime.validation import check_review_result, schema_validator


logger = logging.getLogger(__name__)


@dataclass
class DeckReviewSummary:
    results: list[tuple[int, ReviewResult | None]]
    pass_rate: float


class ContentReviewer:
    def __init__(
        self,
        client: RuntimeModelClient,
        *,
        model_name: str,
        max_retries: int = 2,
        backoff_base_sec: float = 1.0,
    ) -> None:
        self._client = client
        self._model_name = model_name
        self._max_retries = max_retries
        self._backoff_base_sec = backoff_base_sec
        self._prompt = get_prompt_definition("content_review_v1")
        self._validator = schema_validator(self._prompt.response_schema, check_review_result)

    def _system_prompt(self, limits: DensityLimits) -> str:
        return self._prompt.render(
            max_bullets=limits.max_bullets,
            max_words=limits.max_words,
            max_words_per_bullet=limits.max_words_per_bullet,
            max_nesting_depth=limits.max_nesting_depth,
            max_concepts=limits.max_concepts,
            max_table_rows=limits.max_table_rows,
        )

    async def review_slide(self, slide: Slide, limits: DensityLimits | None = None) -> ReviewResult:
        limits = limits or DensityLimits()
        user_prompt = (
            f"Slide type: {slide.slide_type}\n"
            f"Title: {slide.title}\n\n"
            f"Body:\n{slide.body}\n\n"
            f"Speaker notes:\n{slide.speaker_notes or '(none)'}"
        )
        try:
            result = await complete_structured(
                client=self._client,
                messages=[
                    ChatMessage(role="system", content=self._system_prompt(limits)),
                    ChatMessage(role="user", content=user_prompt),
                ],
                model_name=self._model_name,
                validator=self._validator,
                max_retries=self._max_retries,
                cache_hint=f"content-review:{self._prompt.prompt_template_hash}",
                backoff_base_sec=self._backoff_base_sec,
            )
        except (ContractViolation, ProviderError) as exc:
            raise ReviewerFailure(f"Content review failed for slide {slide.number}: {exc}") from exc
        review = ReviewResult.from_payload(result.output)
        if review.verdict == "PASS":
            review.suggested_splits = []
        return review

    async def review_deck(self, slides: list[Slide], limits: DensityLimits | None = None) -> DeckReviewSummary:
        results: list[tuple[int, ReviewResult | None]] = []
        passed = 0
        for slide in slides:
            try:
                review = await self.review_slide(slide, limits)
            except ReviewerFailure as exc:
                logger.warning("%s", exc)
                results.append((slide.number, None))
                continue
            if review.verdict == "PASS":
                passed += 1
            results.append((slide.number, review))
        pass_rate = passed / len(slides) if slides else 1.0
        return DeckReviewSummary(results=results, pass_rate=pass_rate)
