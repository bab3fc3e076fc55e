# ABOUTME: Turns one outline entry into finished slide content with the structured generation loop.
# ABOUTME: Builds the shared per-deck system prompt and derives fallback content from the outline on failure.

from __future__ import annotations

from typing import Sequence

from deckforge.generation.context import strategy_context
from deckforge.review.density import DensityLimits
from deckforge.runtime.contracts import OutlineSlide, Slide, SlideContent, StrategyProfile, Theme
from deckforge.runtime.llm_client import ChatMessage, RuntimeModelClient
from deckforge.runtime.llm_loop import complete_structured
from deckforge.runtime.prompt_registry import get_prompt_definition
from deckforge.runtime.validation import check_slide_content, schema_validator


PRIOR_CONTENT_SLIDES = 5
PRIOR_EXCERPT_CHARS = 200


def _excerpt(body: str) -> str:
    text = " ".join(body.split())
    if len(text) <= PRIOR_EXCERPT_CHARS:
        return text
    return text[:PRIOR_EXCERPT_CHARS].rstrip() + "..."


def image_instruction(frequency: int) -> str:
    if frequency <= 0:
        return 'Never generate imagePromptHint; always set it to "".'
    if frequency == 1:
        return "Every slide must have a non-empty imagePromptHint."
    if frequency == 2:
        return "At least every other slide must have a non-empty imagePromptHint."
    return f'Generate imagePromptHint for about 1 in {frequency} slides; set it to "" for the rest.'


def theme_block(theme: Theme) -> str:
    colors = ", ".join(f"{name} {value}" for name, value in theme.palette.items())
    return (
        f"Theme: {theme.display_name} ({theme.category}); headings in {theme.heading_font}, "
        f"body in {theme.body_font}. Palette: {colors}."
    )


def fallback_content(entry: OutlineSlide) -> SlideContent:
    """Content built from the outline entry alone, used when the model gives up."""
    body = "\n".join(f"- {bullet}" for bullet in entry.bullets)
    return SlideContent(title=entry.title, body=body, speaker_notes="", image_prompt=None)


class SlideWriter:
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
        self._prompt = get_prompt_definition("slide_content_v1")
        self._validator = schema_validator(self._prompt.response_schema, check_slide_content)

    def system_prompt(
        self,
        *,
        limits: DensityLimits,
        presentation_type: str,
        theme: Theme,
        profile: StrategyProfile,
        image_frequency: int,
        knowledge: str = "",
    ) -> str:
        section_instruction = ""
        if profile.show_section_labels:
            section_instruction = "Keep the outline's section label for the slide; do not invent new sections."
        return self._prompt.render(
            max_words=limits.max_words,
            max_bullets=limits.max_bullets,
            max_table_rows=limits.max_table_rows,
            image_instruction=image_instruction(image_frequency),
            section_instruction=section_instruction,
            presentation_type=presentation_type,
            theme_block=theme_block(theme),
            strategy_context=strategy_context(profile),
            knowledge_context=knowledge,
        )

    async def write(
        self,
        entry: OutlineSlide,
        *,
        system_prompt: str,
        deck_title: str,
        prior_slides: Sequence[Slide] = (),
    ) -> SlideContent:
        prior = "\n".join(f"{slide.number}. {slide.title}" for slide in prior_slides) or "(none yet)"
        recent = "\n".join(
            f"{slide.number}. {_excerpt(slide.body)}" for slide in prior_slides[-PRIOR_CONTENT_SLIDES:]
        )
        bullets = "\n".join(f"- {bullet}" for bullet in entry.bullets)
        user_prompt = f"Deck: {deck_title}\nSlides already written:\n{prior}\n\n"
        if recent:
            user_prompt += f"Recent slide content (avoid repeating it):\n{recent}\n\n"
        user_prompt += (
            f"Write slide {entry.number} ({entry.slide_type}).\n"
            f"Outline title: {entry.title}\n"
            f"Outline bullets:\n{bullets}"
        )
        if entry.section_label:
            user_prompt += f"\nSection: {entry.section_label}"
        result = await complete_structured(
            client=self._client,
            messages=[
                ChatMessage(role="system", content=system_prompt),
                ChatMessage(role="user", content=user_prompt),
            ],
            model_name=self._model_name,
            validator=self._validator,
            max_retries=self._max_retries,
            cache_hint=f"slide:{self._prompt.prompt_template_hash}",
            backoff_base_sec=self._backoff_base_sec,
        )
        return SlideContent.from_payload(result.output)
