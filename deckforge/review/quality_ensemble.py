# ABOUTME: Runs the whole-deck quality pass: style enforcement, fact checking, narrative coherence and structure checks.
# ABOUTME: Degrades each model agent to a neutral result on failure and returns fixes with aggregate metrics.

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
import logging
import re
from typing import Any, Awaitable, Callable, Literal, Sequence, TypeVar

from deckforge.ports.protocol import KnowledgeProvider
from deckforge.runtime.contracts import DECORATIVE_SLIDE_TYPES, Slide, Theme
from deckforge.runtime.errors import ContractViolation, ProviderError
from deckforge.runtime.llm_client import ChatMessage, RuntimeModelClient
from deckforge.runtime.llm_loop import complete_structured
from deckforge.runtime.prompt_registry import get_prompt_definition
from deckforge.runtime.validation import (
    check_fact_result,
    check_narrative_result,
    check_style_result,
    schema_validator,
)


logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")

FixAgent = Literal["style", "fact_check", "structural"]

STYLE_PASS_THRESHOLD = 0.7
NARRATIVE_PASS_THRESHOLD = 0.6
FACT_CHECK_PASS_THRESHOLD = 0.7
STYLE_BATCH_SIZE = 3
FACT_CHECK_BATCH_SIZE = 2
MIN_SLIDES_FOR_NARRATIVE = 3
MAX_RENDERED_GRID_ITEMS = 6
FALLBACK_AGENT_SCORE = 0.8

FACT_CHECK_SLIDE_TYPES = frozenset(
    {"DATA_METRICS", "CONTENT", "PROBLEM", "SOLUTION", "COMPARISON", "CASE_STUDY"}
)

THEME_STYLE_RULES = {
    "consulting": (
        "Consulting theme rules:\n"
        "- Every title is an action sentence (verb plus outcome), not a topic label.\n"
        "- One concept per slide without exception.\n"
        "- Tables carry a one-line takeaway.\n"
        "- Bullets are parallel in structure.\n"
        "- Adjectives come with numbers: write \"42% growth\", not \"significant growth\"."
    ),
    "dark": (
        "Dark theme rules:\n"
        "- Accent color is reserved for at most two emphasis keywords per slide.\n"
        "- Titles stay concise, 3 to 7 words.\n"
        "- Image prompts specify a dark, moody aesthetic."
    ),
    "light": (
        "Light theme rules:\n"
        "- At most two colors per slide, primary and accent.\n"
        "- Content fills at most 70% of the slide area.\n"
        "- Image prompts specify a clean, bright, minimal aesthetic."
    ),
    "creative": (
        "Creative theme rules:\n"
        "- Bold color is welcome but hierarchy stays title, body, secondary.\n"
        "- Image prompts are vibrant and expressive.\n"
        "- Emphasis comes from color, not from extra text."
    ),
}

_SPLIT_SUFFIX_PATTERN = re.compile(r"\((\d+)/(\d+)\)\s*$")


@dataclass
class QualityReviewOptions:
    theme: Theme
    presentation_type: str
    user_id: str
    framework: str | None = None


@dataclass
class AgentIssue:
    rule: str
    severity: str
    message: str


@dataclass
class SlideScore:
    slide_number: int
    verdict: str
    score: float
    issues: list[AgentIssue] = field(default_factory=list)
    payload: dict[str, Any] = field(default_factory=dict)


@dataclass
class NarrativeResult:
    score: float
    assessment: str
    issues: list[dict[str, Any]] = field(default_factory=list)


@dataclass
class StructuralIssue:
    slide_number: int
    check: str
    severity: str
    message: str


@dataclass
class SlideFix:
    slide_number: int
    agent: FixAgent
    original_title: str
    original_body: str
    fixed_title: str
    fixed_body: str


@dataclass
class QualityMetrics:
    avg_style_score: float
    narrative_score: float
    avg_fact_score: float
    slides_fixed: int
    errors_found: int


@dataclass
class QualityReviewResult:
    passed: bool
    style_results: list[SlideScore]
    narrative: NarrativeResult | None
    fact_results: list[SlideScore]
    structural_issues: list[StructuralIssue]
    fixes: list[SlideFix]
    metrics: QualityMetrics


async def _in_batches(items: Sequence[T], size: int, worker: Callable[[T], Awaitable[R]]) -> list[R]:
    results: list[R] = []
    for start in range(0, len(items), size):
        batch = items[start : start + size]
        results.extend(await asyncio.gather(*(worker(item) for item in batch)))
    return results


def _issues_from(payload: dict[str, Any]) -> list[AgentIssue]:
    issues: list[AgentIssue] = []
    for item in payload.get("issues") or []:
        if isinstance(item, dict):
            issues.append(
                AgentIssue(
                    rule=str(item.get("rule") or item.get("type") or "unspecified"),
                    severity=str(item.get("severity") or "warning"),
                    message=str(item.get("message") or ""),
                )
            )
    return issues


def _slide_text(slide: Slide) -> str:
    parts = [
        f"Slide {slide.number} ({slide.slide_type})",
        f"Title: {slide.title}",
        f"Body:\n{slide.body}",
        f"Speaker notes:\n{slide.speaker_notes or '(none)'}",
    ]
    if slide.image_prompt:
        parts.append(f"imagePromptHint: {slide.image_prompt}")
    return "\n".join(parts)


def check_structure(slides: Sequence[Slide]) -> tuple[list[StructuralIssue], list[SlideFix]]:
    issues: list[StructuralIssue] = []
    fixes: list[SlideFix] = []

    groups: dict[str, list[tuple[Slide, int, int]]] = {}
    for slide in slides:
        match = _SPLIT_SUFFIX_PATTERN.search(slide.title)
        if match:
            base = _SPLIT_SUFFIX_PATTERN.sub("", slide.title).strip()
            groups.setdefault(base, []).append((slide, int(match.group(1)), int(match.group(2))))
    for base, parts in groups.items():
        expected = parts[0][2]
        if len(parts) >= expected:
            continue
        for slide, part, _ in parts:
            issues.append(
                StructuralIssue(
                    slide_number=slide.number,
                    check="orphaned_split",
                    severity="error",
                    message=f'Title "{slide.title}" references {expected} parts but only {len(parts)} exist',
                )
            )
            fixed_title = base if len(parts) == 1 else f"{base} ({part}/{len(parts)})"
            fixes.append(
                SlideFix(
                    slide_number=slide.number,
                    agent="structural",
                    original_title=slide.title,
                    original_body=slide.body,
                    fixed_title=fixed_title,
                    fixed_body=slide.body,
                )
            )

    for slide in slides:
        if slide.slide_type not in {"ARCHITECTURE", "FEATURE_GRID"}:
            continue
        lines = [line for line in slide.body.split("\n") if line.strip()]
        if len(lines) <= MAX_RENDERED_GRID_ITEMS:
            continue
        issues.append(
            StructuralIssue(
                slide_number=slide.number,
                check=f"{slide.slide_type.lower()}_overflow",
                severity="warning",
                message=f"{slide.slide_type} slide has {len(lines)} items (max {MAX_RENDERED_GRID_ITEMS} rendered)",
            )
        )
        fixes.append(
            SlideFix(
                slide_number=slide.number,
                agent="structural",
                original_title=slide.title,
                original_body=slide.body,
                fixed_title=slide.title,
                fixed_body="\n".join(lines[:MAX_RENDERED_GRID_ITEMS]),
            )
        )

    for slide in slides:
        if slide.title and not slide.body.strip() and slide.slide_type not in DECORATIVE_SLIDE_TYPES:
            issues.append(
                StructuralIssue(
                    slide_number=slide.number,
                    check="empty_body",
                    severity="error",
                    message=f'Slide {slide.number} "{slide.title}" has an empty body',
                )
            )

    by_title: dict[str, list[int]] = {}
    for slide in slides:
        by_title.setdefault(slide.title, []).append(slide.number)
    for title, numbers in by_title.items():
        if len(numbers) > 1:
            issues.append(
                StructuralIssue(
                    slide_number=numbers[1],
                    check="duplicate_title",
                    severity="warning",
                    message=f'Duplicate title "{title}" on slides {", ".join(str(n) for n in numbers)}',
                )
            )

    if slides and slides[-1].slide_type != "CTA":
        issues.append(
            StructuralIssue(
                slide_number=slides[-1].number,
                check="missing_cta",
                severity="warning",
                message=f"Last slide is {slides[-1].slide_type}, not CTA",
            )
        )
    return issues, fixes


class QualityReviewEnsemble:
    def __init__(
        self,
        client: RuntimeModelClient,
        *,
        model_name: str,
        knowledge: KnowledgeProvider | None = None,
        max_retries: int = 1,
        backoff_base_sec: float = 1.0,
        knowledge_snippet_limit: int = 5,
    ) -> None:
        self._client = client
        self._model_name = model_name
        self._knowledge = knowledge
        self._max_retries = max_retries
        self._backoff_base_sec = backoff_base_sec
        self._knowledge_snippet_limit = knowledge_snippet_limit
        self._style_prompt = get_prompt_definition("style_enforcer_v1")
        self._fact_prompt = get_prompt_definition("fact_checker_v1")
        self._narrative_prompt = get_prompt_definition("narrative_coherence_v1")

    async def _complete(
        self,
        *,
        system_prompt: str,
        user_prompt: str,
        validator: Callable[[Any], list[str]],
        cache_hint: str | None = None,
    ) -> dict[str, Any]:
        result = await complete_structured(
            client=self._client,
            messages=[
                ChatMessage(role="system", content=system_prompt),
                ChatMessage(role="user", content=user_prompt),
            ],
            model_name=self._model_name,
            validator=validator,
            max_retries=self._max_retries,
            cache_hint=cache_hint,
            backoff_base_sec=self._backoff_base_sec,
        )
        return result.output

    async def _style_one(self, slide: Slide, system_prompt: str) -> SlideScore:
        try:
            payload = await self._complete(
                system_prompt=system_prompt,
                user_prompt=_slide_text(slide),
                validator=schema_validator(self._style_prompt.response_schema, check_style_result),
                cache_hint=f"style:{self._style_prompt.prompt_template_hash}",
            )
        except (ContractViolation, ProviderError) as exc:
            logger.warning("Style enforcer failed for slide %d: %s", slide.number, exc)
            return SlideScore(
                slide_number=slide.number,
                verdict="PASS",
                score=FALLBACK_AGENT_SCORE,
                issues=[AgentIssue(rule="agent_error", severity="warning", message=str(exc))],
            )
        return SlideScore(
            slide_number=slide.number,
            verdict=str(payload["verdict"]),
            score=float(payload["score"]),
            issues=_issues_from(payload),
            payload=payload,
        )

    async def run_style_enforcer(self, slides: Sequence[Slide], theme: Theme) -> list[SlideScore]:
        colors = "\n".join(f"- {name}: {value}" for name, value in theme.palette.items())
        system_prompt = self._style_prompt.render(
            theme_name=theme.display_name,
            theme_rules=THEME_STYLE_RULES.get(theme.category, THEME_STYLE_RULES["dark"]),
            theme_colors=f"Theme colors:\n{colors}" if colors else "",
        )
        return await _in_batches(slides, STYLE_BATCH_SIZE, lambda slide: self._style_one(slide, system_prompt))

    async def _knowledge_context(self, user_id: str, slide: Slide) -> str:
        if self._knowledge is None:
            return ""
        snippets = await self._knowledge.retrieve(
            user_id,
            f"{slide.title}\n{slide.body}",
            limit=self._knowledge_snippet_limit,
        )
        return "\n\n".join(f"[{item.source_id}] {item.text}" for item in snippets)

    async def _fact_one(self, slide: Slide, user_id: str) -> SlideScore:
        try:
            context = await self._knowledge_context(user_id, slide)
            payload = await self._complete(
                system_prompt=self._fact_prompt.render(
                    knowledge_context=context or "(No knowledge context available; mark specific claims unverified.)"
                ),
                user_prompt=_slide_text(slide),
                validator=schema_validator(self._fact_prompt.response_schema, check_fact_result),
            )
        except (ContractViolation, ProviderError) as exc:
            logger.warning("Fact checker failed for slide %d: %s", slide.number, exc)
            return SlideScore(slide_number=slide.number, verdict="VERIFIED", score=FALLBACK_AGENT_SCORE)
        return SlideScore(
            slide_number=slide.number,
            verdict=str(payload["verdict"]),
            score=float(payload["score"]),
            payload=payload,
        )

    async def run_fact_checker(self, slides: Sequence[Slide], user_id: str) -> list[SlideScore]:
        eligible = [slide for slide in slides if slide.slide_type in FACT_CHECK_SLIDE_TYPES]
        return await _in_batches(eligible, FACT_CHECK_BATCH_SIZE, lambda slide: self._fact_one(slide, user_id))

    async def run_narrative_coherence(
        self,
        slides: Sequence[Slide],
        presentation_type: str,
        framework: str | None = None,
    ) -> NarrativeResult | None:
        if len(slides) < MIN_SLIDES_FOR_NARRATIVE:
            return None
        framework_guidance = (
            f'Story framework: "{framework}". Check that the slide sequence follows its arc.' if framework else ""
        )
        deck_text = "\n\n".join(_slide_text(slide) for slide in slides)
        try:
            payload = await self._complete(
                system_prompt=self._narrative_prompt.render(
                    presentation_type=presentation_type,
                    framework_guidance=framework_guidance,
                ),
                user_prompt=deck_text,
                validator=schema_validator(self._narrative_prompt.response_schema, check_narrative_result),
            )
        except (ContractViolation, ProviderError) as exc:
            logger.warning("Narrative coherence agent failed: %s", exc)
            return None
        return NarrativeResult(
            score=float(payload["overallScore"]),
            assessment=str(payload["arcAssessment"]),
            issues=[item for item in payload["issues"] if isinstance(item, dict)],
        )

    async def review_deck(self, slides: Sequence[Slide], options: QualityReviewOptions) -> QualityReviewResult:
        ordered = sorted(slides, key=lambda slide: slide.number)
        by_number = {slide.number: slide for slide in ordered}
        logger.info(
            "Quality review of %d slides (theme=%s, type=%s)",
            len(ordered),
            options.theme.name,
            options.presentation_type,
        )
        style_results, fact_results = await asyncio.gather(
            self.run_style_enforcer(ordered, options.theme),
            self.run_fact_checker(ordered, options.user_id),
        )
        narrative = await self.run_narrative_coherence(ordered, options.presentation_type, options.framework)

        fixes: list[SlideFix] = []
        for result in style_results:
            original = by_number.get(result.slide_number)
            rewritten_title = result.payload.get("rewrittenTitle")
            rewritten_body = result.payload.get("rewrittenBody")
            if original is None or result.verdict != "NEEDS_FIX" or not (rewritten_title or rewritten_body):
                continue
            fixes.append(
                SlideFix(
                    slide_number=original.number,
                    agent="style",
                    original_title=original.title,
                    original_body=original.body,
                    fixed_title=rewritten_title or original.title,
                    fixed_body=rewritten_body or original.body,
                )
            )

        for result in fact_results:
            original = by_number.get(result.slide_number)
            if original is None or result.verdict != "HAS_ERRORS":
                continue
            fixed_body = original.body
            for claim in result.payload.get("claims") or []:
                correction = claim.get("correction")
                if claim.get("status") == "contradicted" and correction and claim.get("claim") in fixed_body:
                    fixed_body = fixed_body.replace(claim["claim"], correction)
            if fixed_body != original.body:
                fixes.append(
                    SlideFix(
                        slide_number=original.number,
                        agent="fact_check",
                        original_title=original.title,
                        original_body=original.body,
                        fixed_title=original.title,
                        fixed_body=fixed_body,
                    )
                )

        structural_issues, structural_fixes = check_structure(ordered)
        fixes.extend(structural_fixes)
        if structural_issues:
            logger.info(
                "Structural checks found %d issue(s): %s",
                len(structural_issues),
                ", ".join(issue.check for issue in structural_issues),
            )

        avg_style = sum(item.score for item in style_results) / len(style_results) if style_results else 1.0
        narrative_score = narrative.score if narrative is not None else 1.0
        avg_fact = sum(item.score for item in fact_results) / len(fact_results) if fact_results else 1.0
        errors_found = (
            sum(1 for item in style_results for issue in item.issues if issue.severity == "error")
            + sum(1 for issue in (narrative.issues if narrative else []) if issue.get("severity") == "error")
            + sum(
                1
                for item in fact_results
                for claim in item.payload.get("claims") or []
                if claim.get("status") == "contradicted"
            )
            + sum(1 for issue in structural_issues if issue.severity == "error")
        )
        passed = (
            avg_style >= STYLE_PASS_THRESHOLD
            and narrative_score >= NARRATIVE_PASS_THRESHOLD
            and avg_fact >= FACT_CHECK_PASS_THRESHOLD
        )
        logger.info(
            "Quality review complete: style=%.2f narrative=%.2f facts=%.2f fixes=%d passed=%s",
            avg_style,
            narrative_score,
            avg_fact,
            len(fixes),
            passed,
        )
        return QualityReviewResult(
            passed=passed,
            style_results=style_results,
            narrative=narrative,
            fact_results=fact_results,
            structural_issues=structural_issues,
            fixes=fixes,
            metrics=QualityMetrics(
                avg_style_score=avg_style,
                narrative_score=narrative_score,
                avg_fact_score=avg_fact,
                slides_fixed=len(fixes),
                errors_found=errors_found,
            ),
        )
