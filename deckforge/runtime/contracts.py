# ABOUTME: Defines the deck, outline, slide, credit and review dataclasses shared across the pipeline.
# ABOUTME: Provides serialization helpers and payload decoders used when model output becomes records.

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
import hashlib
from typing import Any, Literal
from uuid import uuid4


DeckStatus = Literal["EMPTY", "PROCESSING", "COMPLETED", "FAILED"]
ReservationState = Literal["RESERVED", "COMMITTED", "RELEASED"]
ValidationState = Literal["PENDING", "ACCEPTED", "EDITED", "REJECTED"]
OutlineState = Literal["NONE", "PENDING", "EXECUTED", "DISCARDED"]
ReviewVerdict = Literal["PASS", "NEEDS_SPLIT"]
IssueSeverity = Literal["warning", "error"]
StreamEventType = Literal["token", "done", "error", "action", "thinking", "progress"]
PresentationType = Literal["STANDARD", "VC_PITCH", "TECHNICAL", "EXECUTIVE"]

SLIDE_TYPES = (
    "TITLE",
    "OUTLINE",
    "PROBLEM",
    "SOLUTION",
    "DATA_METRICS",
    "PROCESS",
    "COMPARISON",
    "ARCHITECTURE",
    "FEATURE_GRID",
    "CASE_STUDY",
    "QUOTE",
    "SECTION_DIVIDER",
    "VISUAL_HUMOR",
    "CONTENT",
    "CTA",
)
DECORATIVE_SLIDE_TYPES = frozenset({"VISUAL_HUMOR", "SECTION_DIVIDER"})
PRESENTATION_TYPES = ("STANDARD", "VC_PITCH", "TECHNICAL", "EXECUTIVE")


def utc_now_rfc3339() -> str:
    return datetime.now(tz=timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def new_id() -> str:
    return uuid4().hex


def compute_content_hash(
    *,
    title: str,
    body: str,
    speaker_notes: str | None,
    slide_type: str,
    image_url: str | None = None,
) -> str:
    material = "|".join([title, body, speaker_notes or "", slide_type, image_url or ""])
    return hashlib.sha256(material.encode("utf-8")).hexdigest()[:16]


@dataclass
class Deck:
    id: str
    user_id: str
    title: str = ""
    topic: str = ""
    presentation_type: PresentationType = "STANDARD"
    status: DeckStatus = "EMPTY"
    theme_id: str | None = None
    strategy_profile_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class OutlineSlide:
    number: int
    title: str
    bullets: list[str]
    slide_type: str = "CONTENT"
    section_label: str | None = None

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> OutlineSlide:
        return cls(
            number=int(payload["slideNumber"]),
            title=str(payload["title"]).strip(),
            bullets=[str(item).strip() for item in payload.get("bulletPoints") or []],
            slide_type=str(payload.get("slideType") or "CONTENT"),
            section_label=payload.get("sectionLabel") or None,
        )

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "slideNumber": self.number,
            "title": self.title,
            "bulletPoints": list(self.bullets),
            "slideType": self.slide_type,
        }
        if self.section_label:
            payload["sectionLabel"] = self.section_label
        return payload


@dataclass
class Outline:
    title: str
    slides: list[OutlineSlide]

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> Outline:
        return cls(
            title=str(payload["title"]).strip(),
            slides=[OutlineSlide.from_payload(item) for item in payload["slides"]],
        )

    def to_payload(self) -> dict[str, Any]:
        return {"title": self.title, "slides": [slide.to_payload() for slide in self.slides]}

    def renumbered(self, slides: list[OutlineSlide]) -> Outline:
        numbered = [
            OutlineSlide(
                number=index,
                title=slide.title,
                bullets=list(slide.bullets),
                slide_type=slide.slide_type,
                section_label=slide.section_label,
            )
            for index, slide in enumerate(slides, start=1)
        ]
        return Outline(title=self.title, slides=numbered)

    def to_markdown(self) -> str:
        lines = [f"# {self.title}", ""]
        for slide in self.slides:
            lines.append(f"**{slide.number}. {slide.title}** _({slide.slide_type})_")
            lines.extend(f"- {bullet}" for bullet in slide.bullets)
            lines.append("")
        return "\n".join(lines).rstrip() + "\n"


@dataclass
class GenerationRequest:
    topic: str
    presentation_type: PresentationType = "STANDARD"
    min_slides: int | None = None
    max_slides: int | None = None
    theme_id: str | None = None
    auto_generate_images: bool = True


@dataclass
class SlideContent:
    title: str
    body: str
    speaker_notes: str = ""
    image_prompt: str | None = None

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> SlideContent:
        image_prompt = payload.get("imagePromptHint")
        return cls(
            title=str(payload["title"]).strip(),
            body=str(payload["body"]).strip(),
            speaker_notes=str(payload.get("speakerNotes") or "").strip(),
            image_prompt=str(image_prompt).strip() if image_prompt else None,
        )


@dataclass
class Slide:
    id: str
    deck_id: str
    number: int
    title: str
    body: str
    slide_type: str
    speaker_notes: str = ""
    image_prompt: str | None = None
    image_url: str | None = None
    section_label: str | None = None
    content_hash: str = ""

    def refresh_hash(self) -> str:
        self.content_hash = compute_content_hash(
            title=self.title,
            body=self.body,
            speaker_notes=self.speaker_notes,
            slide_type=self.slide_type,
            image_url=self.image_url,
        )
        return self.content_hash

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class DeckMessage:
    deck_id: str
    role: Literal["user", "assistant", "system"]
    content: str
    message_type: str = "text"
    metadata: dict[str, Any] = field(default_factory=dict)
    id: str = field(default_factory=new_id)
    created_at: str = field(default_factory=utc_now_rfc3339)


@dataclass
class CreditReservation:
    id: str
    user_id: str
    amount: int
    reason: str
    subject_id: str | None
    state: ReservationState
    created_at_monotonic: float
    expires_at_monotonic: float


@dataclass
class CreditTransaction:
    user_id: str
    amount: int
    balance_after: int
    reason: str
    reservation_id: str
    subject_id: str | None = None
    created_at: str = field(default_factory=utc_now_rfc3339)


@dataclass
class ValidationItem:
    deck_id: str
    slide_id: str
    slide_number: int
    title: str
    body: str
    speaker_notes: str
    slide_type: str
    review_passed: bool
    state: ValidationState = "PENDING"
    created_at_monotonic: float = 0.0


@dataclass
class InteractionRequest:
    deck_id: str
    kind: str
    context_id: str
    options: list[Any]
    default: Any
    timeout_ms: int
    deadline_monotonic: float

    @property
    def key(self) -> str:
        return f"{self.deck_id}:{self.kind}:{self.context_id}"

    def to_metadata(self) -> dict[str, Any]:
        return {
            "action": self.kind,
            "contextId": self.context_id,
            "options": list(self.options),
            "default": self.default,
            "timeoutMs": self.timeout_ms,
        }


@dataclass
class ReviewIssue:
    rule: str
    severity: IssueSeverity
    message: str


@dataclass
class SuggestedSplit:
    title: str
    body: str


@dataclass
class ReviewResult:
    verdict: ReviewVerdict
    score: float
    issues: list[ReviewIssue] = field(default_factory=list)
    suggested_splits: list[SuggestedSplit] = field(default_factory=list)

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> ReviewResult:
        return cls(
            verdict=payload["verdict"],
            score=float(payload["score"]),
            issues=[
                ReviewIssue(rule=str(item["rule"]), severity=item["severity"], message=str(item["message"]))
                for item in payload.get("issues") or []
            ],
            suggested_splits=[
                SuggestedSplit(title=str(item["title"]).strip(), body=str(item["body"]).strip())
                for item in payload.get("suggestedSplits") or []
            ],
        )


@dataclass
class StreamEvent:
    type: StreamEventType
    content: str = ""
    metadata: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"type": self.type, "content": self.content}
        if self.metadata is not None:
            payload["metadata"] = self.metadata
        return payload


def token(content: str, metadata: dict[str, Any] | None = None) -> StreamEvent:
    return StreamEvent(type="token", content=content, metadata=metadata)


def thinking(content: str) -> StreamEvent:
    return StreamEvent(type="thinking", content=content)


def progress(content: str, **metadata: Any) -> StreamEvent:
    return StreamEvent(type="progress", content=content, metadata=metadata or None)


def action(name: str, **metadata: Any) -> StreamEvent:
    return StreamEvent(type="action", content="", metadata={"action": name, **metadata})


def error(content: str, *, code: str, **metadata: Any) -> StreamEvent:
    return StreamEvent(type="error", content=content, metadata={"code": code, **metadata})


def done(**metadata: Any) -> StreamEvent:
    return StreamEvent(type="done", content="", metadata=metadata or None)


@dataclass
class StrategyProfile:
    id: str
    audience: str = "General business audience"
    goal: str = "Inform"
    tone: str = "Professional"
    framework: str = "Problem, solution, proof, call to action"
    max_bullets: int | None = None
    max_words: int | None = None
    max_table_rows: int | None = None
    image_frequency: int | None = None
    show_section_labels: bool = False


@dataclass
class Theme:
    id: str
    name: str
    display_name: str
    category: str
    palette: dict[str, str]
    heading_font: str = "Inter"
    body_font: str = "Inter"
    default_image_frequency: int = 3


@dataclass
class KnowledgeSnippet:
    text: str
    source_id: str
    score: float = 0.0
