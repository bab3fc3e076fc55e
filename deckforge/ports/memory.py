# ABOUTME: Provides in-memory implementations of every pipeline collaborator protocol.
# ABOUTME: Used by the CLI and tests to run the full deck pipeline without external services.

from __future__ import annotations

from dataclasses import replace
import re
from typing import Any

from deckforge.runtime.contracts import (
    Deck,
    DeckMessage,
    KnowledgeSnippet,
    Slide,
    StrategyProfile,
    Theme,
)
from deckforge.runtime.errors import DeckNotFound


_WORD_PATTERN = re.compile(r"[a-z0-9]+")


class InMemoryDeckStore:
    def __init__(self) -> None:
        self._decks: dict[str, Deck] = {}
        self._slides: dict[str, Slide] = {}
        self._messages: dict[str, DeckMessage] = {}

    def add_deck(self, deck: Deck) -> Deck:
        self._decks[deck.id] = deck
        return deck

    async def get_deck(self, deck_id: str) -> Deck | None:
        return self._decks.get(deck_id)

    async def update_deck(self, deck_id: str, **fields: Any) -> Deck:
        deck = self._decks.get(deck_id)
        if deck is None:
            raise DeckNotFound(f"Unknown deck {deck_id}.")
        updated = replace(deck, **fields)
        self._decks[deck_id] = updated
        return updated

    async def list_slides(self, deck_id: str) -> list[Slide]:
        slides = [slide for slide in self._slides.values() if slide.deck_id == deck_id]
        return sorted(slides, key=lambda slide: slide.number)

    async def get_slide(self, slide_id: str) -> Slide | None:
        return self._slides.get(slide_id)

    async def create_slide(self, slide: Slide) -> Slide:
        self._slides[slide.id] = slide
        return slide

    async def update_slide(self, slide_id: str, **fields: Any) -> Slide:
        slide = self._slides.get(slide_id)
        if slide is None:
            raise KeyError(f"Unknown slide {slide_id}.")
        updated = replace(slide, **fields)
        updated.refresh_hash()
        self._slides[slide_id] = updated
        return updated

    async def delete_slide(self, slide_id: str) -> None:
        self._slides.pop(slide_id, None)

    async def delete_slides(self, deck_id: str) -> int:
        doomed = [slide_id for slide_id, slide in self._slides.items() if slide.deck_id == deck_id]
        for slide_id in doomed:
            del self._slides[slide_id]
        return len(doomed)

    async def shift_slides(self, deck_id: str, *, from_number: int, delta: int) -> int:
        moved = 0
        for slide in self._slides.values():
            if slide.deck_id == deck_id and slide.number >= from_number:
                slide.number += delta
                moved += 1
        return moved

    async def add_message(self, message: DeckMessage) -> DeckMessage:
        self._messages[message.id] = message
        return message

    async def list_messages(self, deck_id: str) -> list[DeckMessage]:
        return [message for message in self._messages.values() if message.deck_id == deck_id]

    async def update_message(self, message_id: str, **fields: Any) -> DeckMessage:
        message = self._messages.get(message_id)
        if message is None:
            raise KeyError(f"Unknown message {message_id}.")
        updated = replace(message, **fields)
        self._messages[message_id] = updated
        return updated


class StaticKnowledgeProvider:
    """Ranks stored snippets by word overlap with the query."""

    def __init__(self, snippets: list[KnowledgeSnippet] | None = None) -> None:
        self._snippets = list(snippets or [])

    def add(self, text: str, *, source_id: str) -> None:
        self._snippets.append(KnowledgeSnippet(text=text, source_id=source_id))

    async def retrieve(self, user_id: str, query: str, *, limit: int = 5) -> list[KnowledgeSnippet]:
        del user_id
        query_words = set(_WORD_PATTERN.findall(query.lower()))
        if not query_words:
            return []
        ranked: list[KnowledgeSnippet] = []
        for snippet in self._snippets:
            words = set(_WORD_PATTERN.findall(snippet.text.lower()))
            overlap = len(query_words & words)
            if overlap:
                ranked.append(replace(snippet, score=overlap / len(query_words)))
        ranked.sort(key=lambda item: item.score, reverse=True)
        return ranked[:limit]


class InMemoryStrategyProfileStore:
    def __init__(self, profiles: list[StrategyProfile] | None = None) -> None:
        self._profiles = {profile.id: profile for profile in profiles or []}

    def add(self, profile: StrategyProfile) -> StrategyProfile:
        self._profiles[profile.id] = profile
        return profile

    async def get(self, profile_id: str) -> StrategyProfile | None:
        return self._profiles.get(profile_id)

    async def update(self, profile_id: str, **fields: Any) -> StrategyProfile:
        profile = self._profiles.get(profile_id)
        if profile is None:
            raise KeyError(f"Unknown strategy profile {profile_id}.")
        updated = replace(profile, **fields)
        self._profiles[profile_id] = updated
        return updated


DEFAULT_THEMES = (
    Theme(
        id="midnight",
        name="midnight",
        display_name="Midnight",
        category="dark",
        palette={
            "primary": "#38bdf8",
            "secondary": "#94a3b8",
            "accent": "#fbbf24",
            "background": "#0f172a",
            "text": "#e2e8f0",
        },
        heading_font="Montserrat",
        body_font="Inter",
    ),
    Theme(
        id="boardroom",
        name="boardroom",
        display_name="Boardroom",
        category="consulting",
        palette={
            "primary": "#051c2c",
            "secondary": "#4b5563",
            "accent": "#2251ff",
            "background": "#ffffff",
            "text": "#1a1a2a",
        },
        heading_font="Georgia",
        body_font="Arial",
        default_image_frequency=0,
    ),
    Theme(
        id="paper",
        name="paper",
        display_name="Paper",
        category="light",
        palette={
            "primary": "#1e3a8a",
            "secondary": "#475569",
            "accent": "#0ea5e9",
            "background": "#f8fafc",
            "text": "#0f172a",
        },
    ),
    Theme(
        id="sunrise",
        name="sunrise",
        display_name="Sunrise",
        category="creative",
        palette={
            "primary": "#f97316",
            "secondary": "#7c3aed",
            "accent": "#facc15",
            "background": "#fff7ed",
            "text": "#1c1917",
        },
        heading_font="Poppins",
        body_font="Nunito",
        default_image_frequency=2,
    ),
)

_CATEGORY_PREFERENCE = {
    "VC_PITCH": ("dark", "creative", "consulting", "light"),
    "EXECUTIVE": ("consulting", "light", "dark", "creative"),
    "TECHNICAL": ("dark", "light", "consulting", "creative"),
    "STANDARD": ("light", "dark", "creative", "consulting"),
}


class InMemoryThemeCatalog:
    def __init__(self, themes: tuple[Theme, ...] | list[Theme] = DEFAULT_THEMES, *, recommend_enabled: bool = True) -> None:
        if not themes:
            raise ValueError("At least one theme is required.")
        self._themes = {theme.id: theme for theme in themes}
        self._default_id = next(iter(self._themes))
        self._recommend_enabled = recommend_enabled

    async def get(self, theme_id: str) -> Theme | None:
        return self._themes.get(theme_id)

    async def default(self) -> Theme:
        return self._themes[self._default_id]

    async def recommend(self, presentation_type: str, audience: str, *, limit: int = 3) -> list[Theme]:
        del audience
        if not self._recommend_enabled:
            return []
        order = _CATEGORY_PREFERENCE.get(presentation_type, _CATEGORY_PREFERENCE["STANDARD"])
        ranked = sorted(
            self._themes.values(),
            key=lambda theme: order.index(theme.category) if theme.category in order else len(order),
        )
        return ranked[:limit]


class RecordingImageQueue:
    def __init__(self) -> None:
        self.batches: list[tuple[str, str, list[str]]] = []

    async def enqueue_batch(self, deck_id: str, user_id: str, slides: list[Slide]) -> int:
        queued = [slide.id for slide in slides if slide.image_prompt]
        self.batches.append((deck_id, user_id, queued))
        return len(queued)


class RecordingExportService:
    def __init__(self) -> None:
        self.requests: list[tuple[str, str]] = []

    async def export(self, deck_id: str, export_format: str) -> str:
        self.requests.append((deck_id, export_format))
        return f"export-{len(self.requests)}"


class RecordingEventSink:
    def __init__(self) -> None:
        self.events: list[tuple[str, str, str]] = []

    async def slide_added(self, deck_id: str, slide: Slide) -> None:
        self.events.append(("added", deck_id, slide.id))

    async def slide_updated(self, deck_id: str, slide: Slide) -> None:
        self.events.append(("updated", deck_id, slide.id))

    async def slide_removed(self, deck_id: str, slide_id: str) -> None:
        self.events.append(("removed", deck_id, slide_id))
