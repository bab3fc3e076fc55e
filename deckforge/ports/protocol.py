# ABOUTME: Defines the outbound collaborator protocols the deck pipeline depends on.
# ABOUTME: Covers the deck store, knowledge retrieval, strategy profiles, themes, images, export and notifications.

from __future__ import annotations

from typing import Any, Protocol

from deckforge.runtime.contracts import Deck, DeckMessage, KnowledgeSnippet, Slide, StrategyProfile, Theme


class DeckStore(Protocol):
    async def get_deck(self, deck_id: str) -> Deck | None:
        raise NotImplementedError

    async def update_deck(self, deck_id: str, **fields: Any) -> Deck:
        raise NotImplementedError

    async def list_slides(self, deck_id: str) -> list[Slide]:
        raise NotImplementedError

    async def get_slide(self, slide_id: str) -> Slide | None:
        raise NotImplementedError

    async def create_slide(self, slide: Slide) -> Slide:
        raise NotImplementedError

    async def update_slide(self, slide_id: str, **fields: Any) -> Slide:
        raise NotImplementedError

    async def delete_slide(self, slide_id: str) -> None:
        raise NotImplementedError

    async def delete_slides(self, deck_id: str) -> int:
        raise NotImplementedError

    async def shift_slides(self, deck_id: str, *, from_number: int, delta: int) -> int:
        raise NotImplementedError

    async def add_message(self, message: DeckMessage) -> DeckMessage:
        raise NotImplementedError

    async def list_messages(self, deck_id: str) -> list[DeckMessage]:
        raise NotImplementedError

    async def update_message(self, message_id: str, **fields: Any) -> DeckMessage:
        raise NotImplementedError


class KnowledgeProvider(Protocol):
    async def retrieve(self, user_id: str, query: str, *, limit: int = 5) -> list[KnowledgeSnippet]:
        raise NotImplementedError


class StrategyProfileStore(Protocol):
    async def get(self, profile_id: str) -> StrategyProfile | None:
        raise NotImplementedError

    async def update(self, profile_id: str, **fields: Any) -> StrategyProfile:
        raise NotImplementedError


class ThemeCatalog(Protocol):
    async def get(self, theme_id: str) -> Theme | None:
        raise NotImplementedError

    async def default(self) -> Theme:
        raise NotImplementedError

    async def recommend(self, presentation_type: str, audience: str, *, limit: int = 3) -> list[Theme]:
        raise NotImplementedError


class ImageQueue(Protocol):
    async def enqueue_batch(self, deck_id: str, user_id: str, slides: list[Slide]) -> int:
        raise NotImplementedError


class ExportService(Protocol):
    async def export(self, deck_id: str, export_format: str) -> str:
        raise NotImplementedError


class EventSink(Protocol):
    async def slide_added(self, deck_id: str, slide: Slide) -> None:
        raise NotImplementedError

    async def slide_updated(self, deck_id: str, slide: Slide) -> None:
        raise NotImplementedError

    async def slide_removed(self, deck_id: str, slide_id: str) -> None:
        raise NotImplementedError
