# ABOUTME: Exposes the collaborator protocols and their in-memory implementations.
# ABOUTME: Provides a stable import location for wiring the pipeline to stores and services.

from deckforge.ports.memory import (
    InMemoryDeckStore,
    InMemoryStrategyProfileStore,
    InMemoryThemeCatalog,
    RecordingEventSink,
    RecordingExportService,
    RecordingImageQueue,
    StaticKnowledgeProvider,
)
from deckforge.ports.protocol import (
    DeckStore,
    EventSink,
    ExportService,
    ImageQueue,
    KnowledgeProvider,
    StrategyProfileStore,
    ThemeCatalog,
)

__all__ = [
    "DeckStore",
    "EventSink",
    "ExportService",
    "ImageQueue",
    "InMemoryDeckStore",
    "InMemoryStrategyProfileStore",
    "InMemoryThemeCatalog",
    "KnowledgeProvider",
    "RecordingEventSink",
    "RecordingExportService",
    "RecordingImageQueue",
    "StaticKnowledgeProvider",
    "StrategyProfileStore",
    "ThemeCatalog",
]
