# ABOUTME: Wires settings, the model client and in-memory collaborators into a ready deck pipeline.
# ABOUTME: Shared by the CLI and end-to-end tests so both exercise the same composition.

from __future__ import annotations

from dataclasses import dataclass

from deckforge.chat.dispatcher import ChatDispatcher
from deckforge.credits.ledger import CreditLedger
from deckforge.gates.interaction_gate import InteractionGate
from deckforge.gates.validation_gate import ValidationGate
from deckforge.generation.orchestrator import GenerationOrchestrator
from deckforge.generation.outline import OutlineService
from deckforge.generation.slide_writer import SlideWriter
from deckforge.ports.memory import (
    InMemoryDeckStore,
    InMemoryStrategyProfileStore,
    InMemoryThemeCatalog,
    RecordingEventSink,
    RecordingExportService,
    RecordingImageQueue,
    StaticKnowledgeProvider,
)
from deckforge.review.content_reviewer import ContentReviewer
from deckforge.review.quality_ensemble import QualityReviewEnsemble
from deckforge.runtime.llm_client import RuntimeModelClient, build_model_client
from deckforge.runtime.settings import DeckforgeSettings


@dataclass
class DeckforgeApp:
    settings: DeckforgeSettings
    store: InMemoryDeckStore
    ledger: CreditLedger
    knowledge: StaticKnowledgeProvider
    strategies: InMemoryStrategyProfileStore
    themes: InMemoryThemeCatalog
    images: RecordingImageQueue
    exports: RecordingExportService
    events: RecordingEventSink
    gate: InteractionGate
    validation: ValidationGate
    outlines: OutlineService
    orchestrator: GenerationOrchestrator
    dispatcher: ChatDispatcher


def build_in_memory_app(
    settings: DeckforgeSettings | None = None,
    *,
    client: RuntimeModelClient | None = None,
    themes: InMemoryThemeCatalog | None = None,
    with_quality_review: bool = True,
) -> DeckforgeApp:
    settings = settings or DeckforgeSettings()
    if client is None:
        client = build_model_client(
            provider=settings.model.provider,
            api_key=settings.model.api_key,
            base_url=settings.model.base_url,
            request_timeout_sec=settings.model.request_timeout_sec,
        )
    pipeline = settings.pipeline
    store = InMemoryDeckStore()
    ledger = CreditLedger(reservation_ttl_sec=settings.credits.reservation_ttl_sec)
    knowledge = StaticKnowledgeProvider()
    strategies = InMemoryStrategyProfileStore()
    catalog = themes or InMemoryThemeCatalog()
    images = RecordingImageQueue()
    exports = RecordingExportService()
    events = RecordingEventSink()
    gate = InteractionGate()
    validation = ValidationGate(
        store,
        events=events,
        pending_ttl_sec=settings.validation.pending_ttl_sec,
        pending_max_entries=settings.validation.pending_max_entries,
        auto_approve_ttl_sec=settings.validation.auto_approve_ttl_sec,
    )
    outlines = OutlineService(
        client,
        store,
        ledger,
        model_name=settings.model.outline_model,
        knowledge=knowledge,
        strategies=strategies,
        ttl_sec=pipeline.outline_ttl_sec,
        max_entries=pipeline.outline_max_entries,
        max_retries=pipeline.structured_max_retries,
        backoff_base_sec=pipeline.backoff_base_sec,
        knowledge_snippet_limit=pipeline.knowledge_snippet_limit,
    )
    quality = None
    if with_quality_review:
        quality = QualityReviewEnsemble(
            client,
            model_name=settings.model.quality_model,
            knowledge=knowledge,
            backoff_base_sec=pipeline.backoff_base_sec,
            knowledge_snippet_limit=pipeline.knowledge_snippet_limit,
        )
    orchestrator = GenerationOrchestrator(
        outlines=outlines,
        store=store,
        ledger=ledger,
        writer=SlideWriter(
            client,
            model_name=settings.model.slide_model,
            max_retries=pipeline.structured_max_retries,
            backoff_base_sec=pipeline.backoff_base_sec,
        ),
        reviewer=ContentReviewer(
            client,
            model_name=settings.model.review_model,
            max_retries=pipeline.reviewer_max_retries,
            backoff_base_sec=pipeline.backoff_base_sec,
        ),
        validation=validation,
        gate=gate,
        themes=catalog,
        strategies=strategies,
        knowledge=knowledge,
        quality=quality,
        images=images,
        events=events,
        settings=pipeline,
    )
    dispatcher = ChatDispatcher(
        store=store,
        ledger=ledger,
        outlines=outlines,
        orchestrator=orchestrator,
        validation=validation,
        client=client,
        model_name=settings.model.chat_model,
        strategies=strategies,
        exports=exports,
        max_retries=pipeline.structured_max_retries,
        backoff_base_sec=pipeline.backoff_base_sec,
    )
    return DeckforgeApp(
        settings=settings,
        store=store,
        ledger=ledger,
        knowledge=knowledge,
        strategies=strategies,
        themes=catalog,
        images=images,
        exports=exports,
        events=events,
        gate=gate,
        validation=validation,
        outlines=outlines,
        orchestrator=orchestrator,
        dispatcher=dispatcher,
    )
