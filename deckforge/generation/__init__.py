# ABOUTME: Exposes outline planning, slide writing and the wave-based generation orchestrator.
# ABOUTME: Keeps a stable import location for chat and CLI wiring.

from deckforge.generation.orchestrator import GenerationOrchestrator
from deckforge.generation.outline import OutlineService, OutlineStateMachine, is_approval, is_retry_request
from deckforge.generation.slide_writer import SlideWriter

__all__ = [
    "GenerationOrchestrator",
    "OutlineService",
    "OutlineStateMachine",
    "SlideWriter",
    "is_approval",
    "is_retry_request",
]
