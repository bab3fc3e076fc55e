# ABOUTME: Exposes the interaction and validation gates that pause the pipeline for user input.
# ABOUTME: Keeps a stable import location for orchestrator and chat wiring.

from deckforge.gates.interaction_gate import InteractionGate
from deckforge.gates.validation_gate import (
    ValidationGate,
    ValidationOutcome,
    ValidationResponse,
)

__all__ = [
    "InteractionGate",
    "ValidationGate",
    "ValidationOutcome",
    "ValidationResponse",
]
