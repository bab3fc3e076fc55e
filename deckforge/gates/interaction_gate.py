# ABOUTME: Suspends a pipeline step until an external answer arrives or a deadline passes.
# ABOUTME: Resolves each request exactly once, substituting its default when nobody responds in time.

from __future__ import annotations

import asyncio
from dataclasses import dataclass
import logging
import time
from typing import Any, Callable

from deckforge.runtime.contracts import InteractionRequest


logger = logging.getLogger(__name__)


@dataclass
class _PendingInteraction:
    request: InteractionRequest
    future: asyncio.Future[Any]


def _interaction_key(deck_id: str, kind: str, context_id: str) -> str:
    return f"{deck_id}:{kind}:{context_id}"


class InteractionGate:
    def __init__(self, *, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._pending: dict[str, _PendingInteraction] = {}

    def open_request(
        self,
        deck_id: str,
        kind: str,
        context_id: str,
        *,
        default: Any,
        timeout_ms: int,
        options: list[Any] | None = None,
    ) -> InteractionRequest:
        """Register a request so responses that arrive before ``wait`` are not lost."""
        key = _interaction_key(deck_id, kind, context_id)
        previous = self._pending.pop(key, None)
        if previous is not None and not previous.future.done():
            logger.debug("Superseding pending interaction %s with its default", key)
            previous.future.set_result(previous.request.default)
        request = InteractionRequest(
            deck_id=deck_id,
            kind=kind,
            context_id=context_id,
            options=list(options or []),
            default=default,
            timeout_ms=int(timeout_ms),
            deadline_monotonic=self._clock() + timeout_ms / 1000.0,
        )
        future: asyncio.Future[Any] = asyncio.get_running_loop().create_future()
        self._pending[key] = _PendingInteraction(request=request, future=future)
        return request

    async def wait(self, request: InteractionRequest) -> Any:
        entry = self._pending.get(request.key)
        if entry is None or entry.request is not request:
            return request.default
        remaining = max(0.0, request.deadline_monotonic - self._clock())
        try:
            return await asyncio.wait_for(asyncio.shield(entry.future), timeout=remaining)
        except asyncio.TimeoutError:
            logger.debug("Interaction %s timed out after %dms, using default", request.key, request.timeout_ms)
            return request.default
        finally:
            current = self._pending.get(request.key)
            if current is entry:
                del self._pending[request.key]
                if not entry.future.done():
                    entry.future.set_result(request.default)

    async def wait_for_response(
        self,
        deck_id: str,
        kind: str,
        context_id: str,
        *,
        default: Any,
        timeout_ms: int,
        options: list[Any] | None = None,
    ) -> Any:
        request = self.open_request(
            deck_id,
            kind,
            context_id,
            default=default,
            timeout_ms=timeout_ms,
            options=options,
        )
        return await self.wait(request)

    def respond(self, deck_id: str, kind: str, context_id: str, value: Any) -> bool:
        key = _interaction_key(deck_id, kind, context_id)
        entry = self._pending.get(key)
        if entry is None or entry.future.done():
            logger.debug("No pending interaction for %s", key)
            return False
        if entry.request.deadline_monotonic <= self._clock():
            logger.debug("Response for %s arrived after its deadline", key)
            return False
        entry.future.set_result(value)
        return True

    def has_pending(self, deck_id: str, kind: str, context_id: str) -> bool:
        entry = self._pending.get(_interaction_key(deck_id, kind, context_id))
        return entry is not None and not entry.future.done()
