# ABOUTME: Formats strategy profiles and knowledge snippets into prompt context blocks.
# ABOUTME: Resolves a deck's strategy profile, falling back to the default profile.

from __future__ import annotations

from deckforge.ports.protocol import KnowledgeProvider, StrategyProfileStore
from deckforge.runtime.contracts import Deck, KnowledgeSnippet, StrategyProfile


DEFAULT_STRATEGY_PROFILE_ID = "default"


async def resolve_strategy(deck: Deck, strategies: StrategyProfileStore | None) -> StrategyProfile:
    if strategies is not None and deck.strategy_profile_id:
        profile = await strategies.get(deck.strategy_profile_id)
        if profile is not None:
            return profile
    return StrategyProfile(id=DEFAULT_STRATEGY_PROFILE_ID)


async def retrieve_snippets(
    knowledge: KnowledgeProvider | None,
    user_id: str,
    query: str,
    *,
    limit: int,
) -> list[KnowledgeSnippet]:
    if knowledge is None or not query.strip():
        return []
    return await knowledge.retrieve(user_id, query, limit=limit)


def strategy_context(profile: StrategyProfile) -> str:
    return (
        "Audience and strategy:\n"
        f"- Audience: {profile.audience}\n"
        f"- Goal: {profile.goal}\n"
        f"- Tone: {profile.tone}\n"
        f"- Story framework: {profile.framework}"
    )


def knowledge_context(snippets: list[KnowledgeSnippet]) -> str:
    if not snippets:
        return ""
    lines = ["Knowledge context (cite exact figures when relevant):"]
    lines.extend(f"[{snippet.source_id}] {snippet.text}" for snippet in snippets)
    return "\n".join(lines)
