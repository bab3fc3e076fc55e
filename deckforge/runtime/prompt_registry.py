# ABOUTME: Loads immutable prompt templates and JSON schemas for every structured model call.
# ABOUTME: Renders templates with string.Template and computes deterministic prompt hashes.

from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache
import hashlib
import json
from pathlib import Path
from string import Template
from typing import Any


PROMPTS_ROOT = Path(__file__).resolve().parents[1] / "prompts"


_PROMPT_PATHS = {
    "outline_generation_v1": (
        "outline/outline_generation_v1.md",
        "outline/outline_generation_v1.schema.json",
    ),
    "outline_slide_edit_v1": (
        "outline/outline_slide_edit_v1.md",
        "outline/outline_slide_edit_v1.schema.json",
    ),
    "slide_content_v1": (
        "slides/slide_content_v1.md",
        "slides/slide_content_v1.schema.json",
    ),
    "content_review_v1": (
        "review/content_review_v1.md",
        "review/content_review_v1.schema.json",
    ),
    "style_enforcer_v1": (
        "quality/style_enforcer_v1.md",
        "quality/style_enforcer_v1.schema.json",
    ),
    "narrative_coherence_v1": (
        "quality/narrative_coherence_v1.md",
        "quality/narrative_coherence_v1.schema.json",
    ),
    "fact_checker_v1": (
        "quality/fact_checker_v1.md",
        "quality/fact_checker_v1.schema.json",
    ),
    "chat_reply_v1": (
        "chat/chat_reply_v1.md",
        "chat/chat_reply_v1.schema.json",
    ),
}


@dataclass(frozen=True)
class PromptDefinition:
    prompt_id: str
    prompt_path: str
    schema_path: str
    prompt_text: str
    response_schema: dict[str, Any]
    prompt_template_hash: str

    def render(self, **values: Any) -> str:
        return Template(self.prompt_text).safe_substitute(
            {key: "" if value is None else str(value) for key, value in values.items()}
        )


def _canonical_schema_bytes(schema: dict[str, Any]) -> bytes:
    canonical = json.dumps(schema, sort_keys=True, separators=(",", ":"), ensure_ascii=False)
    return canonical.encode("utf-8")


def _prompt_hash(prompt_text: str, schema: dict[str, Any]) -> str:
    digest = hashlib.sha256()
    digest.update(prompt_text.encode("utf-8"))
    digest.update(b"\n---\n")
    digest.update(_canonical_schema_bytes(schema))
    return f"sha256:{digest.hexdigest()}"


def list_prompt_ids() -> list[str]:
    return sorted(_PROMPT_PATHS.keys())


@lru_cache(maxsize=None)
def get_prompt_definition(prompt_id: str) -> PromptDefinition:
    if prompt_id not in _PROMPT_PATHS:
        raise KeyError(f"Unknown prompt_id: {prompt_id}")
    prompt_rel, schema_rel = _PROMPT_PATHS[prompt_id]
    prompt_file = PROMPTS_ROOT / prompt_rel
    schema_file = PROMPTS_ROOT / schema_rel
    prompt_text = prompt_file.read_text(encoding="utf-8")
    schema = json.loads(schema_file.read_text(encoding="utf-8"))
    if not isinstance(schema, dict):
        raise ValueError(f"Schema must be an object for prompt_id={prompt_id}.")
    return PromptDefinition(
        prompt_id=prompt_id,
        prompt_path=str(prompt_file),
        schema_path=str(schema_file),
        prompt_text=prompt_text,
        response_schema=schema,
        prompt_template_hash=_prompt_hash(prompt_text, schema),
    )
