# ABOUTME: Implements the structured-generation loop that forces schema-shaped JSON from the model.
# ABOUTME: Retries with corrective follow-ups on bad output and with exponential backoff on provider failures.

from __future__ import annotations

import asyncio
from dataclasses import dataclass
import json
import logging
import re
from typing import Any, Awaitable, Callable, Sequence

from deckforge.runtime.errors import ContractViolation, ProviderError
from deckforge.runtime.llm_client import (
    ChatMessage,
    RuntimeModelClient,
    StructuredGenerationUsage,
)
from deckforge.runtime.validation import PayloadValidator


logger = logging.getLogger(__name__)

DEFAULT_MAX_RETRIES = 2
DEFAULT_BACKOFF_BASE_SEC = 1.0

STRUCTURED_OUTPUT_INSTRUCTION = (
    "Respond with exactly one JSON object and nothing else. "
    "Do not wrap it in markdown code fences and do not add commentary before or after it."
)

_FENCE_PATTERN = re.compile(r"^```(?:json|JSON)?\s*(.*?)\s*```$", re.DOTALL)


@dataclass
class StructuredGenerationLoopResult:
    output: dict[str, Any]
    raw_text: str
    usage: StructuredGenerationUsage
    attempt_count: int


def extract_json_text(raw_text: str) -> str:
    text = str(raw_text or "").strip()
    fenced = _FENCE_PATTERN.match(text)
    if fenced:
        text = fenced.group(1).strip()
    if not text.startswith("{"):
        start = text.find("{")
        end = text.rfind("}")
        if start != -1 and end > start:
            text = text[start : end + 1]
    return text


def parse_json_object(raw_text: str) -> tuple[dict[str, Any] | None, str | None]:
    try:
        value = json.loads(extract_json_text(raw_text))
    except json.JSONDecodeError as exc:
        return None, f"The response was not valid JSON ({exc.msg} at position {exc.pos})."
    if not isinstance(value, dict):
        return None, "The response must be a single JSON object."
    return value, None


def _parse_correction(parse_error: str) -> str:
    return (
        f"Your previous response was not valid JSON. {parse_error} "
        "Return only the corrected JSON object."
    )


def _validation_correction(errors: list[str]) -> str:
    error_lines = "\n".join(f"- {item}" for item in errors)
    return (
        "Your previous response had missing or incorrect fields:\n"
        f"{error_lines}\n\n"
        "Return only the corrected JSON object with every required field."
    )


async def complete_structured(
    *,
    client: RuntimeModelClient,
    messages: Sequence[ChatMessage],
    model_name: str,
    validator: PayloadValidator | None = None,
    max_retries: int = DEFAULT_MAX_RETRIES,
    cache_hint: str | None = None,
    temperature: float | None = None,
    max_output_tokens: int | None = None,
    backoff_base_sec: float = DEFAULT_BACKOFF_BASE_SEC,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> StructuredGenerationLoopResult:
    """Request a JSON object from the model and keep correcting it until it validates.

    Parse failures, validator rejections and retryable provider errors share one
    budget of ``max_retries + 1`` attempts. Provider errors retry the unchanged
    conversation after ``backoff_base_sec * 2**k`` seconds; bad output retries with
    the faulty reply and a corrective instruction appended.
    """
    if max_retries < 0:
        raise ValueError("max_retries must be >= 0.")
    max_attempts = max_retries + 1
    conversation: list[ChatMessage] = [
        *messages,
        ChatMessage(role="system", content=STRUCTURED_OUTPUT_INSTRUCTION),
    ]
    usage_total = StructuredGenerationUsage()
    last_output = ""
    last_errors: list[str] = []
    provider_failures = 0

    for attempt_index in range(1, max_attempts + 1):
        try:
            completion = await client.complete(
                conversation,
                model_name=model_name,
                json_mode=True,
                temperature=temperature,
                max_output_tokens=max_output_tokens,
                cache_hint=cache_hint,
            )
        except ProviderError as exc:
            if not exc.retryable or attempt_index == max_attempts:
                raise
            delay = backoff_base_sec * (2**provider_failures)
            provider_failures += 1
            logger.warning(
                "Provider error on attempt %d/%d for %s, retrying in %.1fs: %s",
                attempt_index,
                max_attempts,
                model_name,
                delay,
                exc,
            )
            await sleep(delay)
            continue

        usage_total.add(completion.usage)
        last_output = completion.text
        payload, parse_error = parse_json_object(completion.text)
        if parse_error is not None:
            last_errors = [parse_error]
            correction = _parse_correction(parse_error)
        else:
            errors = validator(payload) if validator is not None else []
            if not errors:
                return StructuredGenerationLoopResult(
                    output=payload,
                    raw_text=completion.text,
                    usage=usage_total,
                    attempt_count=attempt_index,
                )
            last_errors = list(errors)
            correction = _validation_correction(last_errors)

        logger.debug(
            "Structured output rejected on attempt %d/%d: %s",
            attempt_index,
            max_attempts,
            "; ".join(last_errors),
        )
        if attempt_index == max_attempts:
            break
        conversation = [
            *conversation,
            ChatMessage(role="assistant", content=completion.text or "(empty response)"),
            ChatMessage(role="user", content=correction),
        ]

    details = "; ".join(last_errors) if last_errors else "unknown structured output failure"
    raise ContractViolation(
        f"Model output remained invalid after {max_attempts} attempts: {details}",
        attempt_count=max_attempts,
        last_output=last_output,
        errors=last_errors,
        usage=usage_total,
    )
