# ABOUTME: Defines the async model client interface used for every structured deck-generation call.
# ABOUTME: Provides OpenAI and Anthropic implementations that map SDK transport failures to ProviderError.

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Literal, Protocol, Sequence

import anthropic
import openai

from deckforge.runtime.errors import ProviderError


DEFAULT_MODEL_PRICING_USD_PER_MILLION = {
    "gpt-4o": {"input": 2.5, "output": 10.0},
    "gpt-4o-mini": {"input": 0.15, "output": 0.6},
    "gpt-4.1": {"input": 2.0, "output": 8.0},
    "gpt-4.1-mini": {"input": 0.4, "output": 1.6},
    "claude-sonnet-4-5": {"input": 3.0, "output": 15.0},
    "claude-haiku-4-5": {"input": 1.0, "output": 5.0},
}
DEFAULT_REQUEST_TIMEOUT_SEC = 120.0
DEFAULT_ANTHROPIC_MAX_TOKENS = 4096


def _safe_int(value: Any, default: int = 0) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def _safe_float(value: Any, default: float = 0.0) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


@dataclass(frozen=True)
class ChatMessage:
    role: Literal["system", "user", "assistant"]
    content: str

    def to_dict(self) -> dict[str, str]:
        return {"role": self.role, "content": self.content}


@dataclass
class StructuredGenerationUsage:
    tokens_in: int = 0
    tokens_out: int = 0
    cost_usd: float = 0.0

    def add(self, other: StructuredGenerationUsage) -> StructuredGenerationUsage:
        self.tokens_in += int(other.tokens_in)
        self.tokens_out += int(other.tokens_out)
        self.cost_usd += float(other.cost_usd)
        return self


@dataclass
class ModelCompletion:
    text: str
    usage: StructuredGenerationUsage


class RuntimeModelClient(Protocol):
    model_provider: str

    async def complete(
        self,
        messages: Sequence[ChatMessage],
        *,
        model_name: str,
        json_mode: bool = True,
        temperature: float | None = None,
        max_output_tokens: int | None = None,
        cache_hint: str | None = None,
    ) -> ModelCompletion:
        raise NotImplementedError


def _estimate_cost(
    pricing_table: dict[str, dict[str, float]],
    *,
    model_name: str,
    tokens_in: int,
    tokens_out: int,
) -> float:
    pricing = pricing_table.get(model_name)
    if not isinstance(pricing, dict):
        return 0.0
    input_rate = _safe_float(pricing.get("input"), default=0.0)
    output_rate = _safe_float(pricing.get("output"), default=0.0)
    return (tokens_in / 1_000_000.0) * input_rate + (tokens_out / 1_000_000.0) * output_rate


class OpenAIModelClient:
    model_provider = "openai"

    def __init__(
        self,
        *,
        openai_client: Any | None = None,
        api_key: str | None = None,
        base_url: str | None = None,
        pricing_usd_per_million: dict[str, dict[str, float]] | None = None,
        request_timeout_sec: float | None = DEFAULT_REQUEST_TIMEOUT_SEC,
    ) -> None:
        if openai_client is None:
            self._openai_client = openai.AsyncOpenAI(api_key=api_key or None, base_url=base_url or None)
        else:
            self._openai_client = openai_client
        self._pricing_usd_per_million = pricing_usd_per_million or DEFAULT_MODEL_PRICING_USD_PER_MILLION
        self._request_timeout_sec = request_timeout_sec

    @staticmethod
    def _extract_response_text(response: Any) -> str:
        choices = getattr(response, "choices", None) or []
        if not choices:
            return ""
        message = getattr(choices[0], "message", None)
        return str(getattr(message, "content", "") or "").strip()

    async def complete(
        self,
        messages: Sequence[ChatMessage],
        *,
        model_name: str,
        json_mode: bool = True,
        temperature: float | None = None,
        max_output_tokens: int | None = None,
        cache_hint: str | None = None,
    ) -> ModelCompletion:
        kwargs: dict[str, Any] = {
            "model": model_name,
            "messages": [message.to_dict() for message in messages],
        }
        if json_mode:
            kwargs["response_format"] = {"type": "json_object"}
        if temperature is not None:
            kwargs["temperature"] = temperature
        if max_output_tokens is not None:
            kwargs["max_completion_tokens"] = max_output_tokens
        if self._request_timeout_sec is not None:
            kwargs["timeout"] = float(self._request_timeout_sec)
        if cache_hint:
            kwargs["extra_body"] = {"prompt_cache_key": cache_hint}

        try:
            response = await self._openai_client.chat.completions.create(**kwargs)
        except openai.APITimeoutError as exc:
            raise ProviderError(f"OpenAI request timed out: {exc}") from exc
        except openai.APIConnectionError as exc:
            raise ProviderError(f"OpenAI connection failed: {exc}") from exc
        except openai.RateLimitError as exc:
            raise ProviderError(f"OpenAI rate limit: {exc}", status_code=429) from exc
        except openai.InternalServerError as exc:
            raise ProviderError(f"OpenAI server error: {exc}", status_code=exc.status_code) from exc
        except openai.APIStatusError as exc:
            raise ProviderError(
                f"OpenAI rejected the request: {exc}",
                retryable=False,
                status_code=exc.status_code,
            ) from exc

        usage = getattr(response, "usage", None)
        tokens_in = _safe_int(getattr(usage, "prompt_tokens", 0), default=0)
        tokens_out = _safe_int(getattr(usage, "completion_tokens", 0), default=0)
        return ModelCompletion(
            text=self._extract_response_text(response),
            usage=StructuredGenerationUsage(
                tokens_in=tokens_in,
                tokens_out=tokens_out,
                cost_usd=_estimate_cost(
                    self._pricing_usd_per_million,
                    model_name=model_name,
                    tokens_in=tokens_in,
                    tokens_out=tokens_out,
                ),
            ),
        )


class AnthropicModelClient:
    model_provider = "anthropic"

    def __init__(
        self,
        *,
        anthropic_client: Any | None = None,
        api_key: str | None = None,
        base_url: str | None = None,
        pricing_usd_per_million: dict[str, dict[str, float]] | None = None,
        request_timeout_sec: float | None = DEFAULT_REQUEST_TIMEOUT_SEC,
    ) -> None:
        if anthropic_client is None:
            self._anthropic_client = anthropic.AsyncAnthropic(api_key=api_key or None, base_url=base_url or None)
        else:
            self._anthropic_client = anthropic_client
        self._pricing_usd_per_million = pricing_usd_per_million or DEFAULT_MODEL_PRICING_USD_PER_MILLION
        self._request_timeout_sec = request_timeout_sec

    @staticmethod
    def _extract_response_text(response: Any) -> str:
        collected: list[str] = []
        for block in getattr(response, "content", None) or []:
            if getattr(block, "type", None) != "text":
                continue
            text = getattr(block, "text", None)
            if isinstance(text, str) and text.strip():
                collected.append(text.strip())
        return "\n".join(collected).strip()

    async def complete(
        self,
        messages: Sequence[ChatMessage],
        *,
        model_name: str,
        json_mode: bool = True,
        temperature: float | None = None,
        max_output_tokens: int | None = None,
        cache_hint: str | None = None,
    ) -> ModelCompletion:
        # Anthropic takes system text out of band; the JSON contract is carried by the prompt.
        del json_mode
        system_text = "\n\n".join(message.content for message in messages if message.role == "system")
        turns = [message.to_dict() for message in messages if message.role != "system"]
        kwargs: dict[str, Any] = {
            "model": model_name,
            "messages": turns,
            "max_tokens": max_output_tokens or DEFAULT_ANTHROPIC_MAX_TOKENS,
        }
        if system_text:
            system_block: dict[str, Any] = {"type": "text", "text": system_text}
            if cache_hint:
                system_block["cache_control"] = {"type": "ephemeral"}
            kwargs["system"] = [system_block]
        if temperature is not None:
            kwargs["temperature"] = temperature
        if self._request_timeout_sec is not None:
            kwargs["timeout"] = float(self._request_timeout_sec)

        try:
            response = await self._anthropic_client.messages.create(**kwargs)
        except anthropic.APITimeoutError as exc:
            raise ProviderError(f"Anthropic request timed out: {exc}") from exc
        except anthropic.APIConnectionError as exc:
            raise ProviderError(f"Anthropic connection failed: {exc}") from exc
        except anthropic.RateLimitError as exc:
            raise ProviderError(f"Anthropic rate limit: {exc}", status_code=429) from exc
        except anthropic.InternalServerError as exc:
            raise ProviderError(f"Anthropic server error: {exc}", status_code=exc.status_code) from exc
        except anthropic.APIStatusError as exc:
            raise ProviderError(
                f"Anthropic rejected the request: {exc}",
                retryable=False,
                status_code=exc.status_code,
            ) from exc

        usage = getattr(response, "usage", None)
        tokens_in = _safe_int(getattr(usage, "input_tokens", 0), default=0)
        tokens_out = _safe_int(getattr(usage, "output_tokens", 0), default=0)
        return ModelCompletion(
            text=self._extract_response_text(response),
            usage=StructuredGenerationUsage(
                tokens_in=tokens_in,
                tokens_out=tokens_out,
                cost_usd=_estimate_cost(
                    self._pricing_usd_per_million,
                    model_name=model_name,
                    tokens_in=tokens_in,
                    tokens_out=tokens_out,
                ),
            ),
        )


def build_model_client(
    *,
    provider: str,
    api_key: str | None = None,
    base_url: str | None = None,
    request_timeout_sec: float | None = DEFAULT_REQUEST_TIMEOUT_SEC,
) -> RuntimeModelClient:
    normalized = str(provider or "").strip().lower()
    if normalized == "openai":
        return OpenAIModelClient(api_key=api_key, base_url=base_url, request_timeout_sec=request_timeout_sec)
    if normalized == "anthropic":
        return AnthropicModelClient(api_key=api_key, base_url=base_url, request_timeout_sec=request_timeout_sec)
    raise ValueError(f"Unsupported model provider: {provider}")
