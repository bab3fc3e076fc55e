# ABOUTME: Loads typed pipeline, model and credit settings from defaults, YAML files and dotlist overrides.
# ABOUTME: Uses OmegaConf structured configs so policy knobs like wave size stay configurable and validated.

from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Sequence

from dotenv import load_dotenv
from omegaconf import OmegaConf


@dataclass
class ModelSettings:
    provider: str = "openai"
    api_key: Optional[str] = None
    base_url: Optional[str] = None
    outline_model: str = "gpt-4o"
    slide_model: str = "gpt-4o"
    review_model: str = "gpt-4o-mini"
    quality_model: str = "gpt-4o-mini"
    chat_model: str = "gpt-4o-mini"
    request_timeout_sec: float = 120.0


@dataclass
class PipelineSettings:
    wave_size: int = 4
    split_headroom: float = 1.25
    max_split_parts: int = 2
    theme_gate_timeout_ms: int = 20_000
    layout_gate_timeout_ms: int = 15_000
    outline_ttl_sec: float = 30 * 60
    outline_max_entries: int = 1000
    structured_max_retries: int = 2
    reviewer_max_retries: int = 2
    backoff_base_sec: float = 1.0
    knowledge_snippet_limit: int = 5


@dataclass
class ValidationSettings:
    pending_ttl_sec: float = 15 * 60
    pending_max_entries: int = 5000
    auto_approve_ttl_sec: float = 24 * 60 * 60


@dataclass
class CreditSettings:
    reservation_ttl_sec: float = 30 * 60
    signup_credits: int = 5


@dataclass
class DeckforgeSettings:
    model: ModelSettings = field(default_factory=ModelSettings)
    pipeline: PipelineSettings = field(default_factory=PipelineSettings)
    validation: ValidationSettings = field(default_factory=ValidationSettings)
    credits: CreditSettings = field(default_factory=CreditSettings)
    log_level: str = "INFO"


def load_settings(
    config_path: str | Path | None = None,
    *,
    overrides: Sequence[str] | None = None,
    load_env: bool = True,
) -> DeckforgeSettings:
    """Merge structured defaults, an optional YAML file and ``key=value`` overrides.

    YAML values may use ``${oc.env:VAR,default}`` interpolation; ``.env`` is loaded
    first so those variables resolve the same way in local runs.
    """
    if load_env:
        load_dotenv()
    merged = OmegaConf.structured(DeckforgeSettings)
    if config_path is not None:
        merged = OmegaConf.merge(merged, OmegaConf.load(str(config_path)))
    if overrides:
        merged = OmegaConf.merge(merged, OmegaConf.from_dotlist(list(overrides)))
    settings = OmegaConf.to_object(merged)
    _check_pipeline(settings.pipeline)
    return settings


def _check_pipeline(pipeline: PipelineSettings) -> None:
    if pipeline.wave_size < 1:
        raise ValueError("pipeline.wave_size must be >= 1.")
    if pipeline.split_headroom < 1.0:
        raise ValueError("pipeline.split_headroom must be >= 1.0.")
    if pipeline.max_split_parts < 2:
        raise ValueError("pipeline.max_split_parts must be >= 2.")
