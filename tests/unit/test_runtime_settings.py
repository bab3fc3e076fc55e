# ABOUTME: Validates settings defaults, YAML merging, dotlist overrides and pipeline bound checks.
# ABOUTME: Ensures typed settings objects come back from the OmegaConf merge.

from __future__ import annotations

from pathlib import Path

import pytest
from omegaconf.errors import ValidationError

from deckforge.runtime.settings import DeckforgeSettings, load_settings


def test_defaults_match_pipeline_policy() -> None:
    settings = load_settings(load_env=False)

    assert isinstance(settings, DeckforgeSettings)
    assert settings.pipeline.wave_size == 4
    assert settings.pipeline.split_headroom == 1.25
    assert settings.pipeline.theme_gate_timeout_ms == 20_000
    assert settings.pipeline.layout_gate_timeout_ms == 15_000
    assert settings.credits.signup_credits == 5


def test_yaml_file_and_overrides_merge_in_order(tmp_path: Path) -> None:
    config = tmp_path / "deckforge.yaml"
    config.write_text(
        "model:\n  provider: anthropic\n  slide_model: claude-sonnet-4-5\npipeline:\n  wave_size: 2\n",
        encoding="utf-8",
    )

    settings = load_settings(config, overrides=["pipeline.wave_size=3"], load_env=False)

    assert settings.model.provider == "anthropic"
    assert settings.model.slide_model == "claude-sonnet-4-5"
    assert settings.pipeline.wave_size == 3


def test_invalid_pipeline_bounds_are_rejected() -> None:
    with pytest.raises(ValueError):
        load_settings(overrides=["pipeline.wave_size=0"], load_env=False)
    with pytest.raises(ValueError):
        load_settings(overrides=["pipeline.split_headroom=0.5"], load_env=False)


def test_mistyped_override_fails_structured_validation() -> None:
    with pytest.raises(ValidationError):
        load_settings(overrides=["pipeline.wave_size=lots"], load_env=False)
