"""Tests for the finder config loader and config hashing."""

from pathlib import Path

import pytest
import yaml
from pydantic import ValidationError

from recordfinder.core.config import FinderConfig, LLMConfig, load_config
from recordfinder.core.errors import ConfigurationError

CONFIG_PATH = Path(__file__).resolve().parent.parent / "configs" / "korea_marine_v1.yaml"


# ── Loading & Validation ─────────────────────────────────────────────


def test_load_korea_config():
    config = load_config(CONFIG_PATH)
    assert isinstance(config, FinderConfig)
    assert config.region.name == "Korea"
    assert "Corea" in config.region.locality_keywords
    assert config.search.sources == ["openalex", "pubmed"]
    assert config.pipeline.batch_size == 3
    assert config.llm.max_chunk_size == 8000


def test_missing_file_raises(tmp_path):
    with pytest.raises(ConfigurationError):
        load_config(tmp_path / "nope.yaml")


def test_defaults_from_minimal_yaml(tmp_path):
    path = tmp_path / "min.yaml"
    path.write_text(yaml.safe_dump({"region": {"name": "Japan", "search_keyword": "Japan"}}))
    config = load_config(path)
    assert config.search.historical_window == [1700, 1970]
    assert config.rate_limit.daily_limit == 1000
    assert config.llm.provider == "ollama"


def test_reversed_window_rejected():
    with pytest.raises(ValidationError):
        FinderConfig.model_validate({
            "region": {"name": "Korea", "search_keyword": "Korea"},
            "search": {"historical_window": [1970, 1700]},
        })


def test_warning_above_limit_rejected():
    with pytest.raises(ValidationError):
        FinderConfig.model_validate({
            "region": {"name": "Korea", "search_keyword": "Korea"},
            "rate_limit": {"daily_limit": 10, "warning_threshold": 11},
        })


def test_zero_batch_size_rejected():
    with pytest.raises(ValidationError):
        FinderConfig.model_validate({
            "region": {"name": "Korea", "search_keyword": "Korea"},
            "pipeline": {"batch_size": 0},
        })


def test_env_file_supplies_api_key(tmp_path, monkeypatch):
    monkeypatch.delenv("OPENROUTER_API_KEY", raising=False)
    env = tmp_path / ".env"
    env.write_text("OPENROUTER_API_KEY=sk-test\n")
    load_config(CONFIG_PATH, env_file=env)
    assert LLMConfig(provider="openrouter").resolve_api_key() == "sk-test"


# ── Quota Applicability ──────────────────────────────────────────────


def test_openrouter_free_model_is_quota_limited():
    assert LLMConfig(provider="openrouter", model="meta-llama/llama-3.3-70b:free").is_quota_limited()
    assert not LLMConfig(provider="openrouter", model="openai/gpt-4o").is_quota_limited()
    assert not LLMConfig(provider="ollama").is_quota_limited()


def test_quota_override():
    assert LLMConfig(provider="ollama", quota_limited=True).is_quota_limited()
    assert not LLMConfig(provider="openrouter", model="x:free", quota_limited=False).is_quota_limited()


# ── Config Hashing ───────────────────────────────────────────────────


def test_hash_deterministic():
    assert load_config(CONFIG_PATH).config_hash() == load_config(CONFIG_PATH).config_hash()


def test_hash_changes_on_modification():
    config = load_config(CONFIG_PATH)
    modified = config.model_copy(deep=True)
    modified.pipeline.max_batches = 10
    assert modified.config_hash() != config.config_hash()


def test_hash_ignores_api_key():
    config = load_config(CONFIG_PATH)
    with_key = config.model_copy(deep=True)
    with_key.llm.api_key = "secret"
    assert with_key.config_hash() == config.config_hash()
