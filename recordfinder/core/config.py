"""Finder config: YAML loader, Pydantic models, and config hashing."""

import hashlib
import json
import os
from pathlib import Path
from typing import Literal, Optional

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator, model_validator

from recordfinder.core.errors import ConfigurationError

LLMProviderName = Literal["ollama", "openrouter", "openai", "grok", "anthropic"]
SearchStrategyName = Literal["historical", "regional", "both"]

# Environment variables holding credentials for each cloud provider
API_KEY_ENV: dict[str, str] = {
    "openrouter": "OPENROUTER_API_KEY",
    "openai": "OPENAI_API_KEY",
    "grok": "GROK_API_KEY",
    "anthropic": "ANTHROPIC_API_KEY",
}


# ── Target Region ────────────────────────────────────────────────────


class RegionConfig(BaseModel):
    """The region whose earliest record is being searched for."""

    name: str
    search_keyword: str = Field(
        description="Keyword appended to queries by the regional strategy"
    )
    locality_keywords: list[str] = Field(
        default_factory=list,
        description="Place names (incl. historical spellings) shown to the model",
    )


# ── Search ───────────────────────────────────────────────────────────


class SearchConfig(BaseModel):
    """Sources, strategy, and year windows for literature search."""

    sources: list[str] = Field(default_factory=lambda: ["openalex", "pubmed"])
    strategy: SearchStrategyName = "both"
    historical_window: list[int] = Field(
        default_factory=lambda: [1700, 1970],
        min_length=2,
        max_length=2,
        description="[start_year, end_year] for the historical strategy",
    )
    max_results: int = Field(default=20, ge=1)
    contact_email: Optional[str] = None

    @field_validator("historical_window")
    @classmethod
    def valid_window(cls, v: list[int]) -> list[int]:
        if v[0] > v[1]:
            raise ValueError(f"Start year ({v[0]}) must be <= end year ({v[1]})")
        return v


# ── LLM ──────────────────────────────────────────────────────────────


class LLMConfig(BaseModel):
    """Provider selection and transport settings for the LLM gateway."""

    provider: LLMProviderName = "ollama"
    model: str = "llama3.1:8b"
    base_url: Optional[str] = None
    api_key: Optional[str] = Field(default=None, repr=False)
    temperature: float = Field(default=0.1, ge=0.0, le=2.0)
    max_tokens: int = Field(default=4096, ge=1)
    timeout: float = Field(default=60.0, gt=0, description="Seconds per request")
    max_retries: int = Field(default=3, ge=0)
    retry_base_delay: float = Field(default=1.0, ge=0, description="Seconds")
    max_chunk_size: int = Field(default=8000, ge=100)
    quota_limited: Optional[bool] = Field(
        default=None,
        description="Force the daily quota on or off; None applies it to OpenRouter :free models",
    )

    def is_quota_limited(self) -> bool:
        if self.quota_limited is not None:
            return self.quota_limited
        return self.provider == "openrouter" and self.model.endswith(":free")

    def resolve_api_key(self) -> Optional[str]:
        """Explicit key, else the provider's environment variable."""
        if self.api_key:
            return self.api_key
        env_name = API_KEY_ENV.get(self.provider)
        return os.environ.get(env_name) if env_name else None


class RateLimitConfig(BaseModel):
    """Daily quota for limited provider/model combinations."""

    daily_limit: int = Field(default=1000, ge=1)
    warning_threshold: int = Field(default=900, ge=0)


# ── Pipeline / OCR / Storage ─────────────────────────────────────────


class PipelineConfig(BaseModel):
    """Batching and early-stop behaviour of the analysis pipeline."""

    batch_size: int = Field(default=3, ge=1)
    max_batches: int = Field(default=5, ge=1)
    stop_on_first_record: bool = True
    download_pdfs: bool = True


class OCRConfig(BaseModel):
    """Options passed to the PDF text extractor."""

    enable_ocr: bool = True
    languages: list[str] = Field(default_factory=lambda: ["eng", "jpn", "kor"])
    vision_model: str = "minicpm-v"


class StorageConfig(BaseModel):
    """Where persisted state lives."""

    data_root: str = "data"
    name: str = "default"


# ── Finder Config (top-level) ────────────────────────────────────────


class FinderConfig(BaseModel):
    """Top-level configuration for a first-record search."""

    region: RegionConfig
    search: SearchConfig = Field(default_factory=SearchConfig)
    llm: LLMConfig = Field(default_factory=LLMConfig)
    rate_limit: RateLimitConfig = Field(default_factory=RateLimitConfig)
    pipeline: PipelineConfig = Field(default_factory=PipelineConfig)
    ocr: OCRConfig = Field(default_factory=OCRConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)

    @model_validator(mode="after")
    def warning_below_limit(self) -> "FinderConfig":
        if self.rate_limit.warning_threshold > self.rate_limit.daily_limit:
            raise ValueError("rate_limit.warning_threshold must be <= daily_limit")
        return self

    def config_hash(self) -> str:
        """SHA-256 of the config (canonical JSON, credentials excluded)."""
        return _canonical_hash(self.model_dump(exclude={"llm": {"api_key"}}))


# ── Helpers ──────────────────────────────────────────────────────────


def _canonical_hash(data: dict) -> str:
    """Deterministic SHA-256 hash of a dict via sorted-key JSON."""
    blob = json.dumps(data, sort_keys=True, default=str).encode()
    return hashlib.sha256(blob).hexdigest()


def load_config(path: str | Path, env_file: str | Path | None = None) -> FinderConfig:
    """Load a YAML finder config from disk and return a validated model.

    Credentials are read from the environment; a ``.env`` file is loaded
    first when present.
    """
    load_dotenv(env_file)
    path = Path(path)
    if not path.exists():
        raise ConfigurationError(f"Config file not found: {path}")
    with open(path) as f:
        raw = yaml.safe_load(f)
    return FinderConfig.model_validate(raw)
