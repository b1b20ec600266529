"""LLM gateway: retries, quota enforcement, and the regional-record prompt."""

import logging
import time
from collections.abc import Callable
from datetime import datetime, timezone

from recordfinder.agents.models import AnalysisResult
from recordfinder.agents.providers import LLMProvider, create_provider
from recordfinder.agents.rate_limiter import RateLimiter
from recordfinder.agents.response_parser import parse_analysis_response
from recordfinder.core.config import FinderConfig, LLMConfig, RegionConfig
from recordfinder.core.errors import ConfigurationError, LLMError, RateLimitExceededError
from recordfinder.parsers.models import AnalysisTier, OCRQualityAssessment

logger = logging.getLogger(__name__)

TRUNCATION_MARKER = "\n\n[... text truncated ...]"

# ── Prompt ───────────────────────────────────────────────────────────

ANALYSIS_PROMPT = """Analyze the following scholarly text and decide whether it contains \
a collection or occurrence record of the species from {region}.

## Target taxon
- Accepted name: {target_name}
- Synonyms: {synonyms}

## Text
{text}

## Task
Extract the following as JSON:

1. hasRecord: whether the text reports a record from {region} (true/false/null)
   - true: specimens were collected or directly observed in {region}
   - false: the text clearly contains no record from {region}
   - null: uncertain
2. confidence: confidence in the decision (0.0 to 1.0)
3. locality: collection locality, if any
4. collectionDate: collection date, if any
5. specimenInfo: specimen details, if any
6. collector: collector, if any
7. relevantQuotes: supporting sentences quoted verbatim (array)
8. reasoning: explanation of the decision

## Notes
- A bare distribution list ("Distribution: {region}") is not a direct record.
- Only answer true when there is actual collection information (place, date, specimen).
- Citations of other works are not direct records.
- Place names for {region}: {localities}

## Response format
Respond ONLY with JSON in this form:
```json
{{
  "hasRecord": true | false | null,
  "confidence": 0.0-1.0,
  "locality": "string or null",
  "collectionDate": "string or null",
  "specimenInfo": "string or null",
  "collector": "string or null",
  "relevantQuotes": ["quote1", "quote2"],
  "reasoning": "explanation"
}}
```"""


def build_analysis_prompt(
    text: str,
    target_name: str,
    synonyms: list[str] | None,
    region: RegionConfig,
    max_chunk_size: int = 8000,
) -> str:
    if len(text) > max_chunk_size:
        text = text[:max_chunk_size] + TRUNCATION_MARKER
    localities = [region.name, *region.locality_keywords]
    return ANALYSIS_PROMPT.format(
        region=region.name,
        target_name=target_name,
        synonyms=", ".join(synonyms) if synonyms else "none",
        text=text,
        localities=", ".join(dict.fromkeys(localities)),
    )


# ── Gateway ──────────────────────────────────────────────────────────


class LLMGateway:
    """Single entry point for model calls."""

    def __init__(
        self,
        provider: LLMProvider,
        config: LLMConfig,
        region: RegionConfig,
        rate_limiter: RateLimiter | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.provider = provider
        self.config = config
        self.region = region
        if config.is_quota_limited() and rate_limiter is None:
            raise ConfigurationError(
                f"{config.provider}/{config.model} is quota-limited and needs a RateLimiter"
            )
        self.rate_limiter = rate_limiter if config.is_quota_limited() else None
        self._sleep = sleep

    @classmethod
    def from_config(
        cls, config: FinderConfig, rate_limiter: RateLimiter | None = None
    ) -> "LLMGateway":
        return cls(create_provider(config.llm), config.llm, config.region, rate_limiter)

    @property
    def model_name(self) -> str:
        return f"{self.config.provider}/{self.config.model}"

    # ── Generation ───────────────────────────────────────────

    def _consume_quota(self) -> None:
        if self.rate_limiter is None:
            return
        if not self.rate_limiter.can_make_request() or not self.rate_limiter.increment_usage():
            raise RateLimitExceededError(self.rate_limiter.get_status())
        message = self.rate_limiter.get_warning_message()
        if message:
            logger.warning(message)

    def generate(self, prompt: str) -> str:
        """Complete a prompt, retrying transient failures with exponential backoff."""
        attempts = self.config.max_retries + 1
        for attempt in range(attempts):
            self._consume_quota()
            try:
                return self.provider.complete(prompt)
            except LLMError as exc:
                if not exc.retryable or attempt == attempts - 1:
                    logger.error(
                        "%s failed after %d attempt(s): %s", self.model_name, attempt + 1, exc
                    )
                    raise
                delay = self.config.retry_base_delay * 2**attempt
                logger.warning(
                    "%s attempt %d/%d failed: %s. Retrying in %.1fs",
                    self.model_name,
                    attempt + 1,
                    attempts,
                    exc,
                    delay,
                )
                self._sleep(delay)

    # ── Analysis ─────────────────────────────────────────────

    def analyze(
        self,
        text: str,
        target_name: str,
        synonyms: list[str] | None = None,
        tier: AnalysisTier = "fulltext",
        ocr_quality: OCRQualityAssessment | None = None,
    ) -> AnalysisResult:
        prompt = build_analysis_prompt(
            text, target_name, synonyms, self.region, self.config.max_chunk_size
        )
        raw = self.generate(prompt)
        parsed = parse_analysis_response(raw, self.region.name)
        return AnalysisResult(
            has_record=parsed.has_record,
            confidence=parsed.confidence,
            locality=parsed.locality,
            collection_date=parsed.collection_date,
            specimen_info=parsed.specimen_info,
            collector=parsed.collector,
            quotes=tuple(parsed.quotes),
            reasoning=parsed.reasoning,
            analysis_tier=tier,
            ocr_quality=ocr_quality,
            model_used=self.model_name,
            analyzed_at=datetime.now(timezone.utc),
            warnings=tuple(parsed.warnings),
            raw_response_excerpt=raw[:500],
        )

    def test_connection(self) -> bool:
        """Send a trivial prompt. Does not count against the quota."""
        try:
            reply = self.provider.complete("Reply with the single word: OK")
        except LLMError as exc:
            logger.warning("Connection test to %s failed: %s", self.model_name, exc)
            return False
        return bool(reply.strip())
