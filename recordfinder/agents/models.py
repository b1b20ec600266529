"""Shared data models for the analysis agent."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, computed_field

from recordfinder.parsers.models import AnalysisTier, OCRQualityAssessment

MANUAL_REVIEW_CONFIDENCE = 0.7


def needs_manual_review(
    tier: AnalysisTier, has_record: Optional[bool], confidence: float
) -> bool:
    """Weak evidence tiers need a human unless the model confidently said no."""
    if tier == "fulltext":
        return False
    return has_record is not False or confidence < MANUAL_REVIEW_CONFIDENCE


class ParsedResponse(BaseModel):
    """Coerced model output, before it is tied to an item and tier."""

    has_record: Optional[bool] = None
    confidence: float = Field(ge=0.0, le=1.0)
    locality: Optional[str] = None
    collection_date: Optional[str] = None
    specimen_info: Optional[str] = None
    collector: Optional[str] = None
    quotes: list[str] = Field(default_factory=list)
    reasoning: str
    warnings: list[str] = Field(default_factory=list)
    parse_failed: bool = False


class AnalysisResult(BaseModel):
    """Classification of one literature item. Immutable once created."""

    model_config = ConfigDict(frozen=True)

    has_record: Optional[bool] = None
    confidence: float = Field(ge=0.0, le=1.0)
    locality: Optional[str] = None
    collection_date: Optional[str] = None
    specimen_info: Optional[str] = None
    collector: Optional[str] = None
    quotes: tuple[str, ...] = ()
    reasoning: str
    analysis_tier: AnalysisTier
    ocr_quality: Optional[OCRQualityAssessment] = None
    model_used: str = ""
    analyzed_at: datetime
    warnings: tuple[str, ...] = ()
    raw_response_excerpt: str = ""

    @computed_field
    @property
    def needs_manual_review(self) -> bool:
        return needs_manual_review(self.analysis_tier, self.has_record, self.confidence)
