"""Shared data models for parsers."""

from typing import Literal, Optional

from pydantic import BaseModel, Field

OCRQuality = Literal["good", "fair", "poor", "manual_needed"]
AnalysisTier = Literal["fulltext", "abstract", "metadata"]

# Lower rank = more trusted evidence
TIER_RANK: dict[str, int] = {"fulltext": 0, "abstract": 1, "metadata": 2}


class OCRQualityAssessment(BaseModel):
    """Heuristic quality score for text extracted from a PDF."""

    quality: OCRQuality
    score: int = Field(ge=0, le=100)
    issues: list[str] = Field(default_factory=list)
    recommendation: str = ""


class ExtractedText(BaseModel):
    """Result of running a PDF through the text extractor."""

    text: str
    metadata: dict = Field(default_factory=dict)
    parser_used: Literal["pymupdf", "docling", "vision"]
    ocr_used: bool = False
    pages: int = 0


class Evidence(BaseModel):
    """The best available text for an item, tagged with its trust tier."""

    item_id: str
    text: str
    tier: AnalysisTier
    ocr_quality: Optional[OCRQualityAssessment] = None
