"""Heuristic quality scoring for text extracted from PDFs.

The score starts at 100 and loses points for each symptom of a failed or
noisy extraction:

1. very little text
2. few meaningful (3+ character) words
3. broken glyphs left by the OCR engine
4. long whitespace runs from layout extraction
5. repeated character patterns (OCR artifacts)
6. little script-valid content (Latin, Hangul, kana, CJK)

The result is advisory: it feeds manual-review decisions, it never discards
extracted text.
"""

import re

from recordfinder.parsers.models import OCRQuality, OCRQualityAssessment

_BROKEN_RE = re.compile("[\u25a1\u25a0\u25c6\u25c7\u25cb\u25cf\u25b3\u25b2\u25bd\u25bc\u2605\u2606\u203b\ufffd]")
_WHITESPACE_RUN_RE = re.compile(r"\s{5,}")
_REPEATED_RE = re.compile(r"(.{3,}?)\1{2,}")
# Latin letters/digits, Hangul syllables, Hiragana, Katakana, CJK ideographs
_VALID_CHAR_RE = re.compile("[a-zA-Z0-9\uac00-\ud7a3\u3040-\u309f\u30a0-\u30ff\u4e00-\u9fff]")

_RECOMMENDATIONS: dict[str, str] = {
    "good": "Automatic analysis is reliable",
    "fair": "Review the analysis result",
    "poor": "Low OCR quality, check the document manually",
    "manual_needed": "Analyze the document manually",
}


def assess_ocr_quality(text: str | None) -> OCRQualityAssessment:
    """Score extracted text from 0 to 100 and bucket it."""
    text = text or ""
    length = len(text)
    issues: list[str] = []
    score = 100

    # 1. Length
    if length < 100:
        score -= 50
        issues.append("Almost no text extracted (under 100 characters)")
    elif length < 500:
        score -= 20
        issues.append("Very short text (under 500 characters)")

    # 2. Meaningful word ratio
    tokens = text.split()
    words = [t for t in tokens if len(t) >= 3]
    word_ratio = len(words) / max(len(tokens), 1)
    if word_ratio < 0.3:
        score -= 30
        issues.append(f"Low meaningful word ratio ({word_ratio:.0%})")
    elif word_ratio < 0.5:
        score -= 15
        issues.append(f"Mediocre word quality ({word_ratio:.0%})")

    # 3. Broken glyphs
    broken = len(_BROKEN_RE.findall(text))
    broken_ratio = broken / max(length, 1)
    if broken_ratio > 0.05:
        score -= 25
        issues.append(f"Many broken characters ({broken})")
    elif broken_ratio > 0.01:
        score -= 10
        issues.append(f"Broken characters found ({broken})")

    # 4. Layout whitespace
    if len(_WHITESPACE_RUN_RE.findall(text)) > 20:
        score -= 15
        issues.append("Layout extraction problem (excessive whitespace)")

    # 5. Repeated patterns
    repeats = [m.group(0) for m in _REPEATED_RE.finditer(text)]
    repeated_chars = sum(len(r) for r in repeats)
    if repeated_chars > length * 0.1 or len(repeats) > 5:
        score -= 20
        issues.append("Repeated patterns detected (OCR artifact)")

    # 6. Script-valid content
    valid_ratio = len(_VALID_CHAR_RE.findall(text)) / max(length, 1)
    if valid_ratio < 0.3:
        score -= 20
        issues.append(f"Low text content ratio ({valid_ratio:.0%})")

    score = max(0, min(100, score))
    quality = quality_bucket(score)
    return OCRQualityAssessment(
        quality=quality,
        score=score,
        issues=issues,
        recommendation=_RECOMMENDATIONS[quality],
    )


def quality_bucket(score: int) -> OCRQuality:
    if score >= 70:
        return "good"
    if score >= 50:
        return "fair"
    if score >= 30:
        return "poor"
    return "manual_needed"


def needs_manual_ocr_review(assessment: OCRQualityAssessment) -> bool:
    return assessment.quality in ("poor", "manual_needed")


def summarize_ocr_quality(assessments: list[OCRQualityAssessment]) -> dict:
    """Counts per quality bucket."""
    summary = {"total": len(assessments), "good": 0, "fair": 0, "poor": 0, "manual_needed": 0}
    for a in assessments:
        summary[a.quality] += 1
    return summary
