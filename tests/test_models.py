"""Tests for shared data models: manual review rule and search requests."""

from datetime import datetime, timezone

import pytest
from pydantic import ValidationError

from recordfinder.agents.models import AnalysisResult, needs_manual_review
from recordfinder.search.models import LiteratureItem, SearchRequest, sanitize_filename


# ── Manual Review ────────────────────────────────────────────────────


@pytest.mark.parametrize("tier,has_record,confidence,expected", [
    ("fulltext", True, 0.1, False),
    ("fulltext", None, 0.1, False),
    ("abstract", True, 0.95, True),
    ("abstract", None, 0.95, True),
    ("abstract", False, 0.95, False),
    ("abstract", False, 0.69, True),
    ("abstract", False, 0.7, False),
    ("metadata", False, 0.8, False),
    ("metadata", True, 0.8, True),
])
def test_needs_manual_review(tier, has_record, confidence, expected):
    assert needs_manual_review(tier, has_record, confidence) is expected


def test_manual_review_is_derived():
    result = AnalysisResult(
        has_record=None,
        confidence=0.5,
        reasoning="r",
        analysis_tier="metadata",
        analyzed_at=datetime.now(timezone.utc),
    )
    assert result.needs_manual_review
    assert result.model_dump()["needs_manual_review"] is True


def test_confidence_bounds():
    with pytest.raises(ValidationError):
        AnalysisResult(
            confidence=1.5,
            reasoning="r",
            analysis_tier="fulltext",
            analyzed_at=datetime.now(timezone.utc),
        )


# ── Search Request ───────────────────────────────────────────────────


def test_search_terms_dedup_and_order():
    request = SearchRequest(term="Charybdis japonica", synonyms=["Goniosoma japonica", " Charybdis japonica ", ""])
    assert request.search_terms() == ["Charybdis japonica", "Goniosoma japonica"]


def test_strategies():
    assert SearchRequest(term="x").strategies() == ["historical", "regional"]
    assert SearchRequest(term="x", strategy="regional").strategies() == ["regional"]


def test_bucket_size():
    assert SearchRequest(term="x", synonyms=["y", "z"], max_results=20).bucket_size() == 4
    assert SearchRequest(term="x", max_results=20, max_results_per_bucket=7).bucket_size() == 7


def test_year_order_validated():
    with pytest.raises(ValidationError):
        SearchRequest(term="x", year_from=1950, year_to=1900)


def test_signature_stable_and_option_sensitive():
    a = SearchRequest(term="Charybdis japonica", synonyms=["b", "a"])
    b = SearchRequest(term="Charybdis japonica", synonyms=["a", "b"])
    assert a.signature() == b.signature()
    assert a.signature() != SearchRequest(term="Charybdis japonica", strategy="regional").signature()
    assert a.signature().startswith("Charybdis_japonica_")


def test_sanitize_filename():
    assert sanitize_filename('a/b:c*d?  e') == "a_b_c_d__e"
    assert len(sanitize_filename("x" * 500)) == 100


def test_dedup_key():
    item = LiteratureItem(id="a", source="openalex", title="On The Crabs", year=1900)
    assert item.dedup_key() == ("on the crabs", 1900)
