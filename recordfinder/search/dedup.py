"""Deduplicate and year-order literature items gathered from many sources."""

import logging

from pydantic import BaseModel

from recordfinder.search.models import LiteratureItem

logger = logging.getLogger(__name__)

# Sort key for items whose publication year is unknown
_UNKNOWN_YEAR = float("inf")


# ── Result Model ─────────────────────────────────────────────────────


class DedupResult(BaseModel):
    """Result of deduplication across search calls."""

    unique_items: list[LiteratureItem]
    duplicate_pairs: list[tuple[str, str]]  # (kept id, removed id)
    stats: dict


# ── Public API ───────────────────────────────────────────────────────


def deduplicate(items: list[LiteratureItem]) -> DedupResult:
    """Collapse items sharing a case-insensitive title and the same year.

    The first occurrence is kept; later duplicates only fill its missing fields.
    """
    index: dict[tuple[str, int | None], int] = {}
    unique: list[LiteratureItem] = []
    duplicate_pairs: list[tuple[str, str]] = []

    for item in items:
        key = item.dedup_key()
        match_idx = index.get(key)
        if match_idx is not None:
            unique[match_idx] = _merge(unique[match_idx], item)
            duplicate_pairs.append((unique[match_idx].id, item.id))
            continue
        index[key] = len(unique)
        unique.append(item)

    stats = {
        "input_total": len(items),
        "duplicates_found": len(duplicate_pairs),
        "unique_total": len(unique),
    }
    logger.info(
        "Deduplication: %d items → %d unique (%d duplicates removed)",
        stats["input_total"],
        stats["unique_total"],
        stats["duplicates_found"],
    )
    return DedupResult(
        unique_items=unique,
        duplicate_pairs=duplicate_pairs,
        stats=stats,
    )


def sort_by_year(items: list[LiteratureItem]) -> list[LiteratureItem]:
    """Oldest first; unknown years last. Stable for equal years."""
    return sorted(items, key=lambda it: it.year if it.year is not None else _UNKNOWN_YEAR)


# ── Merging ──────────────────────────────────────────────────────────


def _merge(primary: LiteratureItem, secondary: LiteratureItem) -> LiteratureItem:
    """Fill missing fields in primary from secondary."""
    data = primary.model_dump()
    for field in ("doi", "journal", "volume", "pages", "pdf_url", "snippet"):
        if not data.get(field) and getattr(secondary, field):
            data[field] = getattr(secondary, field)
    if not data.get("authors") and secondary.authors:
        data["authors"] = secondary.authors
    data["relevance_score"] = max(primary.relevance_score, secondary.relevance_score)
    return LiteratureItem.model_validate(data)
