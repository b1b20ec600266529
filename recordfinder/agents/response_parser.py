"""Two-stage parsing of model output: find a JSON object, then coerce it.

Parsing never raises. A response without usable JSON becomes an
"unknown" result with low confidence and an excerpt of the raw text.
"""

import json
import logging
import re
from typing import Any

from recordfinder.agents.models import ParsedResponse

logger = logging.getLogger(__name__)

PARSE_FAILURE_CONFIDENCE = 0.3
DEFAULT_CONFIDENCE = 0.5
DEFAULT_REASONING = "No reasoning provided"

# Field -> max characters
_STRING_LIMITS = {
    "locality": 500,
    "collection_date": 100,
    "specimen_info": 500,
    "collector": 200,
}
_REASONING_LIMIT = 2000
_MAX_QUOTES = 10
_QUOTE_LIMIT = 1000

# Accepted JSON keys for each coerced field, first match wins
_FIELD_KEYS = {
    "locality": ("locality",),
    "collection_date": ("collectionDate", "collection_date"),
    "specimen_info": ("specimenInfo", "specimen_info"),
    "collector": ("collector",),
}

_JSON_FENCE_RE = re.compile(r"```json\s*(.*?)\s*```", re.DOTALL)
_ANY_FENCE_RE = re.compile(r"```\s*(.*?)\s*```", re.DOTALL)


# ── Stage 1: Extraction ──────────────────────────────────────────────


def _first_balanced_object(text: str) -> str | None:
    """Text of the first brace-balanced {...}, respecting JSON strings."""
    start = text.find("{")
    while start != -1:
        depth = 0
        in_string = False
        escaped = False
        for i in range(start, len(text)):
            ch = text[i]
            if in_string:
                if escaped:
                    escaped = False
                elif ch == "\\":
                    escaped = True
                elif ch == '"':
                    in_string = False
            elif ch == '"':
                in_string = True
            elif ch == "{":
                depth += 1
            elif ch == "}":
                depth -= 1
                if depth == 0:
                    return text[start : i + 1]
        start = text.find("{", start + 1)
    return None


def _loads_object(candidate: str | None) -> dict | None:
    if not candidate:
        return None
    try:
        obj = json.loads(candidate.strip())
    except json.JSONDecodeError:
        return None
    return obj if isinstance(obj, dict) else None


def extract_json_block(text: str) -> dict | None:
    """Find the JSON object in a model response.

    Tries a ```json fence, then any fence, then the first balanced object.
    """
    if not text:
        return None
    for pattern in (_JSON_FENCE_RE, _ANY_FENCE_RE):
        match = pattern.search(text)
        if match:
            obj = _loads_object(match.group(1))
            if obj is not None:
                return obj
    return _loads_object(_first_balanced_object(text))


# ── Stage 2: Validation & Coercion ───────────────────────────────────


def record_keys(region: str | None = None) -> tuple[str, ...]:
    """``hasRecord`` plus the region-specific legacy key, e.g. ``hasKoreaRecord``."""
    keys = ["hasRecord", "has_record"]
    if region:
        keys.append(f"has{region.replace(' ', '')}Record")
    return tuple(keys)


def _find_key(obj: dict, keys: tuple[str, ...]) -> str | None:
    return next((k for k in keys if k in obj), None)


def validate_response(obj: dict, keys: tuple[str, ...]) -> list[str]:
    """Schema warnings. Never rejects the response."""
    warnings: list[str] = []
    record_key = _find_key(obj, keys)
    if record_key is None:
        warnings.append(f"Missing field: {keys[0]}")
    elif obj[record_key] not in (None, True, False, "true", "false"):
        warnings.append(f"Invalid type for {record_key}: {type(obj[record_key]).__name__}")

    if "confidence" not in obj:
        warnings.append("Missing field: confidence")
    elif _to_float(obj["confidence"]) is None or not 0 <= _to_float(obj["confidence"]) <= 1:
        warnings.append(f"Invalid confidence value: {obj['confidence']!r}")

    if "reasoning" not in obj:
        warnings.append("Missing field: reasoning")

    if "relevantQuotes" in obj and not isinstance(obj["relevantQuotes"], list):
        warnings.append("relevantQuotes should be an array")
    return warnings


def _to_float(value: Any) -> float | None:
    if isinstance(value, bool):
        return None
    try:
        result = float(value)
    except (TypeError, ValueError):
        return None
    return None if result != result else result  # NaN


def coerce_bool(value: Any) -> bool | None:
    if value is True or value == "true":
        return True
    if value is False or value == "false":
        return False
    return None


def coerce_confidence(value: Any) -> float:
    number = _to_float(value)
    if number is None:
        return DEFAULT_CONFIDENCE
    return min(1.0, max(0.0, number))


def coerce_string(value: Any, max_length: int) -> str | None:
    if value is None or value == "":
        return None
    return str(value)[:max_length]


def coerce_quotes(value: Any) -> list[str]:
    if not isinstance(value, list):
        return []
    quotes = [q for q in value[:_MAX_QUOTES] if isinstance(q, str) and q.strip()]
    return [q[:_QUOTE_LIMIT] for q in quotes]


def coerce_response(obj: dict, keys: tuple[str, ...], warnings: list[str]) -> ParsedResponse:
    record_key = _find_key(obj, keys)
    fields = {
        name: coerce_string(obj.get(_find_key(obj, aliases) or aliases[0]), _STRING_LIMITS[name])
        for name, aliases in _FIELD_KEYS.items()
    }
    quotes = obj.get("relevantQuotes", obj.get("quotes"))
    return ParsedResponse(
        has_record=coerce_bool(obj.get(record_key)) if record_key else None,
        confidence=coerce_confidence(obj.get("confidence")),
        quotes=coerce_quotes(quotes),
        reasoning=coerce_string(obj.get("reasoning"), _REASONING_LIMIT) or DEFAULT_REASONING,
        warnings=warnings,
        **fields,
    )


# ── Entry Point ──────────────────────────────────────────────────────


def parse_analysis_response(text: str, region: str | None = None) -> ParsedResponse:
    obj = extract_json_block(text)
    if obj is None:
        logger.warning("Could not parse JSON from model response (%d chars)", len(text or ""))
        return ParsedResponse(
            has_record=None,
            confidence=PARSE_FAILURE_CONFIDENCE,
            reasoning=f"Failed to parse model response. Raw: {(text or '')[:300]}...",
            parse_failed=True,
        )

    keys = record_keys(region)
    warnings = validate_response(obj, keys)
    if warnings:
        logger.warning("Response schema warnings: %s", "; ".join(warnings))
    return coerce_response(obj, keys, warnings)
