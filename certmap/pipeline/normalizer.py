"""
Mapping normalizer: canonical strings, ISO dates, clamped confidences.

Idempotent: normalize_mapping(normalize_mapping(m)) == normalize_mapping(m).
Never raises; a field that cannot be normalized is dropped and logged.
"""

import math
import re
from typing import Any, Optional, Union

import structlog
from pydantic import ValidationError

from certmap.pipeline.date_parser import clean_date_text, parse_date
from certmap.pipeline.text_patterns import find_urls, is_strict_address
from certmap.schemas.contracts import BBox
from certmap.schemas.mapping import (
    ADDRESS_FIELDS,
    ARRAY_FIELDS,
    DATE_FIELDS,
    DATE_FORMAT_TAG,
    STRING_FIELDS,
    MappedField,
    Mapping,
    Source,
)

logger = structlog.get_logger(__name__)

MAX_VALUE_LENGTH = 1000
LINK_BACKFILL_CONFIDENCE = 0.8

CONTROL_CHARS_RE = re.compile(r"[\x00-\x1F\x7F]")
WHITESPACE_RE = re.compile(r"\s+")

# Ordered: "issued by" must be tried before "issuer"
LABEL_RULES: list[tuple[str, re.Pattern]] = [
    (label, re.compile(rf"^{label}[:\-\s]*", re.IGNORECASE))
    for label in ("issued by", "issuer", "title", "certificate", "recipient")
]


class NormalizationError(Exception):
    """One field could not be normalized."""

    def __init__(self, field: str, message: str):
        self.field = field
        super().__init__(f"{field}: {message}")


# ─── Primitive cleanup ───────────────────────────────────────

def strip_labels(text: str) -> str:
    """Apply the label rules until none matches."""
    while True:
        for _, pattern in LABEL_RULES:
            stripped = pattern.sub("", text, count=1)
            if stripped != text:
                text = stripped.strip()
                break
        else:
            return text


def clean_string(raw: Any) -> str:
    if raw is None:
        return ""
    text = CONTROL_CHARS_RE.sub("", str(raw))
    text = WHITESPACE_RE.sub(" ", text).strip()
    text = strip_labels(text)
    return text[:MAX_VALUE_LENGTH].strip()


def clamp_confidence(raw: Any) -> float:
    try:
        value = float(raw)
    except (TypeError, ValueError):
        return 0.0
    if not math.isfinite(value):
        return 0.0
    return round(min(1.0, max(0.0, value)), 2)


def clamp_number(raw: Any) -> float:
    try:
        value = float(raw)
    except (TypeError, ValueError):
        return 0.0
    return value if math.isfinite(value) else 0.0


def _as_int(raw: Any) -> Optional[int]:
    try:
        return int(raw)
    except (TypeError, ValueError):
        return None


def normalize_source(raw: Union[Source, dict, Any]) -> Optional[Source]:
    if isinstance(raw, Source):
        raw = raw.model_dump()
    if not isinstance(raw, dict):
        return None

    bbox = raw.get("bbox")
    if isinstance(bbox, BBox):
        bbox = bbox.model_dump()
    if isinstance(bbox, dict):
        bbox = BBox(**{k: clamp_number(bbox.get(k)) for k in ("x", "y", "w", "h")})
    else:
        bbox = None

    text = raw.get("text")
    return Source(
        page=_as_int(raw.get("page")),
        item_index=_as_int(raw.get("item_index", raw.get("itemIndex"))),
        bbox=bbox,
        text=text.strip() if isinstance(text, str) else None,
    )


def normalize_sources(raw: Any) -> Optional[list[Source]]:
    if not isinstance(raw, list):
        return None
    return [s for s in (normalize_source(item) for item in raw) if s is not None]


# ─── Field normalizers ───────────────────────────────────────

def _field_dict(raw: Union[MappedField, dict, Any]) -> dict:
    if isinstance(raw, MappedField):
        return raw.model_dump()
    if isinstance(raw, dict):
        return {
            "value": raw.get("value"),
            "original": raw.get("original"),
            "format": raw.get("format"),
            "confidence": raw.get("confidence"),
            "sources": raw.get("sources"),
        }
    # A bare value is treated as an unscored suggestion
    return {"value": raw, "original": None, "format": None, "confidence": 0, "sources": None}


def _original(field: dict, fallback: str) -> str:
    original = field.get("original")
    return original if isinstance(original, str) else fallback


def normalize_string_field(name: str, field: dict) -> Optional[MappedField]:
    raw = field["value"]
    if isinstance(raw, list):
        raw = ", ".join(str(v) for v in raw if v is not None)
    if raw is None:
        return None
    if not isinstance(raw, (str, int, float)):
        raise NormalizationError(name, f"unsupported value type {type(raw).__name__}")

    value = clean_string(raw)
    if not value:
        return None
    return MappedField(
        value=value,
        original=_original(field, str(raw)),
        format=field.get("format"),
        confidence=clamp_confidence(field.get("confidence")),
        sources=normalize_sources(field.get("sources")),
    )


def normalize_array_field(name: str, field: dict) -> Optional[MappedField]:
    raw = field["value"]
    if raw is None:
        return None
    elements = raw if isinstance(raw, list) else [raw]

    values: list[str] = []
    for element in elements:
        cleaned = clean_string(element)
        if cleaned and cleaned not in values:
            values.append(cleaned)
    if not values:
        return None

    return MappedField(
        value=values,
        original=_original(field, ", ".join(str(e) for e in elements if e is not None)),
        format=field.get("format"),
        confidence=clamp_confidence(field.get("confidence")),
        sources=normalize_sources(field.get("sources")),
    )


def normalize_date_field(name: str, field: dict) -> Optional[MappedField]:
    raw = field["value"]
    if raw is None or isinstance(raw, list):
        return None
    raw = str(raw)

    cleaned = clean_string(raw)
    result = parse_date(cleaned)
    if result.iso:
        value, fmt = result.iso, DATE_FORMAT_TAG
    else:
        # Only a parsed date carries the format tag
        value, fmt = clean_date_text(cleaned), None
    if not value:
        return None

    return MappedField(
        value=value,
        original=_original(field, raw),
        format=fmt,
        confidence=clamp_confidence(field.get("confidence")),
        sources=normalize_sources(field.get("sources")),
    )


def normalize_address_field(name: str, field: dict) -> Optional[MappedField]:
    raw = field["value"]
    if raw is None or isinstance(raw, list):
        return None
    raw = str(raw)

    value = clean_string(raw)
    if not value:
        return None
    if is_strict_address(value):
        value = value.lower()

    return MappedField(
        value=value,
        original=_original(field, raw),
        format=field.get("format"),
        confidence=clamp_confidence(field.get("confidence")),
        sources=normalize_sources(field.get("sources")),
    )


_FIELD_NORMALIZERS = (
    [(name, normalize_string_field) for name in STRING_FIELDS]
    + [(name, normalize_array_field) for name in ARRAY_FIELDS]
    + [(name, normalize_date_field) for name in DATE_FIELDS]
    + [(name, normalize_address_field) for name in ADDRESS_FIELDS]
)


def backfill_links(fields: dict[str, MappedField]) -> Optional[MappedField]:
    """Recover links mentioned only inside the description."""
    description = fields.get("description")
    if description is None:
        return None
    urls = find_urls(f"{description.value} {description.original or ''}")
    if not urls:
        return None
    return MappedField(value=urls, original=", ".join(urls), confidence=LINK_BACKFILL_CONFIDENCE)


# ─── Entry point ─────────────────────────────────────────────

def _raw_fields(mapping: Union[Mapping, dict, None]) -> dict[str, Any]:
    """Field name -> raw field, accepting snake_case or camelCase keys."""
    if mapping is None:
        return {}
    if isinstance(mapping, Mapping):
        return mapping.present()
    if not isinstance(mapping, dict):
        raise NormalizationError("mapping", f"unsupported type {type(mapping).__name__}")

    by_alias = {info.alias: name for name, info in Mapping.model_fields.items()}
    fields: dict[str, Any] = {}
    for key, value in mapping.items():
        name = key if key in Mapping.model_fields else by_alias.get(key)
        if name and value is not None:
            fields[name] = value
    return fields


def normalize_mapping(mapping: Union[Mapping, dict, None]) -> Optional[Mapping]:
    """
    Canonicalize a mapping for storage and form prefill.

    Returns None for an absent mapping or when no field survives. Unknown
    keys are ignored and a field that fails to normalize is left out; the
    rest of the mapping survives.
    """
    if mapping is None:
        return None

    fields: dict[str, MappedField] = {}
    try:
        raw_fields = _raw_fields(mapping)
        for name, normalizer in _FIELD_NORMALIZERS:
            if name not in raw_fields:
                continue
            try:
                normalized = normalizer(name, _field_dict(raw_fields[name]))
            except (NormalizationError, ValidationError) as e:
                logger.warning("field_normalization_failed", field=name, error=str(e))
                continue
            if normalized is not None:
                fields[name] = normalized

        if "useful_links" not in fields:
            links = backfill_links(fields)
            if links is not None:
                fields["useful_links"] = links
    except Exception as e:
        logger.warning("mapping_normalization_failed", error=str(e), fields_kept=sorted(fields))

    return Mapping(**fields) if fields else None
