"""
Heuristic field mapping: Extraction -> Mapping.

Each heuristic is a pure function over a prepared context that returns the
fields it could derive, or None. The builder runs them in a fixed order and
omits a heuristic's fields when it finds nothing or fails, so one bad guess
never costs the whole mapping.
"""

import re
from dataclasses import dataclass
from typing import Any, Callable, Optional, Union

import structlog
from pydantic import ValidationError

from certmap.pipeline.category_classifier import classify_category
from certmap.pipeline.date_parser import find_dates, is_iso_shaped
from certmap.pipeline.text_patterns import ADDRESS_IN_TEXT_RE, find_urls
from certmap.schemas.contracts import Extraction, Page, TextItem
from certmap.schemas.mapping import MappedField, Mapping, Source

logger = structlog.get_logger(__name__)

DEFAULT_AVG_HEIGHT = 10.0

ISSUER_LINE_RE = re.compile(r"(?:issued by|issuer|presented by)[:\-\s]+(.*)", re.IGNORECASE)
RECIPIENT_LINE_RE = re.compile(
    r"\b(?:awarded to|presented to|certified to|recipient|to)\b[:\-\s]*(.+)", re.IGNORECASE
)
SKILLS_LINE_RE = re.compile(r"^skills[:\-\s]", re.IGNORECASE)
SKILLS_LABEL_RE = re.compile(r"^skills[:\-\s]*", re.IGNORECASE)
LIST_SPLIT_RE = re.compile(r"[,;\n]")


class MappingError(Exception):
    """A heuristic could not produce a field from malformed input."""


@dataclass
class MappingContext:
    extraction: Extraction
    lines: list[str]
    avg_height: float

    @property
    def plain_text(self) -> str:
        return self.extraction.plain_text

    @property
    def first_page(self) -> Optional[Page]:
        return self.extraction.pages[0] if self.extraction.pages else None


FieldResult = Optional[dict[str, MappedField]]
Heuristic = Callable[[MappingContext], FieldResult]


# ─── Provenance ──────────────────────────────────────────────

def find_source(extraction: Extraction, snippet: Optional[str]) -> Optional[Source]:
    """First fragment whose text contains the snippet, case-insensitive."""
    if not snippet:
        return None
    needle = snippet.lower()
    for page in extraction.pages:
        for index, item in enumerate(page.items):
            if item.text and needle in item.text.lower():
                return _item_source(page, index, item)
    return None


def _item_source(page: Page, index: int, item: TextItem) -> Source:
    return Source(page=page.page_number, item_index=index, bbox=item.bbox, text=item.text)


def _sources(source: Optional[Source]) -> list[Source]:
    return [source] if source else []


# ─── Context ─────────────────────────────────────────────────

def split_lines(plain_text: str) -> list[str]:
    text = plain_text.replace("\f", "\n")
    return [line.strip() for line in re.split(r"\r?\n", text) if line.strip()]


def average_item_height(extraction: Extraction) -> float:
    heights = [item.bbox.h for page in extraction.pages for item in page.items]
    if not heights:
        return DEFAULT_AVG_HEIGHT
    return sum(heights) / len(heights)


def _items_by_height(page: Page) -> list[tuple[int, TextItem]]:
    """Page items tallest first; sort is stable so earlier items win ties."""
    return sorted(enumerate(page.items), key=lambda pair: pair[1].bbox.h, reverse=True)


def _height_ratio(item: TextItem, avg_height: float) -> float:
    return item.bbox.h / avg_height if avg_height else 0.1


# ─── Heuristics ──────────────────────────────────────────────

def map_title(ctx: MappingContext) -> FieldResult:
    page = ctx.first_page
    if page and page.items:
        index, item = _items_by_height(page)[0]
        if len(item.text.strip()) > 3:
            bonus = min(0.4, _height_ratio(item, ctx.avg_height))
            return {"title": MappedField(
                value=item.text.strip(),
                confidence=round(0.6 + bonus, 2),
                sources=[_item_source(page, index, item)],
            )}

    candidate = next((line for line in ctx.lines if 5 <= len(line) <= 200), None)
    if candidate is None:
        return None
    source = find_source(ctx.extraction, candidate)
    return {"title": MappedField(
        value=candidate,
        confidence=0.6 if source else 0.45,
        sources=_sources(source),
    )}


def map_issuer(ctx: MappingContext) -> FieldResult:
    for line in ctx.lines:
        m = ISSUER_LINE_RE.search(line)
        if m and m.group(1).strip():
            source = find_source(ctx.extraction, line)
            return {"issuer": MappedField(
                value=m.group(1).strip(),
                confidence=0.75 if source else 0.6,
                sources=_sources(source),
            )}

    page = ctx.first_page
    if page is None or len(page.items) < 2:
        return None
    index, item = _items_by_height(page)[1]
    if len(item.text.strip()) <= 1:
        return None
    bonus = min(0.35, _height_ratio(item, ctx.avg_height))
    return {"issuer": MappedField(
        value=item.text.strip(),
        confidence=round(0.6 + bonus, 2),
        sources=[_item_source(page, index, item)],
    )}


def map_links(ctx: MappingContext) -> FieldResult:
    urls = find_urls(ctx.plain_text)
    if not urls:
        return None
    sources = [find_source(ctx.extraction, url) or Source(text=url) for url in urls]
    return {"useful_links": MappedField(value=urls, confidence=0.9, sources=sources)}


def _date_field(ctx: MappingContext, value: str) -> MappedField:
    return MappedField(
        value=value,
        confidence=0.8 if is_iso_shaped(value) else 0.6,
        sources=_sources(find_source(ctx.extraction, value)),
    )


def map_dates(ctx: MappingContext) -> FieldResult:
    """
    One date is the issue date; with more, the first two in order of
    appearance become start and end. They are not sorted chronologically.
    """
    dates = find_dates(ctx.plain_text)
    if not dates:
        return None
    if len(dates) == 1:
        return {"issued_date": _date_field(ctx, dates[0])}
    return {
        "start_date": _date_field(ctx, dates[0]),
        "end_date": _date_field(ctx, dates[1]),
    }


def map_recipient(ctx: MappingContext) -> FieldResult:
    address = ADDRESS_IN_TEXT_RE.search(ctx.plain_text)
    if address:
        value = address.group(0)
        return {"recipient_address": MappedField(
            value=value,
            confidence=0.98,
            sources=_sources(find_source(ctx.extraction, value)),
        )}

    for line in ctx.lines:
        m = RECIPIENT_LINE_RE.search(line)
        if m and m.group(1).strip():
            source = find_source(ctx.extraction, line)
            return {"recipient": MappedField(
                value=m.group(1).strip(),
                confidence=0.75 if source else 0.5,
                sources=_sources(source),
            )}
    return None


def map_description(ctx: MappingContext) -> FieldResult:
    if len(ctx.lines) <= 2:
        return None
    text = " ".join(ctx.lines[1:6])
    if len(text) <= 30:
        return None
    return {"description": MappedField(
        value=text,
        confidence=0.5,
        sources=_sources(find_source(ctx.extraction, ctx.lines[1])),
    )}


def _split_list(text: str) -> list[str]:
    return [part.strip() for part in LIST_SPLIT_RE.split(text) if part.strip()]


def map_skills(ctx: MappingContext) -> FieldResult:
    for i, line in enumerate(ctx.lines):
        if not SKILLS_LINE_RE.match(line):
            continue
        values = _split_list(SKILLS_LABEL_RE.sub("", line, count=1))
        if values:
            return {"skills": MappedField(
                value=values,
                confidence=0.6,
                sources=_sources(find_source(ctx.extraction, line)),
            )}
        if i + 1 < len(ctx.lines):
            following = ctx.lines[i + 1]
            values = _split_list(following)
            if values:
                return {"skills": MappedField(
                    value=values,
                    confidence=0.55,
                    sources=_sources(find_source(ctx.extraction, following)),
                )}
        return None
    return None


def map_category(ctx: MappingContext) -> FieldResult:
    result = classify_category(ctx.plain_text)
    return {"category": MappedField(
        value=result.category,
        confidence=result.confidence,
        sources=_sources(find_source(ctx.extraction, result.first_keyword)),
    )}


HEURISTICS: list[Heuristic] = [
    map_title,
    map_issuer,
    map_links,
    map_dates,
    map_recipient,
    map_description,
    map_skills,
    map_category,
]


# ─── Builder ─────────────────────────────────────────────────

def coerce_extraction(raw: Union[Extraction, dict, Any, None]) -> Extraction:
    """
    Accept an Extraction or its JSON form. Pages that fail validation are
    dropped but the flat text is kept, so text heuristics still run.
    """
    if isinstance(raw, Extraction):
        return raw
    if not isinstance(raw, dict):
        return Extraction()
    try:
        return Extraction.model_validate(raw)
    except ValidationError:
        plain = raw.get("plainText", raw.get("plain_text", ""))
        logger.warning("extraction_pages_invalid", item_keys=sorted(raw)[:10])
        return Extraction(plain_text=plain if isinstance(plain, str) else "")


def run_heuristic(heuristic: Heuristic, ctx: MappingContext) -> FieldResult:
    try:
        return heuristic(ctx)
    except (AttributeError, IndexError, KeyError, TypeError, ValueError, ZeroDivisionError) as e:
        raise MappingError(f"{heuristic.__name__}: {e}") from e


def build_context(extraction: Extraction) -> MappingContext:
    return MappingContext(
        extraction=extraction,
        lines=split_lines(extraction.plain_text),
        avg_height=average_item_height(extraction),
    )


def map_extraction(extraction: Union[Extraction, dict, None]) -> Mapping:
    """
    Map an extraction to suggested form fields. Pure and deterministic;
    never raises for malformed input.
    """
    ctx = build_context(coerce_extraction(extraction))

    fields: dict[str, MappedField] = {}
    for heuristic in HEURISTICS:
        try:
            result = run_heuristic(heuristic, ctx)
        except MappingError as e:
            logger.warning("heuristic_failed", heuristic=heuristic.__name__, error=str(e))
            continue
        if result:
            fields.update({name: value for name, value in result.items() if value is not None})

    return Mapping(**fields)
