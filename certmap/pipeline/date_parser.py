"""
Day-first date parsing for English and German certificate text.

Strategy:
1. Unambiguous calendar parse first (strict ISO-8601)
2. Numeric D.M.Y / D/M/Y / D-M-Y, day first, 2- or 4-digit year
3. Written month names, "D Month Y" and "Month D Y", English and German
Every candidate is validated as a real calendar date before it is accepted.
"""

import re
import unicodedata
from datetime import date
from typing import Optional

from dateutil import parser as dateutil_parser
from pydantic import BaseModel


class DateParseResult(BaseModel):
    parsed_date: Optional[date] = None
    raw_text: str
    format_detected: str

    @property
    def iso(self) -> Optional[str]:
        return self.parsed_date.isoformat() if self.parsed_date else None


MONTHS = {
    "jan": 1, "january": 1, "januar": 1, "janner": 1,
    "feb": 2, "february": 2, "februar": 2,
    "mar": 3, "march": 3, "marz": 3, "mrz": 3,
    "apr": 4, "april": 4,
    "may": 5, "mai": 5,
    "jun": 6, "june": 6, "juni": 6,
    "jul": 7, "july": 7, "juli": 7,
    "aug": 8, "august": 8,
    "sep": 9, "sept": 9, "september": 9,
    "oct": 10, "october": 10, "okt": 10, "oktober": 10,
    "nov": 11, "november": 11,
    "dec": 12, "december": 12, "dez": 12, "dezember": 12,
}

_MONTH_NAMES = (
    r"(?:Jan(?:uary|uar)?|Feb(?:ruary|ruar)?|M(?:ar(?:ch)?|ärz|rz)|Apr(?:il)?|Ma[iy]"
    r"|Jun[ei]?|Jul[iy]?|Aug(?:ust)?|Sep(?:t(?:ember)?)?|O[ck]t(?:ober)?|Nov(?:ember)?"
    r"|De[cz](?:ember)?)"
)

# ── Scanning patterns (find dates inside free text) ──────────
ISO_DATE_RE = re.compile(r"\d{4}-\d{2}-\d{2}")
NUMERIC_DATE_RE = re.compile(r"(?<!\d)\d{1,2}\s*[./-]\s*\d{1,2}\s*[./-]\s*(?:\d{4}|\d{2})(?!\d)")
MONTH_FIRST_DATE_RE = re.compile(
    rf"\b{_MONTH_NAMES}\b[\s.,-]*\d{{1,2}}(?:st|nd|rd|th)?[,\s]*\d{{4}}\b", re.IGNORECASE
)
DAY_FIRST_DATE_RE = re.compile(
    rf"\b\d{{1,2}}(?:st|nd|rd|th)?\.?\s*{_MONTH_NAMES}\b[\s.,-]*\d{{4}}\b", re.IGNORECASE
)

# ── Full-string grammars (parse one candidate) ───────────────
_NUMERIC_FULL = re.compile(r"^(\d{1,2})\s*[./-]\s*(\d{1,2})\s*[./-]\s*(\d{4}|\d{2})$")
_DAY_MONTH_YEAR = re.compile(r"^(\d{1,2})(?:st|nd|rd|th)?[\s,.\-]*([^\W\d_]+)[\s,.\-]*(\d{4})$")
_MONTH_DAY_YEAR = re.compile(r"^([^\W\d_]+)[\s,.\-]*(\d{1,2})(?:st|nd|rd|th)?[\s,.\-]*(\d{4})$")


def clean_date_text(raw: str) -> str:
    """Normalize PDF whitespace and dot quirks."""
    text = raw.replace("\u00a0", " ")
    text = re.sub(r"[\u00b7\u2024\uff0e]", ".", text)
    return re.sub(r"\s+", " ", text).strip()


def expand_two_digit_year(yy: int) -> int:
    return 1900 + yy if yy > 50 else 2000 + yy


def strip_diacritics(text: str) -> str:
    decomposed = unicodedata.normalize("NFD", text)
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch))


def month_number(name: str) -> Optional[int]:
    key = strip_diacritics(name).lower()
    return MONTHS.get(key) or MONTHS.get(key[:3])


def _safe_date(year: int, month: int, day: int) -> Optional[date]:
    try:
        return date(year, month, day)
    except ValueError:
        return None


def _parse_iso(text: str) -> Optional[date]:
    if not re.match(r"^\d{4}-?\d{2}-?\d{2}", text):
        return None
    try:
        return dateutil_parser.isoparse(text).date()
    except (ValueError, OverflowError):
        return None


def _parse_numeric(text: str) -> Optional[date]:
    m = _NUMERIC_FULL.match(text)
    if not m:
        return None
    day, month, year_raw = int(m.group(1)), int(m.group(2)), m.group(3)
    year = expand_two_digit_year(int(year_raw)) if len(year_raw) == 2 else int(year_raw)
    return _safe_date(year, month, day)


def _parse_written(text: str) -> tuple[Optional[date], str]:
    m = _DAY_MONTH_YEAR.match(text)
    if m:
        month = month_number(m.group(2))
        if month:
            return _safe_date(int(m.group(3)), month, int(m.group(1))), "DD_MONTH_YYYY"
    m = _MONTH_DAY_YEAR.match(text)
    if m:
        month = month_number(m.group(1))
        if month:
            return _safe_date(int(m.group(3)), month, int(m.group(2))), "MONTH_DD_YYYY"
    return None, "UNKNOWN"


def parse_date(raw: str) -> DateParseResult:
    """
    Parse one date string, day first.

    Returns a result with parsed_date=None when no grammar yields a real
    calendar date; callers keep the cleaned text in that case.
    """
    text = clean_date_text(raw or "")

    parsed = _parse_iso(text)
    if parsed:
        return DateParseResult(parsed_date=parsed, raw_text=raw, format_detected="ISO_8601")

    parsed = _parse_numeric(text)
    if parsed:
        return DateParseResult(parsed_date=parsed, raw_text=raw, format_detected="DD.MM.YYYY")

    parsed, format_name = _parse_written(text)
    if parsed:
        return DateParseResult(parsed_date=parsed, raw_text=raw, format_detected=format_name)

    return DateParseResult(parsed_date=None, raw_text=raw, format_detected="UNKNOWN")


def to_iso(raw: str) -> Optional[str]:
    """ISO YYYY-MM-DD for a parseable date string, else None."""
    return parse_date(raw).iso


def is_iso_shaped(text: str) -> bool:
    return bool(ISO_DATE_RE.search(text))


def find_dates(text: str) -> list[str]:
    """
    All date-looking substrings in document order, de-duplicated.

    ISO matches win over numeric and month-name matches that overlap them,
    so "2024-03-12" never also yields "24-03-12".
    """
    if not text:
        return []
    cleaned = text.replace("\u00a0", " ")
    cleaned = re.sub(r"[\u00b7\u2024\uff0e]", ".", cleaned)

    taken: list[tuple[int, int, str]] = []
    for pattern in (ISO_DATE_RE, NUMERIC_DATE_RE, DAY_FIRST_DATE_RE, MONTH_FIRST_DATE_RE):
        for m in pattern.finditer(cleaned):
            start, end = m.span()
            if any(start < t_end and t_start < end for t_start, t_end, _ in taken):
                continue
            taken.append((start, end, m.group(0)))

    found: list[str] = []
    for _, _, value in sorted(taken):
        if value not in found:
            found.append(value)
    return found

