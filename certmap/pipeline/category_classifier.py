"""
Certificate category classification by keyword scoring.
Internship, Hackathon, Course or Volunteering; Other when nothing matches.
"""

import re
from typing import Optional

from pydantic import BaseModel

from certmap.models.enums import Category


class CategoryResult(BaseModel):
    category: str = Category.OTHER.value
    confidence: float = 0.35
    score: int = 0
    matched_keywords: list[str] = []

    @property
    def first_keyword(self) -> Optional[str]:
        return self.matched_keywords[0] if self.matched_keywords else None


# Declaration order is the tie-break order
CATEGORY_KEYWORDS: dict[Category, list[str]] = {
    Category.INTERNSHIP: ["internship", "intern", "praktikum", "traineeship"],
    Category.HACKATHON: ["hackathon", "hack day", "hack-day", "hackfest", "coding competition"],
    Category.COURSE: [
        "course", "training", "workshop", "bootcamp", "certificate of completion",
        "online course", "curriculum", "module",
    ],
    Category.VOLUNTEERING: [
        "volunteer", "volunteering", "community service", "volunteer work",
        "freiwillig", "ehrenamt",
    ],
}

_KEYWORD_PATTERNS = {
    keyword: re.compile(r"\b" + re.escape(keyword) + r"\b")
    for keywords in CATEGORY_KEYWORDS.values()
    for keyword in keywords
}


def score_confidence(matches: int) -> float:
    return round(min(0.95, 0.5 + min(0.45, matches * 0.25)), 2)


def classify_category(text: str) -> CategoryResult:
    """
    Score each category by the number of its keywords found in the text.
    Each keyword counts once however often it appears.
    """
    lower = (text or "").lower()

    best: Optional[CategoryResult] = None
    for category, keywords in CATEGORY_KEYWORDS.items():
        matched = [kw for kw in keywords if _KEYWORD_PATTERNS[kw].search(lower)]
        if matched and (best is None or len(matched) > best.score):
            best = CategoryResult(
                category=category.value,
                confidence=score_confidence(len(matched)),
                score=len(matched),
                matched_keywords=matched,
            )

    return best or CategoryResult()
