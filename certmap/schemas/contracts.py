"""
Core extraction contracts.
Extraction is THE central schema: every engine MUST produce it and the
mapper operates on it, never on engine-specific output.
"""

from pydantic import BaseModel, Field
from pydantic.alias_generators import to_camel
from typing import Optional

# Appended after every page in plain_text so page boundaries survive flattening
PAGE_BREAK = "\n\f\n"

IDENTITY_TRANSFORM = [1.0, 0.0, 0.0, 1.0, 0.0, 0.0]


class CamelModel(BaseModel):
    """Snake_case attributes, camelCase on the wire."""
    model_config = {"alias_generator": to_camel, "populate_by_name": True}


class BBox(CamelModel):
    """Axis-aligned box in device space (origin top-left, y grows down)."""
    x: float = 0.0
    y: float = 0.0
    w: float = 0.0
    h: float = 0.0


class TextItem(CamelModel):
    """A positioned text fragment as rendered on the page."""
    text: str = Field(default="", alias="str")
    bbox: BBox
    transform: list[float] = Field(default_factory=lambda: list(IDENTITY_TRANSFORM))
    font_size: Optional[float] = None
    width: float = 0.0  # advance width in text space


class Page(CamelModel):
    """
    One page of an extraction.

    Invariants:
    - page_number is 1-based
    - items keep rendering order; item indexes are stable provenance keys
    """
    page_number: int
    width: float = 0.0
    height: float = 0.0
    items: list[TextItem] = []

    @property
    def text(self) -> str:
        return " ".join(item.text for item in self.items)


class Extraction(CamelModel):
    """Full document extraction - ordered pages plus the flattened text view."""
    pages: list[Page] = []
    plain_text: str = ""

    @classmethod
    def from_pages(cls, pages: list[Page]) -> "Extraction":
        plain = "".join(page.text + PAGE_BREAK for page in pages)
        return cls(pages=pages, plain_text=plain)

    def page_texts(self) -> list[str]:
        """Split plain_text back into per-page text."""
        if not self.plain_text:
            return []
        chunks = self.plain_text.split(PAGE_BREAK)
        if chunks and chunks[-1] == "":
            chunks.pop()
        return chunks

    @property
    def item_count(self) -> int:
        return sum(len(p.items) for p in self.pages)
