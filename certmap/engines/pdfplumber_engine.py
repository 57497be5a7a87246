"""
pdfplumber layout extraction engine.
Primary path for PDFs with embedded text layers.
Produces an Extraction of positioned fragments from raw PDF text + transforms.
"""

import io
import math
from pathlib import Path
from typing import Optional

import pdfplumber
import structlog

from certmap.engines.base import (
    DocumentSource, ExtractionEngine, InputNotFound, ParseFailure,
)
from certmap.schemas.contracts import BBox, Extraction, IDENTITY_TRANSFORM, Page, TextItem

logger = structlog.get_logger(__name__)

DEFAULT_ITEM_HEIGHT = 10.0


def text_space_height(transform: list[float], font_size: Optional[float]) -> float:
    """
    Height of the fragment quad in its local text space.

    Falls back from the font size to the transform's vertical-scale magnitude,
    then to a constant, so a bbox is always produced.
    """
    _, _, c, d, _, _ = transform
    v_scale = math.hypot(c, d)
    if font_size:
        # pdfplumber reports the rendered size, i.e. already scaled by the matrix
        return font_size / v_scale if v_scale else font_size
    return v_scale or DEFAULT_ITEM_HEIGHT


def transform_to_bbox(
    transform: list[float],
    font_size: Optional[float],
    width: float,
    page_height: float,
) -> BBox:
    """
    Project a fragment quad into device space and take its bounding box.

    transform maps text space to user space ([a, b, c, d, e, f]); user space
    has its origin bottom-left, device space top-left.
    """
    a, b, c, d, e, f = transform
    tw = width or 0.0
    th = text_space_height(transform, font_size)

    corners = [(0.0, 0.0), (tw, 0.0), (tw, th), (0.0, th)]
    device = []
    for x, y in corners:
        ux = a * x + c * y + e
        uy = b * x + d * y + f
        device.append((ux, page_height - uy))

    xs = [p[0] for p in device]
    ys = [p[1] for p in device]
    return BBox(x=min(xs), y=min(ys), w=max(xs) - min(xs), h=max(ys) - min(ys))


def _char_transform(char: dict, page_height: float) -> list[float]:
    matrix = char.get("matrix")
    if matrix and len(matrix) == 6:
        return [float(v) for v in matrix]
    # No matrix recorded: place an identity transform at the glyph baseline
    transform = list(IDENTITY_TRANSFORM)
    transform[4] = float(char.get("x0", 0.0))
    transform[5] = page_height - float(char.get("bottom", 0.0))
    return transform


def build_item(word: dict, page_height: float) -> Optional[TextItem]:
    """Turn one pdfplumber word run (with its chars) into a TextItem."""
    text = word.get("text", "")
    if not text.strip():
        return None

    chars = word.get("chars") or []
    if chars:
        first = chars[0]
        transform = _char_transform(first, page_height)
        font_size = first.get("size") or word.get("size")
        width = sum(float(ch.get("adv") or (ch["x1"] - ch["x0"])) for ch in chars)
    else:
        transform = list(IDENTITY_TRANSFORM)
        transform[4] = float(word["x0"])
        transform[5] = page_height - float(word["bottom"])
        font_size = word.get("size")
        width = float(word["x1"] - word["x0"])

    font_size = float(font_size) if font_size else None
    return TextItem(
        text=text,
        bbox=transform_to_bbox(transform, font_size, width, page_height),
        transform=transform,
        font_size=font_size,
        width=width,
    )


class PdfPlumberEngine(ExtractionEngine):
    """
    Layout extraction using pdfplumber for PDFs with embedded text.
    Fragments are word runs split on font size, so a heading and the body
    text beside it stay separate items.
    """

    engine_name = "pdfplumber"
    engine_version = "0.11"

    def __init__(self, x_tolerance: float = 3, y_tolerance: float = 3):
        self.x_tolerance = x_tolerance
        self.y_tolerance = y_tolerance

    def _open(self, source: DocumentSource):
        if isinstance(source, (bytes, bytearray)):
            return pdfplumber.open(io.BytesIO(bytes(source)))
        if isinstance(source, (str, Path)):
            path = Path(source)
            if not path.is_file():
                raise InputNotFound(self.engine_name, f"file not found: {path}")
            return pdfplumber.open(path)
        return pdfplumber.open(source)

    def extract(self, source: DocumentSource) -> Extraction:
        """Extract positioned text fragments from every page."""
        try:
            with self._open(source) as pdf:
                pages = [self._extract_page(page) for page in pdf.pages]
        except InputNotFound:
            raise
        except OSError as e:
            raise InputNotFound(self.engine_name, f"cannot read source: {e}") from e
        except Exception as e:
            raise ParseFailure(self.engine_name, f"not a readable PDF: {e}") from e

        extraction = Extraction.from_pages(pages)
        logger.debug(
            "pdfplumber_extraction_complete",
            page_count=len(pages),
            item_count=extraction.item_count,
        )
        return extraction

    def _extract_page(self, page) -> Page:
        page_width = float(page.width)
        page_height = float(page.height)

        words = page.extract_words(
            x_tolerance=self.x_tolerance,
            y_tolerance=self.y_tolerance,
            keep_blank_chars=True,
            use_text_flow=True,
            extra_attrs=["size"],
            return_chars=True,
        )

        items = []
        for word in words:
            item = build_item(word, page_height)
            if item is not None:
                items.append(item)

        return Page(
            page_number=int(page.page_number),
            width=page_width,
            height=page_height,
            items=items,
        )
