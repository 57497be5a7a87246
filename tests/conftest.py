"""
Shared test fixtures.
"""

import threading
from pathlib import Path

import pytest

from certmap.engines.base import ExtractionEngine, ParseFailure
from certmap.models.database import Database
from certmap.pipeline.orchestrator import MappingPipeline
from certmap.schemas.contracts import PAGE_BREAK, BBox, Extraction, Page, TextItem
from certmap.storage.artifact_store import ArtifactStore


def _escape(text: str) -> str:
    return text.replace("\\", "\\\\").replace("(", "\\(").replace(")", "\\)")


def build_pdf(pages: list[list[tuple[str, float, float, float]]]) -> bytes:
    """
    Minimal text PDF, one (text, font_size, x, y) run per line, Helvetica,
    US Letter pages. Cross-reference offsets are computed, so pdfminer
    parses it without repair.
    """
    bodies: dict[int, bytes] = {
        1: b"<< /Type /Catalog /Pages 2 0 R >>",
        3: b"<< /Type /Font /Subtype /Type1 /BaseFont /Helvetica >>",
    }
    page_ids = []
    next_id = 4
    for lines in pages:
        page_id, content_id = next_id, next_id + 1
        next_id += 2
        stream = "BT\n" + "".join(
            f"/F1 {size:g} Tf\n1 0 0 1 {x:g} {y:g} Tm\n({_escape(text)}) Tj\n"
            for text, size, x, y in lines
        ) + "ET\n"
        data = stream.encode("latin-1")
        bodies[content_id] = b"<< /Length %d >>\nstream\n" % len(data) + data + b"\nendstream"
        bodies[page_id] = (
            f"<< /Type /Page /Parent 2 0 R /MediaBox [0 0 612 792] "
            f"/Resources << /Font << /F1 3 0 R >> >> /Contents {content_id} 0 R >>"
        ).encode("latin-1")
        page_ids.append(page_id)

    kids = " ".join(f"{i} 0 R" for i in page_ids)
    bodies[2] = f"<< /Type /Pages /Kids [{kids}] /Count {len(page_ids)} >>".encode("latin-1")

    out = bytearray(b"%PDF-1.4\n")
    offsets = {}
    for obj_id in range(1, next_id):
        offsets[obj_id] = len(out)
        out += b"%d 0 obj\n" % obj_id + bodies[obj_id] + b"\nendobj\n"

    xref_at = len(out)
    out += b"xref\n0 %d\n" % next_id
    out += b"0000000000 65535 f \n"
    for obj_id in range(1, next_id):
        out += b"%010d 00000 n \n" % offsets[obj_id]
    out += b"trailer\n<< /Size %d /Root 1 0 R >>\nstartxref\n%d\n%%%%EOF\n" % (next_id, xref_at)
    return bytes(out)


def make_extraction(lines: list[tuple[str, float]], page_height: float = 792.0) -> Extraction:
    """
    Single-page extraction, one item per (text, height) line, with a
    newline-separated plain text view.
    """
    items = []
    y = 72.0
    for text, height in lines:
        items.append(TextItem(
            text=text,
            bbox=BBox(x=72.0, y=y, w=len(text) * height * 0.5, h=height),
            transform=[height, 0.0, 0.0, height, 72.0, page_height - y - height],
            font_size=height,
            width=len(text) * 0.5,
        ))
        y += height + 8
    page = Page(page_number=1, width=612.0, height=page_height, items=items)
    plain = "\n".join(text for text, _ in lines) + PAGE_BREAK
    return Extraction(pages=[page], plain_text=plain)


CERTIFICATE_LINES = [
    ("Data Engineering Bootcamp", 28, 72, 700),
    ("Acme Academy", 18, 72, 660),
    ("Awarded to Jane Doe", 12, 72, 620),
    ("Issued 2024-03-12", 12, 72, 600),
    ("Verify at https://acme.example/verify/123", 12, 72, 580),
]


@pytest.fixture
def certificate_pdf() -> bytes:
    return build_pdf([CERTIFICATE_LINES])


@pytest.fixture
def two_page_pdf() -> bytes:
    return build_pdf([
        [("First page heading", 20, 72, 700)],
        [("Second page body", 12, 72, 700)],
    ])


@pytest.fixture
def hackathon_extraction() -> Extraction:
    return make_extraction([
        ("Hackathon Winner", 30),
        ("Issued by: Open Source Guild", 14),
        ("Awarded to Jane Doe", 12),
        ("Skills: Python, Rust; Teamwork", 10),
        ("From 12.03.2024 to 14.03.2024", 10),
        ("See https://guild.example/cert/42/ and http://guild.example/cert/42", 10),
    ])


class FakeEngine(ExtractionEngine):
    """
    Engine returning a fixed extraction. Sources equal to b"bad" fail to
    parse. With blocking=True every call waits for release to be set.
    """

    engine_name = "fake"
    engine_version = "test"

    def __init__(self, extraction: Extraction, blocking: bool = False):
        self.extraction = extraction
        self.blocking = blocking
        self.started = threading.Event()
        self.release = threading.Event()
        self.calls: list = []
        self.active = 0
        self.max_active = 0
        self._lock = threading.Lock()

    def extract(self, source) -> Extraction:
        with self._lock:
            self.active += 1
            self.max_active = max(self.max_active, self.active)
            self.calls.append(source)
        try:
            self.started.set()
            if self.blocking:
                self.release.wait(10)
            data = Path(source).read_bytes() if isinstance(source, (str, Path)) else source
            if data == b"bad":
                raise ParseFailure(self.engine_name, "not a PDF")
            return self.extraction
        finally:
            with self._lock:
                self.active -= 1


@pytest.fixture
def fake_engine(hackathon_extraction) -> FakeEngine:
    return FakeEngine(hackathon_extraction)


@pytest.fixture
def blocking_engine(hackathon_extraction) -> FakeEngine:
    return FakeEngine(hackathon_extraction, blocking=True)


async def open_pipeline(tmp_path, engine: ExtractionEngine, **kwargs) -> MappingPipeline:
    """Pipeline on a fresh SQLite file. Callers dispose pipeline.database."""
    database = Database(f"sqlite+aiosqlite:///{tmp_path / 'certmap.db'}")
    await database.init_schema()
    return MappingPipeline(
        database,
        engine=engine,
        store=ArtifactStore(str(tmp_path / "artifacts")),
        **kwargs,
    )
