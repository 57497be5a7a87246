"""
Abstract base class for all extraction engines.
Every engine must produce an Extraction.
"""

import asyncio
import time
from abc import ABC, abstractmethod
from pathlib import Path
from typing import BinaryIO, Union

import structlog

from certmap.observability import metrics
from certmap.schemas.contracts import Extraction

logger = structlog.get_logger(__name__)

# A filesystem path, raw document bytes, or an open binary handle
DocumentSource = Union[str, Path, bytes, BinaryIO]


class EngineError(Exception):
    """Raised when an extraction engine fails."""

    error_code = "ERR_ENGINE"
    retryable = False

    def __init__(self, engine_name: str, message: str, error_code: str = ""):
        self.engine_name = engine_name
        self.error_code = error_code or self.error_code
        self.message = message
        super().__init__(f"[{engine_name}] {self.error_code}: {message}")


class InputNotFound(EngineError):
    """The source could not be read."""
    error_code = "ERR_INPUT_NOT_FOUND"


class ParseFailure(EngineError):
    """The source is not a readable document of the expected format."""
    error_code = "ERR_PARSE_FAILURE"


class ExtractionTimeout(EngineError):
    """Extraction exceeded the caller's deadline. Safe to retry later."""
    error_code = "ERR_TIMEOUT"
    retryable = True


class ExtractionEngine(ABC):
    """
    Abstract base class for all extraction engines.

    Every engine must:
    1. Accept a path, bytes or binary handle for one document
    2. Return an Extraction
    3. Report its name and version
    4. Raise EngineError subclasses on failure, never return partial data
    5. Release any document handle it opens on every exit path
    """

    @property
    @abstractmethod
    def engine_name(self) -> str:
        ...

    @property
    @abstractmethod
    def engine_version(self) -> str:
        ...

    @abstractmethod
    def extract(self, source: DocumentSource) -> Extraction:
        """Blocking extraction of every page of the document."""
        ...

    async def extract_with_timeout(self, source: DocumentSource, timeout: float) -> Extraction:
        """
        Race extraction against a deadline.

        The blocking parse runs in a worker thread. On timeout the thread is
        abandoned (it cannot be interrupted) and ExtractionTimeout is raised so
        the caller can mark the document failed and move on.
        """
        started = time.monotonic()
        try:
            extraction = await asyncio.wait_for(asyncio.to_thread(self.extract, source), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning("extraction_timeout", engine=self.engine_name, timeout_seconds=timeout)
            raise ExtractionTimeout(self.engine_name, f"extraction exceeded {timeout:g}s")

        elapsed = time.monotonic() - started
        metrics.extraction_duration_seconds.labels(engine_name=self.engine_name).observe(elapsed)
        metrics.pages_extracted_total.labels(engine_name=self.engine_name).inc(len(extraction.pages))
        return extraction

    def health_check(self) -> bool:
        """Verify engine is available."""
        return True
