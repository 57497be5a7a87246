"""
Pipeline orchestrator: one document through extract → map → normalize → persist.

Stages: PROCESSING → EXTRACT → MAP → NORMALIZE → PERSIST (done | skipped) | error

Both the inline upload path and the background worker run process(); they
differ only in whether extractor errors are re-raised to the caller.
"""

import uuid
from dataclasses import dataclass
from typing import Optional, Union

import structlog
from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError

from certmap.audit import trail
from certmap.config import settings
from certmap.engines.base import DocumentSource, EngineError, ExtractionEngine, InputNotFound
from certmap.engines.pdfplumber_engine import PdfPlumberEngine
from certmap.models.database import Database
from certmap.models.enums import SKIP_REASON_ACCEPTED, AuditMethod, DocStatus
from certmap.models.tables import Document, MappingAudit, utcnow
from certmap.observability import metrics
from certmap.pipeline.field_mapper import map_extraction
from certmap.pipeline.normalizer import normalize_mapping
from certmap.schemas.contracts import Extraction
from certmap.schemas.mapping import Mapping
from certmap.storage.artifact_store import ArtifactStore
from certmap.storage.paths import doc_hash, raw_pdf_path
from certmap.worker.broadcaster import StatusBroadcaster

logger = structlog.get_logger(__name__)

SKIP_ERROR = f"skipped: {SKIP_REASON_ACCEPTED}"


class PipelineError(Exception):
    """Base for errors surfaced to callers of the pipeline."""
    def __init__(self, message: str, error_code: str = "ERR_PIPELINE"):
        self.message = message
        self.error_code = error_code
        super().__init__(message)


class DocumentNotFound(PipelineError):
    def __init__(self, doc_id: str):
        super().__init__(f"Document {doc_id} not found", "ERR_NOT_FOUND")


class ConflictError(PipelineError):
    def __init__(self, doc_id: str):
        super().__init__(
            f"Mapping for document {doc_id} was accepted and cannot be changed",
            "ERR_MAPPING_ACCEPTED",
        )


class InvalidMappingError(PipelineError):
    def __init__(self, message: str = "Mapping has no usable fields"):
        super().__init__(message, "ERR_INVALID_MAPPING")


@dataclass
class RunOutcome:
    """Terminal (or in-progress) state of one document after a pipeline call."""
    doc_id: str
    status: DocStatus
    mapping: Optional[Mapping] = None
    error: Optional[str] = None
    reason: Optional[str] = None

    def to_event(self) -> dict:
        event = {"docId": self.doc_id, "status": self.status.value}
        if self.mapping is not None:
            event["mapping"] = self.mapping.to_json()
        if self.error:
            event["error"] = self.error
        if self.reason:
            event["reason"] = self.reason
        return event


def status_event(doc: Document) -> dict:
    """Current status of a stored document in broadcast form."""
    event = {"docId": doc.doc_id, "status": doc.status}
    if doc.status == DocStatus.DONE.value and doc.mapping_json:
        event["mapping"] = doc.mapping_json
    if doc.status == DocStatus.ERROR.value and doc.processing_error:
        event["error"] = doc.processing_error
    if doc.status == DocStatus.SKIPPED.value:
        event["reason"] = SKIP_REASON_ACCEPTED
    return event


class MappingPipeline:
    """
    Owns one run per call. Stateless between calls apart from its
    collaborators, so one instance serves the whole application.
    """

    def __init__(
        self,
        database: Database,
        engine: Optional[ExtractionEngine] = None,
        broadcaster: Optional[StatusBroadcaster] = None,
        store: Optional[ArtifactStore] = None,
        timeout: Optional[float] = None,
    ):
        self.database = database
        self.engine = engine or PdfPlumberEngine()
        self.broadcaster = broadcaster or StatusBroadcaster()
        self.store = store or ArtifactStore()
        self.timeout = timeout or settings.EXTRACTION_TIMEOUT_SECONDS

    # ── Documents ────────────────────────────────────────────

    async def create_document(
        self,
        file_name: str,
        data: bytes,
        mime_type: str = "application/pdf",
        uploader: Optional[str] = None,
    ) -> Document:
        """Store the upload and register it in status ready."""
        doc_id = str(uuid.uuid4())
        relative_path = self.store.save_bytes(raw_pdf_path(doc_id, file_name), data)

        async with self.database.session() as session:
            doc = Document(
                doc_id=doc_id,
                doc_hash=doc_hash(data),
                file_name=file_name,
                file_size_bytes=len(data),
                mime_type=mime_type,
                raw_file_uri=relative_path,
                uploader=uploader,
                status=DocStatus.READY.value,
            )
            session.add(doc)

        logger.info("document_created", doc_id=doc_id, file_name=file_name, size_bytes=len(data))
        return doc

    async def get_document(self, doc_id: str) -> Document:
        async with self.database.session() as session:
            doc = await session.get(Document, doc_id)
        if doc is None:
            raise DocumentNotFound(doc_id)
        return doc

    def source_for(self, doc: Document) -> DocumentSource:
        if not doc.raw_file_uri or not self.store.exists(doc.raw_file_uri):
            raise InputNotFound(self.engine.engine_name, f"no stored file for document {doc.doc_id}")
        return self.store.full_path(doc.raw_file_uri)

    async def set_status(self, doc_id: str, status: DocStatus, **values) -> None:
        """Write a status transition and broadcast it."""
        async with self.database.session() as session:
            result = await session.execute(
                update(Document)
                .where(Document.doc_id == doc_id)
                .values(status=status.value, **values)
                .execution_options(synchronize_session=False)
            )
        if result.rowcount == 0:
            raise DocumentNotFound(doc_id)
        self.broadcaster.publish(doc_id, {"docId": doc_id, "status": status.value})

    # ── Runs ─────────────────────────────────────────────────

    async def process(
        self,
        doc_id: str,
        source: DocumentSource,
        raise_errors: bool = False,
    ) -> RunOutcome:
        """
        Run the full pipeline for one document.

        Extractor errors end the run in status error; with raise_errors they
        are re-raised after the error has been recorded. Every terminal
        outcome writes exactly one audit entry.
        """
        logger.info("pipeline_started", doc_id=doc_id, engine=self.engine.engine_name)

        await self.set_status(
            doc_id,
            DocStatus.PROCESSING,
            processing_started_at=utcnow(),
            processing_finished_at=None,
            processing_error=None,
        )

        try:
            extraction = await self.engine.extract_with_timeout(source, self.timeout)
        except EngineError as e:
            metrics.pipeline_errors_total.labels(error_code=e.error_code).inc()
            outcome = RunOutcome(doc_id, DocStatus.ERROR, error=f"{e.error_code}: {e.message}")
            await self._persist_error(outcome)
            self._finish(outcome)
            if raise_errors:
                raise
            return outcome

        mapping = normalize_mapping(map_extraction(extraction)) or Mapping()
        outcome = await self._persist_mapping(doc_id, extraction, mapping)
        self._finish(outcome)
        return outcome

    async def _persist_mapping(
        self,
        doc_id: str,
        extraction: Extraction,
        mapping: Mapping,
    ) -> RunOutcome:
        """
        Store the mapping unless the document was accepted meanwhile.

        The accepted flag is read just before the write and the write itself
        is conditional on the flag, so a concurrent accept always wins.
        """
        extraction_json = extraction.model_dump(mode="json", by_alias=True)
        outcome = RunOutcome(doc_id, DocStatus.DONE, mapping=mapping)

        try:
            async with self.database.session() as session:
                accepted = await session.scalar(
                    select(Document.mapping_accepted).where(Document.doc_id == doc_id)
                )
                written = 0
                if accepted is not None and not accepted:
                    result = await session.execute(
                        update(Document)
                        .where(Document.doc_id == doc_id, Document.mapping_accepted.is_(False))
                        .values(
                            mapping_json=mapping.to_json(),
                            extraction_json=extraction_json,
                            page_count=len(extraction.pages),
                            status=DocStatus.DONE.value,
                            processing_error=None,
                            processing_finished_at=utcnow(),
                        )
                        .execution_options(synchronize_session=False)
                    )
                    written = result.rowcount

                if not written:
                    outcome = RunOutcome(doc_id, DocStatus.SKIPPED, reason=SKIP_REASON_ACCEPTED)
                    await session.execute(
                        update(Document)
                        .where(Document.doc_id == doc_id)
                        .values(
                            extraction_json=extraction_json,
                            page_count=len(extraction.pages),
                            status=DocStatus.SKIPPED.value,
                            processing_finished_at=utcnow(),
                        )
                        .execution_options(synchronize_session=False)
                    )

                await trail.record_audit(
                    session,
                    doc_id,
                    mapping=mapping,
                    extraction=extraction_json,
                    error=SKIP_ERROR if outcome.status == DocStatus.SKIPPED else None,
                )
        except SQLAlchemyError as e:
            metrics.pipeline_errors_total.labels(error_code="ERR_PERSISTENCE").inc()
            logger.error("persistence_failed", doc_id=doc_id, stage="mapping", error=str(e))

        return outcome

    async def _persist_error(self, outcome: RunOutcome) -> None:
        try:
            async with self.database.session() as session:
                await session.execute(
                    update(Document)
                    .where(Document.doc_id == outcome.doc_id)
                    .values(
                        status=DocStatus.ERROR.value,
                        processing_error=outcome.error,
                        processing_finished_at=utcnow(),
                    )
                    .execution_options(synchronize_session=False)
                )
                await trail.record_audit(session, outcome.doc_id, error=outcome.error)
        except SQLAlchemyError as e:
            metrics.pipeline_errors_total.labels(error_code="ERR_PERSISTENCE").inc()
            logger.error("persistence_failed", doc_id=outcome.doc_id, stage="error", error=str(e))

    def _finish(self, outcome: RunOutcome) -> None:
        metrics.pipeline_runs_total.labels(outcome=outcome.status.value).inc()
        if outcome.status == DocStatus.DONE and outcome.mapping is not None:
            for field in outcome.mapping.present():
                metrics.mapped_fields_total.labels(field=field).inc()

        self.broadcaster.publish(outcome.doc_id, outcome.to_event())
        logger.info(
            "pipeline_finished",
            doc_id=outcome.doc_id,
            status=outcome.status.value,
            fields=sorted(outcome.mapping.present()) if outcome.mapping else [],
            error=outcome.error,
        )

    # ── User operations ──────────────────────────────────────

    async def accept(
        self,
        doc_id: str,
        mapping: Union[Mapping, dict],
        accepted_by: Optional[str] = None,
    ) -> Mapping:
        """
        Freeze a user-confirmed mapping. Later pipeline runs are skipped
        for this document and explicit re-runs are rejected.
        """
        normalized = normalize_mapping(mapping)
        if normalized is None:
            raise InvalidMappingError()

        async with self.database.session() as session:
            result = await session.execute(
                update(Document)
                .where(Document.doc_id == doc_id, Document.mapping_accepted.is_(False))
                .values(
                    mapping_json=normalized.to_json(),
                    mapping_accepted=True,
                    mapping_accepted_at=utcnow(),
                    mapping_accepted_by=accepted_by,
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                exists = await session.scalar(
                    select(Document.doc_id).where(Document.doc_id == doc_id)
                )
                if exists is None:
                    raise DocumentNotFound(doc_id)
                raise ConflictError(doc_id)

            await trail.record_audit(
                session,
                doc_id,
                mapping=normalized,
                method=AuditMethod.ACCEPTED,
                accepted_by=accepted_by,
            )

        metrics.mappings_accepted_total.inc()
        logger.info("mapping_accepted", doc_id=doc_id, accepted_by=accepted_by)
        return normalized

    async def remap(self, doc_id: str, source: Optional[DocumentSource] = None) -> RunOutcome:
        """
        Explicit re-run request.

        An existing mapping is returned re-normalized and a run already in
        flight is reported as such; only otherwise does extraction run,
        synchronously and with errors raised.
        """
        doc = await self.get_document(doc_id)
        if doc.mapping_accepted:
            raise ConflictError(doc_id)

        status = DocStatus(doc.status)
        if doc.mapping_json:
            existing = normalize_mapping(doc.mapping_json)
            if existing is not None:
                return RunOutcome(doc_id, status, mapping=existing)

        if status.is_in_progress:
            return RunOutcome(doc_id, status)

        return await self.process(doc_id, source or self.source_for(doc), raise_errors=True)

    def map_only(self, extraction: Union[Extraction, dict, None]) -> Mapping:
        """Map and normalize a caller-supplied extraction. Nothing is stored."""
        return normalize_mapping(map_extraction(extraction)) or Mapping()

    async def get_audit(self, doc_id: str, limit: Optional[int] = None) -> list[MappingAudit]:
        """Audit entries for a document, newest first."""
        async with self.database.session() as session:
            if await session.get(Document, doc_id) is None:
                raise DocumentNotFound(doc_id)
            return await trail.get_audit(session, doc_id, limit)

    async def audit_count(self, doc_id: str) -> int:
        async with self.database.session() as session:
            return await trail.count_audits(session, doc_id)
