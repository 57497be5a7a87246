"""
/api/v1/documents endpoints.
Handles upload, document detail and the cached extraction.
"""

from typing import Optional

import structlog
from fastapi import APIRouter, Depends, File, Form, HTTPException, Response, UploadFile, status

from certmap.api.errors import http_error
from certmap.config import settings
from certmap.dependencies import get_job_queue, get_pipeline, verify_api_key
from certmap.engines.base import EngineError
from certmap.observability import metrics
from certmap.pipeline.orchestrator import DocumentNotFound, MappingPipeline
from certmap.schemas.documents import DocumentDetail, DocumentUploadResponse
from certmap.worker.jobs import JobQueue, QueueFullError

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/v1/documents", tags=["documents"], dependencies=[Depends(verify_api_key)])


@router.post("", response_model=DocumentUploadResponse, status_code=status.HTTP_201_CREATED)
async def upload_document(
    response: Response,
    file: UploadFile = File(...),
    uploader: Optional[str] = Form(None, max_length=200),
    pipeline: MappingPipeline = Depends(get_pipeline),
    job_queue: JobQueue = Depends(get_job_queue),
):
    """
    Upload a certificate PDF.

    Small files are mapped inline and the mapping is returned; larger files
    are queued and the response is 202 with status queued.
    """
    # Validate file type
    if file.content_type not in settings.ALLOWED_MIME_TYPES.split(","):
        raise HTTPException(
            status_code=status.HTTP_415_UNSUPPORTED_MEDIA_TYPE,
            detail=f"Unsupported file type: {file.content_type}. Allowed: {settings.ALLOWED_MIME_TYPES}",
        )

    file_bytes = await file.read()
    file_size = len(file_bytes)

    # Validate size
    max_bytes = settings.MAX_UPLOAD_SIZE_MB * 1024 * 1024
    if file_size > max_bytes:
        raise HTTPException(
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            detail=f"File too large: {file_size} bytes. Max: {max_bytes} bytes",
        )

    # Validate not empty
    if file_size == 0:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Empty file uploaded",
        )

    doc = await pipeline.create_document(
        file_name=file.filename or "document.pdf",
        data=file_bytes,
        mime_type=file.content_type or "application/pdf",
        uploader=uploader,
    )
    source = pipeline.source_for(doc)

    if file_size > settings.LARGE_PDF_BYTES:
        try:
            await job_queue.enqueue(doc.doc_id, source)
        except QueueFullError as e:
            raise http_error(e)
        metrics.documents_uploaded_total.labels(path="queued").inc()
        response.status_code = status.HTTP_202_ACCEPTED
        return DocumentUploadResponse(
            doc_id=doc.doc_id,
            file_name=doc.file_name,
            file_size_bytes=file_size,
            doc_hash=doc.doc_hash,
            status="queued",
            path="queued",
            message="Document uploaded successfully. Processing queued.",
        )

    metrics.documents_uploaded_total.labels(path="inline").inc()
    try:
        outcome = await pipeline.process(doc.doc_id, source, raise_errors=True)
    except EngineError as e:
        raise http_error(e)

    logger.info(
        "document_uploaded",
        doc_id=doc.doc_id,
        file_name=doc.file_name,
        file_size_bytes=file_size,
        status=outcome.status.value,
    )
    return DocumentUploadResponse(
        doc_id=doc.doc_id,
        file_name=doc.file_name,
        file_size_bytes=file_size,
        doc_hash=doc.doc_hash,
        status=outcome.status.value,
        path="inline",
        mapping=outcome.mapping.to_json() if outcome.mapping is not None else None,
        message="Document uploaded and mapped.",
    )


@router.get("/{doc_id}", response_model=DocumentDetail)
async def get_document(doc_id: str, pipeline: MappingPipeline = Depends(get_pipeline)):
    """Get the stored document record, including status and mapping."""
    try:
        doc = await pipeline.get_document(doc_id)
    except DocumentNotFound as e:
        raise http_error(e)
    return DocumentDetail.model_validate(doc)


@router.get("/{doc_id}/extraction")
async def get_extraction(doc_id: str, pipeline: MappingPipeline = Depends(get_pipeline)):
    """Cached layout extraction of the document."""
    try:
        doc = await pipeline.get_document(doc_id)
    except DocumentNotFound as e:
        raise http_error(e)
    if doc.extraction_json is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={"error": "ERR_NO_EXTRACTION", "message": f"No extraction stored for {doc_id}"},
        )
    return {"doc_id": doc_id, "extraction": doc.extraction_json}
