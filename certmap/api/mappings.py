"""
/api/v1 mapping endpoints: read, re-run, accept and audit.
"""

import json
from typing import Union

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.responses import JSONResponse

from certmap.api.errors import http_error
from certmap.audit.trail import mapping_summary
from certmap.config import settings
from certmap.dependencies import get_pipeline, verify_api_key
from certmap.engines.base import EngineError
from certmap.models.enums import DocStatus
from certmap.pipeline.orchestrator import MappingPipeline, PipelineError
from certmap.schemas.documents import (
    AcceptRequest,
    AcceptResponse,
    AuditEntry,
    AuditListResponse,
    MappingPreviewResponse,
    MappingResponse,
    MapRequest,
)

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/v1", tags=["mappings"], dependencies=[Depends(verify_api_key)])

PREVIEW_AUDIT_LIMIT = 5


def _in_progress(doc_id: str, doc_status: str) -> JSONResponse:
    body = MappingResponse(doc_id=doc_id, status=doc_status)
    return JSONResponse(status_code=status.HTTP_202_ACCEPTED, content=body.model_dump())


@router.get("/documents/{doc_id}/mapping", response_model=MappingResponse)
async def get_mapping(
    doc_id: str,
    pipeline: MappingPipeline = Depends(get_pipeline),
) -> Union[MappingResponse, JSONResponse]:
    """
    Stored mapping. 202 while the document is queued or processing,
    500 with the processing error when the last run failed.
    """
    try:
        doc = await pipeline.get_document(doc_id)
    except PipelineError as e:
        raise http_error(e)

    if doc.mapping_json:
        return MappingResponse(
            doc_id=doc_id,
            status=doc.status,
            mapping=doc.mapping_json,
            accepted=doc.mapping_accepted,
        )
    if DocStatus(doc.status).is_in_progress:
        return _in_progress(doc_id, doc.status)
    if doc.status == DocStatus.ERROR.value:
        body = MappingResponse(doc_id=doc_id, status=doc.status, error=doc.processing_error)
        return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content=body.model_dump())
    raise HTTPException(
        status_code=status.HTTP_404_NOT_FOUND,
        detail={"error": "ERR_NO_MAPPING", "message": f"No mapping for {doc_id}"},
    )


@router.get("/documents/{doc_id}/mapping/preview", response_model=MappingPreviewResponse)
async def get_mapping_preview(doc_id: str, pipeline: MappingPipeline = Depends(get_pipeline)):
    """Compact view of the current mapping plus the latest audit entries."""
    try:
        doc = await pipeline.get_document(doc_id)
        audits = await pipeline.get_audit(doc_id, PREVIEW_AUDIT_LIMIT)
    except PipelineError as e:
        raise http_error(e)

    summary = mapping_summary(doc.mapping_json)
    return MappingPreviewResponse(
        doc_id=doc_id,
        status=doc.status,
        accepted=doc.mapping_accepted,
        summary=json.loads(summary) if summary else None,
        audits=[AuditEntry.model_validate(a) for a in audits],
    )


@router.post("/documents/{doc_id}/map", response_model=MappingResponse)
async def remap_document(
    doc_id: str,
    pipeline: MappingPipeline = Depends(get_pipeline),
) -> Union[MappingResponse, JSONResponse]:
    """
    Explicit re-run. Rejected with 409 once the mapping is accepted;
    202 if a run is already queued or in progress.
    """
    try:
        outcome = await pipeline.remap(doc_id)
    except (PipelineError, EngineError) as e:
        raise http_error(e)

    if outcome.mapping is None and outcome.status.is_in_progress:
        return _in_progress(doc_id, outcome.status.value)
    return MappingResponse(
        doc_id=doc_id,
        status=outcome.status.value,
        mapping=outcome.mapping.to_json() if outcome.mapping is not None else None,
        error=outcome.error,
    )


@router.post("/map")
async def map_extraction_body(body: MapRequest, pipeline: MappingPipeline = Depends(get_pipeline)):
    """Map a caller-supplied extraction. Nothing is stored."""
    mapping = pipeline.map_only(body.extraction)
    return {"ok": True, "mapping": mapping.to_json()}


@router.post("/documents/{doc_id}/mapping/accept", response_model=AcceptResponse)
async def accept_mapping(
    doc_id: str,
    body: AcceptRequest,
    pipeline: MappingPipeline = Depends(get_pipeline),
):
    """Freeze a user-confirmed mapping. 409 if already accepted."""
    try:
        mapping = await pipeline.accept(doc_id, body.mapping, accepted_by=body.user)
    except PipelineError as e:
        raise http_error(e)
    return AcceptResponse(doc_id=doc_id, mapping=mapping.to_json())


@router.get("/documents/{doc_id}/audit", response_model=AuditListResponse)
async def get_audit(
    doc_id: str,
    limit: int = Query(settings.AUDIT_DEFAULT_LIMIT, ge=1, le=200),
    pipeline: MappingPipeline = Depends(get_pipeline),
):
    """Audit trail for a document, newest first."""
    try:
        audits = await pipeline.get_audit(doc_id, limit)
        total = await pipeline.audit_count(doc_id)
    except PipelineError as e:
        raise http_error(e)
    entries = [AuditEntry.model_validate(a) for a in audits]
    return AuditListResponse(doc_id=doc_id, entries=entries, count=len(entries), total=total)
