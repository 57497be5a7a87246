"""
Pydantic request/response schemas for the /api/v1 document and mapping endpoints.
"""

from pydantic import BaseModel, Field
from typing import Optional
from datetime import datetime


# ── Request Schemas ──────────────────────────────────────────

class AcceptRequest(BaseModel):
    """User-confirmed mapping, camelCase field keys as produced by the mapper."""
    mapping: dict
    user: Optional[str] = Field(default=None, max_length=200)


class MapRequest(BaseModel):
    """Caller-supplied extraction for a pure map + normalize."""
    extraction: dict


# ── Response Schemas ─────────────────────────────────────────

class DocumentUploadResponse(BaseModel):
    """Response after uploading a document."""
    doc_id: str
    file_name: str
    file_size_bytes: int
    doc_hash: str
    status: str
    path: str  # inline | queued
    mapping: Optional[dict] = None
    error: Optional[str] = None
    message: str = "Document uploaded successfully."


class DocumentDetail(BaseModel):
    """Full document record."""
    doc_id: str
    file_name: str
    file_size_bytes: int
    doc_hash: Optional[str] = None
    mime_type: str
    page_count: Optional[int] = None
    status: str
    uploader: Optional[str] = None
    processing_started_at: Optional[datetime] = None
    processing_finished_at: Optional[datetime] = None
    processing_error: Optional[str] = None
    mapping_json: Optional[dict] = None
    mapping_accepted: bool = False
    mapping_accepted_at: Optional[datetime] = None
    mapping_accepted_by: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class MappingResponse(BaseModel):
    doc_id: str
    status: str
    mapping: Optional[dict] = None
    accepted: bool = False
    error: Optional[str] = None


class AcceptResponse(BaseModel):
    ok: bool = True
    doc_id: str
    mapping: dict


class AuditEntry(BaseModel):
    """One immutable audit row; the extraction snapshot is not returned."""
    mapping_id: str
    doc_id: str
    mapping_json: Optional[dict] = None
    error: Optional[str] = None
    preview: Optional[str] = None
    method: str
    accepted_by: Optional[str] = None
    created_at: datetime

    model_config = {"from_attributes": True}


class AuditListResponse(BaseModel):
    doc_id: str
    entries: list[AuditEntry]
    count: int
    total: int


class MappingPreviewResponse(BaseModel):
    doc_id: str
    status: str
    accepted: bool
    summary: Optional[dict] = None
    audits: list[AuditEntry] = []


class QueueStats(BaseModel):
    running: bool
    depth: int
    max_size: int
    processed: int
    failed: int
    current: Optional[str] = None
    subscribers: int = 0
