"""
SQLAlchemy ORM models.
Snapshots (extraction, mapping) are stored as JSON in their camelCase wire form.
"""

import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from certmap.models.database import Base
from certmap.models.enums import AuditMethod, DocStatus


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())


# ────────────────────────────────────────────────────────────
# DOCUMENTS
# ────────────────────────────────────────────────────────────
class Document(Base):
    __tablename__ = "documents"

    doc_id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    doc_hash: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    file_name: Mapped[str] = mapped_column(Text, nullable=False)
    file_size_bytes: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    mime_type: Mapped[str] = mapped_column(String(100), nullable=False, default="application/pdf")
    raw_file_uri: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    page_count: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    uploader: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=DocStatus.READY.value
    )
    processing_started_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    processing_finished_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    processing_error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    extraction_json: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    mapping_json: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    mapping_accepted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    mapping_accepted_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    mapping_accepted_by: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )

    # Relationships
    audits = relationship("MappingAudit", back_populates="document", cascade="all, delete-orphan")

    __table_args__ = (
        Index("idx_documents_status", "status"),
        Index("idx_documents_created", "created_at"),
    )


# ────────────────────────────────────────────────────────────
# MAPPING AUDIT (append-only)
# ────────────────────────────────────────────────────────────
class MappingAudit(Base):
    __tablename__ = "mapping_audits"

    mapping_id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    doc_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("documents.doc_id", ondelete="CASCADE"), nullable=False
    )
    mapping_json: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    extraction_json: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    preview: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    method: Mapped[str] = mapped_column(
        String(20), nullable=False, default=AuditMethod.HEURISTIC.value
    )
    accepted_by: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )

    # Relationships
    document = relationship("Document", back_populates="audits")

    __table_args__ = (
        Index("idx_audits_doc_created", "doc_id", "created_at"),
    )
