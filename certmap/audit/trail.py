"""
Append-only mapping audit trail.
One row per terminal pipeline outcome and per user acceptance.
"""

import json
from typing import Any, Optional, Union

import structlog
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from certmap.config import settings
from certmap.models.enums import AuditMethod
from certmap.models.tables import MappingAudit
from certmap.schemas.mapping import Mapping

logger = structlog.get_logger(__name__)


def truncate_text(text: str, max_len: Optional[int] = None) -> str:
    max_len = max_len or settings.AUDIT_PREVIEW_MAX_LEN
    if len(text) <= max_len:
        return text
    return text[:max_len] + "..."


def mapping_summary(mapping: Union[Mapping, dict, None]) -> Optional[str]:
    """
    Compact JSON preview: field -> value, arrays joined with ", ",
    each value truncated for display.
    """
    if mapping is None:
        return None
    fields = mapping.to_json() if isinstance(mapping, Mapping) else mapping

    summary: dict[str, str] = {}
    for key, field in fields.items():
        value: Any = field.get("value") if isinstance(field, dict) else field
        if value is None:
            continue
        if isinstance(value, list):
            value = ", ".join(str(v) for v in value)
        summary[key] = truncate_text(str(value))
    return json.dumps(summary, ensure_ascii=False)


async def record_audit(
    session: AsyncSession,
    doc_id: str,
    mapping: Optional[Mapping] = None,
    extraction: Optional[dict] = None,
    error: Optional[str] = None,
    method: AuditMethod = AuditMethod.HEURISTIC,
    accepted_by: Optional[str] = None,
) -> str:
    """
    Append one audit row. Returns the mapping_id.
    The caller owns the transaction.
    """
    audit = MappingAudit(
        doc_id=doc_id,
        mapping_json=mapping.to_json() if mapping is not None else None,
        extraction_json=extraction,
        error=error,
        preview=mapping_summary(mapping),
        method=method.value,
        accepted_by=accepted_by,
    )
    session.add(audit)
    await session.flush()

    logger.info(
        "mapping_audit",
        mapping_id=audit.mapping_id,
        doc_id=doc_id,
        method=method.value,
        fields=sorted(mapping.present()) if mapping is not None else [],
        error=truncate_text(error) if error else None,
    )
    return audit.mapping_id


async def get_audit(
    session: AsyncSession,
    doc_id: str,
    limit: Optional[int] = None,
) -> list[MappingAudit]:
    """Audit rows for a document, newest first."""
    result = await session.execute(
        select(MappingAudit)
        .where(MappingAudit.doc_id == doc_id)
        .order_by(MappingAudit.created_at.desc())
        .limit(limit or settings.AUDIT_DEFAULT_LIMIT)
    )
    return list(result.scalars().all())


async def count_audits(session: AsyncSession, doc_id: str) -> int:
    result = await session.execute(
        select(func.count(MappingAudit.mapping_id)).where(MappingAudit.doc_id == doc_id)
    )
    return result.scalar_one()
