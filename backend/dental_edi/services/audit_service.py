"""Audit logging service for HIPAA compliance.

Every posting of insurance money against a patient account must be logged
with: who, what and when.  The audit log is append-only.

Usage:

    from dental_edi.services.audit_service import log_audit

    await log_audit(
        db=db,
        action="ERA_PROCESSED",
        entity_type="ERA",
        practice_id=practice_id,
        user_id=user_id,
        new_value={"transactionId": "..."},
    )
"""
import logging
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from dental_edi.models.audit_log import AuditLog

logger = logging.getLogger(__name__)


async def log_audit(
    db: AsyncSession,
    *,
    action: str,
    entity_type: str | None = None,
    entity_id: UUID | None = None,
    user_id: UUID | None = None,
    practice_id: UUID | None = None,
    old_value: dict | None = None,
    new_value: dict | None = None,
) -> None:
    """Write an audit trail entry.

    Parameters
    ----------
    db : AsyncSession
    action : str   – e.g. "ERA_PROCESSED"
    entity_type : str – e.g. "ERA", "claim", "invoice"
    entity_id : UUID
    user_id : UUID – the staff member who triggered the action
    practice_id : UUID
    old_value / new_value : dict – before/after for mutations
    """
    try:
        entry = AuditLog(
            practice_id=practice_id,
            user_id=user_id,
            action=action,
            entity_type=entity_type,
            entity_id=entity_id,
            old_value=old_value,
            new_value=new_value,
        )
        db.add(entry)
        # Don't commit: let the caller's transaction handle it.
    except Exception:
        # Audit logging must never break the main request
        logger.exception("Failed to write audit log entry")


async def list_audit_entries(
    db: AsyncSession,
    *,
    practice_id: UUID,
    action: str,
    limit: int = 50,
    offset: int = 0,
) -> tuple[list[AuditLog], int]:
    """Return one page of a practice's audit entries for ``action``, newest first."""
    filters = (AuditLog.practice_id == practice_id, AuditLog.action == action)

    stmt = (
        select(AuditLog)
        .where(*filters)
        .order_by(AuditLog.created_at.desc())
        .limit(limit)
        .offset(offset)
    )
    result = await db.execute(stmt)
    entries = list(result.scalars().all())

    count_stmt = select(func.count()).select_from(AuditLog).where(*filters)
    total = (await db.execute(count_stmt)).scalar() or 0

    return entries, total
