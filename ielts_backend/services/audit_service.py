# FILE: ielts_backend/services/audit_service.py
from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from ielts_backend.core.logger import get_file_logger
from ielts_backend.models.audit_log import AuditLog

audit_logger = get_file_logger("ielts_audit", "audit.log")

CREDIT_REFUND = "CREDIT_REFUND"
CREDIT_GRANT = "CREDIT_GRANT"
CREDIT_REVOKE = "CREDIT_REVOKE"
ACCOUNT_TOGGLE = "ACCOUNT_TOGGLE"


async def record(
    db: AsyncSession,
    actor_id: Optional[str],
    action: str,
    target_user_id: Optional[str] = None,
    details: Optional[Dict[str, Any]] = None,
) -> AuditLog:
    """Add an audit row to the caller's unit of work.

    The row commits or rolls back together with the action it describes.
    """
    row = AuditLog(
        actor_id=actor_id,
        action=action,
        target_user_id=target_user_id,
        details=details or {},
        created_at=datetime.utcnow(),
    )
    db.add(row)
    await db.flush()
    audit_logger.info("%s actor=%s target=%s details=%s", action, actor_id, target_user_id, details or {})
    return row
