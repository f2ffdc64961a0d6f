# FILE: ielts_backend/services/admin_service.py
import logging
from datetime import timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import async_sessionmaker

from ielts_backend.core.database import unit_of_work
from ielts_backend.models.credit_ledger import LedgerKind
from ielts_backend.models.exam_session import ExamSession
from ielts_backend.models.user import User
from ielts_backend.services import audit_service, ledger_service
from ielts_backend.services.errors import Forbidden, InsufficientFunds, InvalidState, NotFound

logger = logging.getLogger(__name__)

MAX_ADJUSTMENT = 1000


async def _require_admin(db, admin_id: str) -> User:
    admin = await db.get(User, admin_id)
    if not admin or not admin.is_admin:
        raise Forbidden("Admin access required")
    return admin


def _check_amount(amount: int) -> None:
    if amount < 1 or amount > MAX_ADJUSTMENT:
        raise InvalidState(f"Amount must be between 1 and {MAX_ADJUSTMENT}")


async def list_users(
    admin_id: str,
    email: Optional[str] = None,
    limit: int = 50,
    session_factory: Optional[async_sessionmaker] = None,
) -> List[Dict[str, Any]]:
    async with unit_of_work(session_factory) as db:
        await _require_admin(db, admin_id)

        exam_counts = (
            select(ExamSession.user_id, func.count(ExamSession.id).label("exam_count"))
            .group_by(ExamSession.user_id)
            .subquery()
        )
        stmt = (
            select(User, func.coalesce(exam_counts.c.exam_count, 0))
            .outerjoin(exam_counts, exam_counts.c.user_id == User.id)
            .order_by(User.created_at.desc())
            .limit(limit)
        )
        if email:
            stmt = stmt.where(User.email.contains(email))

        rows = (await db.execute(stmt)).all()
        return [
            {
                "id": u.id,
                "email": u.email,
                "name": u.name,
                "role": u.role,
                "credits": u.credits,
                "is_disabled": u.is_disabled,
                "exam_count": int(count),
                "created_at": u.created_at.replace(tzinfo=timezone.utc).isoformat(),
            }
            for u, count in rows
        ]


async def grant_credits(
    admin_id: str,
    user_id: str,
    amount: int,
    reason: str,
    session_factory: Optional[async_sessionmaker] = None,
) -> int:
    """Add credits to a user; returns the new balance."""
    _check_amount(amount)
    async with unit_of_work(session_factory) as db:
        await _require_admin(db, admin_id)
        if not await db.get(User, user_id):
            raise NotFound("User not found")

        await ledger_service.append(db, user_id, amount, LedgerKind.GRANT, reason=f"Admin grant: {reason}")
        await audit_service.record(
            db, admin_id, audit_service.CREDIT_GRANT, user_id, {"amount": amount, "reason": reason}
        )
        return await ledger_service.cached_balance(db, user_id)


async def revoke_credits(
    admin_id: str,
    user_id: str,
    amount: int,
    reason: str,
    session_factory: Optional[async_sessionmaker] = None,
) -> int:
    """Remove credits from a user; never takes the balance below zero."""
    _check_amount(amount)
    async with unit_of_work(session_factory) as db:
        await _require_admin(db, admin_id)
        if not await db.get(User, user_id):
            raise NotFound("User not found")

        try:
            await ledger_service.append(
                db, user_id, -amount, LedgerKind.REFUND, reason=f"Admin revoke: {reason}", require_funds=True
            )
        except InsufficientFunds as exc:
            raise InsufficientFunds("User does not have enough credits to revoke") from exc

        await audit_service.record(
            db, admin_id, audit_service.CREDIT_REVOKE, user_id, {"amount": amount, "reason": reason}
        )
        return await ledger_service.cached_balance(db, user_id)


async def set_account_disabled(
    admin_id: str,
    user_id: str,
    disabled: bool,
    session_factory: Optional[async_sessionmaker] = None,
) -> bool:
    async with unit_of_work(session_factory) as db:
        await _require_admin(db, admin_id)
        if admin_id == user_id:
            raise InvalidState("Admins cannot disable their own account")

        user = await db.get(User, user_id)
        if not user:
            raise NotFound("User not found")

        user.is_disabled = disabled
        await audit_service.record(
            db, admin_id, audit_service.ACCOUNT_TOGGLE, user_id, {"disabled": disabled}
        )

    logger.info("account %s %s by admin %s", user_id, "disabled" if disabled else "enabled", admin_id)
    return disabled
