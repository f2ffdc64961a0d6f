# FILE: ielts_backend/services/ledger_service.py
"""Credit ledger store and balance accessor.

Every write goes through `append`, which pairs one atomic
``credits = credits + amount`` update on the user row with one ledger insert.
Callers run it inside a unit of work so both land in the same transaction.
"""

import logging
import uuid
from datetime import datetime
from typing import List, Optional

from sqlalchemy import select, update, func
from sqlalchemy.ext.asyncio import AsyncSession

from ielts_backend.models.credit_ledger import CreditLedger, LedgerKind
from ielts_backend.models.user import User
from ielts_backend.services.errors import InsufficientFunds, NotFound

logger = logging.getLogger(__name__)


async def append(
    db: AsyncSession,
    user_id: str,
    amount: int,
    kind: LedgerKind,
    reason: str = "",
    external_payment_ref: Optional[str] = None,
    require_funds: bool = False,
) -> CreditLedger:
    """Apply a signed credit change and record it.

    With ``require_funds`` the decrement only happens while the cached balance
    covers it; otherwise ``InsufficientFunds`` aborts the enclosing unit.
    """
    if amount == 0:
        raise ValueError("ledger entries must move credits")

    stmt = update(User).where(User.id == user_id)
    if require_funds and amount < 0:
        stmt = stmt.where(User.credits >= -amount)
    result = await db.execute(
        stmt.values(credits=User.credits + amount).execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        if require_funds:
            raise InsufficientFunds()
        raise NotFound("User not found")

    entry = CreditLedger(
        id=str(uuid.uuid4()),
        user_id=user_id,
        kind=LedgerKind(kind).value,
        amount=amount,
        external_payment_ref=external_payment_ref,
        reason=reason,
        created_at=datetime.utcnow(),
    )
    db.add(entry)
    # surface unique-constraint violations here, inside the caller's unit
    await db.flush()

    logger.info(
        "ledger %s user=%s amount=%+d ref=%s", entry.kind, user_id, amount, external_payment_ref or "-"
    )
    return entry


async def balance_of(db: AsyncSession, user_id: str) -> int:
    """Sum of every ledger amount for the user."""
    result = await db.execute(
        select(func.coalesce(func.sum(CreditLedger.amount), 0))
        .where(CreditLedger.user_id == user_id)
    )
    return int(result.scalar() or 0)


async def cached_balance(db: AsyncSession, user_id: str) -> int:
    result = await db.execute(select(User.credits).where(User.id == user_id))
    credits = result.scalar_one_or_none()
    if credits is None:
        raise NotFound("User not found")
    return int(credits)


async def find_by_external_ref(db: AsyncSession, ref: str, kind: LedgerKind) -> Optional[CreditLedger]:
    result = await db.execute(
        select(CreditLedger).where(
            CreditLedger.external_payment_ref == ref,
            CreditLedger.kind == LedgerKind(kind).value,
        )
    )
    return result.scalar_one_or_none()


async def get_entry(db: AsyncSession, entry_id: str) -> Optional[CreditLedger]:
    return await db.get(CreditLedger, entry_id)


async def history(db: AsyncSession, user_id: str, limit: int = 50) -> List[CreditLedger]:
    result = await db.execute(
        select(CreditLedger)
        .where(CreditLedger.user_id == user_id)
        .order_by(CreditLedger.created_at.desc())
        .limit(limit)
    )
    return list(result.scalars().all())


async def annotate(db: AsyncSession, entry: CreditLedger, suffix: str) -> None:
    # reason is the only field that may change after commit
    entry.reason = f"{entry.reason}{suffix}"
    await db.flush()
