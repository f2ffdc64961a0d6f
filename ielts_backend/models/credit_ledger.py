# /ielts_backend/models/credit_ledger.py
import enum
from datetime import datetime
from typing import Optional
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import String, Integer, ForeignKey, DateTime, Text, UniqueConstraint

from ielts_backend.core.database import Base


class LedgerKind(str, enum.Enum):
    PURCHASE = "PURCHASE"
    USAGE = "USAGE"
    USAGE_FAIL = "USAGE_FAIL"
    GRANT = "GRANT"
    REFUND = "REFUND"


class CreditLedger(Base):
    """Credit transactions ledger - append-only record of all credit movements."""
    __tablename__ = "credit_ledger"
    __table_args__ = (
        # One PURCHASE and at most one REFUND per payment intent.
        # NULL refs (usage, grants) never collide.
        UniqueConstraint("external_payment_ref", "kind", name="uq_credit_ledger_ref_kind"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id", ondelete="CASCADE"), index=True)

    # Kind: PURCHASE, USAGE, USAGE_FAIL, GRANT, REFUND
    kind: Mapped[str] = mapped_column(String(20))

    # Signed credit amount (positive for credit, negative for debit)
    amount: Mapped[int] = mapped_column(Integer)

    # Stripe payment intent id for purchases and their refunds
    external_payment_ref: Mapped[Optional[str]] = mapped_column(String(190), nullable=True, index=True)

    reason: Mapped[str] = mapped_column(Text, default="")

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
