# /ielts_backend/models/audit_log.py
from datetime import datetime
from typing import Optional, Any
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import String, Integer, DateTime, JSON

from ielts_backend.core.database import Base


class AuditLog(Base):
    """Who did what to whom. Written in the same transaction as the action."""
    __tablename__ = "audit_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    actor_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True, index=True)

    # CREDIT_REFUND, CREDIT_GRANT, CREDIT_REVOKE, ACCOUNT_TOGGLE, ...
    action: Mapped[str] = mapped_column(String(40))
    target_user_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True, index=True)

    details: Mapped[Optional[Any]] = mapped_column(JSON, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
