from datetime import datetime
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import String, Integer, Boolean, DateTime

from ielts_backend.core.database import Base

ROLE_USER = "USER"
ROLE_ADMIN = "ADMIN"

class User(Base):
    __tablename__ = "users"
    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    email: Mapped[str] = mapped_column(String(190), unique=True, index=True)
    password_hash: Mapped[str] = mapped_column(String(255))
    name: Mapped[str] = mapped_column(String(120))

    # USER or ADMIN
    role: Mapped[str] = mapped_column(String(10), default=ROLE_USER)

    # Cached balance; always equals the sum of this user's credit_ledger amounts
    credits: Mapped[int] = mapped_column(Integer, default=0)

    is_disabled: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN
