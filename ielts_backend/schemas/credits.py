from datetime import datetime
from typing import List, Optional
from pydantic import BaseModel, Field


class CreditBalance(BaseModel):
    credits: int


class CreditTransaction(BaseModel):
    id: str
    kind: str
    amount: int
    amount_display: str  # e.g. "+5", "-1"
    external_payment_ref: Optional[str] = None
    reason: str
    created_at: datetime


class CreditPack(BaseModel):
    id: str
    name: str
    description: str
    credits: int
    price_cents: int
    price_display: str


class CheckoutRequest(BaseModel):
    pack_id: str = Field(min_length=1)


class CheckoutResponse(BaseModel):
    session_id: str
    checkout_url: Optional[str] = None


class RefundResponse(BaseModel):
    message: str = "Refund processed successfully"
    refund_id: str
    transaction_id: str
    credits_refunded: int
    user_id: str


class CreditAdjustRequest(BaseModel):
    user_id: str = Field(min_length=1)
    amount: int = Field(ge=1, le=1000)
    reason: str = Field(min_length=1)


class ToggleAccountRequest(BaseModel):
    user_id: str = Field(min_length=1)
    disabled: bool


class AdminUserItem(BaseModel):
    id: str
    email: str
    name: str
    role: str
    credits: int
    is_disabled: bool
    exam_count: int
    created_at: str


class AdminUserList(BaseModel):
    users: List[AdminUserItem]
