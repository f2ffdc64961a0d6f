# FILE: ielts_backend/api/credits.py
"""Credits, checkout and Stripe webhook endpoints."""

from typing import List

from fastapi import APIRouter, Depends, Request
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ielts_backend.api.deps import get_current_user, get_payment_gateway, client_ip
from ielts_backend.core.database import get_db
from ielts_backend.models.user import User
from ielts_backend.schemas.credits import (
    CheckoutRequest,
    CheckoutResponse,
    CreditBalance,
    CreditPack,
    CreditTransaction,
)
from ielts_backend.services import ledger_service, payment_service, rate_limit_service

router = APIRouter(prefix="/api", tags=["credits"])


# ─────────────────────────────────────────────
# BALANCE / HISTORY / PACKS
# ─────────────────────────────────────────────

@router.get("/credits/balance", response_model=CreditBalance)
async def get_credit_balance(user=Depends(get_current_user), db: AsyncSession = Depends(get_db)):
    """Get current credit balance for the authenticated user."""
    credits = (await db.execute(select(User.credits).where(User.id == user["id"]))).scalar() or 0
    return CreditBalance(credits=credits)


@router.get("/credits/history", response_model=List[CreditTransaction])
async def get_credit_history(user=Depends(get_current_user), limit: int = 50, db: AsyncSession = Depends(get_db)):
    """Get credit transaction history."""
    transactions = await ledger_service.history(db, user["id"], limit=limit)

    return [
        CreditTransaction(
            id=t.id,
            kind=t.kind,
            amount=t.amount,
            amount_display=f"{'+' if t.amount > 0 else ''}{t.amount}",
            external_payment_ref=t.external_payment_ref,
            reason=t.reason,
            created_at=t.created_at,
        )
        for t in transactions
    ]


@router.get("/credits/packs", response_model=List[CreditPack])
async def get_credit_packs():
    """Get available credit packs."""
    return payment_service.CREDIT_PACKS


# ─────────────────────────────────────────────
# CHECKOUT / WEBHOOK
# ─────────────────────────────────────────────

@router.post("/checkout/create", response_model=CheckoutResponse)
async def create_checkout(
    req: CheckoutRequest,
    request: Request,
    user=Depends(get_current_user),
    gateway=Depends(get_payment_gateway),
):
    """Start a Stripe checkout; credits land when the webhook confirms payment."""
    await rate_limit_service.hit(f"{user['id']}@{client_ip(request)}", "checkout")
    return await payment_service.create_checkout(user["id"], req.pack_id, gateway=gateway)


@router.post("/webhooks/stripe")
async def stripe_webhook(request: Request, gateway=Depends(get_payment_gateway)):
    """Stripe webhook to finalize credit purchases."""
    payload = await request.body()
    event = gateway.construct_event(payload, request.headers.get("stripe-signature"))
    outcome = await payment_service.reconcile(event)
    return {"received": True, "outcome": outcome.value}
