# FILE: ielts_backend/api/admin.py
"""Admin endpoints: refunds, credit adjustments, account control."""

from typing import Optional

from fastapi import APIRouter, Depends, Query

from ielts_backend.api.deps import require_admin, get_payment_gateway
from ielts_backend.schemas.credits import (
    AdminUserItem,
    AdminUserList,
    CreditAdjustRequest,
    RefundResponse,
    ToggleAccountRequest,
)
from ielts_backend.services import admin_service, payment_service

router = APIRouter(prefix="/api", tags=["admin"])


@router.post("/payments/refund/{transaction_id}", response_model=RefundResponse)
async def refund_transaction(transaction_id: str, admin=Depends(require_admin), gateway=Depends(get_payment_gateway)):
    result = await payment_service.refund(admin["id"], transaction_id, gateway=gateway)
    return RefundResponse(**result)


@router.get("/admin/users", response_model=AdminUserList)
async def list_users(
    email: Optional[str] = None,
    limit: int = Query(50, ge=1, le=500),
    admin=Depends(require_admin),
):
    users = await admin_service.list_users(admin["id"], email=email, limit=limit)
    return AdminUserList(users=[AdminUserItem(**u) for u in users])


@router.post("/admin/users/grant")
async def grant_credits(req: CreditAdjustRequest, admin=Depends(require_admin)):
    balance = await admin_service.grant_credits(admin["id"], req.user_id, req.amount, req.reason)
    return {"message": f"Granted {req.amount} credits", "user_id": req.user_id, "credits": balance}


@router.post("/admin/users/revoke")
async def revoke_credits(req: CreditAdjustRequest, admin=Depends(require_admin)):
    balance = await admin_service.revoke_credits(admin["id"], req.user_id, req.amount, req.reason)
    return {"message": f"Revoked {req.amount} credits", "user_id": req.user_id, "credits": balance}


@router.post("/admin/users/toggle")
async def toggle_account(req: ToggleAccountRequest, admin=Depends(require_admin)):
    disabled = await admin_service.set_account_disabled(admin["id"], req.user_id, req.disabled)
    return {
        "message": "Account disabled" if disabled else "Account enabled",
        "user_id": req.user_id,
        "is_disabled": disabled,
    }
