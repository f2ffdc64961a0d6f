# FILE: ielts_backend/api/deps.py

from datetime import timezone

from fastapi import Depends, HTTPException, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy import select

from ielts_backend.core import database
from ielts_backend.models.user import User, ROLE_ADMIN
from ielts_backend.services.auth_service import TokenError, decode_token
from ielts_backend.services.grading_service import OpenAIGrader
from ielts_backend.services.stripe_service import StripeGateway

security = HTTPBearer(auto_error=False)

async def get_current_user(credentials: HTTPAuthorizationCredentials = Depends(security)):
    if not credentials or not credentials.credentials:
        raise HTTPException(status_code=401, detail="Not authenticated")

    try:
        claims = decode_token(credentials.credentials)
    except TokenError as exc:
        raise HTTPException(status_code=401, detail=str(exc))

    # short-lived session: an open SQLite read transaction would block the
    # writes the route performs through its own unit of work
    async with database.SessionLocal() as db:
        user = (await db.execute(select(User).where(User.id == claims.user_id))).scalar_one_or_none()
    if not user:
        raise HTTPException(status_code=401, detail="User not found")

    # checked on every request, so disabling takes effect before the token expires
    if user.is_disabled:
        raise HTTPException(status_code=403, detail="Account disabled")

    return {
        "id": user.id,
        "email": user.email,
        "name": user.name,
        "role": user.role,
        "credits": user.credits,
        "created_at": user.created_at.replace(tzinfo=timezone.utc).isoformat(),
    }


async def require_admin(user=Depends(get_current_user)):
    if user["role"] != ROLE_ADMIN:
        raise HTTPException(status_code=403, detail="Admin access required")
    return user


def client_ip(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


def get_payment_gateway() -> StripeGateway:
    return StripeGateway()


def get_grader() -> OpenAIGrader:
    return OpenAIGrader()
