# FILE: ielts_backend/api/auth.py
import uuid
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ielts_backend.core.database import get_db
from ielts_backend.models.user import User, ROLE_USER
from ielts_backend.schemas.auth import UserCreate, UserLogin, TokenResponse, UserResponse
from ielts_backend.services import rate_limit_service
from ielts_backend.services.auth_service import hash_password, verify_password, create_token
from ielts_backend.api.deps import get_current_user, client_ip

router = APIRouter(prefix="/api/auth", tags=["auth"])


async def _email_taken(db: AsyncSession, email: str) -> bool:
    return (await db.execute(select(User.id).where(User.email == email))).first() is not None


def _user_response(user: User) -> UserResponse:
    return UserResponse(
        id=user.id,
        email=user.email,
        name=user.name,
        role=user.role,
        credits=user.credits,
        created_at=user.created_at.replace(tzinfo=timezone.utc).isoformat(),
    )


@router.post("/register", response_model=TokenResponse)
async def register(data: UserCreate, request: Request, db: AsyncSession = Depends(get_db)):
    await rate_limit_service.hit(client_ip(request), "register")

    email = data.email.strip().lower()
    if await _email_taken(db, email):
        raise HTTPException(status_code=400, detail="Email already registered")

    user = User(
        id=str(uuid.uuid4()),
        email=email,
        password_hash=hash_password(data.password),
        name=data.name,
        role=ROLE_USER,
        credits=0,
        is_disabled=False,
        created_at=datetime.utcnow(),
    )
    db.add(user)
    try:
        await db.commit()
    except IntegrityError:
        # a concurrent registration took the email after the check above
        await db.rollback()
        raise HTTPException(status_code=400, detail="Email already registered")

    return TokenResponse(token=create_token(user.id, user.email, user.role), user=_user_response(user))


@router.post("/login", response_model=TokenResponse)
async def login(data: UserLogin, request: Request, db: AsyncSession = Depends(get_db)):
    await rate_limit_service.hit(client_ip(request), "login")

    email = data.email.strip().lower()
    user = (await db.execute(select(User).where(User.email == email))).scalar_one_or_none()
    if not user or not verify_password(data.password, user.password_hash):
        raise HTTPException(status_code=401, detail="Invalid credentials")
    if user.is_disabled:
        raise HTTPException(status_code=403, detail="Account disabled")

    return TokenResponse(token=create_token(user.id, user.email, user.role), user=_user_response(user))


@router.get("/me", response_model=UserResponse)
async def auth_me(user=Depends(get_current_user)):
    return UserResponse(**user)
