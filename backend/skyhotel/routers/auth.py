from datetime import datetime, timedelta, timezone

from fastapi import APIRouter, Depends, HTTPException
from jose import jwt
from sqlalchemy.ext.asyncio import AsyncSession

from skyhotel.config import settings
from skyhotel.database import get_db
from skyhotel.dependencies import get_current_user
from skyhotel.models.user import SystemUser
from skyhotel.schemas.auth import AuthResponse, LoginRequest, UserResponse
from skyhotel.services.user_service import is_active, user_service

router = APIRouter()


def create_access_token(user_id: str) -> str:
    expire = datetime.now(timezone.utc) + timedelta(minutes=settings.access_token_expire_minutes)
    payload = {"sub": user_id, "exp": expire}
    return jwt.encode(payload, settings.secret_key, algorithm=settings.algorithm)


@router.post("/login", response_model=AuthResponse)
async def login(req: LoginRequest, db: AsyncSession = Depends(get_db)):
    user = await user_service.authenticate(db, req.username, req.password)
    if not user:
        raise HTTPException(status_code=401, detail="Invalid username or password")

    if not is_active(user):
        raise HTTPException(status_code=403, detail="Account is disabled")

    user.last_login_at = datetime.now(timezone.utc)
    await db.commit()

    token = create_access_token(str(user.id))
    return AuthResponse(token=token, user=UserResponse.from_user(user))


@router.get("/me", response_model=UserResponse)
async def me(user: SystemUser = Depends(get_current_user)):
    return UserResponse.from_user(user)
