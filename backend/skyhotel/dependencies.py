import uuid

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from sqlalchemy.ext.asyncio import AsyncSession

from skyhotel.config import settings
from skyhotel.database import get_db
from skyhotel.models.user import SystemUser
from skyhotel.services.fulfillment_driver import FulfillmentDriver, fulfillment_driver
from skyhotel.services.provider_client import HotelProviderClient, provider_client
from skyhotel.services.user_service import is_active, user_service

bearer_scheme = HTTPBearer(auto_error=False)


async def get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    db: AsyncSession = Depends(get_db),
) -> SystemUser:
    unauthorized = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Not authenticated",
        headers={"WWW-Authenticate": "Bearer"},
    )
    if credentials is None:
        raise unauthorized
    try:
        payload = jwt.decode(credentials.credentials, settings.secret_key, algorithms=[settings.algorithm])
        user_id = uuid.UUID(payload.get("sub", ""))
    except (JWTError, ValueError):
        raise unauthorized

    user = await user_service.get_user(db, user_id)
    if user is None:
        raise unauthorized
    if not is_active(user):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Account is disabled")
    return user


async def require_admin(user: SystemUser = Depends(get_current_user)) -> SystemUser:
    if not user.is_admin:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin access required")
    return user


def get_provider() -> HotelProviderClient:
    return provider_client


def get_fulfillment_driver() -> FulfillmentDriver:
    return fulfillment_driver
