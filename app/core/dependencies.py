"""
app/core/dependencies.py

Request Dependencies

Access tokens are issued by the account service; this API only verifies them:
- Bearer JWT -> active `User` row, failures rendered as UNAUTHORIZED (401)
- Role gates rendered as FORBIDDEN (403)
- Pagination query parameters
- Payment gateway and notifier providers (overridden in tests)
"""

import logging
from collections.abc import Callable, Coroutine
from functools import lru_cache
from typing import Annotated, Any

from fastapi import Depends, Query
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import ExpiredSignatureError, JWTError, jwt
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.exceptions import AuthorizationError, Unauthorized
from app.database.enums import UserRole
from app.database.models import User
from app.database.session import AsyncSessionLocal, get_db
from app.notification.services import NotificationService
from app.payment.gateway import PaymentGateway
from app.payment.paystack import PaystackGateway
from app.users.schemas import TokenPayload

logger = logging.getLogger(__name__)

bearer_scheme = HTTPBearer(auto_error=False, description="Access token from the account service")

BEARER_CHALLENGE = {"WWW-Authenticate": "Bearer"}


# ---------------------------------------------------
# Pagination
# ---------------------------------------------------
class PaginationParams:
    def __init__(
        self,
        skip: int = Query(0, ge=0, description="Number of records to skip"),
        limit: int = Query(20, ge=1, le=100, description="Page size"),
    ):
        self.skip = skip
        self.limit = limit


# ---------------------------------------------------
# Authentication
# ---------------------------------------------------
def decode_access_token(token: str) -> TokenPayload:
    """Verify signature and expiry, returning the claims this API relies on."""
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
        return TokenPayload(**payload)
    except ExpiredSignatureError:
        raise Unauthorized("Access token has expired", headers=BEARER_CHALLENGE)
    except (JWTError, PydanticValidationError) as e:
        logger.warning(f"[AUTH] Rejected access token: {e}")
        raise Unauthorized("Could not validate credentials", headers=BEARER_CHALLENGE)


async def get_current_user(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(bearer_scheme)],
    db: AsyncSession = Depends(get_db),
) -> User:
    if credentials is None:
        raise Unauthorized("Authentication required", headers=BEARER_CHALLENGE)

    claims = decode_access_token(credentials.credentials)
    user = await db.get(User, claims.sub)
    if user is None or not user.is_active:
        logger.warning(f"[AUTH] Token for missing or inactive user {claims.sub}")
        raise Unauthorized("Could not validate credentials", headers=BEARER_CHALLENGE)
    return user


# ---------------------------------------------------
# Role Gates
# ---------------------------------------------------
def require_roles(*roles: UserRole) -> Callable[..., Coroutine[Any, Any, User]]:
    """Dependency factory admitting users holding any of `roles`."""

    async def checker(user: User = Depends(get_current_user)) -> User:
        if user.role not in roles:
            logger.warning(
                f"[RBAC] {user.role.value} {user.id} refused; allowed: {[r.value for r in roles]}"
            )
            raise AuthorizationError(
                f"This action is not available to {user.role.value} accounts",
                details={"allowed_roles": [r.value for r in roles]},
            )
        return user

    return checker


def get_current_user_with_role(required_role: UserRole) -> Callable[..., Coroutine[Any, Any, User]]:
    return require_roles(required_role)


# ---------------------------------------------------
# Collaborators
# ---------------------------------------------------
@lru_cache
def get_payment_gateway() -> PaymentGateway:
    """Process-wide gateway so recipient and bank-code caches survive between requests."""
    return PaystackGateway(
        secret_key=settings.PAYMENT_PROVIDER_SECRET_KEY,
        base_url=settings.PAYMENT_PROVIDER_BASE_URL,
        currency=settings.PAYMENT_CURRENCY,
        callback_url=settings.payment_callback_url,
        timeout_seconds=settings.PAYMENT_TIMEOUT_SECONDS,
    )


def get_notifier() -> NotificationService:
    return NotificationService(AsyncSessionLocal)
