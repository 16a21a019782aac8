"""API Dependencies"""

from typing import Callable, Optional
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession
from uuid import UUID

from app.config import settings
from app.database import get_db
from app.core.security import decode_token
from app.models.enums import UserRole
from app.models.user import User
from app.services.enrollment_service import EnrollmentService
from app.services.payment_gateway import StripeGateway
from app.services.user_service import UserService
from app.services.webhook_service import WebhookReconciler

# Security scheme for bearer token
security = HTTPBearer()


async def get_current_user(
    db: AsyncSession = Depends(get_db),
    credentials: HTTPAuthorizationCredentials = Depends(security)
) -> User:
    """
    Get current authenticated user from JWT token.

    Args:
        db: Database session
        credentials: HTTP authorization credentials

    Returns:
        Current user

    Raises:
        HTTPException: If token is invalid or user not found
    """
    payload = decode_token(credentials.credentials)
    if not payload or payload.get("type") != "access":
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )

    user_id_str: Optional[str] = payload.get("sub")
    try:
        user_id = UUID(user_id_str or "")
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid user ID",
            headers={"WWW-Authenticate": "Bearer"},
        )

    user = await UserService.get_user_by_id(db, user_id)
    if not user:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="User not found"
        )

    if not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Inactive user"
        )

    return user


def require_roles(*roles: UserRole) -> Callable:
    """
    Build a dependency that only lets the given roles through.

    Usage:
        current_user: User = Depends(deps.require_roles(UserRole.PARENT))
    """
    async def checker(current_user: User = Depends(get_current_user)) -> User:
        if current_user.role not in roles:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Not enough permissions"
            )
        return current_user

    return checker


def get_gateway(request: Request) -> StripeGateway:
    """Payment gateway adapter created in the app lifespan."""
    return request.app.state.gateway


async def get_enrollment_service(
    db: AsyncSession = Depends(get_db),
    gateway: StripeGateway = Depends(get_gateway),
) -> EnrollmentService:
    return EnrollmentService(db, gateway)


async def get_webhook_reconciler(
    db: AsyncSession = Depends(get_db),
    gateway: StripeGateway = Depends(get_gateway),
) -> WebhookReconciler:
    return WebhookReconciler(
        db,
        gateway,
        fee_rate=settings.PLATFORM_FEE_RATE,
        fallback_days=settings.BILLING_PERIOD_FALLBACK_DAYS,
    )
