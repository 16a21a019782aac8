"""
Enrollment Service - subscribe, cancel and renew paid group memberships

subscribe() only prepares an `incomplete` enrollment and a hosted checkout
session. Activation happens exclusively in the webhook reconciler once the
gateway reports the checkout as completed; the client's success redirect is
never treated as proof of payment.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import List, Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.config import settings
from app.core.exceptions import BadRequestError, ConflictError, ForbiddenError, NotFoundError
from app.core.logging import get_logger
from app.models.academic import Group
from app.models.billing import Enrollment
from app.models.enums import (
    ACTIVE_ENROLLMENT_STATUSES,
    EnrollmentStatus,
    GroupStatus,
    NotificationType,
    UserRole,
)
from app.models.user import ParentProfile, User
from app.schemas.gateway import CheckoutMetadata
from app.services.group_service import GroupService
from app.services.notification_service import NotificationService
from app.services.payment_gateway import StripeGateway
from app.services.user_service import UserService

logger = get_logger(__name__)


@dataclass
class CheckoutResult:
    url: str
    session_id: str
    enrollment: Enrollment


class EnrollmentService:
    """
    Orchestrates the parent-facing side of the subscription lifecycle.

    Args:
        db: Database session (one unit of work per request)
        gateway: Payment gateway adapter created at startup
    """

    def __init__(self, db: AsyncSession, gateway: StripeGateway):
        self.db = db
        self.gateway = gateway
        self.notifications = NotificationService(db)

    # -------------------------------------------------------------------------
    # Subscribe
    # -------------------------------------------------------------------------

    async def subscribe(self, parent: User, student_id: Optional[UUID], group_id: Optional[UUID]) -> CheckoutResult:
        """
        Start a paid subscription of one of the parent's students to a group.

        Raises:
            BadRequestError: missing ids, free group, or non-positive price
            NotFoundError: group or student does not exist
            ForbiddenError: student is not linked to this parent
            ConflictError: group full/closed, or an active subscription exists for the course
        """
        if not student_id or not group_id:
            raise BadRequestError("group_id and student_id are required")

        group = await GroupService.get_group_by_id(self.db, group_id)
        if not group:
            raise NotFoundError("Group not found")
        if group.is_free:
            raise BadRequestError("Selected group is free and does not require a subscription")
        if group.price is None or group.price <= 0:
            raise BadRequestError("Group price must be greater than zero for paid subscriptions")
        if group.is_full or group.status == GroupStatus.CLOSED:
            raise ConflictError("Group is full or closed for enrollments")

        student = await UserService.get_student(self.db, student_id)
        if not student:
            raise NotFoundError("Student not found")
        if not await UserService.is_child_of(self.db, student_id, parent.id):
            raise ForbiddenError("This student is not linked to your account")

        if await self._has_active_enrollment(student_id, group.course_id):
            raise ConflictError("This student already has an active subscription for this course")

        profile = await UserService.get_or_create_parent_profile(self.db, parent.id)
        customer_id = await self._resolve_customer_id(parent, profile)
        price_id = await self._resolve_price_id(group)

        enrollment = await self._find_incomplete(student_id, group_id)
        if enrollment is None:
            enrollment = Enrollment(
                parent_id=parent.id,
                student_id=student_id,
                teacher_id=group.teacher_id,
                group_id=group.id,
                course_id=group.course_id,
                status=EnrollmentStatus.INCOMPLETE,
            )
            self.db.add(enrollment)
        enrollment.customer_id = customer_id
        enrollment.price_id = price_id
        enrollment.amount = Decimal(group.price)
        enrollment.currency = group.currency or settings.DEFAULT_CURRENCY
        await self.db.flush()

        session = await self.gateway.create_checkout_session(
            customer_id=customer_id,
            price_id=price_id,
            success_url=settings.checkout_success_url,
            cancel_url=settings.checkout_cancel_url,
            metadata=CheckoutMetadata(
                enrollment_id=str(enrollment.id),
                group_id=str(group.id),
                student_id=str(student_id),
                teacher_id=str(group.teacher_id),
                parent_id=str(parent.id),
                course_id=str(group.course_id),
            ),
        )
        enrollment.checkout_session_id = session.session_id
        await self.db.commit()

        logger.info(
            "Checkout session created",
            extra={"enrollment_id": str(enrollment.id), "checkout_session_id": session.session_id},
        )
        return CheckoutResult(url=session.url, session_id=session.session_id, enrollment=enrollment)

    async def _has_active_enrollment(self, student_id: UUID, course_id: UUID) -> bool:
        result = await self.db.execute(
            select(Enrollment.id).where(
                Enrollment.student_id == student_id,
                Enrollment.course_id == course_id,
                Enrollment.status.in_(ACTIVE_ENROLLMENT_STATUSES),
            )
        )
        return result.first() is not None

    async def _find_incomplete(self, student_id: UUID, group_id: UUID) -> Optional[Enrollment]:
        result = await self.db.execute(
            select(Enrollment)
            .where(
                Enrollment.student_id == student_id,
                Enrollment.group_id == group_id,
                Enrollment.status == EnrollmentStatus.INCOMPLETE,
            )
            .order_by(Enrollment.created_at.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def _resolve_customer_id(self, parent: User, profile: ParentProfile) -> str:
        if profile.stripe_customer_id:
            return profile.stripe_customer_id

        profile.stripe_customer_id = await self.gateway.create_customer(
            email=parent.email,
            name=parent.full_name,
            metadata={"parentId": str(parent.id)},
        )
        # Keep the gateway customer even if checkout creation fails below
        await self.db.commit()
        return profile.stripe_customer_id

    async def _resolve_price_id(self, group: Group) -> str:
        """Reuse the cached price while the group price is unchanged."""
        if group.stripe_price_id and group.stripe_price_amount == group.price:
            return group.stripe_price_id

        group.stripe_price_id = await self.gateway.create_price_for_group(group)
        group.stripe_price_amount = group.price
        await self.db.commit()
        return group.stripe_price_id

    # -------------------------------------------------------------------------
    # Cancel / renew
    # -------------------------------------------------------------------------

    async def cancel(self, user: User, enrollment_id: UUID) -> Enrollment:
        """Schedule cancellation at period end and mirror the gateway's answer."""
        enrollment = await self._load_for_change(user, enrollment_id)

        snapshot = await self.gateway.update_subscription(enrollment.subscription_id, cancel_at_period_end=True)
        enrollment.mirror_cancellation_state(snapshot)

        await self.notifications.notify(
            enrollment.parent_id,
            NotificationType.CANCELLATION,
            "Your subscription will be canceled at the end of the current billing period.",
        )
        await self.db.commit()
        logger.info("Enrollment cancellation scheduled", extra={"enrollment_id": str(enrollment.id)})
        return enrollment

    async def renew(self, user: User, enrollment_id: UUID) -> Enrollment:
        """Undo a scheduled cancellation and mirror the gateway's answer."""
        enrollment = await self._load_for_change(user, enrollment_id)

        snapshot = await self.gateway.update_subscription(enrollment.subscription_id, cancel_at_period_end=False)
        enrollment.mirror_cancellation_state(snapshot)

        await self.notifications.notify(
            enrollment.parent_id,
            NotificationType.CANCELLATION,
            "Your subscription has been renewed and will continue next billing period.",
        )
        await self.db.commit()
        logger.info("Enrollment renewed", extra={"enrollment_id": str(enrollment.id)})
        return enrollment

    async def _load_for_change(self, user: User, enrollment_id: UUID) -> Enrollment:
        enrollment = await self._get(enrollment_id)
        if not enrollment:
            raise NotFoundError("Enrollment not found")
        if not (user.role == UserRole.ADMIN or enrollment.parent_id == user.id):
            raise ForbiddenError("You do not own this enrollment")
        if not enrollment.subscription_id:
            raise BadRequestError("Enrollment has no subscription yet; complete the checkout first")
        if enrollment.is_terminal:
            raise ConflictError(f"Enrollment is {enrollment.status.value} and can no longer be changed")
        return enrollment

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    async def _get(self, enrollment_id: UUID) -> Optional[Enrollment]:
        result = await self.db.execute(
            select(Enrollment)
            .options(selectinload(Enrollment.charges))
            .where(Enrollment.id == enrollment_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_for_user(self, user: User, enrollment_id: UUID) -> Enrollment:
        enrollment = await self._get(enrollment_id)
        if not enrollment:
            raise NotFoundError("Enrollment not found")
        if user.role != UserRole.ADMIN and user.id not in (enrollment.parent_id, enrollment.student_id):
            raise ForbiddenError("You do not have access to this enrollment")
        return enrollment

    async def list_for_user(self, user: User) -> List[Enrollment]:
        """Parents see what they pay for; students see their own memberships."""
        query = (
            select(Enrollment)
            .options(selectinload(Enrollment.charges))
            .execution_options(populate_existing=True)
        )
        if user.role == UserRole.PARENT:
            query = query.where(Enrollment.parent_id == user.id)
        elif user.role == UserRole.STUDENT:
            query = query.where(Enrollment.student_id == user.id)
        else:
            return []

        result = await self.db.execute(query.order_by(Enrollment.created_at.desc()))
        return list(result.scalars().all())
