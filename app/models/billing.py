"""Billing: enrollments (subscriptions), their charge ledger, and invoice records"""

from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import Column, String, Boolean, DateTime, Numeric, ForeignKey, Enum, Uuid
from sqlalchemy.orm import relationship

from app.models.base import BaseModel
from app.models.enums import (
    EnrollmentStatus,
    InvoiceStatus,
    ACTIVE_ENROLLMENT_STATUSES,
    TERMINAL_ENROLLMENT_STATUSES,
)


class Enrollment(BaseModel):
    """
    One student's paid membership in one group.

    Created `incomplete` when a parent starts checkout. Only verified gateway
    events activate it; afterwards it changes through webhook events or
    through cancel/renew, which mirror what the gateway returns.
    """
    __tablename__ = "enrollments"

    # Actors
    parent_id = Column(Uuid(as_uuid=True), ForeignKey("users.id", ondelete="RESTRICT"), nullable=False, index=True)
    student_id = Column(Uuid(as_uuid=True), ForeignKey("users.id", ondelete="RESTRICT"), nullable=False, index=True)
    teacher_id = Column(Uuid(as_uuid=True), ForeignKey("users.id", ondelete="RESTRICT"), nullable=False, index=True)

    # Target
    group_id = Column(Uuid(as_uuid=True), ForeignKey("groups.id", ondelete="RESTRICT"), nullable=False, index=True)
    course_id = Column(Uuid(as_uuid=True), ForeignKey("courses.id", ondelete="RESTRICT"), nullable=False, index=True)

    # Gateway linkage
    customer_id = Column(String(255), nullable=True)
    subscription_id = Column(String(255), nullable=True, unique=True)
    checkout_session_id = Column(String(255), nullable=True, index=True)
    price_id = Column(String(255), nullable=True)
    amount = Column(Numeric(10, 2), nullable=False)
    currency = Column(String(3), default="usd", nullable=False)

    status = Column(
        Enum(EnrollmentStatus, name="enrollment_status", values_callable=lambda x: [e.value for e in x]),
        default=EnrollmentStatus.INCOMPLETE,
        nullable=False,
        index=True,
    )
    current_period_start = Column(DateTime, nullable=True)
    current_period_end = Column(DateTime, nullable=True)
    cancel_at_period_end = Column(Boolean, default=False, nullable=False)
    canceled_at = Column(DateTime, nullable=True)
    paid_at = Column(DateTime, nullable=True)

    charges = relationship(
        "EnrollmentCharge",
        back_populates="enrollment",
        order_by="EnrollmentCharge.created_at",
        cascade="all, delete-orphan",
    )
    group = relationship("Group")

    @property
    def is_active_family(self) -> bool:
        return self.status in ACTIVE_ENROLLMENT_STATUSES

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_ENROLLMENT_STATUSES

    def apply_period(
        self,
        start: Optional[datetime],
        end: Optional[datetime],
        fallback_days: int,
    ) -> None:
        """
        Set the billing period, never accepting a zero-length or inverted one.

        A missing start keeps the current start; a missing end keeps the
        current end. If the resulting end is not after the start, the end
        becomes start + fallback_days.
        """
        start = start or self.current_period_start
        end = end or self.current_period_end
        if start is not None and (end is None or end <= start):
            end = start + timedelta(days=fallback_days)
        self.current_period_start = start
        self.current_period_end = end

    def mirror_subscription(self, snapshot, fallback_days: int) -> None:
        """Copy status, period and cancellation fields from a subscription snapshot."""
        self.status = snapshot.status
        self.apply_period(snapshot.current_period_start, snapshot.current_period_end, fallback_days)
        self.cancel_at_period_end = snapshot.cancel_at_period_end
        self.canceled_at = snapshot.canceled_at

    def mirror_cancellation_state(self, snapshot) -> None:
        """Copy only what cancel/renew change: status and the cancellation fields."""
        self.status = snapshot.status
        self.cancel_at_period_end = snapshot.cancel_at_period_end
        self.canceled_at = snapshot.canceled_at

    def mark_canceled(self, now: datetime) -> None:
        self.status = EnrollmentStatus.CANCELED
        self.canceled_at = now
        self.cancel_at_period_end = True

    def mark_expired(self, now: datetime) -> bool:
        """Expire a checkout that never activated. Returns False if it already did."""
        if self.status != EnrollmentStatus.INCOMPLETE:
            return False
        self.status = EnrollmentStatus.INCOMPLETE_EXPIRED
        self.canceled_at = now
        return True

    def __repr__(self) -> str:
        return f"<Enrollment {self.id} {self.status}>"


class EnrollmentCharge(BaseModel):
    """
    Append-only charge ledger entry. At most one row per gateway invoice;
    teacher_share + platform_fee == amount.
    """
    __tablename__ = "enrollment_charges"

    enrollment_id = Column(Uuid(as_uuid=True), ForeignKey("enrollments.id", ondelete="CASCADE"), nullable=False, index=True)
    invoice_id = Column(String(255), nullable=False, unique=True)
    amount = Column(Numeric(10, 2), nullable=False)
    currency = Column(String(3), nullable=False)
    teacher_share = Column(Numeric(10, 2), nullable=False)
    platform_fee = Column(Numeric(10, 2), nullable=False)
    paid_at = Column(DateTime, nullable=False)

    enrollment = relationship("Enrollment", back_populates="charges")

    def __repr__(self) -> str:
        return f"<EnrollmentCharge {self.invoice_id} {self.amount} {self.currency}>"


class Invoice(BaseModel):
    """Financial record of a paid gateway invoice, used by admin reporting and payouts."""
    __tablename__ = "invoices"

    stripe_invoice_id = Column(String(255), nullable=False, unique=True, index=True)
    stripe_subscription_id = Column(String(255), nullable=False, index=True)

    enrollment_id = Column(Uuid(as_uuid=True), ForeignKey("enrollments.id", ondelete="CASCADE"), nullable=False, index=True)
    teacher_id = Column(Uuid(as_uuid=True), ForeignKey("users.id", ondelete="RESTRICT"), nullable=False, index=True)
    parent_id = Column(Uuid(as_uuid=True), ForeignKey("users.id", ondelete="RESTRICT"), nullable=False)
    student_id = Column(Uuid(as_uuid=True), ForeignKey("users.id", ondelete="RESTRICT"), nullable=False)

    amount = Column(Numeric(10, 2), nullable=False)
    amount_paid = Column(Numeric(10, 2), nullable=False)
    amount_due = Column(Numeric(10, 2), nullable=False)
    currency = Column(String(3), default="usd", nullable=False)
    platform_fee = Column(Numeric(10, 2), nullable=False)
    teacher_share = Column(Numeric(10, 2), nullable=False)

    status = Column(
        Enum(InvoiceStatus, name="invoice_status", values_callable=lambda x: [e.value for e in x]),
        default=InvoiceStatus.OPEN,
        nullable=False,
    )
    paid_at = Column(DateTime, nullable=True)
    period_start = Column(DateTime, nullable=True)
    period_end = Column(DateTime, nullable=True)

    def __repr__(self) -> str:
        return f"<Invoice {self.stripe_invoice_id} {self.status}>"
