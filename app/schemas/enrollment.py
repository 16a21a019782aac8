from typing import Optional, List
from pydantic import BaseModel, ConfigDict
from uuid import UUID
from datetime import datetime
from decimal import Decimal
from app.models.enums import EnrollmentStatus


class CheckoutRequest(BaseModel):
    student_id: UUID


class CheckoutResponse(BaseModel):
    url: str
    session_id: str
    enrollment_id: UUID


class ChargeResponse(BaseModel):
    invoice_id: str
    amount: Decimal
    currency: str
    teacher_share: Decimal
    platform_fee: Decimal
    paid_at: datetime

    model_config = ConfigDict(from_attributes=True)


class EnrollmentResponse(BaseModel):
    id: UUID
    parent_id: UUID
    student_id: UUID
    teacher_id: UUID
    group_id: UUID
    course_id: UUID
    status: EnrollmentStatus
    amount: Decimal
    currency: str
    subscription_id: Optional[str] = None
    current_period_start: Optional[datetime] = None
    current_period_end: Optional[datetime] = None
    cancel_at_period_end: bool
    canceled_at: Optional[datetime] = None
    paid_at: Optional[datetime] = None
    created_at: datetime
    charges: List[ChargeResponse] = []

    model_config = ConfigDict(from_attributes=True)
