from typing import Any, List
from fastapi import APIRouter, Depends, Request, status
from uuid import UUID

from app.api import deps
from app.core.rate_limit import DEFAULT_LIMIT, limiter
from app.models.enums import UserRole
from app.models.user import User
from app.schemas.enrollment import CheckoutRequest, CheckoutResponse, EnrollmentResponse
from app.schemas.responses import ERROR_RESPONSES, SuccessResponse
from app.services.enrollment_service import EnrollmentService

router = APIRouter(responses=ERROR_RESPONSES)


@router.post(
    "/checkout/{group_id}",
    response_model=SuccessResponse[CheckoutResponse],
    status_code=status.HTTP_201_CREATED,
)
@limiter.limit(DEFAULT_LIMIT)
async def create_checkout(
    request: Request,
    group_id: UUID,
    checkout_in: CheckoutRequest,
    current_user: User = Depends(deps.require_roles(UserRole.PARENT)),
    service: EnrollmentService = Depends(deps.get_enrollment_service),
) -> Any:
    """
    Start a subscription checkout for one of the parent's students.
    The client redirects to `url`; the enrollment stays `incomplete` until
    the payment provider confirms the checkout.
    """
    result = await service.subscribe(current_user, checkout_in.student_id, group_id)
    return SuccessResponse(
        data=CheckoutResponse(url=result.url, session_id=result.session_id, enrollment_id=result.enrollment.id),
        message="Checkout session created",
    )


@router.get("/me", response_model=SuccessResponse[List[EnrollmentResponse]])
async def get_my_enrollments(
    current_user: User = Depends(deps.require_roles(UserRole.PARENT, UserRole.STUDENT)),
    service: EnrollmentService = Depends(deps.get_enrollment_service),
) -> Any:
    """
    List own enrollments, newest first.
    """
    enrollments = await service.list_for_user(current_user)
    return SuccessResponse(data=enrollments)


@router.get("/{enrollment_id}", response_model=SuccessResponse[EnrollmentResponse])
async def get_enrollment(
    enrollment_id: UUID,
    current_user: User = Depends(deps.require_roles(UserRole.PARENT, UserRole.STUDENT, UserRole.ADMIN)),
    service: EnrollmentService = Depends(deps.get_enrollment_service),
) -> Any:
    enrollment = await service.get_for_user(current_user, enrollment_id)
    return SuccessResponse(data=enrollment)


@router.delete("/{enrollment_id}", response_model=SuccessResponse[EnrollmentResponse])
async def cancel_enrollment(
    enrollment_id: UUID,
    current_user: User = Depends(deps.require_roles(UserRole.PARENT, UserRole.ADMIN)),
    service: EnrollmentService = Depends(deps.get_enrollment_service),
) -> Any:
    """
    Cancel at the end of the current billing period.
    """
    enrollment = await service.cancel(current_user, enrollment_id)
    return SuccessResponse(data=enrollment, message="Subscription will be canceled at period end")


@router.post("/{enrollment_id}/renew", response_model=SuccessResponse[EnrollmentResponse])
async def renew_enrollment(
    enrollment_id: UUID,
    current_user: User = Depends(deps.require_roles(UserRole.PARENT, UserRole.ADMIN)),
    service: EnrollmentService = Depends(deps.get_enrollment_service),
) -> Any:
    """
    Undo a scheduled cancellation.
    """
    enrollment = await service.renew(current_user, enrollment_id)
    return SuccessResponse(data=enrollment, message="Subscription renewed")
