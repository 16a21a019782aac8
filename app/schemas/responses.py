"""Standardized API Response Schemas"""

from typing import Generic, TypeVar
from pydantic import BaseModel


T = TypeVar('T')


class SuccessResponse(BaseModel, Generic[T]):
    """
    Standard success response envelope.

    Example:
        {
            "success": true,
            "data": {...},
            "message": "Operation successful"
        }
    """
    success: bool = True
    data: T
    message: str = "Operation successful"


class ErrorDetail(BaseModel):
    """Error details structure"""
    code: str
    message: str


class ErrorResponse(BaseModel):
    """
    Error envelope produced for every AppError.

    Example:
        {
            "success": false,
            "message": "Group is full or closed for enrollments",
            "error": {
                "code": "CONFLICT",
                "message": "Group is full or closed for enrollments"
            }
        }
    """
    success: bool = False
    message: str
    error: ErrorDetail


# OpenAPI documentation for the domain errors an endpoint can return
ERROR_RESPONSES = {
    400: {"model": ErrorResponse, "description": "Bad request"},
    403: {"model": ErrorResponse, "description": "Forbidden"},
    404: {"model": ErrorResponse, "description": "Not found"},
    409: {"model": ErrorResponse, "description": "Conflict"},
}
