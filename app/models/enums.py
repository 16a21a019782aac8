"""Centralized Enum Definitions"""

import enum


# Users
class UserRole(str, enum.Enum):
    """User roles for RBAC"""
    ADMIN = "admin"
    TEACHER = "teacher"
    PARENT = "parent"
    STUDENT = "student"


# Catalog
class GroupStatus(str, enum.Enum):
    """Group enrollment availability"""
    OPEN = "open"
    CLOSED = "closed"


# Billing
class EnrollmentStatus(str, enum.Enum):
    """Subscription status, mirrored from the payment gateway"""
    INCOMPLETE = "incomplete"
    INCOMPLETE_EXPIRED = "incomplete_expired"
    TRIALING = "trialing"
    ACTIVE = "active"
    PAST_DUE = "past_due"
    CANCELED = "canceled"
    UNPAID = "unpaid"


# Statuses that count as a paid membership; at most one per (student, course)
ACTIVE_ENROLLMENT_STATUSES = frozenset({
    EnrollmentStatus.TRIALING,
    EnrollmentStatus.ACTIVE,
    EnrollmentStatus.PAST_DUE,
})

TERMINAL_ENROLLMENT_STATUSES = frozenset({
    EnrollmentStatus.CANCELED,
    EnrollmentStatus.INCOMPLETE_EXPIRED,
})


class InvoiceStatus(str, enum.Enum):
    """Gateway invoice status"""
    DRAFT = "draft"
    OPEN = "open"
    PAID = "paid"
    VOID = "void"
    UNCOLLECTIBLE = "uncollectible"


# Communication
class NotificationType(str, enum.Enum):
    """In-app notification categories"""
    ENROLLMENT = "enrollment"
    PAYMENT = "payment"
    CANCELLATION = "cancellation"
