"""Models Package - Export all models for easy imports"""

from app.models.base import BaseModel
from app.models.enums import *
from app.models.user import User, ParentProfile, StudentProfile, TeacherProfile
from app.models.academic import Course, Group, group_students
from app.models.billing import Enrollment, EnrollmentCharge, Invoice
from app.models.communication import Notification


__all__ = [
    # Base classes
    "BaseModel",

    # Users
    "User",
    "ParentProfile",
    "StudentProfile",
    "TeacherProfile",

    # Catalog
    "Course",
    "Group",
    "group_students",

    # Billing
    "Enrollment",
    "EnrollmentCharge",
    "Invoice",

    # Communication
    "Notification",
]
