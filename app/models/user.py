"""Users and role profiles"""

from sqlalchemy import Column, String, Boolean, Numeric, ForeignKey, Enum, Uuid
from sqlalchemy.orm import relationship

from app.models.base import BaseModel
from app.models.enums import UserRole


class User(BaseModel):
    """
    Unified user model for all roles (Admin, Teacher, Parent, Student).
    Identity and credentials are owned by the identity service; this table
    is the local directory the billing core reads from.
    """
    __tablename__ = "users"

    email = Column(String(255), unique=True, nullable=False, index=True)
    first_name = Column(String(255), nullable=False)
    last_name = Column(String(255), nullable=False)
    role = Column(
        Enum(UserRole, name="user_role", values_callable=lambda x: [e.value for e in x]),
        nullable=False,
        index=True,
    )
    is_active = Column(Boolean, default=True, nullable=False, index=True)

    parent_profile = relationship("ParentProfile", back_populates="user", uselist=False)
    student_profile = relationship(
        "StudentProfile",
        back_populates="user",
        uselist=False,
        foreign_keys="StudentProfile.user_id",
    )
    teacher_profile = relationship("TeacherProfile", back_populates="user", uselist=False)

    @property
    def full_name(self) -> str:
        """Get user's full name"""
        return f"{self.first_name} {self.last_name}"

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN

    @property
    def is_parent(self) -> bool:
        return self.role == UserRole.PARENT

    @property
    def is_student(self) -> bool:
        return self.role == UserRole.STUDENT

    def __repr__(self) -> str:
        return f"<User {self.email} ({self.role})>"


class ParentProfile(BaseModel):
    """Payer profile. Caches the gateway customer so it is created once per parent."""
    __tablename__ = "parent_profiles"

    user_id = Column(Uuid(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, unique=True)
    stripe_customer_id = Column(String(255), nullable=True, index=True)
    default_payment_method_id = Column(String(255), nullable=True)

    user = relationship("User", back_populates="parent_profile")

    def __repr__(self) -> str:
        return f"<ParentProfile user={self.user_id} customer={self.stripe_customer_id}>"


class StudentProfile(BaseModel):
    """Links a student to the parent account that manages (and pays for) them."""
    __tablename__ = "student_profiles"

    user_id = Column(Uuid(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, unique=True)
    parent_id = Column(Uuid(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    grade = Column(String(50), nullable=True)

    user = relationship("User", back_populates="student_profile", foreign_keys=[user_id])
    parent = relationship("User", foreign_keys=[parent_id])

    def __repr__(self) -> str:
        return f"<StudentProfile user={self.user_id} parent={self.parent_id}>"


class TeacherProfile(BaseModel):
    """
    Teacher earnings ledger.

    total_earnings is the lifetime credited amount; pending_payouts is what
    the teacher can still request. Only the webhook reconciler credits these
    and only the payout subsystem decrements pending_payouts.
    """
    __tablename__ = "teacher_profiles"

    user_id = Column(Uuid(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, unique=True)
    total_earnings = Column(Numeric(12, 2), default=0, nullable=False)
    pending_payouts = Column(Numeric(12, 2), default=0, nullable=False)
    stripe_account_id = Column(String(255), nullable=True)

    user = relationship("User", back_populates="teacher_profile")

    def __repr__(self) -> str:
        return f"<TeacherProfile user={self.user_id} earnings={self.total_earnings}>"
