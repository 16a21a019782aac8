"""Catalog: courses and the paid groups students subscribe to"""

from sqlalchemy import Column, String, Integer, Boolean, Numeric, Table, ForeignKey, Enum, Uuid
from sqlalchemy.orm import relationship

from app.database import Base
from app.models.base import BaseModel
from app.models.enums import GroupStatus


# Group membership; the composite key makes "add student if absent" a single atomic insert
group_students = Table(
    "group_students",
    Base.metadata,
    Column("group_id", Uuid(as_uuid=True), ForeignKey("groups.id", ondelete="CASCADE"), primary_key=True),
    Column("student_id", Uuid(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
)


class Course(BaseModel):
    __tablename__ = "courses"

    title = Column(String(255), nullable=False)
    teacher_id = Column(Uuid(as_uuid=True), ForeignKey("users.id", ondelete="RESTRICT"), nullable=False, index=True)

    groups = relationship("Group", back_populates="course")

    def __repr__(self) -> str:
        return f"<Course {self.title}>"


class Group(BaseModel):
    """
    A scheduled cohort of a course with its own capacity and monthly price.
    Stripe product/price ids are cached here and re-created when the price changes.
    """
    __tablename__ = "groups"

    title = Column(String(150), nullable=False)
    course_id = Column(Uuid(as_uuid=True), ForeignKey("courses.id", ondelete="CASCADE"), nullable=False, index=True)
    teacher_id = Column(Uuid(as_uuid=True), ForeignKey("users.id", ondelete="RESTRICT"), nullable=False, index=True)

    capacity = Column(Integer, nullable=False)
    students_count = Column(Integer, default=0, nullable=False)
    status = Column(
        Enum(GroupStatus, name="group_status", values_callable=lambda x: [e.value for e in x]),
        default=GroupStatus.OPEN,
        nullable=False,
        index=True,
    )

    # Pricing
    is_free = Column(Boolean, default=False, nullable=False)
    price = Column(Numeric(10, 2), default=0, nullable=False)
    currency = Column(String(3), default="usd", nullable=False)

    # Stripe
    stripe_product_id = Column(String(255), nullable=True)
    stripe_price_id = Column(String(255), nullable=True)
    stripe_price_amount = Column(Numeric(10, 2), nullable=True)
    billing_interval = Column(String(10), default="month", nullable=False)

    course = relationship("Course", back_populates="groups")
    students = relationship("User", secondary=group_students)

    @property
    def available_seats(self) -> int:
        return max(self.capacity - (self.students_count or 0), 0)

    @property
    def is_full(self) -> bool:
        return (self.students_count or 0) >= self.capacity

    def __repr__(self) -> str:
        return f"<Group {self.title} {self.students_count}/{self.capacity}>"
