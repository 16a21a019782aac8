"""User Service - directory lookups used by billing"""

from typing import Optional
from uuid import UUID
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.user import User, ParentProfile, StudentProfile
from app.models.enums import UserRole


class UserService:
    """Service layer for user-related operations"""

    @staticmethod
    async def get_user_by_id(db: AsyncSession, user_id: UUID) -> Optional[User]:
        """
        Get user by ID.

        Args:
            db: Database session
            user_id: User ID

        Returns:
            User or None if not found
        """
        result = await db.execute(select(User).where(User.id == user_id))
        return result.scalar_one_or_none()

    @staticmethod
    async def get_student(db: AsyncSession, student_id: UUID) -> Optional[User]:
        """Get a user only if it exists and has the student role."""
        result = await db.execute(
            select(User).where(User.id == student_id, User.role == UserRole.STUDENT)
        )
        return result.scalar_one_or_none()

    @staticmethod
    async def is_child_of(db: AsyncSession, student_id: UUID, parent_id: UUID) -> bool:
        """Check the parent/child link the ownership rules rely on."""
        result = await db.execute(
            select(StudentProfile.id).where(
                StudentProfile.user_id == student_id,
                StudentProfile.parent_id == parent_id,
            )
        )
        return result.first() is not None

    @staticmethod
    async def get_parent_profile(db: AsyncSession, parent_id: UUID) -> Optional[ParentProfile]:
        result = await db.execute(select(ParentProfile).where(ParentProfile.user_id == parent_id))
        return result.scalar_one_or_none()

    @staticmethod
    async def get_or_create_parent_profile(db: AsyncSession, parent_id: UUID) -> ParentProfile:
        """Get the parent's billing profile, creating an empty one on first use. Does not commit."""
        profile = await UserService.get_parent_profile(db, parent_id)
        if profile is None:
            profile = ParentProfile(user_id=parent_id)
            db.add(profile)
            await db.flush()
        return profile
