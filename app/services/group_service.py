"""Group Service - catalog lookups and membership sync"""

from typing import Optional
from uuid import UUID
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.models.academic import Group, group_students
from app.models.enums import GroupStatus
from app.utils.db import insert_if_absent


class GroupService:
    @staticmethod
    async def get_group_by_id(db: AsyncSession, group_id: UUID) -> Optional[Group]:
        result = await db.execute(
            select(Group)
            .options(selectinload(Group.course))
            .where(Group.id == group_id)
        )
        return result.scalar_one_or_none()

    @staticmethod
    async def add_student_to_group(db: AsyncSession, group_id: UUID, student_id: UUID) -> bool:
        """
        Add a student to a group's member list and bump its count, once.

        The membership insert is ON CONFLICT DO NOTHING on the (group, student)
        key; the counter only moves when that insert actually added a row, so
        redelivered or racing activations cannot double-increment. The group
        closes when the count reaches capacity. Does not commit.

        Returns:
            True if the student was added, False if already a member
        """
        inserted = await insert_if_absent(
            db,
            group_students,
            values={"group_id": group_id, "student_id": student_id},
            conflict_columns=("group_id", "student_id"),
            returning=group_students.c.student_id,
        )
        if inserted is None:
            return False

        await db.execute(
            update(Group)
            .where(Group.id == group_id)
            .values(students_count=Group.students_count + 1)
            .execution_options(synchronize_session="fetch")
        )
        await db.execute(
            update(Group)
            .where(Group.id == group_id, Group.students_count >= Group.capacity)
            .values(status=GroupStatus.CLOSED)
            .execution_options(synchronize_session="fetch")
        )
        return True
