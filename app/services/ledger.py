"""Teacher earnings ledger and the platform fee split"""

from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Union
from uuid import UUID

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.logging import get_logger
from app.models.user import TeacherProfile

logger = get_logger(__name__)

CENT = Decimal("0.01")


@dataclass(frozen=True)
class ChargeSplit:
    amount: Decimal
    platform_fee: Decimal
    teacher_share: Decimal


def compute_split(amount_minor: int, fee_rate: Union[float, Decimal, str]) -> ChargeSplit:
    """
    Split a payment between the platform and the teacher.

    The fee is rounded half-up to the cent and the teacher share is the
    remainder, so platform_fee + teacher_share == amount exactly.

    Args:
        amount_minor: Amount paid in minor units (cents)
        fee_rate: Platform fee rate, e.g. 0.10
    """
    amount = (Decimal(int(amount_minor)) / 100).quantize(CENT)
    # str() so a float rate like 0.1 becomes Decimal("0.1"), not its binary expansion
    rate = Decimal(str(fee_rate))
    platform_fee = (amount * rate).quantize(CENT, rounding=ROUND_HALF_UP)
    teacher_share = amount - platform_fee
    return ChargeSplit(amount=amount, platform_fee=platform_fee, teacher_share=teacher_share)


class TeacherLedger:
    """Credits teacher earnings. Decrements belong to the payout subsystem."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def credit(self, teacher_id: UUID, amount: Decimal) -> None:
        """
        Add `amount` to the teacher's lifetime earnings and pending payouts.

        Runs as a single UPDATE with column arithmetic so concurrent credits
        cannot lose each other. Creates the profile if the teacher has none.
        Does not commit.
        """
        if amount <= 0:
            return

        result = await self.db.execute(
            update(TeacherProfile)
            .where(TeacherProfile.user_id == teacher_id)
            .values(
                total_earnings=TeacherProfile.total_earnings + amount,
                pending_payouts=TeacherProfile.pending_payouts + amount,
            )
        )
        if result.rowcount == 0:
            logger.info(f"Creating earnings profile for teacher {teacher_id}")
            self.db.add(TeacherProfile(user_id=teacher_id, total_earnings=amount, pending_payouts=amount))
            await self.db.flush()
