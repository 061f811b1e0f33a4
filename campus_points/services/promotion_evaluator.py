"""
Promotion evaluation for purchases

A purchase names the promotions it wants applied. Either every one of them
applies, or the purchase is rejected; there is no partial application.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional, Sequence
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from campus_points.models.promotion import Promotion, PromotionType, PromotionUse
from campus_points.services.errors import (
    AlreadyUsedError,
    InvalidPromotionsError,
    ValidationError,
)
from campus_points.utils.timezone import utc_now_naive

logger = logging.getLogger(__name__)


def round_half_up(value: Decimal) -> int:
    """Round to the nearest integer, halves away from zero"""
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def promotion_bonus(promotion: Promotion, spent: Decimal) -> int:
    """``round(spent * 100 * rate) + points``"""
    bonus = 0
    if promotion.rate:
        bonus += round_half_up(spent * 100 * Decimal(str(promotion.rate)))
    return bonus + (promotion.points or 0)


@dataclass
class PromotionEvaluation:
    """Outcome of checking the requested promotions against a purchase"""
    bonus: int = 0
    applied: list[Promotion] = field(default_factory=list)

    @property
    def applied_ids(self) -> list[str]:
        return [promotion.id for promotion in self.applied]


class PromotionEvaluator:
    """Validates requested promotions and records their use"""

    def __init__(self, db: AsyncSession, now: Optional[datetime] = None):
        self.db = db
        self._now = now

    @property
    def now(self) -> datetime:
        return self._now or utc_now_naive()

    async def evaluate(
        self,
        user_id: str,
        spent: Decimal,
        promotion_ids: Sequence[str],
    ) -> PromotionEvaluation:
        """
        Check every requested promotion, in request order

        Args:
            user_id: purchaser
            spent: purchase amount in dollars
            promotion_ids: requested promotions

        Raises:
            ValidationError: duplicate ids or minimum spend not met
            InvalidPromotionsError: unknown or inactive promotions
            AlreadyUsedError: one-time promotion already used by this user

        Returns:
            summed bonus and the applied promotions
        """
        evaluation = PromotionEvaluation()
        if not promotion_ids:
            return evaluation

        if len(set(promotion_ids)) != len(promotion_ids):
            raise ValidationError("Promotion IDs must not repeat", "DUPLICATE_PROMOTIONS")

        result = await self.db.execute(
            select(Promotion).where(Promotion.id.in_(list(promotion_ids)))
        )
        found = {promotion.id: promotion for promotion in result.scalars().all()}

        now = self.now
        invalid = [
            promotion_id for promotion_id in promotion_ids
            if promotion_id not in found or not found[promotion_id].is_active(now)
        ]
        if invalid:
            raise InvalidPromotionsError(invalid)

        for promotion_id in promotion_ids:
            promotion = found[promotion_id]
            if promotion.min_spend is not None and spent < promotion.min_spend:
                raise ValidationError(
                    f"Promotion {promotion.id} minimum spend requirement not met",
                    "MIN_SPEND_NOT_MET",
                )
            if promotion.promotion_type is PromotionType.ONE_TIME:
                if await self.has_used(user_id, promotion.id):
                    raise AlreadyUsedError(
                        f"One time promotion {promotion.id} has already been used"
                    )
            evaluation.bonus += promotion_bonus(promotion, spent)
            evaluation.applied.append(promotion)

        return evaluation

    async def has_used(self, user_id: str, promotion_id: str) -> bool:
        result = await self.db.execute(
            select(PromotionUse.id).where(
                PromotionUse.user_id == user_id,
                PromotionUse.promotion_id == promotion_id,
                PromotionUse.is_one_time.is_(True),
            ).limit(1)
        )
        return result.scalar_one_or_none() is not None

    async def record_uses(
        self,
        user_id: str,
        transaction_id: str,
        evaluation: PromotionEvaluation,
    ) -> None:
        """
        Record the applied promotions against the purchase transaction

        Raises:
            AlreadyUsedError: a concurrent purchase recorded the same one-time use first
        """
        if not evaluation.applied:
            return

        for promotion in evaluation.applied:
            self.db.add(PromotionUse(
                user_id=user_id,
                promotion_id=promotion.id,
                transaction_id=transaction_id,
                is_one_time=promotion.promotion_type is PromotionType.ONE_TIME,
            ))
        try:
            await self.db.flush()
        except IntegrityError as exc:
            logger.warning("One-time promotion race for user %s: %s", user_id, exc)
            raise AlreadyUsedError("One time promotion has already been used") from exc
