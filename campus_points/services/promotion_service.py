"""
Promotion lifecycle: create, edit before start, delete before start
"""
import logging
from datetime import datetime
from decimal import Decimal
from typing import Any, Optional
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from campus_points.models.user import User, Role
from campus_points.models.promotion import Promotion, PromotionType, PromotionUse
from campus_points.services.errors import (
    ConflictError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from campus_points.utils.timezone import utc_now_naive, to_second

logger = logging.getLogger(__name__)

# fields that freeze once the promotion has started
_PRE_START_FIELDS = ("name", "description", "type", "start_time", "min_spend", "rate", "points")
# optional thresholds a manager may reset to null
_CLEARABLE_FIELDS = ("min_spend", "rate")


def _check_amounts(min_spend: Optional[Decimal], rate: Optional[float], points: Optional[int]) -> None:
    if min_spend is not None and min_spend <= 0:
        raise ValidationError("minSpending must be a positive number")
    if rate is not None and rate <= 0:
        raise ValidationError("rate must be a positive number")
    if points is not None and points < 0:
        raise ValidationError("points must be a non-negative integer")


class PromotionService:
    """Manager-side promotion management"""

    def __init__(self, db: AsyncSession, now: Optional[datetime] = None):
        self.db = db
        self._now = now

    @property
    def now(self) -> datetime:
        return self._now or utc_now_naive()

    @staticmethod
    def _require_manager(actor: User) -> None:
        if not actor.has_clearance(Role.MANAGER):
            raise PermissionDeniedError("Only managers can manage promotions")

    async def get(self, promotion_id: str) -> Promotion:
        promotion = await self.db.get(Promotion, promotion_id)
        if promotion is None:
            raise NotFoundError("Promotion not found", "PROMOTION_NOT_FOUND")
        return promotion

    async def create(
        self,
        actor: User,
        name: str,
        type: str,
        start_time: datetime,
        end_time: datetime,
        description: str = "",
        min_spend: Optional[Decimal] = None,
        rate: Optional[float] = None,
        points: Optional[int] = None,
    ) -> Promotion:
        """
        Create a promotion that starts in the future

        Raises:
            PermissionDeniedError: actor below manager
            ValidationError: bad window or amounts
        """
        self._require_manager(actor)
        if not name or not name.strip():
            raise ValidationError("name must be a non-empty string")
        try:
            promotion_type = PromotionType.parse(type)
        except ValueError:
            raise ValidationError("type must be either 'automatic' or 'one-time'")

        start, end = to_second(start_time), to_second(end_time)
        if start <= self.now or end <= start:
            raise ValidationError("startTime and endTime must be in the future, with endTime after startTime")
        _check_amounts(min_spend, rate, points)

        promotion = Promotion(
            name=name.strip(),
            description=description or "",
            type=promotion_type.value,
            start_time=start,
            end_time=end,
            min_spend=min_spend,
            rate=rate,
            points=points or 0,
            manager_id=actor.id,
        )
        self.db.add(promotion)
        await self.db.flush()
        logger.info("Manager %s created %s promotion %s", actor.utorid, promotion.type, promotion.id)
        return promotion

    async def update(self, actor: User, promotion_id: str, changes: dict[str, Any]) -> Promotion:
        """
        Apply changes; only ``end_time`` may move once the promotion started

        Raises:
            ConflictError: change not allowed in the promotion's current phase
        """
        self._require_manager(actor)
        promotion = await self.get(promotion_id)
        if not changes:
            raise ValidationError("No fields to update")
        cleared = [key for key, value in changes.items() if value is None and key not in _CLEARABLE_FIELDS]
        if cleared:
            raise ValidationError(f"{', '.join(sorted(cleared))} cannot be cleared")
        changes = dict(changes)

        now = self.now
        if promotion.has_started(now) and any(key in changes for key in _PRE_START_FIELDS):
            raise ConflictError("Cannot modify these fields after promotion has started")
        if promotion.has_ended(now) and "end_time" in changes:
            raise ConflictError("Cannot modify endTime after promotion has ended")

        if "type" in changes:
            try:
                changes["type"] = PromotionType.parse(changes["type"]).value
            except ValueError:
                raise ValidationError("type must be either 'automatic' or 'one-time'")
        if "start_time" in changes:
            changes["start_time"] = to_second(changes["start_time"])
            if changes["start_time"] <= now:
                raise ValidationError("startTime must not be in the past")
        if "end_time" in changes:
            changes["end_time"] = to_second(changes["end_time"])
        start = changes.get("start_time", promotion.start_time)
        end = changes.get("end_time", promotion.end_time)
        if end <= start:
            raise ValidationError("endTime must be after startTime")
        _check_amounts(changes.get("min_spend"), changes.get("rate"), changes.get("points"))

        for key, value in changes.items():
            setattr(promotion, key, value)
        await self.db.flush()
        logger.info("Manager %s updated promotion %s: %s", actor.utorid, promotion.id, sorted(changes))
        return promotion

    async def delete(self, actor: User, promotion_id: str) -> None:
        """
        Delete a promotion that has not started yet

        Raises:
            ConflictError: the promotion already started
        """
        self._require_manager(actor)
        promotion = await self.get(promotion_id)
        if promotion.has_started(self.now):
            raise ConflictError("Cannot delete a promotion that has already started")
        await self.db.delete(promotion)
        await self.db.flush()
        logger.info("Manager %s deleted promotion %s", actor.utorid, promotion_id)

    async def available_one_time(self, user_id: str) -> list[Promotion]:
        """Active one-time promotions the user has not used yet"""
        now = self.now
        used = select(PromotionUse.promotion_id).where(
            PromotionUse.user_id == user_id,
            PromotionUse.is_one_time.is_(True),
        )
        result = await self.db.execute(
            select(Promotion)
            .where(
                Promotion.type == PromotionType.ONE_TIME.value,
                Promotion.start_time <= now,
                Promotion.end_time >= now,
                Promotion.id.not_in(used),
            )
            .order_by(Promotion.end_time)
        )
        return list(result.scalars().all())

    async def list_visible(self, actor: User) -> list[Promotion]:
        """Managers see every promotion; everyone else sees the active ones"""
        query = select(Promotion).order_by(Promotion.start_time, Promotion.id)
        if not actor.has_clearance(Role.MANAGER):
            now = self.now
            query = query.where(Promotion.start_time <= now, Promotion.end_time >= now)
        result = await self.db.execute(query)
        return list(result.scalars().all())
