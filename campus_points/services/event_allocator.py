"""
Event point budgets, guest lists and point awards
"""
import logging
from datetime import datetime
from typing import Optional
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from campus_points.models.user import User, Role
from campus_points.models.event import Event, EventGuest, EventOrganizer
from campus_points.models.transaction import (
    Transaction,
    TransactionType,
    TransactionStatus,
    EventAward,
)
from campus_points.services.errors import (
    ConflictError,
    InsufficientEventBudgetError,
    NotFoundError,
    NotGuestError,
    PermissionDeniedError,
    ValidationError,
)
from campus_points.services.points_ledger import PointsLedger
from campus_points.utils.timezone import utc_now_naive, to_second

logger = logging.getLogger(__name__)


class EventPointsAllocator:
    """
    Distributes an event's point budget to its guests

    Usage:
        allocator = EventPointsAllocator(db)
        transactions = await allocator.award_points(event.id, organizer.id, 10)
    """

    def __init__(self, db: AsyncSession, now: Optional[datetime] = None):
        self.db = db
        self.ledger = PointsLedger(db)
        self._now = now

    @property
    def now(self) -> datetime:
        return self._now or utc_now_naive()

    async def _lock_event(self, event_id: str) -> Event:
        result = await self.db.execute(
            select(Event)
            .where(Event.id == event_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        event = result.scalar_one_or_none()
        if event is None:
            raise NotFoundError("Event not found", "EVENT_NOT_FOUND")
        return event

    async def _get_user(self, user_id: str) -> User:
        user = await self.db.get(User, user_id)
        if user is None:
            raise NotFoundError("User not found", "USER_NOT_FOUND")
        return user

    async def _get_user_by_utorid(self, utorid: str) -> User:
        result = await self.db.execute(select(User).where(User.utorid == utorid))
        user = result.scalar_one_or_none()
        if user is None:
            raise NotFoundError(f"User {utorid} not found", "USER_NOT_FOUND")
        return user

    async def is_organizer(self, event_id: str, user_id: str) -> bool:
        result = await self.db.execute(
            select(EventOrganizer.id).where(
                EventOrganizer.event_id == event_id,
                EventOrganizer.user_id == user_id,
            )
        )
        return result.scalar_one_or_none() is not None

    async def is_guest(self, event_id: str, user_id: str) -> bool:
        result = await self.db.execute(
            select(EventGuest.id).where(
                EventGuest.event_id == event_id,
                EventGuest.user_id == user_id,
            )
        )
        return result.scalar_one_or_none() is not None

    async def guest_ids(self, event_id: str) -> list[str]:
        result = await self.db.execute(
            select(EventGuest.user_id)
            .where(EventGuest.event_id == event_id)
            .order_by(EventGuest.id)
        )
        return list(result.scalars().all())

    async def _require_manager_or_organizer(self, actor: User, event_id: str) -> None:
        if actor.has_clearance(Role.MANAGER):
            return
        if not await self.is_organizer(event_id, actor.id):
            raise PermissionDeniedError("Only managers or organizers of this event can do this")

    async def create_event(
        self,
        actor: User,
        name: str,
        start_time: datetime,
        end_time: datetime,
        points: int = 0,
        description: str = "",
        location: str = "",
        capacity: Optional[int] = None,
    ) -> Event:
        """
        Create an event with a point budget; the creating manager organizes it

        Raises:
            PermissionDeniedError: actor below manager
            ValidationError: bad name, window, budget or capacity
        """
        if not actor.has_clearance(Role.MANAGER):
            raise PermissionDeniedError("Only managers can create events")
        if not name or not name.strip() or len(name) > 100:
            raise ValidationError("name must be a string between 1-100 characters")
        start, end = to_second(start_time), to_second(end_time)
        if start < self.now or end <= start:
            raise ValidationError("Invalid start or end time")
        if isinstance(points, bool) or not isinstance(points, int) or points < 0:
            raise ValidationError("points must be a non-negative integer")
        if capacity is not None and (
            isinstance(capacity, bool) or not isinstance(capacity, int) or capacity <= 0
        ):
            raise ValidationError("capacity must be a positive integer")

        event = Event(
            name=name.strip(),
            description=description or "",
            location=location or "",
            start_time=start,
            end_time=end,
            capacity=capacity,
            total_points=points,
            points_remain=points,
            points_awarded=0,
        )
        self.db.add(event)
        await self.db.flush()
        self.db.add(EventOrganizer(event_id=event.id, user_id=actor.id))
        await self.db.flush()
        logger.info("Manager %s created event %s with %s points", actor.utorid, event.id, points)
        return event

    async def award_points(
        self,
        event_id: str,
        awarder_id: str,
        amount: int,
        utorid: Optional[str] = None,
        remark: Optional[str] = None,
    ) -> list[Transaction]:
        """
        Award points from the event budget to one guest, or to every guest

        Args:
            event_id: event whose budget pays for the award
            awarder_id: manager or organizer of the event
            amount: points per recipient
            utorid: single recipient; None awards every guest
            remark: transaction remark, defaults to the event name

        Raises:
            PermissionDeniedError: awarder is neither manager nor organizer
            NotGuestError: the named user is not on the guest list
            InsufficientEventBudgetError: remaining budget does not cover the award

        Returns:
            one EVENT transaction per recipient
        """
        if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
            raise ValidationError("amount must be a positive integer")

        awarder = await self._get_user(awarder_id)
        event = await self._lock_event(event_id)
        await self._require_manager_or_organizer(awarder, event.id)

        if utorid is not None:
            result = await self.db.execute(select(User).where(User.utorid == utorid))
            recipient = result.scalar_one_or_none()
            if recipient is None or not await self.is_guest(event.id, recipient.id):
                raise NotGuestError(f"User {utorid} is not a guest of this event")
            recipient_ids = [recipient.id]
        else:
            recipient_ids = await self.guest_ids(event.id)
            if not recipient_ids:
                raise ValidationError("Event has no guests to award")

        total = amount * len(recipient_ids)
        if event.points_remain < total:
            raise InsufficientEventBudgetError(
                f"Insufficient event points: need {total}, {event.points_remain} remaining"
            )

        recipients = await self.ledger.lock_users(recipient_ids)
        transactions = []
        for user_id in recipient_ids:
            user = recipients[user_id]
            self.ledger.credit(user, amount, reason=TransactionType.EVENT.value)
            transaction = Transaction(
                user_id=user.id,
                type=TransactionType.EVENT.value,
                points=amount,
                status=TransactionStatus.APPROVED.value,
                needs_verification=False,
                remark=remark or event.name,
                created_by=awarder.id,
            )
            transaction.related = EventAward(event.id)
            transactions.append(transaction)

        event.points_remain -= total
        event.points_awarded += total
        self.db.add_all(transactions)
        await self.db.flush()

        logger.info(
            "%s awarded %s points to %s guest(s) of event %s; %s remaining",
            awarder.utorid, amount, len(transactions), event.id, event.points_remain,
        )
        return transactions

    async def set_total_points(self, actor: User, event_id: str, total_points: int) -> Event:
        """
        Change an event's budget; the remaining budget moves by the same delta

        Raises:
            ValidationError: the new total is below what was already awarded
        """
        if not actor.has_clearance(Role.MANAGER):
            raise PermissionDeniedError("Only managers can change event points")
        if isinstance(total_points, bool) or not isinstance(total_points, int) or total_points < 0:
            raise ValidationError("points must be a non-negative integer")

        event = await self._lock_event(event_id)
        remain = event.points_remain + (total_points - event.total_points)
        if remain < 0:
            raise ValidationError(
                f"Total points cannot drop below the {event.points_awarded} already awarded"
            )
        event.total_points = total_points
        event.points_remain = remain
        await self.db.flush()
        logger.info("Manager %s set event %s budget to %s", actor.utorid, event.id, total_points)
        return event

    async def _put_on_guest_list(self, event: Event, user: User) -> None:
        if event.has_ended(self.now):
            raise ConflictError("Event has already ended")
        if await self.is_organizer(event.id, user.id):
            raise ValidationError("User is an organizer of this event")
        if await self.is_guest(event.id, user.id):
            raise ValidationError("User is already a guest of this event")
        if event.capacity is not None:
            result = await self.db.execute(
                select(func.count(EventGuest.id)).where(EventGuest.event_id == event.id)
            )
            if result.scalar() >= event.capacity:
                raise ConflictError("Event is full")
        self.db.add(EventGuest(event_id=event.id, user_id=user.id))
        await self.db.flush()

    async def add_guest(self, actor: User, event_id: str, utorid: str) -> User:
        """
        Put a user on the guest list

        Raises:
            ConflictError: the event ended or is full
            ValidationError: the user organizes the event or is already a guest
        """
        event = await self._lock_event(event_id)
        await self._require_manager_or_organizer(actor, event.id)
        if event.has_ended(self.now):
            raise ConflictError("Event has already ended")

        user = await self._get_user_by_utorid(utorid)
        await self._put_on_guest_list(event, user)
        logger.info("%s added guest %s to event %s", actor.utorid, user.utorid, event.id)
        return user

    async def join(self, user: User, event_id: str) -> User:
        """RSVP the caller; same rules as a guest added by an organizer"""
        event = await self._lock_event(event_id)
        await self._put_on_guest_list(event, user)
        logger.info("%s joined event %s", user.utorid, event.id)
        return user

    async def leave(self, user: User, event_id: str) -> None:
        """
        Withdraw the caller's RSVP

        Raises:
            ConflictError: the event ended
            NotFoundError: the caller is not on the guest list
        """
        event = await self._lock_event(event_id)
        if event.has_ended(self.now):
            raise ConflictError("Event has already ended")
        await self._delete_member(EventGuest, event.id, user.id, "GUEST_NOT_FOUND")
        logger.info("%s left event %s", user.utorid, event.id)

    async def _delete_member(self, model, event_id: str, user_id: str, error_code: str) -> None:
        result = await self.db.execute(
            select(model).where(model.event_id == event_id, model.user_id == user_id)
        )
        member = result.scalar_one_or_none()
        if member is None:
            role = "guest" if model is EventGuest else "organizer"
            raise NotFoundError(f"User is not a {role} of this event", error_code)
        await self.db.delete(member)
        await self.db.flush()

    async def remove_guest(self, actor: User, event_id: str, user_id: str) -> None:
        if not actor.has_clearance(Role.MANAGER):
            raise PermissionDeniedError("Only managers can remove guests")
        event = await self._lock_event(event_id)
        await self._delete_member(EventGuest, event.id, user_id, "GUEST_NOT_FOUND")
        logger.info("Manager %s removed guest %s from event %s", actor.utorid, user_id, event.id)

    async def add_organizer(self, actor: User, event_id: str, utorid: str) -> User:
        """
        Make a user an organizer

        Raises:
            ConflictError: the event ended
            ValidationError: the user is a guest or already an organizer
        """
        if not actor.has_clearance(Role.MANAGER):
            raise PermissionDeniedError("Only managers can add organizers")
        event = await self._lock_event(event_id)
        if event.has_ended(self.now):
            raise ConflictError("Event has already ended")

        user = await self._get_user_by_utorid(utorid)
        if await self.is_guest(event.id, user.id):
            raise ValidationError("User is a guest of this event; remove them first")
        if await self.is_organizer(event.id, user.id):
            raise ValidationError("User is already an organizer of this event")

        self.db.add(EventOrganizer(event_id=event.id, user_id=user.id))
        await self.db.flush()
        logger.info("Manager %s added organizer %s to event %s", actor.utorid, user.utorid, event.id)
        return user

    async def remove_organizer(self, actor: User, event_id: str, user_id: str) -> None:
        if not actor.has_clearance(Role.MANAGER):
            raise PermissionDeniedError("Only managers can remove organizers")
        event = await self._lock_event(event_id)
        await self._delete_member(EventOrganizer, event.id, user_id, "ORGANIZER_NOT_FOUND")
        logger.info("Manager %s removed organizer %s from event %s", actor.utorid, user_id, event.id)
