"""
Points ledger - the only code allowed to change a user's balance

Provides:
1. Row-locked reads of user records (SELECT ... FOR UPDATE)
2. Credit and debit operations with the non-negative balance rule
3. Reconciliation of a balance against the transaction history
"""
import logging
from typing import Iterable, Optional
from sqlalchemy import select, func, and_
from sqlalchemy.ext.asyncio import AsyncSession

from campus_points.models.user import User
from campus_points.models.transaction import Transaction, TransactionStatus
from campus_points.services.errors import (
    InsufficientBalanceError,
    LedgerInvariantError,
    NotFoundError,
    ValidationError,
)
from campus_points.utils.metrics import POINTS_CREDITED, POINTS_DEBITED

logger = logging.getLogger(__name__)


class PointsLedger:
    """
    Balance mutations for one unit of work

    Usage:
        ledger = PointsLedger(db)
        user = await ledger.lock_user(user_id)
        ledger.credit(user, 100, reason="purchase")
        # the request-scoped session commits or rolls back everything

    The ledger never commits; the session owner does.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def lock_user(self, user_id: str) -> User:
        """
        Load a user row and hold a write lock on it until the unit of work ends

        Raises:
            NotFoundError: no such user
        """
        result = await self.db.execute(
            select(User)
            .where(User.id == user_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        user = result.scalar_one_or_none()
        if user is None:
            raise NotFoundError("User not found", "USER_NOT_FOUND")
        return user

    async def lock_user_by_utorid(self, utorid: str) -> User:
        result = await self.db.execute(
            select(User)
            .where(User.utorid == utorid)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        user = result.scalar_one_or_none()
        if user is None:
            raise NotFoundError(f"User {utorid} not found", "USER_NOT_FOUND")
        return user

    async def lock_users(self, user_ids: Iterable[str]) -> dict[str, User]:
        """
        Lock several users in a stable (sorted id) order to avoid deadlocks

        Returns:
            mapping of user id to locked user
        """
        locked: dict[str, User] = {}
        for user_id in sorted(set(user_ids)):
            locked[user_id] = await self.lock_user(user_id)
        return locked

    def credit(self, user: User, points: int, reason: str) -> int:
        """
        Add points to a locked user

        Returns:
            balance after the credit
        """
        if points < 0:
            raise ValidationError("Credit amount must not be negative", "INVALID_AMOUNT")
        before = user.points_balance
        user.points_balance = before + points
        POINTS_CREDITED.labels(reason).inc(points)
        logger.info(
            "Credited %s points to %s (%s): %s -> %s",
            points, user.utorid, reason, before, user.points_balance,
        )
        return user.points_balance

    def debit(self, user: User, points: int, reason: str, allow_negative: bool = False) -> int:
        """
        Remove points from a locked user

        Args:
            allow_negative: only a suspicious-hold reversal may overdraw

        Raises:
            InsufficientBalanceError: balance does not cover the debit

        Returns:
            balance after the debit
        """
        if points < 0:
            raise ValidationError("Debit amount must not be negative", "INVALID_AMOUNT")
        before = user.points_balance
        if before < points and not allow_negative:
            raise InsufficientBalanceError(
                f"Insufficient points: need {points}, balance is {before}"
            )
        user.points_balance = before - points
        POINTS_DEBITED.labels(reason).inc(points)
        logger.info(
            "Debited %s points from %s (%s): %s -> %s",
            points, user.utorid, reason, before, user.points_balance,
        )
        if user.points_balance < 0:
            logger.warning(
                "Balance of %s is negative (%s) after %s",
                user.utorid, user.points_balance, reason,
            )
        return user.points_balance

    def apply(self, user: User, delta: int, reason: str, allow_negative: bool = False) -> int:
        """Credit or debit by a signed delta"""
        if delta >= 0:
            return self.credit(user, delta, reason)
        return self.debit(user, -delta, reason, allow_negative=allow_negative)

    async def expected_balance(self, user_id: str) -> int:
        """Sum of approved, non-held transaction points for a user"""
        result = await self.db.execute(
            select(func.coalesce(func.sum(Transaction.points), 0)).where(
                and_(
                    Transaction.user_id == user_id,
                    Transaction.status == TransactionStatus.APPROVED.value,
                    Transaction.needs_verification.is_(False),
                )
            )
        )
        return int(result.scalar() or 0)

    async def verify_balance(self, user_id: str, opening_balance: Optional[int] = 0) -> int:
        """
        Check a user's balance against the transaction history

        Args:
            user_id: user to check
            opening_balance: balance granted outside the ledger (seed data)

        Raises:
            LedgerInvariantError: the balance drifted from the history

        Returns:
            the verified balance
        """
        await self.db.flush()
        result = await self.db.execute(select(User.points_balance).where(User.id == user_id))
        balance = result.scalar_one_or_none()
        if balance is None:
            raise NotFoundError("User not found", "USER_NOT_FOUND")

        expected = await self.expected_balance(user_id) + (opening_balance or 0)
        if balance != expected:
            logger.error(
                "Ledger drift for user %s: balance %s, history says %s",
                user_id, balance, expected,
            )
            raise LedgerInvariantError(
                f"Balance {balance} does not match transaction history {expected}"
            )
        if balance < 0:
            held = await self._held_points(user_id)
            if held <= 0:
                logger.error("Negative balance %s for user %s with no held credits", balance, user_id)
                raise LedgerInvariantError(f"Negative balance {balance} is not explained by a hold")
        return balance

    async def _held_points(self, user_id: str) -> int:
        result = await self.db.execute(
            select(func.coalesce(func.sum(Transaction.points), 0)).where(
                Transaction.user_id == user_id,
                Transaction.needs_verification.is_(True),
                Transaction.points > 0,
            )
        )
        return int(result.scalar() or 0)
