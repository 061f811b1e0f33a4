"""
Suspicious-activity holds

A transaction is either held (points recorded, not in the balance) or
cleared (points in the balance). Moving between the two applies or reverses
the points exactly once.
"""
import logging
from dataclasses import dataclass
from typing import Optional
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from campus_points.models.user import User, Role
from campus_points.models.transaction import Transaction, TransactionStatus, TransactionType
from campus_points.services.errors import (
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from campus_points.services.points_ledger import PointsLedger

logger = logging.getLogger(__name__)


@dataclass
class SuspicionResult:
    transaction_id: str
    suspicious: bool
    new_balance: int
    changed: bool


class SuspicionGate:
    """Decides initial holds and reconciles balances when a hold flips"""

    def __init__(self, db: AsyncSession, ledger: Optional[PointsLedger] = None):
        self.db = db
        self.ledger = ledger or PointsLedger(db)

    @staticmethod
    def should_hold(cashier: User) -> bool:
        """New transactions from a flagged cashier start held"""
        return bool(cashier.is_suspicious)

    async def set_suspicious(
        self,
        actor: User,
        transaction_id: str,
        suspicious: bool,
    ) -> SuspicionResult:
        """
        Flag or clear a transaction

        Args:
            actor: manager making the call
            transaction_id: transaction to flip
            suspicious: desired state; equal to the current state is a no-op

        Raises:
            PermissionDeniedError: actor below manager
            NotFoundError: unknown transaction
            ValidationError: redemption still waiting to be processed
            InsufficientBalanceError: clearing a held debit the owner can no longer cover
        """
        if not actor.has_clearance(Role.MANAGER):
            raise PermissionDeniedError("Only managers can flag transactions")

        result = await self.db.execute(
            select(Transaction)
            .where(Transaction.id == transaction_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        transaction = result.scalar_one_or_none()
        if transaction is None:
            raise NotFoundError("Transaction not found", "TRANSACTION_NOT_FOUND")
        if transaction.transaction_type == TransactionType.REDEMPTION and transaction.processed_by is None:
            # nothing has left the balance yet
            raise ValidationError(
                "Unprocessed redemptions cannot be flagged as suspicious", "REDEMPTION_NOT_PROCESSED"
            )

        owner = await self.ledger.lock_user(transaction.user_id)

        if transaction.is_held == suspicious:
            return SuspicionResult(transaction.id, suspicious, owner.points_balance, changed=False)

        if suspicious:
            # cleared -> held: take the points back out
            balance = self.ledger.apply(
                owner, -transaction.points, reason="suspicious_hold", allow_negative=True
            )
        else:
            # held -> cleared: the points reach the balance now; a debit must still be covered
            balance = self.ledger.apply(owner, transaction.points, reason="suspicious_clear")
            transaction.status = TransactionStatus.APPROVED.value
        transaction.needs_verification = suspicious
        await self.db.flush()

        logger.info(
            "Manager %s set transaction %s suspicious=%s; %s balance now %s",
            actor.utorid, transaction.id, suspicious, owner.utorid, balance,
        )
        return SuspicionResult(transaction.id, suspicious, balance, changed=True)
