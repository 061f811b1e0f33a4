"""
Transaction factory - builds typed ledger transactions

Each public method is one unit of work:
1. load and lock every user row it will touch
2. run every validation
3. write the transaction rows and move the balances

Nothing is written before step 3, so an exception leaves the session clean;
the session owner commits.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Optional, Sequence
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from campus_points.config import get_settings
from campus_points.models.user import User, Role
from campus_points.models.transaction import (
    Transaction,
    TransactionType,
    TransactionStatus,
    AdjustmentOf,
    TransferCounterparty,
    RedeemedBy,
)
from campus_points.models.transfer import Transfer
from campus_points.services.errors import (
    AlreadyProcessedError,
    InsufficientBalanceError,
    NotFoundError,
    PermissionDeniedError,
    UnverifiedUserError,
    ValidationError,
    WrongTypeError,
)
from campus_points.services.points_ledger import PointsLedger
from campus_points.services.promotion_evaluator import PromotionEvaluator, round_half_up
from campus_points.services.suspicion_gate import SuspicionGate

logger = logging.getLogger(__name__)


@dataclass
class PurchaseResult:
    transaction: Transaction
    earned: int
    applied_promotion_ids: list[str] = field(default_factory=list)

    @property
    def transaction_id(self) -> str:
        return self.transaction.id

    @property
    def status(self) -> str:
        return self.transaction.status


@dataclass
class TransferResult:
    transfer: Transfer
    sender_transaction: Transaction
    receiver_transaction: Transaction

    @property
    def transfer_id(self) -> str:
        return self.transfer.id

    @property
    def sender_transaction_id(self) -> str:
        return self.sender_transaction.id

    @property
    def receiver_transaction_id(self) -> str:
        return self.receiver_transaction.id


def _parse_spent(spent) -> Decimal:
    try:
        value = Decimal(str(spent))
    except (InvalidOperation, ValueError):
        raise ValidationError("spent must be a non-negative number")
    if not value.is_finite() or value < 0:
        raise ValidationError("spent must be a non-negative number")
    return value.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def _check_positive_amount(amount) -> int:
    if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
        raise ValidationError("amount must be a positive integer")
    return amount


class TransactionFactory:
    """
    Purchase, adjustment, redemption and transfer transactions

    Usage:
        factory = TransactionFactory(db)
        result = await factory.create_purchase(cashier.id, "johndoe1", Decimal("25.00"))
    """

    def __init__(
        self,
        db: AsyncSession,
        points_per_dollar: Optional[int] = None,
        now: Optional[datetime] = None,
    ):
        self.db = db
        self.ledger = PointsLedger(db)
        self.gate = SuspicionGate(db, self.ledger)
        self.promotions = PromotionEvaluator(db, now=now)
        self.points_per_dollar = points_per_dollar or get_settings().points_per_dollar

    async def _get_actor(self, user_id: str, clearance: Role) -> User:
        actor = await self.db.get(User, user_id, populate_existing=True)
        if actor is None:
            raise NotFoundError("User not found", "USER_NOT_FOUND")
        if not actor.has_clearance(clearance):
            raise PermissionDeniedError(f"Requires {clearance.value} clearance")
        return actor

    async def create_purchase(
        self,
        cashier_id: str,
        utorid: str,
        spent,
        promotion_ids: Optional[Sequence[str]] = None,
        remark: str = "",
    ) -> PurchaseResult:
        """
        Record a purchase and award its points

        Args:
            cashier_id: cashier ringing up the purchase
            utorid: customer
            spent: dollars spent
            promotion_ids: promotions to apply, all-or-nothing

        Raises:
            ValidationError: bad spend or promotions
            NotFoundError: unknown customer
            AlreadyUsedError: one-time promotion already used

        Returns:
            the transaction, points credited now (0 while held) and applied promotions
        """
        amount = _parse_spent(spent)
        cashier = await self._get_actor(cashier_id, Role.CASHIER)
        customer = await self.ledger.lock_user_by_utorid(utorid)

        evaluation = await self.promotions.evaluate(customer.id, amount, list(promotion_ids or []))
        points = round_half_up(amount * self.points_per_dollar) + evaluation.bonus
        held = self.gate.should_hold(cashier)

        transaction = Transaction(
            user_id=customer.id,
            type=TransactionType.PURCHASE.value,
            points=points,
            status=(TransactionStatus.PENDING if held else TransactionStatus.APPROVED).value,
            needs_verification=held,
            spent=amount,
            remark=remark or "",
            created_by=cashier.id,
            processed_by=cashier.id,
        )
        self.db.add(transaction)
        await self.db.flush()
        await self.promotions.record_uses(customer.id, transaction.id, evaluation)

        if held:
            logger.warning(
                "Purchase %s by suspicious cashier %s held for verification (%s points)",
                transaction.id, cashier.utorid, points,
            )
        else:
            self.ledger.credit(customer, points, reason=TransactionType.PURCHASE.value)
        await self.db.flush()

        return PurchaseResult(
            transaction=transaction,
            earned=0 if held else points,
            applied_promotion_ids=evaluation.applied_ids,
        )

    async def create_adjustment(
        self,
        manager_id: str,
        utorid: str,
        related_transaction_id: str,
        points_delta: int,
        remark: str = "",
    ) -> Transaction:
        """
        Correct a user's balance against one of their transactions

        Raises:
            PermissionDeniedError: caller below manager
            NotFoundError: unknown user or related transaction
            InsufficientBalanceError: a debit would overdraw the balance
        """
        if isinstance(points_delta, bool) or not isinstance(points_delta, int) or points_delta == 0:
            raise ValidationError("amount must be a non-zero integer")
        manager = await self._get_actor(manager_id, Role.MANAGER)

        related = await self.db.get(Transaction, related_transaction_id)
        if related is None:
            raise NotFoundError("Transaction not found", "TRANSACTION_NOT_FOUND")
        customer = await self.ledger.lock_user_by_utorid(utorid)
        if related.user_id != customer.id:
            raise ValidationError(f"Transaction {related.id} does not belong to {utorid}")

        self.ledger.apply(customer, points_delta, reason=TransactionType.ADJUSTMENT.value)

        transaction = Transaction(
            user_id=customer.id,
            type=TransactionType.ADJUSTMENT.value,
            points=points_delta,
            status=TransactionStatus.APPROVED.value,
            needs_verification=False,
            remark=remark or "",
            created_by=manager.id,
            processed_by=manager.id,
        )
        transaction.related = AdjustmentOf(related.id)
        self.db.add(transaction)
        await self.db.flush()
        logger.info(
            "Manager %s adjusted %s by %s against %s",
            manager.utorid, customer.utorid, points_delta, related.id,
        )
        return transaction

    async def create_redemption_request(self, user_id: str, amount: int, remark: str = "") -> Transaction:
        """
        Ask to redeem points; the balance moves only when a cashier processes it

        Raises:
            UnverifiedUserError: user is not a verified student
            InsufficientBalanceError: balance below the requested amount
        """
        amount = _check_positive_amount(amount)
        user = await self.ledger.lock_user(user_id)
        if not user.verified_student:
            raise UnverifiedUserError("User must be verified")
        if user.points_balance < amount:
            raise InsufficientBalanceError(
                f"Insufficient points: requested {amount}, balance is {user.points_balance}"
            )

        transaction = Transaction(
            user_id=user.id,
            type=TransactionType.REDEMPTION.value,
            points=-amount,
            status=TransactionStatus.PENDING.value,
            needs_verification=False,
            remark=remark or "",
            created_by=user.id,
        )
        self.db.add(transaction)
        await self.db.flush()
        logger.info("User %s requested redemption %s of %s points", user.utorid, transaction.id, amount)
        return transaction

    async def process_redemption(self, cashier_id: str, transaction_id: str) -> Transaction:
        """
        Complete a pending redemption, at most once

        Raises:
            NotFoundError: unknown transaction
            WrongTypeError: not a redemption
            AlreadyProcessedError: already processed
            InsufficientBalanceError: balance no longer covers the redemption
        """
        cashier = await self._get_actor(cashier_id, Role.CASHIER)
        result = await self.db.execute(
            select(Transaction)
            .where(Transaction.id == transaction_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        transaction = result.scalar_one_or_none()
        if transaction is None:
            raise NotFoundError("Transaction not found", "TRANSACTION_NOT_FOUND")
        if transaction.transaction_type is not TransactionType.REDEMPTION:
            raise WrongTypeError("Only redemption transactions can be processed")
        if transaction.processed_by is not None:
            raise AlreadyProcessedError("Transaction has already been processed")

        owner = await self.ledger.lock_user(transaction.user_id)
        self.ledger.debit(owner, -transaction.points, reason=TransactionType.REDEMPTION.value)

        transaction.status = TransactionStatus.APPROVED.value
        transaction.processed_by = cashier.id
        transaction.related = RedeemedBy(cashier.id)
        await self.db.flush()
        logger.info(
            "Cashier %s processed redemption %s for %s (%s points)",
            cashier.utorid, transaction.id, owner.utorid, -transaction.points,
        )
        return transaction

    async def create_transfer(
        self,
        sender_id: str,
        receiver_id: str,
        amount: int,
        remark: str = "",
    ) -> TransferResult:
        """
        Move points between two users as one unit of work

        Raises:
            ValidationError: bad amount or self-transfer
            NotFoundError: unknown sender or receiver
            UnverifiedUserError: sender not verified
            InsufficientBalanceError: sender balance too low
        """
        amount = _check_positive_amount(amount)
        if sender_id == receiver_id:
            raise ValidationError("Cannot transfer points to yourself")

        users = await self.ledger.lock_users([sender_id, receiver_id])
        sender, receiver = users[sender_id], users[receiver_id]
        if not sender.verified_student:
            raise UnverifiedUserError("Sender must be verified")

        self.ledger.debit(sender, amount, reason=TransactionType.TRANSFER.value)
        self.ledger.credit(receiver, amount, reason=TransactionType.TRANSFER.value)

        transfer = Transfer(sender_id=sender.id, receiver_id=receiver.id, points=amount)
        self.db.add(transfer)
        await self.db.flush()

        sender_transaction = Transaction(
            user_id=sender.id,
            type=TransactionType.TRANSFER.value,
            points=-amount,
            status=TransactionStatus.APPROVED.value,
            needs_verification=False,
            remark=remark or "",
            created_by=sender.id,
        )
        sender_transaction.related = TransferCounterparty(receiver.id, transfer.id)
        receiver_transaction = Transaction(
            user_id=receiver.id,
            type=TransactionType.TRANSFER.value,
            points=amount,
            status=TransactionStatus.APPROVED.value,
            needs_verification=False,
            remark=remark or "",
            created_by=sender.id,
        )
        receiver_transaction.related = TransferCounterparty(sender.id, transfer.id)
        self.db.add_all([sender_transaction, receiver_transaction])
        await self.db.flush()

        logger.info("Transfer %s: %s -> %s, %s points", transfer.id, sender.utorid, receiver.utorid, amount)
        return TransferResult(transfer, sender_transaction, receiver_transaction)
