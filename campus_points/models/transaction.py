"""
Points transaction model
"""
import uuid
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional, Union
from sqlalchemy import (
    String, Integer, Boolean, DateTime, ForeignKey, Numeric, Text, CheckConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship
from campus_points.database import Base


class TransactionType(str, Enum):
    """Transaction types"""
    PURCHASE = "purchase"
    ADJUSTMENT = "adjustment"
    REDEMPTION = "redemption"
    TRANSFER = "transfer"
    EVENT = "event"


class TransactionStatus(str, Enum):
    """Transaction status"""
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


@dataclass(frozen=True)
class AdjustmentOf:
    """An adjustment points at the transaction it corrects."""
    transaction_id: str


@dataclass(frozen=True)
class EventAward:
    """An event award points at the event whose budget paid for it."""
    event_id: str


@dataclass(frozen=True)
class TransferCounterparty:
    """Each side of a transfer points at the other user."""
    user_id: str
    transfer_id: Optional[str] = None


@dataclass(frozen=True)
class RedeemedBy:
    """A processed redemption points at the cashier who processed it."""
    user_id: str


RelatedRef = Union[AdjustmentOf, EventAward, TransferCounterparty, RedeemedBy]


class Transaction(Base):
    """Points transactions table"""
    __tablename__ = "transactions"
    __table_args__ = (
        CheckConstraint(
            "(CASE WHEN related_transaction_id IS NULL THEN 0 ELSE 1 END)"
            " + (CASE WHEN related_event_id IS NULL THEN 0 ELSE 1 END)"
            " + (CASE WHEN related_user_id IS NULL THEN 0 ELSE 1 END) <= 1",
            name="ck_transactions_single_related_ref",
        ),
    )

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id"), index=True
    )
    type: Mapped[str] = mapped_column(String(20), index=True)
    points: Mapped[int] = mapped_column(Integer)  # positive credits, negative debits
    status: Mapped[str] = mapped_column(String(20), default=TransactionStatus.APPROVED.value)
    needs_verification: Mapped[bool] = mapped_column(Boolean, default=False)
    spent: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2), nullable=True)
    remark: Mapped[str] = mapped_column(Text, default="")

    related_transaction_id: Mapped[Optional[str]] = mapped_column(
        String(36), ForeignKey("transactions.id"), nullable=True
    )
    related_event_id: Mapped[Optional[str]] = mapped_column(
        String(36), ForeignKey("events.id"), nullable=True, index=True
    )
    related_user_id: Mapped[Optional[str]] = mapped_column(
        String(36), ForeignKey("users.id"), nullable=True
    )
    transfer_id: Mapped[Optional[str]] = mapped_column(
        String(36), ForeignKey("transfers.id"), nullable=True
    )

    created_by: Mapped[Optional[str]] = mapped_column(
        String(36), ForeignKey("users.id"), nullable=True
    )
    processed_by: Mapped[Optional[str]] = mapped_column(
        String(36), ForeignKey("users.id"), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, index=True
    )

    user = relationship("User", foreign_keys=[user_id])
    promotion_uses = relationship(
        "PromotionUse", back_populates="transaction", order_by="PromotionUse.id"
    )

    @property
    def transaction_type(self) -> TransactionType:
        return TransactionType(self.type)

    @property
    def is_held(self) -> bool:
        return bool(self.needs_verification)

    @property
    def related(self) -> Optional[RelatedRef]:
        """The related reference as the variant matching this transaction's type."""
        kind = self.transaction_type
        if kind is TransactionType.ADJUSTMENT and self.related_transaction_id:
            return AdjustmentOf(self.related_transaction_id)
        if kind is TransactionType.EVENT and self.related_event_id:
            return EventAward(self.related_event_id)
        if kind is TransactionType.TRANSFER and self.related_user_id:
            return TransferCounterparty(self.related_user_id, self.transfer_id)
        if kind is TransactionType.REDEMPTION and self.related_user_id:
            return RedeemedBy(self.related_user_id)
        return None

    @related.setter
    def related(self, ref: Optional[RelatedRef]) -> None:
        self.related_transaction_id = None
        self.related_event_id = None
        self.related_user_id = None
        if ref is None:
            return
        expected = _RELATED_KINDS[type(ref)]
        if self.type != expected.value:
            raise ValueError(f"{type(ref).__name__} cannot be attached to a {self.type} transaction")
        if isinstance(ref, AdjustmentOf):
            self.related_transaction_id = ref.transaction_id
        elif isinstance(ref, EventAward):
            self.related_event_id = ref.event_id
        elif isinstance(ref, TransferCounterparty):
            self.related_user_id = ref.user_id
            self.transfer_id = ref.transfer_id
        else:
            self.related_user_id = ref.user_id

    @property
    def related_id(self) -> Optional[str]:
        """Flat id of the related entity, for listings and filters"""
        return (
            self.related_transaction_id
            or self.related_event_id
            or self.related_user_id
        )

    @property
    def promotion_ids(self) -> list[str]:
        return [use.promotion_id for use in self.promotion_uses]


_RELATED_KINDS = {
    AdjustmentOf: TransactionType.ADJUSTMENT,
    EventAward: TransactionType.EVENT,
    TransferCounterparty: TransactionType.TRANSFER,
    RedeemedBy: TransactionType.REDEMPTION,
}
