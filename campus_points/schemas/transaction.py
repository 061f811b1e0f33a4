"""
Transaction schemas
"""
from pydantic import BaseModel
from datetime import datetime
from decimal import Decimal
from typing import Optional, List

from campus_points.models.transaction import Transaction


class TransactionCreate(BaseModel):
    """Cashier purchase or manager adjustment"""
    type: str
    utorid: str
    spent: Optional[Decimal] = None  # purchase only
    amount: Optional[int] = None  # adjustment only, signed
    related_id: Optional[str] = None  # adjustment only
    promotion_ids: List[str] = []
    remark: Optional[str] = ""


class RedemptionCreate(BaseModel):
    """Redemption request by the account owner"""
    type: str = "redemption"
    amount: int
    remark: Optional[str] = ""


class TransferCreate(BaseModel):
    """Points transfer to another user"""
    type: str = "transfer"
    amount: int
    remark: Optional[str] = ""


class SuspiciousUpdate(BaseModel):
    suspicious: bool


class ProcessedUpdate(BaseModel):
    processed: bool


class TransactionResponse(BaseModel):
    """A single ledger transaction"""
    id: str
    utorid: Optional[str] = None
    type: str
    amount: int
    spent: Optional[Decimal] = None
    status: str
    suspicious: bool
    related_id: Optional[str] = None
    promotion_ids: List[str] = []
    remark: str = ""
    created_by: Optional[str] = None
    processed_by: Optional[str] = None
    created_at: datetime

    @classmethod
    def from_transaction(cls, transaction: Transaction) -> "TransactionResponse":
        """Build from a transaction loaded with its user and promotion uses"""
        return cls(
            id=transaction.id,
            utorid=transaction.user.utorid if transaction.user else None,
            type=transaction.type,
            amount=transaction.points,
            spent=transaction.spent,
            status=transaction.status,
            suspicious=transaction.needs_verification,
            related_id=transaction.related_id,
            promotion_ids=transaction.promotion_ids,
            remark=transaction.remark or "",
            created_by=transaction.created_by,
            processed_by=transaction.processed_by,
            created_at=transaction.created_at,
        )


class PurchaseResponse(TransactionResponse):
    """Purchase plus the points credited right away (0 while held)"""
    earned: int


class TransferResponse(BaseModel):
    transfer_id: str
    sender_transaction_id: str
    receiver_transaction_id: str
    sender: str
    recipient: str
    amount: int
    remark: str = ""


class SuspiciousResponse(BaseModel):
    transaction_id: str
    suspicious: bool
    new_balance: int


class TransactionListResponse(BaseModel):
    """Transaction page"""
    count: int
    results: List[TransactionResponse]
    page: int
    limit: int
