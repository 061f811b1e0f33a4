"""
Transaction routes: purchases, adjustments, listings, holds and redemption processing
"""
from typing import Optional
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from campus_points.database import get_db
from campus_points.models.user import User
from campus_points.models.transaction import TransactionType
from campus_points.schemas.transaction import (
    TransactionCreate,
    TransactionResponse,
    PurchaseResponse,
    TransactionListResponse,
    SuspiciousUpdate,
    SuspiciousResponse,
    ProcessedUpdate,
)
from campus_points.services.errors import NotFoundError, ValidationError
from campus_points.services.suspicion_gate import SuspicionGate
from campus_points.services.transaction_factory import TransactionFactory
from campus_points.services.transaction_query import (
    TransactionFilters,
    get_transaction,
    list_transactions,
)
from campus_points.utils.security import get_cashier_user, get_manager_user

router = APIRouter()


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_transaction(
    data: TransactionCreate,
    current_user: User = Depends(get_cashier_user),
    db: AsyncSession = Depends(get_db),
):
    """Purchase (cashier) or adjustment (manager), chosen by ``type``"""
    factory = TransactionFactory(db)
    kind = data.type.lower()

    if kind == TransactionType.PURCHASE.value:
        if data.spent is None:
            raise ValidationError("spent is required for purchases")
        result = await factory.create_purchase(
            current_user.id, data.utorid, data.spent, data.promotion_ids, data.remark or ""
        )
        transaction = await get_transaction(db, result.transaction_id)
        return PurchaseResponse(
            **TransactionResponse.from_transaction(transaction).model_dump(),
            earned=result.earned,
        )

    if kind == TransactionType.ADJUSTMENT.value:
        if data.amount is None or not data.related_id:
            raise ValidationError("amount and related_id are required for adjustments")
        adjustment = await factory.create_adjustment(
            current_user.id, data.utorid, data.related_id, data.amount, data.remark or ""
        )
        transaction = await get_transaction(db, adjustment.id)
        return TransactionResponse.from_transaction(transaction)

    raise ValidationError("type must be 'purchase' or 'adjustment'")


@router.get("", response_model=TransactionListResponse)
async def get_transactions(
    name: Optional[str] = Query(None, description="owner utorid or name substring"),
    created_by: Optional[str] = Query(None, description="creator utorid"),
    suspicious: Optional[bool] = Query(None),
    promotion_id: Optional[str] = Query(None),
    type: Optional[str] = Query(None),
    related_id: Optional[str] = Query(None),
    amount: Optional[int] = Query(None),
    operator: Optional[str] = Query(None, description="gte, lte, gt, lt or eq"),
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    current_user: User = Depends(get_manager_user),
    db: AsyncSession = Depends(get_db),
):
    """All transactions, filtered (manager)"""
    filters = TransactionFilters(
        name=name,
        created_by=created_by,
        suspicious=suspicious,
        promotion_id=promotion_id,
        type=type,
        related_id=related_id,
        amount=amount,
        operator=operator,
    )
    total, transactions = await list_transactions(db, filters, page=page, limit=limit)
    return TransactionListResponse(
        count=total,
        results=[TransactionResponse.from_transaction(t) for t in transactions],
        page=page,
        limit=limit,
    )


@router.get("/{transaction_id}", response_model=TransactionResponse)
async def get_transaction_detail(
    transaction_id: str,
    current_user: User = Depends(get_manager_user),
    db: AsyncSession = Depends(get_db),
):
    transaction = await get_transaction(db, transaction_id)
    if transaction is None:
        raise NotFoundError("Transaction not found", "TRANSACTION_NOT_FOUND")
    return TransactionResponse.from_transaction(transaction)


@router.patch("/{transaction_id}/suspicious", response_model=SuspiciousResponse)
async def set_transaction_suspicious(
    transaction_id: str,
    data: SuspiciousUpdate,
    current_user: User = Depends(get_manager_user),
    db: AsyncSession = Depends(get_db),
):
    """Hold or clear a transaction's points (manager)"""
    result = await SuspicionGate(db).set_suspicious(current_user, transaction_id, data.suspicious)
    return SuspiciousResponse(
        transaction_id=result.transaction_id,
        suspicious=result.suspicious,
        new_balance=result.new_balance,
    )


@router.patch("/{transaction_id}/processed", response_model=TransactionResponse)
async def process_transaction(
    transaction_id: str,
    data: ProcessedUpdate,
    current_user: User = Depends(get_cashier_user),
    db: AsyncSession = Depends(get_db),
):
    """Complete a pending redemption (cashier)"""
    if not data.processed:
        raise ValidationError("processed can only be set to true")
    transaction = await TransactionFactory(db).process_redemption(current_user.id, transaction_id)
    transaction = await get_transaction(db, transaction.id)
    return TransactionResponse.from_transaction(transaction)
