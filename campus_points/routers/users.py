"""
User-scoped routes: redemption requests, transfers, own history, usable promotions
"""
from typing import Optional
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from campus_points.config import get_settings
from campus_points.database import get_db
from campus_points.models.user import User, Role
from campus_points.models.transaction import TransactionType
from campus_points.schemas.promotion import PromotionResponse, PromotionListResponse
from campus_points.schemas.transaction import (
    RedemptionCreate,
    TransferCreate,
    TransferResponse,
    TransactionResponse,
    TransactionListResponse,
)
from campus_points.services.errors import PermissionDeniedError, ValidationError
from campus_points.services.promotion_service import PromotionService
from campus_points.services.transaction_factory import TransactionFactory
from campus_points.services.transaction_query import (
    TransactionFilters,
    get_transaction,
    list_transactions,
)
from campus_points.utils.rate_limiter import RateLimiter
from campus_points.utils.security import get_current_user

settings = get_settings()
router = APIRouter()

redemption_limiter = RateLimiter(
    "redemption",
    times=settings.redemption_rate_limit,
    seconds=settings.redemption_rate_window_seconds,
)
transfer_limiter = RateLimiter(
    "transfer",
    times=settings.transfer_rate_limit,
    seconds=settings.transfer_rate_window_seconds,
)


@router.post(
    "/me/transactions",
    status_code=status.HTTP_201_CREATED,
    response_model=TransactionResponse,
    dependencies=[Depends(redemption_limiter)],
)
async def request_redemption(
    data: RedemptionCreate,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Ask a cashier to redeem points"""
    if data.type.lower() != TransactionType.REDEMPTION.value:
        raise ValidationError("type must be 'redemption'")
    transaction = await TransactionFactory(db).create_redemption_request(
        current_user.id, data.amount, data.remark or ""
    )
    transaction = await get_transaction(db, transaction.id)
    return TransactionResponse.from_transaction(transaction)


@router.get("/me/transactions", response_model=TransactionListResponse)
async def get_my_transactions(
    type: Optional[str] = Query(None),
    related_id: Optional[str] = Query(None),
    promotion_id: Optional[str] = Query(None),
    amount: Optional[int] = Query(None),
    operator: Optional[str] = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """The caller's own transactions"""
    filters = TransactionFilters(
        user_id=current_user.id,
        type=type,
        related_id=related_id,
        promotion_id=promotion_id,
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


@router.post(
    "/{user_id}/transactions",
    status_code=status.HTTP_201_CREATED,
    response_model=TransferResponse,
    dependencies=[Depends(transfer_limiter)],
)
async def transfer_points(
    user_id: str,
    data: TransferCreate,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Send points from the caller to ``user_id``"""
    if data.type.lower() != TransactionType.TRANSFER.value:
        raise ValidationError("type must be 'transfer'")
    result = await TransactionFactory(db).create_transfer(
        current_user.id, user_id, data.amount, data.remark or ""
    )
    receiver = await db.get(User, user_id)
    return TransferResponse(
        transfer_id=result.transfer_id,
        sender_transaction_id=result.sender_transaction_id,
        receiver_transaction_id=result.receiver_transaction_id,
        sender=current_user.utorid,
        recipient=receiver.utorid,
        amount=data.amount,
        remark=data.remark or "",
    )


@router.get("/{user_id}/promotions", response_model=PromotionListResponse)
async def get_usable_promotions(
    user_id: str,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """One-time promotions the user can still apply (self, or cashier and above)"""
    if user_id != current_user.id and not current_user.has_clearance(Role.CASHIER):
        raise PermissionDeniedError("Cannot view another user's promotions")
    promotions = await PromotionService(db).available_one_time(user_id)
    return PromotionListResponse(
        count=len(promotions),
        results=[PromotionResponse.model_validate(p) for p in promotions],
    )
