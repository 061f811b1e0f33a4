"""
Transaction listings with filters and pagination
"""
from dataclasses import dataclass
from typing import Optional
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from campus_points.models.user import User
from campus_points.models.transaction import Transaction, TransactionType
from campus_points.models.promotion import PromotionUse
from campus_points.services.errors import ValidationError

AMOUNT_OPERATORS = {
    "gte": lambda column, value: column >= value,
    "lte": lambda column, value: column <= value,
    "gt": lambda column, value: column > value,
    "lt": lambda column, value: column < value,
    "eq": lambda column, value: column == value,
}

_RELATED_COLUMNS = {
    TransactionType.ADJUSTMENT: Transaction.related_transaction_id,
    TransactionType.EVENT: Transaction.related_event_id,
    TransactionType.TRANSFER: Transaction.related_user_id,
    TransactionType.REDEMPTION: Transaction.related_user_id,
}


@dataclass
class TransactionFilters:
    """Listing filters; None means no restriction"""
    name: Optional[str] = None
    created_by: Optional[str] = None
    suspicious: Optional[bool] = None
    promotion_id: Optional[str] = None
    type: Optional[str] = None
    related_id: Optional[str] = None
    amount: Optional[int] = None
    operator: Optional[str] = None
    user_id: Optional[str] = None


def _apply_filters(query, filters: TransactionFilters):
    """Apply the same filters to the page query and the count query"""
    if filters.user_id:
        query = query.where(Transaction.user_id == filters.user_id)

    if filters.name:
        owners = select(User.id).where(
            (User.utorid.ilike(f"%{filters.name}%")) | (User.name.ilike(f"%{filters.name}%"))
        )
        query = query.where(Transaction.user_id.in_(owners))

    if filters.created_by:
        creators = select(User.id).where(User.utorid == filters.created_by)
        query = query.where(Transaction.created_by.in_(creators))

    if filters.suspicious is not None:
        query = query.where(Transaction.needs_verification.is_(filters.suspicious))

    if filters.promotion_id:
        used = select(PromotionUse.transaction_id).where(
            PromotionUse.promotion_id == filters.promotion_id
        )
        query = query.where(Transaction.id.in_(used))

    kind = None
    if filters.type:
        try:
            kind = TransactionType(filters.type.lower())
        except ValueError:
            raise ValidationError(f"Unknown transaction type: {filters.type}")
        query = query.where(Transaction.type == kind.value)

    if filters.related_id:
        if kind is None or kind not in _RELATED_COLUMNS:
            raise ValidationError("relatedId requires a type that has related records")
        query = query.where(_RELATED_COLUMNS[kind] == filters.related_id)

    if filters.amount is not None:
        compare = AMOUNT_OPERATORS.get(filters.operator or "")
        if compare is None:
            raise ValidationError("operator must be one of gte, lte, gt, lt, eq")
        query = query.where(compare(Transaction.points, filters.amount))
    elif filters.operator:
        raise ValidationError("operator requires amount")

    return query


async def list_transactions(
    db: AsyncSession,
    filters: TransactionFilters,
    page: int = 1,
    limit: int = 10,
) -> tuple[int, list[Transaction]]:
    """
    One page of transactions, newest first

    Returns:
        (total matching count, transactions on this page)
    """
    if page < 1 or limit < 1:
        raise ValidationError("page and limit must be positive integers")

    count_result = await db.execute(
        _apply_filters(select(func.count(Transaction.id)), filters)
    )
    total = count_result.scalar() or 0

    result = await db.execute(
        _apply_filters(select(Transaction), filters)
        .options(selectinload(Transaction.user), selectinload(Transaction.promotion_uses))
        .order_by(Transaction.created_at.desc(), Transaction.id)
        .offset((page - 1) * limit)
        .limit(limit)
    )
    return total, list(result.scalars().all())


async def get_transaction(db: AsyncSession, transaction_id: str) -> Optional[Transaction]:
    result = await db.execute(
        select(Transaction)
        .where(Transaction.id == transaction_id)
        .options(selectinload(Transaction.user), selectinload(Transaction.promotion_uses))
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()
