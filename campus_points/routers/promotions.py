"""
Promotion routes
"""
from fastapi import APIRouter, Depends, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from campus_points.database import get_db
from campus_points.models.user import User, Role
from campus_points.schemas.promotion import (
    PromotionCreate,
    PromotionUpdate,
    PromotionResponse,
    PromotionListResponse,
)
from campus_points.services.errors import NotFoundError
from campus_points.services.promotion_service import PromotionService
from campus_points.utils.security import get_current_user, get_manager_user

router = APIRouter()


@router.post("", status_code=status.HTTP_201_CREATED, response_model=PromotionResponse)
async def create_promotion(
    data: PromotionCreate,
    current_user: User = Depends(get_manager_user),
    db: AsyncSession = Depends(get_db),
):
    promotion = await PromotionService(db).create(
        current_user,
        name=data.name,
        type=data.type,
        start_time=data.start_time,
        end_time=data.end_time,
        description=data.description or "",
        min_spend=data.min_spending,
        rate=data.rate,
        points=data.points,
    )
    return PromotionResponse.model_validate(promotion)


@router.get("", response_model=PromotionListResponse)
async def get_promotions(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Every promotion for managers, active ones for everyone else"""
    promotions = await PromotionService(db).list_visible(current_user)
    return PromotionListResponse(
        count=len(promotions),
        results=[PromotionResponse.model_validate(p) for p in promotions],
    )


@router.get("/{promotion_id}", response_model=PromotionResponse)
async def get_promotion(
    promotion_id: str,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    service = PromotionService(db)
    promotion = await service.get(promotion_id)
    if not current_user.has_clearance(Role.MANAGER) and not promotion.is_active(service.now):
        raise NotFoundError("Promotion not found", "PROMOTION_NOT_FOUND")
    return PromotionResponse.model_validate(promotion)


@router.patch("/{promotion_id}", response_model=PromotionResponse)
async def update_promotion(
    promotion_id: str,
    data: PromotionUpdate,
    current_user: User = Depends(get_manager_user),
    db: AsyncSession = Depends(get_db),
):
    promotion = await PromotionService(db).update(current_user, promotion_id, data.to_changes())
    return PromotionResponse.model_validate(promotion)


@router.delete("/{promotion_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_promotion(
    promotion_id: str,
    current_user: User = Depends(get_manager_user),
    db: AsyncSession = Depends(get_db),
):
    await PromotionService(db).delete(current_user, promotion_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
