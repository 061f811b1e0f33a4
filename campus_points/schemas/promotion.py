"""
Promotion schemas
"""
from pydantic import BaseModel
from datetime import datetime
from decimal import Decimal
from typing import Optional, List


class PromotionCreate(BaseModel):
    """New promotion"""
    name: str
    description: Optional[str] = ""
    type: str  # automatic | one-time (period accepted)
    start_time: datetime
    end_time: datetime
    min_spending: Optional[Decimal] = None
    rate: Optional[float] = None
    points: Optional[int] = None


class PromotionUpdate(BaseModel):
    """Partial update; omitted fields stay as they are"""
    name: Optional[str] = None
    description: Optional[str] = None
    type: Optional[str] = None
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    min_spending: Optional[Decimal] = None
    rate: Optional[float] = None
    points: Optional[int] = None

    def to_changes(self) -> dict:
        changes = self.model_dump(exclude_unset=True)
        if "min_spending" in changes:
            changes["min_spend"] = changes.pop("min_spending")
        return changes


class PromotionResponse(BaseModel):
    id: str
    name: str
    description: str
    type: str
    start_time: datetime
    end_time: datetime
    min_spend: Optional[Decimal]
    rate: Optional[float]
    points: int

    class Config:
        from_attributes = True


class PromotionListResponse(BaseModel):
    count: int
    results: List[PromotionResponse]
