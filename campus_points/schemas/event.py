"""
Event schemas
"""
from datetime import datetime
from pydantic import BaseModel
from typing import Optional, List


class EventCreate(BaseModel):
    """Manager-created event; points is the award budget"""
    name: str
    description: str = ""
    location: str = ""
    start_time: datetime
    end_time: datetime
    points: int = 0
    capacity: Optional[int] = None


class EventResponse(BaseModel):
    id: str
    name: str
    description: str
    location: str
    start_time: datetime
    end_time: datetime
    capacity: Optional[int] = None
    total_points: int
    points_remain: int
    points_awarded: int

    class Config:
        from_attributes = True


class EventAwardCreate(BaseModel):
    """Award points to one guest (utorid) or to every guest"""
    type: str = "event"
    amount: int
    utorid: Optional[str] = None
    remark: Optional[str] = None


class EventAwardResponse(BaseModel):
    event_id: str
    transaction_ids: List[str]
    awarded: int
    points_remain: int


class EventPointsUpdate(BaseModel):
    points: int


class EventPointsResponse(BaseModel):
    id: str
    name: str
    total_points: int
    points_remain: int
    points_awarded: int

    class Config:
        from_attributes = True


class EventMemberCreate(BaseModel):
    """Guest or organizer to add"""
    utorid: str


class EventMemberResponse(BaseModel):
    event_id: str
    user_id: str
    utorid: str
    name: Optional[str] = None
