"""
Event routes: creation, point awards, budget and membership
"""
from fastapi import APIRouter, Depends, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from campus_points.database import get_db
from campus_points.models.user import User
from campus_points.models.event import Event
from campus_points.models.transaction import TransactionType
from campus_points.schemas.event import (
    EventCreate,
    EventResponse,
    EventAwardCreate,
    EventAwardResponse,
    EventPointsUpdate,
    EventPointsResponse,
    EventMemberCreate,
    EventMemberResponse,
)
from campus_points.services.errors import ValidationError
from campus_points.services.event_allocator import EventPointsAllocator
from campus_points.utils.security import get_current_user, get_manager_user

router = APIRouter()


@router.post("", status_code=status.HTTP_201_CREATED, response_model=EventResponse)
async def create_event(
    data: EventCreate,
    current_user: User = Depends(get_manager_user),
    db: AsyncSession = Depends(get_db),
):
    event = await EventPointsAllocator(db).create_event(
        current_user,
        data.name,
        data.start_time,
        data.end_time,
        points=data.points,
        description=data.description,
        location=data.location,
        capacity=data.capacity,
    )
    return EventResponse.model_validate(event)


@router.post(
    "/{event_id}/transactions",
    status_code=status.HTTP_201_CREATED,
    response_model=EventAwardResponse,
)
async def award_event_points(
    event_id: str,
    data: EventAwardCreate,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Award points to one guest, or to all guests when utorid is omitted"""
    if data.type.lower() != TransactionType.EVENT.value:
        raise ValidationError("type must be 'event'")
    allocator = EventPointsAllocator(db)
    transactions = await allocator.award_points(
        event_id, current_user.id, data.amount, utorid=data.utorid, remark=data.remark
    )
    event = await db.get(Event, event_id)
    return EventAwardResponse(
        event_id=event_id,
        transaction_ids=[t.id for t in transactions],
        awarded=data.amount * len(transactions),
        points_remain=event.points_remain,
    )


@router.patch("/{event_id}/points", response_model=EventPointsResponse)
async def set_event_points(
    event_id: str,
    data: EventPointsUpdate,
    current_user: User = Depends(get_manager_user),
    db: AsyncSession = Depends(get_db),
):
    event = await EventPointsAllocator(db).set_total_points(current_user, event_id, data.points)
    return EventPointsResponse.model_validate(event)


@router.post(
    "/{event_id}/guests",
    status_code=status.HTTP_201_CREATED,
    response_model=EventMemberResponse,
)
async def add_event_guest(
    event_id: str,
    data: EventMemberCreate,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    user = await EventPointsAllocator(db).add_guest(current_user, event_id, data.utorid)
    return EventMemberResponse(event_id=event_id, user_id=user.id, utorid=user.utorid, name=user.name)


@router.post(
    "/{event_id}/guests/me",
    status_code=status.HTTP_201_CREATED,
    response_model=EventMemberResponse,
)
async def join_event(
    event_id: str,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """RSVP the caller"""
    user = await EventPointsAllocator(db).join(current_user, event_id)
    return EventMemberResponse(event_id=event_id, user_id=user.id, utorid=user.utorid, name=user.name)


@router.delete("/{event_id}/guests/me", status_code=status.HTTP_204_NO_CONTENT)
async def leave_event(
    event_id: str,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    await EventPointsAllocator(db).leave(current_user, event_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.delete("/{event_id}/guests/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_event_guest(
    event_id: str,
    user_id: str,
    current_user: User = Depends(get_manager_user),
    db: AsyncSession = Depends(get_db),
):
    await EventPointsAllocator(db).remove_guest(current_user, event_id, user_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post(
    "/{event_id}/organizers",
    status_code=status.HTTP_201_CREATED,
    response_model=EventMemberResponse,
)
async def add_event_organizer(
    event_id: str,
    data: EventMemberCreate,
    current_user: User = Depends(get_manager_user),
    db: AsyncSession = Depends(get_db),
):
    user = await EventPointsAllocator(db).add_organizer(current_user, event_id, data.utorid)
    return EventMemberResponse(event_id=event_id, user_id=user.id, utorid=user.utorid, name=user.name)


@router.delete("/{event_id}/organizers/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_event_organizer(
    event_id: str,
    user_id: str,
    current_user: User = Depends(get_manager_user),
    db: AsyncSession = Depends(get_db),
):
    await EventPointsAllocator(db).remove_organizer(current_user, event_id, user_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
