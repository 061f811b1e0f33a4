"""
Event models
"""
import uuid
from datetime import datetime
from typing import Optional
from sqlalchemy import String, Integer, DateTime, ForeignKey, Text, UniqueConstraint, CheckConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship
from campus_points.database import Base


class Event(Base):
    """Events table; total_points is the budget organizers award from"""
    __tablename__ = "events"
    __table_args__ = (
        CheckConstraint("points_remain >= 0", name="ck_events_points_remain_non_negative"),
        CheckConstraint("points_remain <= total_points", name="ck_events_points_remain_within_total"),
    )

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    name: Mapped[str] = mapped_column(String(100))
    description: Mapped[str] = mapped_column(Text, default="")
    location: Mapped[str] = mapped_column(String(200), default="")
    start_time: Mapped[datetime] = mapped_column(DateTime)
    end_time: Mapped[datetime] = mapped_column(DateTime)
    capacity: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    total_points: Mapped[int] = mapped_column(Integer, default=0)
    points_remain: Mapped[int] = mapped_column(Integer, default=0)
    points_awarded: Mapped[int] = mapped_column(Integer, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    guests = relationship(
        "EventGuest", back_populates="event", cascade="all, delete-orphan"
    )
    organizers = relationship(
        "EventOrganizer", back_populates="event", cascade="all, delete-orphan"
    )

    def has_ended(self, now: datetime) -> bool:
        return self.end_time <= now


class EventGuest(Base):
    """Event guest list"""
    __tablename__ = "event_guests"
    __table_args__ = (UniqueConstraint("event_id", "user_id", name="uq_event_guests_event_user"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    event_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("events.id", ondelete="CASCADE"), index=True
    )
    user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id"), index=True
    )
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    event = relationship("Event", back_populates="guests")
    user = relationship("User")


class EventOrganizer(Base):
    """Event organizers"""
    __tablename__ = "event_organizers"
    __table_args__ = (UniqueConstraint("event_id", "user_id", name="uq_event_organizers_event_user"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    event_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("events.id", ondelete="CASCADE"), index=True
    )
    user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id"), index=True
    )
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    event = relationship("Event", back_populates="organizers")
    user = relationship("User")
