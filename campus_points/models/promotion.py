"""
Promotion models
"""
import uuid
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional
from sqlalchemy import (
    String, Integer, Boolean, DateTime, ForeignKey, Numeric, Float, Text, Index, text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship
from campus_points.database import Base


class PromotionType(str, Enum):
    """Promotion types"""
    AUTOMATIC = "automatic"    # reapplies to every qualifying purchase
    ONE_TIME = "one-time"      # at most once per user

    @classmethod
    def parse(cls, value: str) -> "PromotionType":
        """Accept API spellings plus the legacy ``period`` seed name."""
        normalized = value.strip().lower().replace("_", "-")
        if normalized == "period":
            return cls.AUTOMATIC
        return cls(normalized)


class Promotion(Base):
    """Promotions table"""
    __tablename__ = "promotions"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    name: Mapped[str] = mapped_column(String(100))
    description: Mapped[str] = mapped_column(Text, default="")
    type: Mapped[str] = mapped_column(String(20))
    start_time: Mapped[datetime] = mapped_column(DateTime, index=True)
    end_time: Mapped[datetime] = mapped_column(DateTime, index=True)
    min_spend: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2), nullable=True)
    rate: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    points: Mapped[int] = mapped_column(Integer, default=0)
    manager_id: Mapped[Optional[str]] = mapped_column(
        String(36), ForeignKey("users.id"), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    uses = relationship(
        "PromotionUse", back_populates="promotion", cascade="all, delete-orphan", passive_deletes=True
    )

    @property
    def promotion_type(self) -> PromotionType:
        return PromotionType.parse(self.type)

    def is_active(self, now: datetime) -> bool:
        return self.start_time <= now <= self.end_time

    def has_started(self, now: datetime) -> bool:
        return self.start_time <= now

    def has_ended(self, now: datetime) -> bool:
        return self.end_time <= now


class PromotionUse(Base):
    """Promotion applications; a one-time promotion appears once per user"""
    __tablename__ = "promotion_uses"
    __table_args__ = (
        Index(
            "uq_promotion_uses_one_time",
            "user_id",
            "promotion_id",
            unique=True,
            postgresql_where=text("is_one_time"),
            sqlite_where=text("is_one_time"),
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id"), index=True
    )
    promotion_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("promotions.id", ondelete="CASCADE"), index=True
    )
    transaction_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("transactions.id"), index=True
    )
    is_one_time: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    promotion = relationship("Promotion", back_populates="uses")
    transaction = relationship("Transaction", back_populates="promotion_uses")
