"""
Transfer model
"""
import uuid
from datetime import datetime
from sqlalchemy import String, Integer, DateTime, ForeignKey
from sqlalchemy.orm import Mapped, mapped_column
from campus_points.database import Base


class Transfer(Base):
    """Point transfers; each row pairs with two mirrored transactions"""
    __tablename__ = "transfers"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    sender_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id"), index=True
    )
    receiver_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id"), index=True
    )
    points: Mapped[int] = mapped_column(Integer)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, index=True
    )
