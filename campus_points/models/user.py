"""
User model
"""
import uuid
from datetime import datetime
from enum import Enum
from sqlalchemy import String, Boolean, Integer, DateTime
from sqlalchemy.orm import Mapped, mapped_column
from campus_points.database import Base


class Role(str, Enum):
    """
    Role tiers, ordered REGULAR < CASHIER < MANAGER < SUPERUSER.

    Comparisons use the tier, not the string value, so permission checks can
    be written as ``user.role >= Role.MANAGER``.
    """
    REGULAR = "regular"
    CASHIER = "cashier"
    MANAGER = "manager"
    SUPERUSER = "superuser"

    @property
    def level(self) -> int:
        return _ROLE_LEVELS[self]

    def __lt__(self, other):
        if not isinstance(other, Role):
            return NotImplemented
        return self.level < other.level

    def __le__(self, other):
        if not isinstance(other, Role):
            return NotImplemented
        return self.level <= other.level

    def __gt__(self, other):
        if not isinstance(other, Role):
            return NotImplemented
        return self.level > other.level

    def __ge__(self, other):
        if not isinstance(other, Role):
            return NotImplemented
        return self.level >= other.level


_ROLE_LEVELS = {
    Role.REGULAR: 1,
    Role.CASHIER: 2,
    Role.MANAGER: 3,
    Role.SUPERUSER: 4,
}


class User(Base):
    """Users table"""
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    utorid: Mapped[str] = mapped_column(String(8), unique=True, index=True)
    name: Mapped[str] = mapped_column(String(100), nullable=True)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=True)
    role: Mapped[str] = mapped_column(String(20), default=Role.REGULAR.value)
    points_balance: Mapped[int] = mapped_column(Integer, default=0)
    verified_student: Mapped[bool] = mapped_column(Boolean, default=False)
    is_suspicious: Mapped[bool] = mapped_column(Boolean, default=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    @property
    def role_tier(self) -> Role:
        """Role as an enum member, whatever the column returned"""
        return Role(self.role)

    def has_clearance(self, role: Role) -> bool:
        return self.role_tier >= role
