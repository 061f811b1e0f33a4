"""
Database models
"""
from campus_points.models.user import User, Role
from campus_points.models.transaction import Transaction, TransactionType, TransactionStatus
from campus_points.models.promotion import Promotion, PromotionType, PromotionUse
from campus_points.models.event import Event, EventGuest, EventOrganizer
from campus_points.models.transfer import Transfer

__all__ = [
    "User",
    "Role",
    "Transaction",
    "TransactionType",
    "TransactionStatus",
    "Promotion",
    "PromotionType",
    "PromotionUse",
    "Event",
    "EventGuest",
    "EventOrganizer",
    "Transfer",
]
