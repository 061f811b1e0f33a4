"""
Ledger services
"""
from campus_points.services.points_ledger import PointsLedger
from campus_points.services.promotion_evaluator import PromotionEvaluator, promotion_bonus
from campus_points.services.promotion_service import PromotionService
from campus_points.services.suspicion_gate import SuspicionGate
from campus_points.services.transaction_factory import TransactionFactory
from campus_points.services.event_allocator import EventPointsAllocator

__all__ = [
    "PointsLedger",
    "PromotionEvaluator",
    "promotion_bonus",
    "PromotionService",
    "SuspicionGate",
    "TransactionFactory",
    "EventPointsAllocator",
]
