"""Service layer components."""

from task_market_service.services.bid_registry import BidRegistry
from task_market_service.services.fulfillment_tracker import FulfillmentTracker
from task_market_service.services.payment_orchestrator import PaymentOrchestrator
from task_market_service.services.payout_engine import PayoutEngine
from task_market_service.services.review_gate import ReviewGate
from task_market_service.services.task_lifecycle import TaskLifecycleController
from task_market_service.services.token_validator import TokenValidator

__all__ = [
    "BidRegistry",
    "FulfillmentTracker",
    "PaymentOrchestrator",
    "PayoutEngine",
    "ReviewGate",
    "TaskLifecycleController",
    "TokenValidator",
]
