"""Application state management."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from task_market_service.clients.identity_client import IdentityClient
    from task_market_service.clients.notification_client import NotificationClient
    from task_market_service.clients.payment_gateway_client import PaymentGatewayClient
    from task_market_service.clients.payout_gateway_client import PayoutGatewayClient
    from task_market_service.clients.platform_signer import PlatformSigner
    from task_market_service.services.bid_registry import BidRegistry
    from task_market_service.services.change_feed import ChangeFeed
    from task_market_service.services.fulfillment_tracker import FulfillmentTracker
    from task_market_service.services.market_store import MarketStore
    from task_market_service.services.payment_orchestrator import PaymentOrchestrator
    from task_market_service.services.payout_engine import PayoutEngine
    from task_market_service.services.profiles import ProfileManager
    from task_market_service.services.review_gate import ReviewGate
    from task_market_service.services.task_lifecycle import TaskLifecycleController


@dataclass
class AppState:
    """
    Runtime application state.

    Services hold references to the client objects stored here, so tests
    replace client methods in place rather than swapping the clients.
    """

    start_time: datetime = field(default_factory=lambda: datetime.now(UTC))
    store: MarketStore | None = None
    change_feed: ChangeFeed | None = None
    identity_client: IdentityClient | None = None
    payment_gateway_client: PaymentGatewayClient | None = None
    payout_gateway_client: PayoutGatewayClient | None = None
    notification_client: NotificationClient | None = None
    platform_signer: PlatformSigner | None = None
    lifecycle: TaskLifecycleController | None = None
    bid_registry: BidRegistry | None = None
    fulfillment_tracker: FulfillmentTracker | None = None
    payment_orchestrator: PaymentOrchestrator | None = None
    payout_engine: PayoutEngine | None = None
    review_gate: ReviewGate | None = None
    profile_manager: ProfileManager | None = None

    @property
    def uptime_seconds(self) -> float:
        """Calculate uptime in seconds."""
        return (datetime.now(UTC) - self.start_time).total_seconds()

    @property
    def started_at(self) -> str:
        """ISO format start time."""
        return self.start_time.isoformat(timespec="seconds").replace("+00:00", "Z")


# Global application state container
_state_container: dict[str, AppState | None] = {"app_state": None}


def get_app_state() -> AppState:
    """Get the current application state."""
    app_state = _state_container["app_state"]
    if app_state is None:
        msg = "Application state not initialized"
        raise RuntimeError(msg)
    return app_state


def init_app_state() -> AppState:
    """Initialize application state. Called during startup."""
    app_state = AppState()
    _state_container["app_state"] = app_state
    return app_state


def reset_app_state() -> None:
    """Reset application state. Used in testing."""
    _state_container["app_state"] = None
