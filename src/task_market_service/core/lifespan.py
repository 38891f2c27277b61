"""Application lifecycle management."""

from __future__ import annotations

from contextlib import asynccontextmanager
from pathlib import Path
from typing import TYPE_CHECKING

from task_market_service.clients.identity_client import IdentityClient
from task_market_service.clients.notification_client import NotificationClient
from task_market_service.clients.payment_gateway_client import PaymentGatewayClient
from task_market_service.clients.payout_gateway_client import PayoutGatewayClient
from task_market_service.clients.platform_signer import PlatformSigner, ensure_private_key
from task_market_service.config import get_settings
from task_market_service.core.state import init_app_state
from task_market_service.logging import get_logger, setup_logging
from task_market_service.services.bid_registry import BidRegistry
from task_market_service.services.change_feed import ChangeFeed
from task_market_service.services.fulfillment_tracker import FulfillmentTracker
from task_market_service.services.market_store import MarketStore
from task_market_service.services.notifier import Notifier
from task_market_service.services.payment_orchestrator import PaymentOrchestrator
from task_market_service.services.payout_engine import PayoutEngine
from task_market_service.services.profiles import ProfileManager
from task_market_service.services.review_gate import ReviewGate
from task_market_service.services.task_lifecycle import TaskLifecycleController
from task_market_service.services.token_validator import TokenValidator

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from fastapi import FastAPI


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
    """Manage application lifecycle."""
    # === STARTUP ===
    settings = get_settings()

    setup_logging(settings.logging.level, settings.service.name, settings.logging.directory)
    logger = get_logger(__name__)

    state = init_app_state()

    db_path = settings.database.path
    platform_agent_id = settings.platform.agent_id

    # Platform key lives next to the database unless configured
    private_key_path = settings.platform.private_key_path
    if not private_key_path:
        private_key_path = str(Path(db_path).parent / "platform.pem")
    ensure_private_key(private_key_path)

    platform_signer = PlatformSigner(
        platform_agent_id=platform_agent_id,
        private_key_path=private_key_path,
    )
    state.platform_signer = platform_signer

    identity_client = IdentityClient(
        base_url=settings.identity.base_url,
        verify_jws_path=settings.identity.verify_jws_path,
        timeout_seconds=settings.identity.timeout_seconds,
    )
    state.identity_client = identity_client

    payment_gateway_client = PaymentGatewayClient(
        base_url=settings.payment_gateway.base_url,
        checkout_path=settings.payment_gateway.checkout_path,
        timeout_seconds=settings.payment_gateway.timeout_seconds,
    )
    state.payment_gateway_client = payment_gateway_client

    payout_gateway_client = PayoutGatewayClient(
        base_url=settings.payout_gateway.base_url,
        payout_path=settings.payout_gateway.payout_path,
        timeout_seconds=settings.payout_gateway.timeout_seconds,
        platform_signer=platform_signer,
    )
    state.payout_gateway_client = payout_gateway_client

    notification_client = NotificationClient(
        base_url=settings.notifications.base_url,
        send_path=settings.notifications.send_path,
        timeout_seconds=settings.notifications.timeout_seconds,
    )
    state.notification_client = notification_client

    change_feed = ChangeFeed(max_queue_size=settings.streams.max_queue_size)
    state.change_feed = change_feed
    store = MarketStore(db_path=db_path, change_feed=change_feed)
    state.store = store

    token_validator = TokenValidator(identity_client=identity_client)
    notifier = Notifier(notification_client=notification_client)

    fulfillment_tracker = FulfillmentTracker(
        store,
        token_validator,
        notifier,
        max_message_length=settings.limits.max_message_length,
        max_image_url_length=settings.limits.max_image_url_length,
        progress_throttle_seconds=settings.notifications.progress_throttle_seconds,
    )
    state.fulfillment_tracker = fulfillment_tracker

    payout_engine = PayoutEngine(
        store,
        payout_gateway_client,
        notifier,
        token_validator,
        platform_agent_id=platform_agent_id,
        currency=settings.fees.currency,
        default_fee_percent=settings.fees.default_platform_fee_percent,
    )
    state.payout_engine = payout_engine

    payment_orchestrator = PaymentOrchestrator(
        store,
        payment_gateway_client,
        token_validator,
        payout_engine,
        service_fee=settings.fees.service_fee,
        currency=settings.fees.currency,
        gateway_agent_id=settings.payment_gateway.agent_id,
        platform_agent_id=platform_agent_id,
        reconcile_backoff_seconds=settings.payments.reconcile_backoff_seconds,
        return_url_template=settings.payments.return_url_template,
        cancel_url_template=settings.payments.cancel_url_template,
    )
    state.payment_orchestrator = payment_orchestrator

    bid_registry = BidRegistry(
        store,
        token_validator,
        notifier,
        change_feed,
        max_message_length=settings.limits.max_message_length,
    )
    state.bid_registry = bid_registry

    state.review_gate = ReviewGate(
        store,
        token_validator,
        max_comment_length=settings.limits.max_comment_length,
    )
    state.profile_manager = ProfileManager(
        store,
        token_validator,
        platform_agent_id=platform_agent_id,
    )

    state.lifecycle = TaskLifecycleController(
        store,
        token_validator,
        notifier,
        bid_registry,
        fulfillment_tracker,
        payment_orchestrator,
        payout_engine,
        platform_agent_id=platform_agent_id,
        checkout_on_accept=settings.payments.checkout_on_accept,
        max_title_length=settings.limits.max_title_length,
        max_description_length=settings.limits.max_description_length,
    )

    logger.info(
        "Service starting",
        extra={
            "service": settings.service.name,
            "version": settings.service.version,
            "port": settings.server.port,
            "db_path": db_path,
            "identity_base_url": settings.identity.base_url,
            "payment_gateway_base_url": settings.payment_gateway.base_url,
            "payout_gateway_base_url": settings.payout_gateway.base_url,
            "platform_agent_id": platform_agent_id,
            "checkout_on_accept": settings.payments.checkout_on_accept,
        },
    )

    yield  # Application runs here

    # === SHUTDOWN ===
    logger.info("Service shutting down", extra={"uptime_seconds": state.uptime_seconds})

    store.close()

    await identity_client.close()
    await payment_gateway_client.close()
    await payout_gateway_client.close()
    await notification_client.close()
