"""HTTP clients for external service communication and platform signing."""

from task_market_service.clients.identity_client import IdentityClient
from task_market_service.clients.notification_client import NotificationClient
from task_market_service.clients.payment_gateway_client import PaymentGatewayClient
from task_market_service.clients.payout_gateway_client import PayoutGatewayClient
from task_market_service.clients.platform_signer import PlatformSigner

__all__ = [
    "IdentityClient",
    "NotificationClient",
    "PaymentGatewayClient",
    "PayoutGatewayClient",
    "PlatformSigner",
]
