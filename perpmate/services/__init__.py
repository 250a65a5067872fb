"""Service layer: webhook normalization and the funding service context."""

from .funding import FaucetResult, FundingService, get_funding_service
from .webhook_handler import AlchemyWebhookHandler, HeliusWebhookHandler, WebhookHandler

__all__ = [
    "FaucetResult",
    "FundingService",
    "get_funding_service",
    "AlchemyWebhookHandler",
    "HeliusWebhookHandler",
    "WebhookHandler",
]
