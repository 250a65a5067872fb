"""
Webhook API Endpoints

Receive address-activity pushes from Alchemy (Base) and Helius (Solana) and
feed the resulting deposits into the deposit pipeline.
"""

import json
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Request
from pydantic import BaseModel

from ..core.errors import ProviderResponseError
from ..services.funding import FundingService
from ..services.webhook_handler import WebhookHandler
from .dependencies import get_funding_service

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/webhooks")


class WebhookResponse(BaseModel):
    """Response after processing a webhook."""

    success: bool
    deposits_ingested: int = 0
    message: Optional[str] = None


async def _process(
    service: FundingService,
    handler: WebhookHandler,
    body: bytes,
    signature: str,
) -> WebhookResponse:
    if not handler.verify_signature(body, signature):
        logger.warning("Rejected %s webhook with invalid signature", handler.provider)
        raise HTTPException(status_code=401, detail="Invalid webhook signature")

    try:
        payload = json.loads(body)
    except ValueError as e:
        logger.warning("Invalid %s webhook body: %s", handler.provider, e)
        raise HTTPException(status_code=400, detail="Webhook body is not valid JSON")

    try:
        deposits = handler.parse_deposits(payload)
        ingested = await service.ingest_deposits(deposits)
        return WebhookResponse(success=True, deposits_ingested=ingested)
    except ProviderResponseError as e:
        logger.warning("Invalid %s webhook: %s", handler.provider, e.message)
        raise HTTPException(status_code=400, detail=e.message)
    except Exception as e:
        logger.error("Error processing %s webhook: %s", handler.provider, e, exc_info=True)
        # Return 200 to avoid retries for processing errors
        return WebhookResponse(success=False, message=str(e))


@router.post("/alchemy", response_model=WebhookResponse)
async def alchemy_webhook(
    request: Request,
    x_alchemy_signature: Optional[str] = Header(None, alias="X-Alchemy-Signature"),
    service: FundingService = Depends(get_funding_service),
):
    """
    Receive Alchemy Address Activity webhooks for Base.
    """
    body = await request.body()
    return await _process(service, service.alchemy, body, x_alchemy_signature or "")


@router.post("/helius", response_model=WebhookResponse)
async def helius_webhook(
    request: Request,
    authorization: Optional[str] = Header(None),
    service: FundingService = Depends(get_funding_service),
):
    """
    Receive Helius enhanced-transaction webhooks for Solana.
    """
    body = await request.body()

    secret = authorization or ""
    if secret.startswith("Bearer "):
        secret = secret[7:]

    return await _process(service, service.helius, body, secret)
