from typing import Any, Dict

from fastapi import APIRouter, Depends

from ..services.funding import FundingService
from .dependencies import get_funding_service

router = APIRouter()


@router.get("/healthz")
async def health_check(service: FundingService = Depends(get_funding_service)) -> Dict[str, Any]:
    """Health check endpoint reporting pipeline state and provider readiness"""

    details = await service.health()
    provider_status = details["providers"]

    all_configured = all(
        status.get("status") == "configured"
        for status in provider_status.values()
    )
    running = details["pipeline_running"]

    return {
        "status": "healthy" if all_configured and running else "degraded",
        **details,
    }
