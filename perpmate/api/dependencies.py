from fastapi import HTTPException, Request

from ..services.funding import FundingService


def get_funding_service(request: Request) -> FundingService:
    service = getattr(request.app.state, "funding", None)
    if service is None:
        raise HTTPException(status_code=503, detail="Funding service is not running")
    return service
