"""
Deposit API Endpoints

Issue deposit addresses (which arms the deposit monitor), list monitored
wallets, and top up test balances in testnet mode.
"""

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from ..services.funding import FundingService
from .dependencies import get_funding_service

router = APIRouter(prefix="/deposits")


class DepositAddressRequest(BaseModel):
    owner_id: str
    chain: str


class DepositInfoResponse(BaseModel):
    chain: str
    wallet_address: str
    token_address: str
    token_symbol: str = "USDC"


class FaucetResponse(BaseModel):
    success: bool
    chain: str
    wallet_address: str
    amount: str
    tx_hash: Optional[str] = None


@router.post("/address", response_model=DepositInfoResponse)
async def deposit_address(
    request: DepositAddressRequest,
    service: FundingService = Depends(get_funding_service),
):
    info = await service.get_deposit_info(request.owner_id, request.chain)
    return DepositInfoResponse(
        chain=info.chain.value,
        wallet_address=info.wallet_address,
        token_address=info.token_address,
        token_symbol=info.token_symbol,
    )


@router.get("/wallets")
async def monitored_wallets(service: FundingService = Depends(get_funding_service)) -> Dict[str, Any]:
    wallets: List[Dict[str, Any]] = service.monitored_wallets()
    return {"wallets": wallets, "count": len(wallets)}


@router.post("/faucet", response_model=FaucetResponse)
async def faucet(
    request: DepositAddressRequest,
    service: FundingService = Depends(get_funding_service),
):
    """Credit test USDC to the owner's deposit address. Testnet only."""
    if not service.testnet:
        raise HTTPException(status_code=404, detail="Not Found")

    result = await service.faucet(request.owner_id, request.chain)
    return FaucetResponse(
        success=True,
        chain=result.chain.value,
        wallet_address=result.wallet_address,
        amount=str(result.amount),
        tx_hash=result.tx_hash,
    )
