"""
Withdrawal API Endpoints

Conversational withdrawal flow driven by the bot: start, pick a chain, send
free text for the current step, then confirm or cancel.
"""

from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from ..core.withdraw import WithdrawReply
from ..services.funding import FundingService
from .dependencies import get_funding_service

router = APIRouter(prefix="/withdrawals")


class ChainSelection(BaseModel):
    chain: str


class TextMessage(BaseModel):
    text: str = Field(..., min_length=1)


class WithdrawReplyResponse(BaseModel):
    ok: bool
    text: str
    step: Optional[str] = None
    options: List[str] = Field(default_factory=list)
    tx_hash: Optional[str] = None


class WithdrawSessionResponse(BaseModel):
    user_id: str
    step: str
    source_chain: Optional[str] = None
    amount: str
    destination_address: str
    destination_chain: Optional[str] = None


def _reply(reply: WithdrawReply) -> WithdrawReplyResponse:
    return WithdrawReplyResponse(
        ok=reply.ok,
        text=reply.text,
        step=reply.step.value if reply.step else None,
        options=list(reply.options),
        tx_hash=reply.outcome.tx_hash if reply.outcome else None,
    )


@router.post("/{user_id}", response_model=WithdrawReplyResponse)
async def start_withdrawal(user_id: str, service: FundingService = Depends(get_funding_service)):
    return _reply(await service.withdrawals.start(user_id))


@router.post("/{user_id}/chain", response_model=WithdrawReplyResponse)
async def select_chain(
    user_id: str,
    selection: ChainSelection,
    service: FundingService = Depends(get_funding_service),
):
    return _reply(await service.withdrawals.select_chain(user_id, selection.chain))


@router.post("/{user_id}/message", response_model=WithdrawReplyResponse)
async def send_message(
    user_id: str,
    message: TextMessage,
    service: FundingService = Depends(get_funding_service),
):
    return _reply(await service.withdrawals.handle_text(user_id, message.text))


@router.post("/{user_id}/confirm", response_model=WithdrawReplyResponse)
async def confirm_withdrawal(user_id: str, service: FundingService = Depends(get_funding_service)):
    return _reply(await service.withdrawals.confirm(user_id))


@router.post("/{user_id}/cancel", response_model=WithdrawReplyResponse)
async def cancel_withdrawal(user_id: str, service: FundingService = Depends(get_funding_service)):
    return _reply(await service.withdrawals.cancel(user_id))


@router.get("/{user_id}", response_model=WithdrawSessionResponse)
async def get_withdrawal(user_id: str, service: FundingService = Depends(get_funding_service)):
    session = service.withdrawals.get_session(user_id)
    if session is None:
        raise HTTPException(status_code=404, detail="No withdrawal in progress")
    return WithdrawSessionResponse(
        user_id=session.user_id,
        step=session.step.value,
        source_chain=session.source_chain.value if session.source_chain else None,
        amount=str(session.amount),
        destination_address=session.destination_address,
        destination_chain=session.destination_chain.value if session.destination_chain else None,
    )
