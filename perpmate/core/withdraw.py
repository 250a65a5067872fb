"""
Withdrawal Session State Machine

One session per user, held in memory and keyed by user id:

    SELECT_CHAIN -> ENTER_AMOUNT -> ENTER_ADDRESS -> CONFIRM -> (routed, destroyed)

Invalid input re-prompts on the current step. Input that does not belong to the
session's current step, or that arrives with no session at all, is answered
with guidance instead of being ignored. Confirm and cancel always destroy the
session, whatever the outcome of the transfer.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from decimal import ROUND_DOWN, Decimal, InvalidOperation
from typing import Awaitable, Callable, Dict, List, Optional

from ..providers.base import CustodyProvider
from .bridge import BridgeOrchestrator
from .chains import (
    CHAIN_SPECS,
    Chain,
    chains_matching_address,
    deposit_chains,
    get_spec,
    infer_destination_chain,
    is_same_chain_destination,
    normalize_chain,
    shorten_address,
)
from .errors import CustodySigningFailure, InvalidUserInput, PerpmateError, StaleSessionInput
from .models import USDC_QUANTUM, RouteOutcome, WithdrawSession, WithdrawStep, format_usdc, utcnow
from .oracle import BalanceOracle

CONFIRM_WORDS = {"confirm", "yes", "y", "/confirm"}
CANCEL_WORDS = {"cancel", "no", "n", "/cancel"}

NO_SESSION_TEXT = "No withdrawal in progress. Start one with /withdraw."


@dataclass
class WithdrawReply:
    """What the bot should say back, and where the session now stands."""

    ok: bool
    text: str
    step: Optional[WithdrawStep] = None
    options: List[str] = field(default_factory=list)
    outcome: Optional[RouteOutcome] = None


class WithdrawSessionManager:
    def __init__(
        self,
        oracle: BalanceOracle,
        custody: CustodyProvider,
        orchestrator: BridgeOrchestrator,
        *,
        min_amount: Decimal = Decimal("1"),
        timeout_s: float = 20.0,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._oracle = oracle
        self._custody = custody
        self._orchestrator = orchestrator
        self.min_amount = min_amount
        self._timeout_s = timeout_s
        self._sessions: Dict[str, WithdrawSession] = {}
        self._locks: Dict[str, asyncio.Lock] = {}
        self._logger = logger or logging.getLogger(__name__)

    def get_session(self, user_id: str) -> Optional[WithdrawSession]:
        return self._sessions.get(user_id)

    def __len__(self) -> int:
        return len(self._sessions)

    # ---------------------------
    # Public entry points
    # ---------------------------
    async def start(self, user_id: str) -> WithdrawReply:
        return await self._locked(user_id, self._start)

    async def select_chain(self, user_id: str, chain: str | Chain) -> WithdrawReply:
        return await self._locked(user_id, self._select_chain, chain)

    async def submit_amount(self, user_id: str, text: str) -> WithdrawReply:
        return await self._locked(user_id, self._submit_amount, text)

    async def submit_address(self, user_id: str, text: str) -> WithdrawReply:
        return await self._locked(user_id, self._submit_address, text)

    async def handle_text(self, user_id: str, text: str) -> WithdrawReply:
        """Route free text to whatever the session's current step expects."""

        session = self._sessions.get(user_id)
        if session is None:
            return WithdrawReply(ok=False, text=NO_SESSION_TEXT)

        word = text.strip().lower()
        if word in CANCEL_WORDS:
            return await self.cancel(user_id)

        if session.step is WithdrawStep.CONFIRM:
            if word in CONFIRM_WORDS:
                return await self.confirm(user_id)
            return WithdrawReply(
                ok=False,
                text="Reply *confirm* to send the withdrawal or *cancel* to abort.",
                step=session.step,
                options=["confirm", "cancel"],
            )

        handlers = {
            WithdrawStep.SELECT_CHAIN: self.select_chain,
            WithdrawStep.ENTER_AMOUNT: self.submit_amount,
            WithdrawStep.ENTER_ADDRESS: self.submit_address,
        }
        return await handlers[session.step](user_id, text)

    async def confirm(self, user_id: str) -> WithdrawReply:
        async with self._lock_for(user_id):
            session = self._sessions.get(user_id)
            if session is None:
                return WithdrawReply(ok=False, text=NO_SESSION_TEXT)
            if session.step is not WithdrawStep.CONFIRM:
                return WithdrawReply(
                    ok=False,
                    text=_stale_text(session),
                    step=session.step,
                    options=_options_for(session),
                )
            # Destroyed before routing so a failed transfer cannot leave a stuck session
            del self._sessions[user_id]

        return await self._execute(session)

    async def cancel(self, user_id: str) -> WithdrawReply:
        async with self._lock_for(user_id):
            session = self._sessions.pop(user_id, None)
        if session is None:
            return WithdrawReply(ok=False, text=NO_SESSION_TEXT)
        self._logger.info("Withdrawal cancelled by %s at step %s", user_id, session.step.value)
        return WithdrawReply(ok=True, text="Withdrawal cancelled.")

    # ---------------------------
    # Steps
    # ---------------------------
    async def _start(self, user_id: str) -> WithdrawReply:
        balances = await self._available_balances(user_id)
        funded = {chain: amount for chain, amount in balances.items() if amount > 0}
        if not funded:
            self._sessions.pop(user_id, None)
            return WithdrawReply(
                ok=False,
                text="You have no USDC available to withdraw. Check your balances and deposit with /fund.",
            )

        self._sessions[user_id] = WithdrawSession(user_id=user_id)
        total = sum(funded.values(), Decimal(0))
        lines = ["💸 *Withdraw USDC*", f"Total available: {format_usdc(total)} USDC", ""]
        for chain, amount in funded.items():
            spec = get_spec(chain)
            lines.append(f"{spec.emoji} {spec.name}: {format_usdc(amount)} USDC")
        lines.append("")
        lines.append("Which chain do you want to withdraw from?")
        return WithdrawReply(
            ok=True,
            text="\n".join(lines),
            step=WithdrawStep.SELECT_CHAIN,
            options=[chain.value for chain in funded],
        )

    async def _select_chain(self, user_id: str, raw_chain: str | Chain) -> WithdrawReply:
        session = self._sessions.get(user_id)
        if session is not None and session.step is not WithdrawStep.SELECT_CHAIN:
            raise StaleSessionInput("Chain selected outside SELECT_CHAIN", user_message=_stale_text(session))

        chain = normalize_chain(raw_chain)
        if chain is None or chain not in deposit_chains():
            supported = ", ".join(c.value for c in deposit_chains())
            raise InvalidUserInput(
                f"Unsupported withdrawal chain {raw_chain!r}",
                user_message=f"Unknown chain. Pick one of: {supported}.",
            )

        spec = get_spec(chain)
        address = await self._wallet_address(user_id, chain)
        balance = await self._live_balance(address, chain)
        if balance <= 0:
            raise InvalidUserInput(
                f"No balance on {chain.value}",
                user_message=f"You have no USDC on {spec.name}. Pick another chain or /cancel.",
            )

        if session is None:
            session = WithdrawSession(user_id=user_id)
            self._sessions[user_id] = session
        session.source_chain = chain
        session.step = WithdrawStep.ENTER_AMOUNT
        session.updated_at = utcnow()

        return WithdrawReply(
            ok=True,
            text=(
                f"{spec.emoji} Withdrawing from {spec.name}\n"
                f"Available: {format_usdc(balance)} USDC\n\n"
                f"How much USDC do you want to withdraw? Send an amount or *all*.\n"
                f"Minimum: {format_usdc(self.min_amount)} USDC"
            ),
            step=session.step,
            options=["all"],
        )

    async def _submit_amount(self, user_id: str, text: str) -> WithdrawReply:
        session = self._require_step(user_id, WithdrawStep.ENTER_AMOUNT)
        chain = session.source_chain
        address = await self._wallet_address(user_id, chain)

        # Always re-read: time has passed since the chain was selected
        available = await self._live_balance(address, chain)
        raw = text.strip().lower()
        if raw in ("all", "max"):
            amount = available.quantize(USDC_QUANTUM, rounding=ROUND_DOWN)
        else:
            amount = _parse_amount(raw)

        if amount <= 0:
            raise InvalidUserInput(
                f"Non-positive amount {amount}",
                user_message="The amount must be greater than zero. Enter an amount or *all*.",
            )
        if amount < self.min_amount:
            raise InvalidUserInput(
                f"Amount {amount} below minimum {self.min_amount}",
                user_message=(
                    f"Minimum withdrawal is {format_usdc(self.min_amount)} USDC. "
                    "Enter a larger amount or *all*."
                ),
            )
        if amount > available:
            raise InvalidUserInput(
                f"Amount {amount} exceeds balance {available}",
                user_message=(
                    f"Insufficient balance. Available: {format_usdc(available)} USDC. "
                    "Enter a smaller amount or *all*."
                ),
            )

        session.amount = amount
        session.step = WithdrawStep.ENTER_ADDRESS
        session.updated_at = utcnow()

        spec = get_spec(chain)
        return WithdrawReply(
            ok=True,
            text=(
                f"Withdrawing {format_usdc(amount)} USDC from {spec.name}.\n\n"
                "Send the destination address:\n"
                + "\n".join(f"• {s.name}: {s.address_format}" for s in CHAIN_SPECS.values())
            ),
            step=session.step,
        )

    async def _submit_address(self, user_id: str, text: str) -> WithdrawReply:
        session = self._require_step(user_id, WithdrawStep.ENTER_ADDRESS)
        address = text.strip()
        if not chains_matching_address(address):
            source = get_spec(session.source_chain)
            raise InvalidUserInput(
                f"Unrecognized address format {address!r}",
                user_message=(
                    "That doesn't look like a valid address.\n"
                    f"Expected {source.address_format}, e.g. `{source.example_address}`"
                ),
            )

        destination = infer_destination_chain(session.source_chain, address)
        session.destination_address = address
        session.destination_chain = destination
        session.step = WithdrawStep.CONFIRM
        session.updated_at = utcnow()

        source = get_spec(session.source_chain)
        if is_same_chain_destination(session.source_chain, address):
            route_line = f"Route: direct transfer on {source.name}"
        else:
            route_line = f"Route: bridge {source.name} → {get_spec(destination).name}"
        return WithdrawReply(
            ok=True,
            text=(
                "*Confirm withdrawal*\n"
                f"Amount: {format_usdc(session.amount)} USDC\n"
                f"From: {source.name}\n"
                f"To: `{address}`\n"
                f"{route_line}\n\n"
                "Reply *confirm* to send or *cancel* to abort."
            ),
            step=session.step,
            options=["confirm", "cancel"],
        )

    async def _execute(self, session: WithdrawSession) -> WithdrawReply:
        user_id = session.user_id
        try:
            from_address = await self._wallet_address(user_id, session.source_chain)
        except PerpmateError as exc:
            self._logger.error("Withdrawal for %s aborted: %s", user_id, exc.message)
            return WithdrawReply(
                ok=False,
                text=f"❌ Withdrawal failed: {exc.user_message}\nPlease try again later or contact support.",
            )

        self._logger.info(
            "Executing withdrawal of %s USDC on %s for %s to %s",
            session.amount,
            session.source_chain.value,
            user_id,
            session.destination_address,
        )
        outcome = await self._orchestrator.route(
            session.source_chain,
            session.amount,
            from_address,
            session.destination_address,
            user_id,
            destination_chain=session.destination_chain,
            retry_command="/withdraw",
        )
        if outcome.success:
            text = f"✅ Withdrawal of {format_usdc(session.amount)} USDC sent to {shorten_address(session.destination_address)}."
            if outcome.tx_hash:
                text += f"\nTx: `{outcome.tx_hash}`"
        else:
            text = f"❌ Withdrawal failed: {outcome.error or 'unknown error'}\nYou can start again with /withdraw."
        return WithdrawReply(ok=outcome.success, text=text, outcome=outcome)

    # ---------------------------
    # Helpers
    # ---------------------------
    def _lock_for(self, user_id: str) -> asyncio.Lock:
        lock = self._locks.get(user_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[user_id] = lock
        return lock

    async def _locked(self, user_id: str, step: Callable[..., Awaitable[WithdrawReply]], *args) -> WithdrawReply:
        async with self._lock_for(user_id):
            try:
                return await step(user_id, *args)
            except InvalidUserInput as exc:
                session = self._sessions.get(user_id)
                if session is None:
                    return WithdrawReply(ok=False, text=exc.user_message)
                return WithdrawReply(
                    ok=False,
                    text=exc.user_message,
                    step=session.step,
                    options=_options_for(session),
                )
            except PerpmateError as exc:
                # Terminal: tear the session down and report
                self._sessions.pop(user_id, None)
                self._logger.error("Withdrawal step failed for %s: %s", user_id, exc.message)
                return WithdrawReply(
                    ok=False,
                    text=f"❌ Withdrawal failed: {exc.user_message}\nPlease try again later or contact support.",
                )

    def _require_step(self, user_id: str, expected: WithdrawStep) -> WithdrawSession:
        session = self._sessions.get(user_id)
        if session is None:
            raise StaleSessionInput(f"No session for {user_id}", user_message=NO_SESSION_TEXT)
        if session.step is not expected:
            raise StaleSessionInput(
                f"Expected {expected.value}, session is at {session.step.value}",
                user_message=_stale_text(session),
            )
        return session

    async def _wallet_address(self, user_id: str, chain: Chain) -> str:
        try:
            return await asyncio.wait_for(
                self._custody.create_or_get_address(user_id, chain),
                timeout=self._timeout_s,
            )
        except asyncio.TimeoutError:
            raise CustodySigningFailure(
                f"Custody provider timed out resolving {chain.value} wallet",
                user_message="Wallet provider did not respond.",
            )

    async def _live_balance(self, address: str, chain: Chain) -> Decimal:
        reading = await self._oracle.read_balance(address, chain)
        if not reading.ok:
            raise InvalidUserInput(
                f"Balance read failed for {address} on {chain.value}",
                user_message="Couldn't check your balance right now. Please try again in a moment.",
            )
        return reading.amount

    async def _available_balances(self, user_id: str) -> Dict[Chain, Decimal]:
        async def _one(chain: Chain) -> Decimal:
            address = await self._wallet_address(user_id, chain)
            reading = await self._oracle.read_balance(address, chain)
            return reading.amount if reading.ok else Decimal(0)

        chains = deposit_chains()
        amounts = await asyncio.gather(*(_one(chain) for chain in chains))
        return dict(zip(chains, amounts))


def _parse_amount(raw: str) -> Decimal:
    cleaned = raw.replace("$", "").replace(",", "").replace("usdc", "").strip()
    try:
        amount = Decimal(cleaned)
    except InvalidOperation:
        raise InvalidUserInput(
            f"Unparsable amount {raw!r}",
            user_message="Please enter a number like `25` or `12.5`, or *all*.",
        )
    if not amount.is_finite():
        raise InvalidUserInput(f"Non-finite amount {raw!r}", user_message="Please enter a valid amount.")
    try:
        return amount.quantize(USDC_QUANTUM, rounding=ROUND_DOWN)
    except InvalidOperation:
        raise InvalidUserInput(f"Amount out of range {raw!r}", user_message="That amount is too large.")


def _stale_text(session: WithdrawSession) -> str:
    prompts = {
        WithdrawStep.SELECT_CHAIN: "pick the chain to withdraw from",
        WithdrawStep.ENTER_AMOUNT: "enter the amount to withdraw (or *all*)",
        WithdrawStep.ENTER_ADDRESS: "send the destination address",
        WithdrawStep.CONFIRM: "reply *confirm* or *cancel*",
    }
    return f"Your withdrawal is waiting for you to {prompts[session.step]}. Send /cancel to start over."


def _options_for(session: WithdrawSession) -> List[str]:
    if session.step is WithdrawStep.ENTER_AMOUNT:
        return ["all"]
    if session.step is WithdrawStep.CONFIRM:
        return ["confirm", "cancel"]
    return []
