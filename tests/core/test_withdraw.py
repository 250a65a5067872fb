"""
Tests for the conversational withdrawal state machine.
"""

import asyncio
from decimal import Decimal

import pytest

from perpmate.core.bridge import BridgeOrchestrator
from perpmate.core.chains import Chain
from perpmate.core.errors import CustodySigningFailure, InvalidUserInput
from perpmate.core.models import RoutePath, WithdrawStep
from perpmate.core.withdraw import NO_SESSION_TEXT, WithdrawSessionManager, _parse_amount

from conftest import EVM_EXTERNAL, EVM_WALLET, SOL_WALLET

USER = "user-7"


@pytest.fixture
def manager(oracle, custody, bridge, notifier):
    orchestrator = BridgeOrchestrator(custody, bridge, notifier, timeout_s=1, execution_timeout_s=1)
    return WithdrawSessionManager(oracle, custody, orchestrator, min_amount=Decimal("1"), timeout_s=1)


async def _at_amount_step(manager, chain="base"):
    await manager.start(USER)
    reply = await manager.select_chain(USER, chain)
    assert reply.step is WithdrawStep.ENTER_AMOUNT
    return reply


class TestStart:
    @pytest.mark.asyncio
    async def test_lists_funded_chains(self, manager, solana_source, base_source):
        solana_source.set(SOL_WALLET, "5")
        base_source.set(EVM_WALLET, "10")

        reply = await manager.start(USER)

        assert reply.ok
        assert reply.step is WithdrawStep.SELECT_CHAIN
        assert reply.options == ["solana", "base"]
        assert "Total available: 15 USDC" in reply.text
        assert manager.get_session(USER).step is WithdrawStep.SELECT_CHAIN

    @pytest.mark.asyncio
    async def test_no_funds_creates_no_session(self, manager):
        reply = await manager.start(USER)

        assert not reply.ok
        assert "/fund" in reply.text
        assert manager.get_session(USER) is None


class TestSelectChain:
    @pytest.mark.asyncio
    async def test_unknown_chain_reprompts(self, manager, base_source):
        base_source.set(EVM_WALLET, "10")
        await manager.start(USER)

        reply = await manager.select_chain(USER, "dogechain")

        assert not reply.ok
        assert "Unknown chain" in reply.text
        assert manager.get_session(USER).step is WithdrawStep.SELECT_CHAIN

    @pytest.mark.asyncio
    async def test_chain_without_deposits_rejected(self, manager, base_source):
        base_source.set(EVM_WALLET, "10")
        await manager.start(USER)

        reply = await manager.select_chain(USER, "arbitrum")

        assert not reply.ok
        assert manager.get_session(USER).source_chain is None

    @pytest.mark.asyncio
    async def test_empty_chain_rejected(self, manager, base_source):
        base_source.set(EVM_WALLET, "10")
        await manager.start(USER)

        reply = await manager.select_chain(USER, "solana")

        assert not reply.ok
        assert "no USDC on Solana" in reply.text


class TestEnterAmount:
    @pytest.mark.asyncio
    async def test_all_uses_live_balance(self, manager, base_source):
        base_source.set(EVM_WALLET, "10")
        await _at_amount_step(manager)

        base_source.set(EVM_WALLET, "37.5")
        reply = await manager.submit_amount(USER, "all")

        assert reply.ok
        session = manager.get_session(USER)
        assert session.amount == Decimal("37.5")
        assert session.step is WithdrawStep.ENTER_ADDRESS

    @pytest.mark.asyncio
    async def test_below_minimum_stays_on_amount(self, manager, base_source):
        base_source.set(EVM_WALLET, "10")
        await _at_amount_step(manager)

        reply = await manager.submit_amount(USER, "0.5")

        assert not reply.ok
        assert reply.step is WithdrawStep.ENTER_AMOUNT
        assert "Minimum withdrawal is 1 USDC" in reply.text
        assert manager.get_session(USER).step is WithdrawStep.ENTER_AMOUNT

    @pytest.mark.asyncio
    async def test_more_than_balance_rejected(self, manager, base_source):
        base_source.set(EVM_WALLET, "10")
        await _at_amount_step(manager)

        reply = await manager.submit_amount(USER, "25")

        assert not reply.ok
        assert "Insufficient balance" in reply.text
        assert reply.options == ["all"]

    @pytest.mark.asyncio
    async def test_unparsable_amount(self, manager, base_source):
        base_source.set(EVM_WALLET, "10")
        await _at_amount_step(manager)

        reply = await manager.handle_text(USER, "lots")

        assert not reply.ok
        assert reply.step is WithdrawStep.ENTER_AMOUNT

    @pytest.mark.asyncio
    @pytest.mark.parametrize("raw", ["100000000000000000000000", "1e30"])
    async def test_oversized_amount_reprompts(self, manager, base_source, raw):
        base_source.set(EVM_WALLET, "10")
        await _at_amount_step(manager)

        reply = await manager.handle_text(USER, raw)

        assert not reply.ok
        assert reply.step is WithdrawStep.ENTER_AMOUNT
        assert manager.get_session(USER).step is WithdrawStep.ENTER_AMOUNT

    @pytest.mark.asyncio
    async def test_balance_read_failure_reprompts(self, manager, base_source):
        base_source.set(EVM_WALLET, "10")
        await _at_amount_step(manager)

        base_source.error = RuntimeError("rpc down")
        reply = await manager.submit_amount(USER, "5")

        assert not reply.ok
        assert "try again" in reply.text
        assert manager.get_session(USER).step is WithdrawStep.ENTER_AMOUNT


class TestEnterAddress:
    @pytest.mark.asyncio
    async def test_invalid_address_reprompts(self, manager, base_source):
        base_source.set(EVM_WALLET, "10")
        await _at_amount_step(manager)
        await manager.submit_amount(USER, "5")

        reply = await manager.handle_text(USER, "0x1234")

        assert not reply.ok
        assert "doesn't look like a valid address" in reply.text
        assert manager.get_session(USER).step is WithdrawStep.ENTER_ADDRESS

    @pytest.mark.asyncio
    async def test_same_chain_summary(self, manager, base_source):
        base_source.set(EVM_WALLET, "10")
        await _at_amount_step(manager)
        await manager.submit_amount(USER, "5")

        reply = await manager.submit_address(USER, EVM_EXTERNAL)

        assert reply.step is WithdrawStep.CONFIRM
        assert "direct transfer on Base" in reply.text
        assert manager.get_session(USER).destination_chain is Chain.BASE

    @pytest.mark.asyncio
    async def test_cross_chain_summary(self, manager, solana_source):
        solana_source.set(SOL_WALLET, "10")
        await _at_amount_step(manager, "solana")
        await manager.submit_amount(USER, "5")

        reply = await manager.submit_address(USER, EVM_EXTERNAL)

        assert "bridge Solana → Base" in reply.text


class TestStaleInput:
    @pytest.mark.asyncio
    async def test_text_without_session(self, manager):
        reply = await manager.handle_text(USER, "25")

        assert not reply.ok
        assert reply.text == NO_SESSION_TEXT

    @pytest.mark.asyncio
    async def test_confirm_without_session(self, manager):
        reply = await manager.confirm(USER)

        assert reply.text == NO_SESSION_TEXT

    @pytest.mark.asyncio
    async def test_address_at_amount_step(self, manager, base_source):
        base_source.set(EVM_WALLET, "10")
        await _at_amount_step(manager)

        reply = await manager.submit_address(USER, EVM_EXTERNAL)

        assert not reply.ok
        assert "enter the amount" in reply.text
        assert manager.get_session(USER).step is WithdrawStep.ENTER_AMOUNT

    @pytest.mark.asyncio
    async def test_early_confirm_does_not_route(self, manager, base_source, custody):
        base_source.set(EVM_WALLET, "10")
        await _at_amount_step(manager)

        reply = await manager.confirm(USER)

        assert not reply.ok
        assert custody.transfers == []
        assert manager.get_session(USER) is not None


class TestConfirm:
    @pytest.mark.asyncio
    async def test_withdraw_all_same_chain(self, manager, base_source, custody, bridge):
        base_source.set(EVM_WALLET, "12.345678")
        await manager.start(USER)
        await manager.handle_text(USER, "base")
        await manager.handle_text(USER, "all")
        summary = await manager.handle_text(USER, EVM_EXTERNAL)
        assert summary.step is WithdrawStep.CONFIRM

        reply = await manager.handle_text(USER, "confirm")

        assert reply.ok
        assert reply.outcome.path is RoutePath.SAME_CHAIN
        assert custody.transfers == [(EVM_WALLET, Chain.BASE, EVM_EXTERNAL, Decimal("12.345678"))]
        assert bridge.quote_calls == []
        assert manager.get_session(USER) is None

    @pytest.mark.asyncio
    async def test_cross_chain_withdrawal_bridges(self, manager, solana_source, bridge):
        solana_source.set(SOL_WALLET, "20")
        await _at_amount_step(manager, "solana")
        await manager.submit_amount(USER, "15")
        await manager.submit_address(USER, EVM_EXTERNAL)

        reply = await manager.confirm(USER)

        assert reply.ok
        assert bridge.quote_calls == [(Chain.SOLANA, Chain.BASE, Decimal("15"), SOL_WALLET, EVM_EXTERNAL)]

    @pytest.mark.asyncio
    async def test_failed_transfer_still_destroys_session(self, manager, base_source, custody):
        base_source.set(EVM_WALLET, "10")
        await _at_amount_step(manager)
        await manager.submit_amount(USER, "5")
        await manager.submit_address(USER, EVM_EXTERNAL)
        custody.fail_with = CustodySigningFailure("signer missing")

        reply = await manager.confirm(USER)

        assert not reply.ok
        assert "Withdrawal failed" in reply.text
        assert manager.get_session(USER) is None

    @pytest.mark.asyncio
    async def test_double_confirm_sends_once(self, manager, base_source, custody):
        base_source.set(EVM_WALLET, "10")
        await _at_amount_step(manager)
        await manager.submit_amount(USER, "5")
        await manager.submit_address(USER, EVM_EXTERNAL)

        replies = await asyncio.gather(manager.confirm(USER), manager.confirm(USER))

        assert len(custody.transfers) == 1
        assert sorted(reply.ok for reply in replies) == [False, True]

    @pytest.mark.asyncio
    async def test_unrecognized_word_at_confirm(self, manager, base_source):
        base_source.set(EVM_WALLET, "10")
        await _at_amount_step(manager)
        await manager.submit_amount(USER, "5")
        await manager.submit_address(USER, EVM_EXTERNAL)

        reply = await manager.handle_text(USER, "maybe")

        assert reply.options == ["confirm", "cancel"]
        assert manager.get_session(USER).step is WithdrawStep.CONFIRM

    @pytest.mark.asyncio
    async def test_cancel(self, manager, base_source, custody):
        base_source.set(EVM_WALLET, "10")
        await _at_amount_step(manager)

        reply = await manager.handle_text(USER, "cancel")

        assert reply.ok
        assert manager.get_session(USER) is None
        assert custody.transfers == []


class TestParseAmount:
    @pytest.mark.parametrize(
        "raw,expected",
        [
            ("25", Decimal("25")),
            ("$1,250.50", Decimal("1250.5")),
            ("12.3456789", Decimal("12.345678")),
            ("7 usdc", Decimal("7")),
        ],
    )
    def test_parses(self, raw, expected):
        assert _parse_amount(raw) == expected

    @pytest.mark.parametrize("raw", ["abc", "nan", "inf", "1e30"])
    def test_rejects(self, raw):
        with pytest.raises(InvalidUserInput):
            _parse_amount(raw)
