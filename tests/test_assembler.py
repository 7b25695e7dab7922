"""
Tests for BundleAssembler: launch, funding and liquidation bundles.

Run with: pytest tests/ -v
"""

import sys
from pathlib import Path
from unittest.mock import Mock, patch

import pytest
from eth_account import Account
from web3 import Web3

sys.path.insert(0, str(Path(__file__).parent.parent))

from config import BundlerConfig
from bundle_engine import (
    BundleAssembler,
    ChainState,
    LaunchPlan,
    NonceAllocator,
    SignedTransactionBuilder,
    TxKind,
)
from utils import InsufficientBalanceError, InvalidIntentError

TOKEN = "0x" + "12" * 20
ONE_ETH = Web3.to_wei(1, "ether")
NOW = 1_700_000_000


@pytest.fixture
def config():
    return BundlerConfig(signing_delay_seconds=0)


@pytest.fixture
def chain():
    chain = Mock(spec=ChainState)
    chain.transaction_count.return_value = 0
    chain.token_balance.return_value = 10**30
    chain.eth_balance.return_value = 100 * ONE_ETH
    return chain


@pytest.fixture
def allocator(chain):
    return NonceAllocator(chain)


@pytest.fixture
def assembler(config, chain, allocator):
    return BundleAssembler(
        config, chain, allocator, SignedTransactionBuilder(config), clock=lambda: NOW
    )


@pytest.fixture
def dev():
    return Account.create()


@pytest.fixture
def buyers():
    return [Account.create() for _ in range(3)]


def plan_for(amounts, token_amount=1000 * 10**18, eth_amount=ONE_ETH):
    return LaunchPlan(
        token_address=TOKEN,
        token_amount=token_amount,
        eth_amount=eth_amount,
        buy_amounts=amounts,
    )


class TestLaunchBundle:

    def test_three_buyer_launch(self, assembler, dev, buyers):
        amounts = [Web3.to_wei(x, "ether") for x in ("0.1", "0.2", "0.15")]
        bundle = assembler.assemble(dev, buyers, plan_for(amounts))

        assert len(bundle) == 5
        assert bundle.label == "launch"
        assert [tx.kind for tx in bundle] == [
            TxKind.APPROVAL, TxKind.ADD_LIQUIDITY, TxKind.BUY, TxKind.BUY, TxKind.BUY
        ]
        assert bundle[1].value == ONE_ETH
        assert [tx.value for tx in bundle[2:]] == amounts
        assert [tx.sender for tx in bundle[2:]] == [b.address for b in buyers]

    def test_dev_nonces_are_consecutive(self, assembler, chain, dev, buyers):
        chain.transaction_count.side_effect = lambda address: 7 if address == dev.address else 0
        bundle = assembler.assemble(dev, buyers, plan_for([10**17]))

        assert (bundle[0].nonce, bundle[1].nonce) == (7, 8)
        assert all(tx.nonce == 0 for tx in bundle[2:])

    def test_signed_payloads_decode(self, assembler, config, dev, buyers):
        bundle = assembler.assemble(dev, buyers, plan_for([10**17]))
        router = Web3.to_checksum_address(config.router_address)

        approve = SignedTransactionBuilder.decode(bundle[0].raw)
        assert approve['sender'] == dev.address
        assert approve['to'] == Web3.to_checksum_address(TOKEN)

        liquidity = SignedTransactionBuilder.decode(bundle[1].raw)
        assert liquidity['to'] == router
        assert liquidity['value'] == ONE_ETH
        assert liquidity['nonce'] == approve['nonce'] + 1

        for tx, buyer in zip(bundle[2:], buyers):
            fields = SignedTransactionBuilder.decode(tx.raw)
            assert fields['sender'] == buyer.address
            assert fields['to'] == router
            assert fields['gas'] == config.gas.buy_gas

    def test_single_amount_applies_to_every_buyer(self, assembler, dev, buyers):
        bundle = assembler.assemble(dev, buyers, plan_for([5 * 10**16]))
        assert [tx.value for tx in bundle[2:]] == [5 * 10**16] * 3

    def test_amount_count_mismatch(self, assembler, dev, buyers):
        with pytest.raises(InvalidIntentError):
            assembler.assemble(dev, buyers, plan_for([1, 2]))

    def test_no_buyers(self, assembler, dev):
        with pytest.raises(InvalidIntentError):
            assembler.assemble(dev, [], plan_for([1]))

    def test_invalid_token(self, assembler, dev, buyers):
        plan = LaunchPlan(token_address="0x123", token_amount=1, eth_amount=1, buy_amounts=[1])
        with pytest.raises(InvalidIntentError):
            assembler.assemble(dev, buyers, plan)

    def test_insufficient_tokens_signs_nothing(self, assembler, allocator, chain, dev, buyers):
        chain.token_balance.return_value = 999 * 10**18

        with patch.object(assembler.builder, "build") as build:
            with pytest.raises(InsufficientBalanceError) as exc_info:
                assembler.assemble(dev, buyers, plan_for([10**17]))

        build.assert_not_called()
        assert exc_info.value.required == 1000 * 10**18
        assert exc_info.value.available == 999 * 10**18
        assert allocator.peek(dev) is None

    def test_invalid_intent_rolls_back_nonces(self, assembler, allocator, dev, buyers):
        with patch.object(assembler.builder, "validate", side_effect=InvalidIntentError("bad")):
            with pytest.raises(InvalidIntentError):
                assembler.assemble(dev, buyers, plan_for([10**17]))

        assert allocator.peek(dev) is None
        assert all(allocator.peek(b) is None for b in buyers)

    def test_back_to_back_launches_do_not_reuse_nonces(self, assembler, dev, buyers):
        first = assembler.assemble(dev, buyers, plan_for([10**17]))
        second = assembler.assemble(dev, buyers, plan_for([10**17]))

        assert second[0].nonce == first[1].nonce + 1
        assert second[2].nonce == first[2].nonce + 1

    def test_pause_between_buyers(self, config, chain, allocator, dev, buyers):
        config.signing_delay_seconds = 0.1
        sleep = Mock()
        assembler = BundleAssembler(
            config, chain, allocator, SignedTransactionBuilder(config), clock=lambda: NOW, sleep=sleep
        )
        assembler.assemble(dev, buyers, plan_for([10**17]))

        # One pause between each pair of buyers
        assert sleep.call_count == len(buyers) - 1


class TestFundingBundle:

    def test_one_transfer_per_recipient(self, assembler, dev, buyers):
        bundle = assembler.assemble_funding(dev, buyers, 5 * 10**16)

        assert bundle.label == "funding"
        assert [tx.nonce for tx in bundle] == [0, 1, 2]
        assert [tx.to for tx in bundle] == [b.address for b in buyers]
        assert all(tx.kind is TxKind.TRANSFER and tx.value == 5 * 10**16 for tx in bundle)

    def test_accepts_plain_addresses(self, assembler, dev):
        bundle = assembler.assemble_funding(dev, ["0x" + "34" * 20], 1)
        assert bundle[0].to == Web3.to_checksum_address("0x" + "34" * 20)

    def test_insufficient_eth_includes_gas(self, assembler, chain, config, dev, buyers):
        amount = 10**17
        exact = amount * 3
        chain.eth_balance.return_value = exact

        with pytest.raises(InsufficientBalanceError) as exc_info:
            assembler.assemble_funding(dev, buyers, amount)
        assert exc_info.value.required == exact + config.gas.transfer_gas * config.gas.max_fee_wei * 3

    def test_rejects_bad_recipient(self, assembler, dev):
        with pytest.raises(InvalidIntentError):
            assembler.assemble_funding(dev, ["nope"], 1)

    def test_rejects_zero_amount(self, assembler, dev, buyers):
        with pytest.raises(InvalidIntentError):
            assembler.assemble_funding(dev, buyers, 0)


class TestLiquidationBundle:

    def test_approve_then_sell(self, assembler, dev):
        bundle = assembler.assemble_liquidation(dev, TOKEN, 500)

        assert bundle.label == "liquidation"
        assert [tx.kind for tx in bundle] == [TxKind.APPROVAL, TxKind.SELL]
        assert [tx.nonce for tx in bundle] == [0, 1]
        assert bundle[1].value == 0

    def test_nothing_to_sell(self, assembler, dev):
        with pytest.raises(InvalidIntentError):
            assembler.assemble_liquidation(dev, TOKEN, 0)
