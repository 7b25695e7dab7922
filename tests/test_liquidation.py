"""
Tests for LiquidationCoordinator.

Run with: pytest tests/ -v
"""

import sys
import unittest
from pathlib import Path
from unittest.mock import Mock

from eth_account import Account

sys.path.insert(0, str(Path(__file__).parent.parent))

from config import BundlerConfig
from bundle_engine import (
    BundleAssembler,
    BundleHandle,
    ChainState,
    LiquidationCoordinator,
    NonceAllocator,
    SignedTransactionBuilder,
    TxKind,
)
from bundle_engine.liquidation import NO_TOKENS, SUCCESS, DRY_RUN
from utils import RelayUnavailableError

TOKEN = "0x" + "12" * 20


class TestLiquidationCoordinator(unittest.TestCase):

    def setUp(self):
        self.config = BundlerConfig(signing_delay_seconds=0)
        self.chain = Mock(spec=ChainState)
        self.chain.transaction_count.return_value = 0
        self.balances = {}
        self.chain.token_balance.side_effect = lambda token, address: self.balances.get(address, 0)

        builder = SignedTransactionBuilder(self.config)
        self.allocator = NonceAllocator(self.chain)
        self.assembler = BundleAssembler(self.config, self.chain, self.allocator, builder)

        self.submit = Mock(side_effect=lambda bundle: BundleHandle(bundle_hash="0xsold", bundle=bundle))

        self.coordinator = LiquidationCoordinator(self.chain, self.assembler, self.submit)
        self.a = Account.create()
        self.b = Account.create()

    def test_empty_and_funded_wallets(self):
        self.balances[self.b.address] = 5000

        outcomes = self.coordinator.liquidate_all([self.a, self.b], TOKEN)

        self.assertEqual([o.status for o in outcomes], [NO_TOKENS, SUCCESS])
        self.assertEqual(outcomes[0].address, self.a.address)
        self.assertIsNone(outcomes[0].bundle_hash)
        self.assertEqual(outcomes[1].bundle_hash, "0xsold")
        self.assertEqual(self.submit.call_count, 1)

    def test_sell_bundle_sells_full_balance(self):
        self.balances[self.b.address] = 5000
        self.coordinator.liquidate(self.b, TOKEN)

        bundle = self.submit.call_args.args[0]
        self.assertEqual([t.kind for t in bundle], [TxKind.APPROVAL, TxKind.SELL])
        self.assertTrue(all(t.sender == self.b.address for t in bundle))

    def test_failure_is_isolated(self):
        self.balances[self.a.address] = 100
        self.balances[self.b.address] = 200
        handle = Mock(bundle_hash="0xsecond")
        self.submit.side_effect = [RelayUnavailableError("Relay timed out after 30.0s"), handle]

        outcomes = self.coordinator.liquidate_all([self.a, self.b], TOKEN)

        self.assertEqual(outcomes[0].status, "Error: Relay timed out after 30.0s")
        self.assertEqual(outcomes[1].status, SUCCESS)
        self.assertEqual(outcomes[1].bundle_hash, "0xsecond")

    def test_balance_read_failure_is_isolated(self):
        self.chain.token_balance.side_effect = [ConnectionError("rpc down"), 10]

        outcomes = self.coordinator.liquidate_all([self.a, self.b], TOKEN)

        self.assertTrue(outcomes[0].status.startswith("Error:"))
        self.assertEqual(outcomes[1].status, SUCCESS)

    def test_unsent_bundle_is_dry_run(self):
        self.submit.side_effect = lambda bundle: None
        self.balances[self.a.address] = 100

        outcome = self.coordinator.liquidate(self.a, TOKEN)

        self.assertEqual(outcome.status, DRY_RUN)
        self.assertIsNone(outcome.bundle_hash)

    def test_released_sell_nonces_are_reused(self):
        self.balances[self.a.address] = 100

        def reject(bundle):
            self.allocator.release_bundle(bundle)
            raise RelayUnavailableError("Relay timed out after 30.0s")

        self.submit.side_effect = reject
        failed = self.coordinator.liquidate_all([self.a], TOKEN)
        self.submit.side_effect = lambda bundle: BundleHandle(bundle_hash="0xretry", bundle=bundle)
        retried = self.coordinator.liquidate(self.a, TOKEN)

        self.assertTrue(failed[0].status.startswith("Error:"))
        self.assertEqual(retried.status, SUCCESS)
        bundle = self.submit.call_args.args[0]
        self.assertEqual([t.nonce for t in bundle], [0, 1])

    def test_outcome_dict(self):
        outcome = self.coordinator.liquidate(self.a, TOKEN)
        self.assertEqual(outcome.to_dict(), {'address': self.a.address, 'status': NO_TOKENS, 'bundle_hash': None})


if __name__ == "__main__":
    unittest.main()
