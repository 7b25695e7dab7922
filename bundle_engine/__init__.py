"""
Bundle Engine
=============

Builds, relays and tracks atomic transaction bundles on an EVM chain.

Pipeline:
- NonceAllocator: gap-free nonce runs per account
- SignedTransactionBuilder: validated, signed EIP-1559 transactions
- BundleAssembler: funding, launch (liquidity + buys) and liquidation bundles
- RelaySubmitter: eth_sendBundle to a block-builder relay
- SettlementMonitor: per-transaction inclusion tracking with a timeout
- LiquidationCoordinator: per-account sell bundles, failures isolated

Usage:
    from bundle_engine import BundlerSession, LaunchPlan

    with BundlerSession(config) as session:
        handle = session.launch(dev, buyers, plan)
        report = session.monitor(handle)
"""

from .assembler import BundleAssembler
from .builder import SignedTransactionBuilder
from .chain import ChainState
from .liquidation import LiquidationCoordinator
from .models import (
    Bundle,
    BundleHandle,
    LaunchPlan,
    LiquidationOutcome,
    SettlementRecord,
    SettlementReport,
    SettlementStatus,
    SignedTransaction,
    TransactionIntent,
    TxKind,
)
from .monitor import SettlementMonitor
from .nonces import NonceAllocator
from .relay import RelaySubmitter
from .session import BundlerSession

__all__ = [
    "BundleAssembler",
    "SignedTransactionBuilder",
    "ChainState",
    "LiquidationCoordinator",
    "Bundle",
    "BundleHandle",
    "LaunchPlan",
    "LiquidationOutcome",
    "SettlementRecord",
    "SettlementReport",
    "SettlementStatus",
    "SignedTransaction",
    "TransactionIntent",
    "TxKind",
    "SettlementMonitor",
    "NonceAllocator",
    "RelaySubmitter",
    "BundlerSession",
]
