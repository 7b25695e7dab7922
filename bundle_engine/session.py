"""
Bundler Session
===============

Creates every component from one BundlerConfig and owns the network
handles. Create one at process start and close it at shutdown:

    with BundlerSession(config) as session:
        handle = session.launch(dev, buyers, plan)
        report = session.monitor(handle)

Funding, launch and liquidation are separate relay calls; a failed launch
leaves completed funding untouched.
"""

import json
from pathlib import Path
from typing import Callable, List, Optional, Sequence

import requests

from config import BundlerConfig
from logging_utils import MetricsCollector, metrics as default_metrics
from .assembler import BundleAssembler
from .builder import SignedTransactionBuilder
from .chain import ChainState
from .liquidation import LiquidationCoordinator
from .models import Bundle, BundleHandle, LaunchPlan, LiquidationOutcome, SettlementReport
from .monitor import SettlementMonitor
from .nonces import NonceAllocator
from .relay import RelaySubmitter
from utils import logger, format_tx_hash, BundlerError


class BundlerSession:
    """Explicit lifecycle for the chain connection, relay session and components."""

    def __init__(
        self,
        config: BundlerConfig,
        chain: Optional[ChainState] = None,
        http: Optional[requests.Session] = None,
        collector: Optional[MetricsCollector] = None,
    ):
        self.config = config
        self.chain = chain or ChainState.from_url(
            config.rpc_url, retries=config.read_retries, timeout=config.relay_timeout_seconds
        )
        self.http = http or requests.Session()
        self.collector = collector or default_metrics

        self.allocator = NonceAllocator(self.chain)
        self.builder = SignedTransactionBuilder(config)
        self.assembler = BundleAssembler(config, self.chain, self.allocator, self.builder)
        self.submitter = RelaySubmitter(config, session=self.http, collector=self.collector)
        self.settlement = SettlementMonitor(config, self.chain, self.allocator, collector=self.collector)
        self.liquidator = LiquidationCoordinator(self.chain, self.assembler, self.submit)
        self._closed = False

    def __enter__(self) -> "BundlerSession":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False

    def close(self):
        if self._closed:
            return
        self.http.close()
        self._closed = True
        logger.debug("Bundler session closed")

    def submit(self, bundle: Bundle, target_block: Optional[int] = None) -> Optional[BundleHandle]:
        """
        Submit unless dry run; accepted bundles are appended to the bundle log.

        A bundle that is not accepted gives its nonces back, so the next
        assembly for those accounts starts where this one did.
        """
        if self.config.dry_run:
            logger.info(f"[DRY RUN] Would submit {bundle.label} bundle with {len(bundle)} transactions")
            self.allocator.release_bundle(bundle)
            return None
        try:
            handle = self.submitter.submit(bundle, target_block)
        except BundlerError:
            self.allocator.release_bundle(bundle)
            raise
        self._record(handle)
        return handle

    def _record(self, handle: BundleHandle):
        """Append the accepted bundle to the bundle log for later monitoring."""
        path = Path(self.config.bundle_log)
        history = []
        if path.exists():
            with open(path, 'r') as f:
                history = json.load(f)
        history.append(handle.to_dict())
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, 'w') as f:
            json.dump(history, f, indent=2)

    def fund(self, funder, recipients: Sequence, amount_wei: int) -> Optional[BundleHandle]:
        bundle = self.assembler.assemble_funding(funder, recipients, amount_wei)
        return self.submit(bundle)

    def launch(
        self,
        dev_account,
        buyer_accounts: Sequence,
        plan: LaunchPlan,
        confirm: Optional[Callable[[Bundle], bool]] = None,
        target_block: Optional[int] = None,
    ) -> Optional[BundleHandle]:
        """
        Assemble the liquidity + buy bundle and submit it.

        confirm, when given, sees the signed bundle and can veto submission
        by returning False (the CLI's confirm-to-send gate).
        """
        bundle = self.assembler.assemble(dev_account, buyer_accounts, plan)
        if confirm is not None and not confirm(bundle):
            logger.info("Launch cancelled before submission")
            self.allocator.release_bundle(bundle)
            return None
        handle = self.submit(bundle, target_block)
        if handle:
            logger.info(f"Launch bundle hash: {format_tx_hash(handle.bundle_hash)}")
        return handle

    def monitor(self, handle: BundleHandle, timeout: Optional[float] = None) -> SettlementReport:
        return self.settlement.wait(handle, timeout=timeout)

    def sell_all(self, accounts: Sequence, token_address: str) -> List[LiquidationOutcome]:
        return self.liquidator.liquidate_all(accounts, token_address)
