"""
Settlement Monitoring
=====================

Polls the chain after a bundle is accepted and reports, per transaction,
whether and where it was included.

The relay gives no per-transaction receipt guarantee, so every hash is
looked up individually. A record moves Pending -> Confirmed once and
never back. Waiting is always bounded; on timeout the caller gets the
partial result.

Classification uses the kind recorded when the transaction was built
(approval / add_liquidity / buy / sell / transfer), not the destination
address, so repeated calls to the router are told apart.
"""

import time
from typing import Callable, Iterator, List, Optional

from config import BundlerConfig
from logging_utils import MetricsCollector, timed_operation
from .chain import ChainState
from .models import BundleHandle, SettlementRecord, SettlementReport, TxKind
from .nonces import NonceAllocator
from utils import logger, format_tx_hash

KIND_LABELS = {
    TxKind.APPROVAL: "Approval",
    TxKind.ADD_LIQUIDITY: "Liquidity",
    TxKind.BUY: "Buy",
    TxKind.SELL: "Sell",
    TxKind.TRANSFER: "Transfer",
}


class SettlementMonitor:
    """Tracks inclusion of every transaction in a submitted bundle."""

    def __init__(
        self,
        config: BundlerConfig,
        chain: ChainState,
        allocator: Optional[NonceAllocator] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
        collector: Optional[MetricsCollector] = None,
    ):
        self.config = config
        self.chain = chain
        self.allocator = allocator
        self.poll_interval = config.poll_interval_seconds
        self._clock = clock
        self._sleep = sleep
        self.collector = collector

    @staticmethod
    def records_for(handle: BundleHandle) -> List[SettlementRecord]:
        """One pending record per transaction, in bundle order."""
        return [
            SettlementRecord(
                tx_hash=tx.hash,
                kind=tx.kind,
                position=i,
                sender=tx.sender,
                nonce=tx.nonce,
            )
            for i, tx in enumerate(handle.bundle)
        ]

    @staticmethod
    def _outstanding(report: SettlementReport) -> List[SettlementRecord]:
        stale = {id(r) for r in report.stale}
        return [r for r in report.records if not r.is_confirmed and id(r) not in stale]

    def _is_stale(self, record: SettlementRecord) -> bool:
        if self.allocator is None:
            return False
        return self.allocator.is_stale(record.sender, record.nonce)

    def _poll_once(self, pending: List[SettlementRecord], report: SettlementReport) -> List[SettlementRecord]:
        """Query receipts for pending records; return those newly confirmed."""
        confirmed = []
        for record in pending:
            # Nonce counts are read before the receipt so a transaction mined
            # in between is seen as confirmed rather than stale
            stale = self._is_stale(record)
            receipt = self.chain.get_receipt(record.tx_hash)
            if receipt is not None:
                if record.confirm(
                    block_number=receipt['blockNumber'],
                    gas_used=receipt['gasUsed'],
                    succeeded=receipt.get('status', 1) == 1,
                ):
                    confirmed.append(record)
            elif stale:
                logger.warning(
                    f"{KIND_LABELS[record.kind]} transaction {format_tx_hash(record.tx_hash)} "
                    f"can no longer land: nonce {record.nonce} already used"
                )
                report.stale.append(record)
        return confirmed

    def track(
        self,
        handle: BundleHandle,
        timeout: Optional[float] = None,
        report: Optional[SettlementReport] = None,
    ) -> Iterator[SettlementRecord]:
        """
        Yield each record as it is confirmed.

        Stops when every transaction is confirmed or stale, or when timeout
        seconds have passed. Pass a report to receive the stale list and the
        timed_out flag.
        """
        if timeout is None:
            timeout = self.config.monitor_timeout_seconds
        if report is None:
            report = SettlementReport(bundle_hash=handle.bundle_hash, records=self.records_for(handle))

        deadline = self._clock() + timeout
        last_head: Optional[int] = None

        while True:
            pending = self._outstanding(report)
            if not pending:
                return

            head = self.chain.block_number()
            if head != last_head:
                last_head = head
                for record in self._poll_once(pending, report):
                    status = "succeeded" if record.succeeded else "reverted"
                    logger.info(
                        f"{KIND_LABELS[record.kind]} transaction {format_tx_hash(record.tx_hash)} "
                        f"confirmed in block {record.block_number} ({status}, gas {record.gas_used})"
                    )
                    yield record
                pending = self._outstanding(report)
                if not pending:
                    return

            if self._clock() >= deadline:
                report.timed_out = True
                logger.warning(
                    f"Stopped monitoring {format_tx_hash(handle.bundle_hash)} after {timeout}s: "
                    f"{len(pending)} transaction(s) still pending"
                )
                return

            self._sleep(self.poll_interval)

    def wait(self, handle: BundleHandle, timeout: Optional[float] = None) -> SettlementReport:
        """Block until settled or timed out and return the (possibly partial) report."""
        report = SettlementReport(bundle_hash=handle.bundle_hash, records=self.records_for(handle))

        logger.info(f"Monitoring bundle {format_tx_hash(handle.bundle_hash)} ({len(report.records)} txs)")
        with timed_operation("settlement_wait", self.collector, {'label': handle.bundle.label}) as metric:
            metric.bundle_hash = handle.bundle_hash
            metric.tx_count = len(report.records)
            for _ in self.track(handle, timeout=timeout, report=report):
                pass

        logger.info(
            f"Settlement: {len(report.confirmed)} confirmed, {len(report.pending)} pending, "
            f"{len(report.stale)} stale"
        )
        return report
