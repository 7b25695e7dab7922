"""
Nonce Allocation
================

Hands out consecutive nonces per account for one batch-construction pass.

The starting nonce is the larger of the on-chain transaction count and the
highest nonce this session already handed out, so nonces are never reused
for an account within a session even while an earlier bundle is unsettled.
"""

import threading
from contextlib import contextmanager
from typing import Dict, Iterator, List, Optional, Set

from .chain import ChainState
from utils import logger, format_address, NonceAllocationError


class NonceAllocator:
    """Per-account, gap-free nonce runs backed by the chain's transaction count."""

    def __init__(self, chain: ChainState):
        self.chain = chain
        self._next: Dict[str, int] = {}
        self._lock = threading.Lock()
        self._batch: Optional[Set[str]] = None

    @staticmethod
    def _key(account) -> str:
        address = account if isinstance(account, str) else account.address
        return address.lower()

    @contextmanager
    def batch(self) -> Iterator["NonceAllocator"]:
        """
        Scope one batch-construction pass.

        Inside the block each account may be allocated for only once; the
        single call must request the whole run it needs. If the block
        raises, nothing was signed, so the allocations are rolled back.
        """
        with self._lock:
            if self._batch is not None:
                raise NonceAllocationError("A batch is already being assembled")
            self._batch = set()
            snapshot = dict(self._next)
        try:
            yield self
        except BaseException:
            with self._lock:
                self._next = snapshot
            raise
        finally:
            with self._lock:
                self._batch = None

    def allocate(self, account, count: int = 1) -> List[int]:
        """
        Reserve `count` consecutive nonces for account.

        Returns:
            The nonces, ascending by one with no gaps
        """
        if count < 1:
            raise ValueError(f"Nonce count must be positive, got {count}")

        key = self._key(account)
        address = account if isinstance(account, str) else account.address

        with self._lock:
            if self._batch is not None:
                if key in self._batch:
                    raise NonceAllocationError(
                        f"Nonces for {format_address(address)} were already allocated in this batch"
                    )
                self._batch.add(key)

            on_chain = self.chain.transaction_count(address)
            start = max(on_chain, self._next.get(key, 0))
            if start > on_chain:
                logger.debug(
                    f"{format_address(address)}: chain nonce {on_chain}, "
                    f"continuing from session nonce {start}"
                )
            self._next[key] = start + count

        return list(range(start, start + count))

    def peek(self, account) -> Optional[int]:
        """Next nonce this session would hand out, if the account was seen."""
        return self._next.get(self._key(account))

    def release(self, account, from_nonce: Optional[int] = None):
        """
        Give nonces back.

        With from_nonce, the session mark is lowered to it (never raised);
        this undoes an allocation whose bundle was never submitted. Without
        it, the mark is forgotten and the next allocation follows the chain.
        """
        key = self._key(account)
        with self._lock:
            if from_nonce is None:
                self._next.pop(key, None)
            elif key in self._next:
                self._next[key] = min(self._next[key], from_nonce)

    def release_bundle(self, bundle):
        """Undo the allocations behind a bundle that was never accepted."""
        first_nonce: Dict[str, int] = {}
        for tx in bundle:
            first_nonce.setdefault(self._key(tx.sender), tx.nonce)
        for sender, nonce in first_nonce.items():
            self.release(sender, from_nonce=nonce)

    def is_stale(self, address: str, nonce: int) -> bool:
        """True when the chain has already consumed `nonce` for address."""
        return self.chain.transaction_count(address) > nonce
