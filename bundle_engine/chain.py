"""
Read-State Provider
===================

Thin wrapper over a Web3 HTTP provider for the reads the bundler needs.
One instance is created per session and shared read-only by every
component; it holds no per-account state.
"""

from typing import Any, Callable, Dict, Optional

import requests
from web3 import Web3
from web3.exceptions import TransactionNotFound
from tenacity import Retrying, stop_after_attempt, wait_exponential, retry_if_exception_type

from .contracts import ERC20_ABI
from utils import logger


# Read failures worth another attempt; everything else propagates
TRANSIENT_ERRORS = (
    requests.exceptions.ConnectionError,
    requests.exceptions.Timeout,
)


class ChainState:
    """Read-only chain queries with retry on transient transport errors."""

    def __init__(self, web3: Web3, retries: int = 3):
        self.web3 = web3
        self._retrying = Retrying(
            stop=stop_after_attempt(max(1, retries)),
            wait=wait_exponential(multiplier=0.5, min=0.5, max=4),
            retry=retry_if_exception_type(TRANSIENT_ERRORS),
            reraise=True,
        )
        self._decimals_cache: Dict[str, int] = {}

    @classmethod
    def from_url(cls, rpc_url: str, retries: int = 3, timeout: float = 30.0) -> "ChainState":
        web3 = Web3(Web3.HTTPProvider(rpc_url, request_kwargs={'timeout': timeout}))
        return cls(web3, retries=retries)

    def _call(self, fn: Callable, *args) -> Any:
        return self._retrying(fn, *args)

    def is_connected(self) -> bool:
        try:
            return bool(self.web3.is_connected())
        except TRANSIENT_ERRORS as e:
            logger.warning(f"RPC connection check failed: {e}")
            return False

    def transaction_count(self, address: str, block: str = "latest") -> int:
        """Number of transactions sent from address, i.e. its next nonce."""
        checksum = Web3.to_checksum_address(address)
        return int(self._call(self.web3.eth.get_transaction_count, checksum, block))

    def eth_balance(self, address: str) -> int:
        return int(self._call(self.web3.eth.get_balance, Web3.to_checksum_address(address)))

    def _token(self, token_address: str):
        return self.web3.eth.contract(address=Web3.to_checksum_address(token_address), abi=ERC20_ABI)

    def token_balance(self, token_address: str, address: str) -> int:
        """Raw ERC-20 balance in base units."""
        fn = self._token(token_address).functions.balanceOf(Web3.to_checksum_address(address))
        return int(self._call(fn.call))

    def token_decimals(self, token_address: str) -> int:
        key = token_address.lower()
        if key not in self._decimals_cache:
            fn = self._token(token_address).functions.decimals()
            self._decimals_cache[key] = int(self._call(fn.call))
        return self._decimals_cache[key]

    def block_number(self) -> int:
        return int(self._call(lambda: self.web3.eth.block_number))

    def get_receipt(self, tx_hash: str) -> Optional[Dict[str, Any]]:
        """Receipt for tx_hash, or None while it is not mined."""
        try:
            return self._call(self.web3.eth.get_transaction_receipt, tx_hash)
        except TransactionNotFound:
            return None
