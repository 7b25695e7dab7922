"""
Signed Transaction Builder
==========================

Turns TransactionIntents into signed EIP-1559 transactions, and provides
factories for each transaction class the bundler signs (approval,
liquidity add, buy, sell, plain transfer) with the fixed gas policy of
that class applied.
"""

from typing import Any, Dict

import rlp
from eth_account import Account
from eth_utils import big_endian_to_int, to_checksum_address
from web3 import Web3

from config import BundlerConfig
from .contracts import V2CallEncoder
from .models import TransactionIntent, SignedTransaction, TxKind
from utils import InvalidIntentError, SigningError, validate_address

# EIP-2718 envelope byte for dynamic-fee transactions
DYNAMIC_FEE_TX_TYPE = 2


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


class SignedTransactionBuilder:
    """Validates intents and signs them with the sender's key."""

    def __init__(self, config: BundlerConfig):
        self.config = config
        self.gas = config.gas
        self.encoder = V2CallEncoder(config.router_address, config.weth_address)

    # ------------------------------------------------------------------
    # Intent factories
    # ------------------------------------------------------------------

    def _intent(self, sender, nonce: int, to: str, value: int, data: bytes,
                gas: int, kind: TxKind) -> TransactionIntent:
        return TransactionIntent(
            to=to,
            value=value,
            data=data,
            gas=gas,
            max_fee_per_gas=self.gas.max_fee_wei,
            max_priority_fee_per_gas=self.gas.priority_fee_wei,
            chain_id=self.config.chain_id,
            sender=sender,
            nonce=nonce,
            kind=kind,
        )

    def approval_intent(self, sender, nonce: int, token: str, amount: int) -> TransactionIntent:
        """Approve the router to spend `amount` of token."""
        data = self.encoder.approve(self.encoder.router, amount)
        return self._intent(sender, nonce, token, 0, data, self.gas.approve_gas, TxKind.APPROVAL)

    def add_liquidity_intent(self, sender, nonce: int, token: str, token_amount: int,
                             eth_amount: int, deadline: int) -> TransactionIntent:
        data = self.encoder.add_liquidity_eth(token, token_amount, eth_amount, sender.address, deadline)
        return self._intent(sender, nonce, self.encoder.router, eth_amount, data,
                            self.gas.add_liquidity_gas, TxKind.ADD_LIQUIDITY)

    def buy_intent(self, sender, nonce: int, token: str, eth_amount: int,
                   deadline: int, min_out: int = 0) -> TransactionIntent:
        data = self.encoder.swap_exact_eth_for_tokens(token, min_out, sender.address, deadline)
        return self._intent(sender, nonce, self.encoder.router, eth_amount, data,
                            self.gas.buy_gas, TxKind.BUY)

    def sell_intent(self, sender, nonce: int, token: str, token_amount: int,
                    deadline: int, min_out: int = 0) -> TransactionIntent:
        data = self.encoder.swap_exact_tokens_for_eth(token, token_amount, min_out, sender.address, deadline)
        return self._intent(sender, nonce, self.encoder.router, 0, data,
                            self.gas.sell_gas, TxKind.SELL)

    def transfer_intent(self, sender, nonce: int, recipient: str, amount: int) -> TransactionIntent:
        return self._intent(sender, nonce, recipient, amount, b"", self.gas.transfer_gas, TxKind.TRANSFER)

    # ------------------------------------------------------------------
    # Validation and signing
    # ------------------------------------------------------------------

    @staticmethod
    def validate(intent: TransactionIntent):
        """Raise InvalidIntentError on any malformed field."""
        if not validate_address(intent.to):
            raise InvalidIntentError(f"Recipient is not a valid address: {intent.to!r}")
        if not _is_int(intent.value) or intent.value < 0:
            raise InvalidIntentError(f"Value must be a non-negative integer, got {intent.value!r}")
        if not _is_int(intent.gas) or intent.gas <= 0:
            raise InvalidIntentError(f"Gas limit must be positive, got {intent.gas!r}")
        if not _is_int(intent.max_fee_per_gas) or not _is_int(intent.max_priority_fee_per_gas):
            raise InvalidIntentError("Fee caps must be integers")
        if intent.max_priority_fee_per_gas < 0:
            raise InvalidIntentError("Priority fee cap cannot be negative")
        if intent.max_fee_per_gas < intent.max_priority_fee_per_gas:
            raise InvalidIntentError(
                f"Fee cap {intent.max_fee_per_gas} is below priority fee cap "
                f"{intent.max_priority_fee_per_gas}"
            )
        if not _is_int(intent.nonce) or intent.nonce < 0:
            raise InvalidIntentError(f"Nonce must be a non-negative integer, got {intent.nonce!r}")
        if not _is_int(intent.chain_id) or intent.chain_id <= 0:
            raise InvalidIntentError(f"Chain id must be positive, got {intent.chain_id!r}")
        if not isinstance(intent.data, (bytes, bytearray)):
            raise InvalidIntentError("Calldata must be bytes")

    def build(self, intent: TransactionIntent) -> SignedTransaction:
        """
        Validate and sign an intent.

        Raises:
            InvalidIntentError: A field is malformed
            SigningError: The sender cannot sign or the key rejects the payload
        """
        self.validate(intent)

        sign = getattr(intent.sender, "sign_transaction", None)
        if sign is None:
            raise SigningError("Sender has no signing capability")

        tx = intent.to_tx_dict()
        tx['to'] = to_checksum_address(intent.to)
        tx['data'] = bytes(intent.data)

        try:
            signed = sign(tx)
        except Exception as e:
            raise SigningError(f"Signing failed: {e}") from e

        raw = getattr(signed, "raw_transaction", None) or getattr(signed, "rawTransaction", None)
        if not raw:
            raise SigningError("Signer returned no raw transaction")
        raw = bytes(raw)

        return SignedTransaction(
            raw=raw,
            hash=Web3.to_hex(Web3.keccak(raw)),
            sender=intent.sender.address,
            nonce=intent.nonce,
            to=tx['to'],
            value=intent.value,
            kind=intent.kind,
        )

    @staticmethod
    def decode(raw: bytes) -> Dict[str, Any]:
        """
        Decode a signed dynamic-fee transaction back into its fields.

        The sender is recovered from the signature.
        """
        if isinstance(raw, str):
            raw = bytes.fromhex(raw[2:] if raw.startswith("0x") else raw)
        if not raw or raw[0] != DYNAMIC_FEE_TX_TYPE:
            raise ValueError("Not a dynamic-fee (type 2) transaction")

        fields = rlp.decode(raw[1:])
        (chain_id, nonce, priority_fee, max_fee, gas, to, value, data) = fields[:8]

        return {
            'chain_id': big_endian_to_int(chain_id),
            'nonce': big_endian_to_int(nonce),
            'max_priority_fee_per_gas': big_endian_to_int(priority_fee),
            'max_fee_per_gas': big_endian_to_int(max_fee),
            'gas': big_endian_to_int(gas),
            'to': to_checksum_address(to) if to else None,
            'value': big_endian_to_int(value),
            'data': bytes(data),
            'sender': Account.recover_transaction(raw),
        }
