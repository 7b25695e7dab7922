"""
Bundle Data Model
=================

Intents, signed transactions, bundles and settlement records.
"""

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence

from utils import StaleNonceError


class TxKind(Enum):
    """Transaction classes; each has its own fixed gas limit."""
    APPROVAL = "approval"
    ADD_LIQUIDITY = "add_liquidity"
    BUY = "buy"
    SELL = "sell"
    TRANSFER = "transfer"


class SettlementStatus(Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"


@dataclass(frozen=True)
class TransactionIntent:
    """Unsigned EIP-1559 transaction description."""
    to: str
    value: int
    data: bytes
    gas: int
    max_fee_per_gas: int
    max_priority_fee_per_gas: int
    chain_id: int
    sender: Any  # LocalAccount
    nonce: int
    kind: TxKind = TxKind.TRANSFER

    def to_tx_dict(self) -> Dict[str, Any]:
        """Dictionary accepted by eth_account's sign_transaction."""
        return {
            'type': 2,
            'to': self.to,
            'value': self.value,
            'data': self.data,
            'gas': self.gas,
            'maxFeePerGas': self.max_fee_per_gas,
            'maxPriorityFeePerGas': self.max_priority_fee_per_gas,
            'nonce': self.nonce,
            'chainId': self.chain_id,
        }


@dataclass(frozen=True)
class SignedTransaction:
    """A signed, encoded transaction plus the fields needed for tracking."""
    raw: bytes
    hash: str
    sender: str
    nonce: int
    to: str
    value: int
    kind: TxKind

    @property
    def raw_hex(self) -> str:
        return "0x" + self.raw.hex()


@dataclass
class Bundle:
    """
    Ordered transactions submitted atomically.

    Per sender, nonces must increase by exactly one in sequence order, and
    no transaction may appear twice.
    """
    transactions: List[SignedTransaction]
    label: str = "bundle"

    def __post_init__(self):
        if not self.transactions:
            raise ValueError("A bundle needs at least one transaction")

        seen_hashes = set()
        last_nonce: Dict[str, int] = {}
        for tx in self.transactions:
            if tx.hash in seen_hashes:
                raise ValueError(f"Duplicate transaction in bundle: {tx.hash}")
            seen_hashes.add(tx.hash)

            sender = tx.sender.lower()
            previous = last_nonce.get(sender)
            if previous is not None and tx.nonce != previous + 1:
                raise ValueError(
                    f"Nonce order broken for {tx.sender}: {previous} then {tx.nonce}"
                )
            last_nonce[sender] = tx.nonce

    def __len__(self) -> int:
        return len(self.transactions)

    def __iter__(self):
        return iter(self.transactions)

    def __getitem__(self, index):
        return self.transactions[index]

    @property
    def hashes(self) -> List[str]:
        return [tx.hash for tx in self.transactions]

    def raw_transactions(self) -> List[str]:
        """Hex-encoded signed transactions in submission order."""
        return [tx.raw_hex for tx in self.transactions]


@dataclass
class BundleHandle:
    """What the relay gave back for an accepted bundle."""
    bundle_hash: str
    bundle: Bundle
    target_block: Optional[int] = None
    submitted_at: float = field(default_factory=time.time)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'bundle_hash': self.bundle_hash,
            'label': self.bundle.label,
            'target_block': self.target_block,
            'submitted_at': self.submitted_at,
            'transactions': [
                {
                    'hash': tx.hash,
                    'sender': tx.sender,
                    'nonce': tx.nonce,
                    'to': tx.to,
                    'value': tx.value,
                    'kind': tx.kind.value,
                }
                for tx in self.bundle
            ],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BundleHandle":
        """Rebuild a handle from the bundle log; raw bytes are not kept there."""
        transactions = [
            SignedTransaction(
                raw=b"",
                hash=tx['hash'],
                sender=tx['sender'],
                nonce=tx['nonce'],
                to=tx['to'],
                value=tx['value'],
                kind=TxKind(tx['kind']),
            )
            for tx in data['transactions']
        ]
        return cls(
            bundle_hash=data['bundle_hash'],
            bundle=Bundle(transactions, label=data.get('label', 'bundle')),
            target_block=data.get('target_block'),
            submitted_at=data.get('submitted_at', time.time()),
        )


@dataclass
class SettlementRecord:
    """Per-transaction outcome; only ever moves Pending -> Confirmed."""
    tx_hash: str
    kind: TxKind
    position: int
    sender: str
    nonce: int
    status: SettlementStatus = SettlementStatus.PENDING
    block_number: Optional[int] = None
    gas_used: Optional[int] = None
    succeeded: Optional[bool] = None

    @property
    def is_confirmed(self) -> bool:
        return self.status is SettlementStatus.CONFIRMED

    def confirm(self, block_number: int, gas_used: int, succeeded: bool) -> bool:
        """
        Record inclusion.

        Returns True on the transition, False if already confirmed; the
        first receipt's values are kept.
        """
        if self.is_confirmed:
            return False
        self.status = SettlementStatus.CONFIRMED
        self.block_number = block_number
        self.gas_used = gas_used
        self.succeeded = succeeded
        return True


@dataclass
class SettlementReport:
    """Result of waiting on a bundle: possibly partial."""
    bundle_hash: str
    records: List[SettlementRecord]
    stale: List[SettlementRecord] = field(default_factory=list)
    timed_out: bool = False

    @property
    def confirmed(self) -> List[SettlementRecord]:
        return [r for r in self.records if r.is_confirmed]

    @property
    def pending(self) -> List[SettlementRecord]:
        return [r for r in self.records if not r.is_confirmed]

    @property
    def complete(self) -> bool:
        return all(r.is_confirmed for r in self.records)

    def by_kind(self, kind: TxKind) -> List[SettlementRecord]:
        return [r for r in self.records if r.kind is kind]

    def raise_for_stale(self):
        """Raise StaleNonceError for the first superseded transaction, if any."""
        if self.stale:
            record = self.stale[0]
            raise StaleNonceError(
                f"Nonce {record.nonce} of {record.sender} was used by another transaction; "
                f"reassemble with fresh nonces",
                address=record.sender,
                nonce=record.nonce,
            )


@dataclass
class LaunchPlan:
    """
    Amounts for a liquidity + buy bundle, in base units.

    buy_amounts holds one value per buyer account, or a single value applied
    to every buyer.
    """
    token_address: str
    token_amount: int
    eth_amount: int
    buy_amounts: Sequence[int]
    min_tokens_out: int = 0

    def amounts_for(self, buyer_count: int) -> List[int]:
        amounts = list(self.buy_amounts)
        if len(amounts) == 1:
            return amounts * buyer_count
        if len(amounts) != buyer_count:
            raise ValueError(
                f"{len(amounts)} buy amounts given for {buyer_count} buyer accounts"
            )
        return amounts


@dataclass
class LiquidationOutcome:
    address: str
    status: str
    bundle_hash: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {'address': self.address, 'status': self.status, 'bundle_hash': self.bundle_hash}
