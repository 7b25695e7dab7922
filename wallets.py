"""
Wallet Generation
=================

Creates throwaway buyer wallets and writes the generated-wallet record
file: a JSON list of {"address", "privateKey"} pairs. Each run overwrites
the file.

The file holds raw private keys, so it is written owner-only (0o600).
"""

import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Sequence

from eth_account import Account
from eth_account.signers.local import LocalAccount

from utils import logger, format_address


@dataclass
class WalletRecord:
    """One generated wallet as persisted."""
    address: str
    private_key: str

    def to_dict(self) -> Dict[str, Any]:
        return {"address": self.address, "privateKey": self.private_key}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "WalletRecord":
        return cls(address=data["address"], private_key=data["privateKey"])

    @classmethod
    def from_account(cls, account: LocalAccount) -> "WalletRecord":
        return cls(address=account.address, private_key="0x" + bytes(account.key).hex())

    def to_account(self) -> LocalAccount:
        account = Account.from_key(self.private_key)
        if account.address.lower() != self.address.lower():
            raise ValueError(f"Stored key does not match address {self.address}")
        return account


def generate_wallets(count: int) -> List[LocalAccount]:
    """Create `count` fresh accounts."""
    if count <= 0:
        raise ValueError("Please enter a valid number greater than 0")

    accounts = [Account.create() for _ in range(count)]
    for i, account in enumerate(accounts, start=1):
        logger.info(f"Wallet {i}: {format_address(account.address)}")
    return accounts


def save_wallets(path: str, accounts: Sequence[LocalAccount]) -> Path:
    """Write the wallet record file, replacing any previous run's file."""
    wallet_file = Path(path)
    wallet_file.parent.mkdir(parents=True, exist_ok=True)

    records = [WalletRecord.from_account(a).to_dict() for a in accounts]
    with open(wallet_file, 'w') as f:
        json.dump(records, f, indent=2)
    os.chmod(wallet_file, 0o600)

    logger.info(f"{len(records)} wallets saved to {wallet_file}")
    return wallet_file


def load_wallets(path: str) -> List[LocalAccount]:
    """Read the wallet record file back into signing accounts."""
    wallet_file = Path(path)
    if not wallet_file.exists():
        raise FileNotFoundError(f"Wallet file not found: {wallet_file}")

    with open(wallet_file, 'r') as f:
        data = json.load(f)

    return [WalletRecord.from_dict(item).to_account() for item in data]
