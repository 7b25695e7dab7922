"""
Token Liquidation
=================

Sells each account's full token balance through its own approve + sell
bundle. Accounts are processed one at a time and a failure on one account
is recorded, never raised, so the rest of the batch still runs.

Bundles go out through a submit callable (BundlerSession.submit in the
session), which returns None when nothing was sent (dry run).
"""

from typing import Callable, List, Optional, Sequence

from .assembler import BundleAssembler
from .chain import ChainState
from .models import Bundle, BundleHandle, LiquidationOutcome
from utils import logger, format_address, sanitize_error_message

NO_TOKENS = "no tokens to sell"
SUCCESS = "Success"
DRY_RUN = "Dry run"


class LiquidationCoordinator:
    """Per-account sell bundles with isolated failures."""

    def __init__(self, chain: ChainState, assembler: BundleAssembler,
                 submit: Callable[[Bundle], Optional[BundleHandle]]):
        self.chain = chain
        self.assembler = assembler
        self.submit = submit

    def liquidate(self, account, token_address: str) -> LiquidationOutcome:
        balance = self.chain.token_balance(token_address, account.address)
        if balance == 0:
            return LiquidationOutcome(address=account.address, status=NO_TOKENS)

        logger.info(f"Selling {balance} tokens from {format_address(account.address)}")
        bundle = self.assembler.assemble_liquidation(account, token_address, balance)
        handle = self.submit(bundle)
        if handle is None:
            return LiquidationOutcome(address=account.address, status=DRY_RUN)
        return LiquidationOutcome(address=account.address, status=SUCCESS, bundle_hash=handle.bundle_hash)

    def liquidate_all(self, accounts: Sequence, token_address: str) -> List[LiquidationOutcome]:
        outcomes = []
        for account in accounts:
            try:
                outcome = self.liquidate(account, token_address)
            except Exception as e:
                message = sanitize_error_message(e)
                logger.error(f"Error for wallet {format_address(account.address)}: {message}")
                outcome = LiquidationOutcome(address=account.address, status=f"Error: {message}")
            outcomes.append(outcome)

        sold = sum(1 for o in outcomes if o.status == SUCCESS)
        logger.info(f"Liquidation complete: {sold}/{len(outcomes)} accounts sold")
        return outcomes
