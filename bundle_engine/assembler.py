"""
Bundle Assembly
===============

One pipeline, three configurations:

- launch:      [approve, addLiquidityETH, buy_1 .. buy_n]
- funding:     [transfer_1 .. transfer_n] from one funder
- liquidation: [approve, swapExactTokensForETH] for one holder

Relay execution is sequential, so the launch order is fixed: a buy placed
before the liquidity add would hit a missing pool.

Balance checks here are pre-flight only. Balances can move between the
check and inclusion; the relay's all-or-nothing execution is what keeps a
short bundle from landing half-done.
"""

import time
from typing import Callable, List, Optional, Sequence, Union

from config import BundlerConfig
from .builder import SignedTransactionBuilder
from .chain import ChainState
from .models import Bundle, LaunchPlan, TransactionIntent
from .nonces import NonceAllocator
from utils import (
    logger,
    format_address,
    format_wei,
    validate_address,
    InvalidIntentError,
    InsufficientBalanceError,
)


class BundleAssembler:
    """Allocates nonces, builds intents, validates them all, then signs."""

    def __init__(
        self,
        config: BundlerConfig,
        chain: ChainState,
        allocator: NonceAllocator,
        builder: SignedTransactionBuilder,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.config = config
        self.chain = chain
        self.allocator = allocator
        self.builder = builder
        self._clock = clock
        self._sleep = sleep

    def _deadline(self, window_seconds: int) -> int:
        return int(self._clock()) + window_seconds

    def _pace(self, index: int):
        """Fixed delay between per-account nonce queries."""
        if index > 0 and self.config.signing_delay_seconds > 0:
            self._sleep(self.config.signing_delay_seconds)

    def _sign_all(self, intents: List[TransactionIntent], label: str) -> Bundle:
        # Every intent is validated before the first signature
        for intent in intents:
            self.builder.validate(intent)
        signed = [self.builder.build(intent) for intent in intents]
        bundle = Bundle(signed, label=label)
        logger.info(f"Assembled {label} bundle with {len(bundle)} transactions")
        return bundle

    def assemble(self, dev_account, buyer_accounts: Sequence, plan: LaunchPlan) -> Bundle:
        """
        Build the liquidity + buy bundle.

        Args:
            dev_account: Account holding the tokens; signs approve and add
            buyer_accounts: One buy per account, in this order
            plan: Token and ETH amounts in base units

        Raises:
            InvalidIntentError: Bad plan or buyer list
            InsufficientBalanceError: dev_account holds fewer tokens than planned
        """
        if not buyer_accounts:
            raise InvalidIntentError("At least one buyer account is required")
        if not validate_address(plan.token_address):
            raise InvalidIntentError(f"Invalid token address: {plan.token_address!r}")
        if plan.token_amount <= 0:
            raise InvalidIntentError("Liquidity token amount must be positive")
        try:
            buy_amounts = plan.amounts_for(len(buyer_accounts))
        except ValueError as e:
            raise InvalidIntentError(str(e)) from e

        balance = self.chain.token_balance(plan.token_address, dev_account.address)
        logger.info(f"Dev wallet {format_address(dev_account.address)} token balance: {balance}")
        if balance < plan.token_amount:
            raise InsufficientBalanceError(
                f"Insufficient token balance. Have: {balance}, Need: {plan.token_amount}",
                required=plan.token_amount,
                available=balance,
            )

        deadline = self._deadline(self.config.launch_deadline_seconds)
        token = plan.token_address

        with self.allocator.batch():
            approve_nonce, liquidity_nonce = self.allocator.allocate(dev_account, 2)
            intents = [
                self.builder.approval_intent(dev_account, approve_nonce, token, plan.token_amount),
                self.builder.add_liquidity_intent(
                    dev_account, liquidity_nonce, token, plan.token_amount, plan.eth_amount, deadline
                ),
            ]

            for i, (buyer, amount) in enumerate(zip(buyer_accounts, buy_amounts)):
                self._pace(i)
                nonce = self.allocator.allocate(buyer, 1)[0]
                intents.append(self.builder.buy_intent(
                    buyer, nonce, token, amount, deadline, plan.min_tokens_out
                ))
                logger.debug(f"Buy {i + 1}: {format_address(buyer.address)} {format_wei(amount)} ETH")

            return self._sign_all(intents, "launch")

    def assemble_funding(self, funder, recipients: Sequence[Union[str, object]], amount_wei: int) -> Bundle:
        """
        Build one transfer of amount_wei from funder to each recipient.

        Recipients may be accounts or plain addresses.
        """
        if not recipients:
            raise InvalidIntentError("No wallets to fund")
        if amount_wei <= 0:
            raise InvalidIntentError("Funding amount must be positive")

        addresses = [r if isinstance(r, str) else r.address for r in recipients]
        for address in addresses:
            if not validate_address(address):
                raise InvalidIntentError(f"Invalid recipient address: {address!r}")

        gas_cost = self.config.gas.transfer_gas * self.config.gas.max_fee_wei * len(addresses)
        required = amount_wei * len(addresses) + gas_cost
        balance = self.chain.eth_balance(funder.address)
        if balance < required:
            raise InsufficientBalanceError(
                f"Insufficient balance. Have: {format_wei(balance)} ETH, Need: {format_wei(required)} ETH",
                required=required,
                available=balance,
            )

        with self.allocator.batch():
            nonces = self.allocator.allocate(funder, len(addresses))
            intents = [
                self.builder.transfer_intent(funder, nonce, address, amount_wei)
                for nonce, address in zip(nonces, addresses)
            ]
            return self._sign_all(intents, "funding")

    def assemble_liquidation(self, account, token_address: str, amount: int,
                             min_out: int = 0, deadline: Optional[int] = None) -> Bundle:
        """Build approve + swapExactTokensForETH for one holder."""
        if amount <= 0:
            raise InvalidIntentError("Nothing to sell")

        if deadline is None:
            deadline = self._deadline(self.config.sell_deadline_seconds)

        with self.allocator.batch():
            approve_nonce, sell_nonce = self.allocator.allocate(account, 2)
            intents = [
                self.builder.approval_intent(account, approve_nonce, token_address, amount),
                self.builder.sell_intent(account, sell_nonce, token_address, amount, deadline, min_out),
            ]
            return self._sign_all(intents, "liquidation")
