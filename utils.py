"""
Utility Module

Error taxonomy, secure logging, formatting and validation helpers shared by
the bundle engine and the CLI.

Logging notes:
- Private keys, passwords and API keys are redacted before they reach a handler
- Transaction and bundle hashes are logged shortened (see format_tx_hash) so
  they never collide with the private-key redaction pattern
"""

import os
import re
import logging
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Optional

from web3 import Web3
from rich.logging import RichHandler
from rich.console import Console


# Global console for Rich output
console = Console()

LOGGER_NAME = "block_bundler"


class BundlerError(Exception):
    """Base class for every failure the bundler reports to the operator."""
    pass


class InvalidIntentError(BundlerError):
    """Malformed transaction parameters, caught before signing."""
    pass


class SigningError(BundlerError):
    """The signing capability is unavailable or rejected the payload."""
    pass


class InsufficientBalanceError(BundlerError):
    """Liquidity or funding account lacks the required balance."""

    def __init__(self, message: str, required: int = 0, available: int = 0):
        super().__init__(message)
        self.required = required
        self.available = available


class NonceAllocationError(BundlerError):
    """A second allocation was requested for one account in the same batch."""
    pass


class RelayRejectedError(BundlerError):
    """The relay understood the request and refused the bundle."""

    def __init__(self, message: str, code: Optional[int] = None, payload: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.code = code
        self.payload = payload or {}


class RelayUnavailableError(BundlerError):
    """Transport-level failure talking to the relay (timeout, refused, non-JSON)."""
    pass


class StaleNonceError(BundlerError):
    """The chain reports an allocated nonce as already used."""

    def __init__(self, message: str, address: Optional[str] = None, nonce: Optional[int] = None):
        super().__init__(message)
        self.address = address
        self.nonce = nonce


class SecureLogger:
    """
    Logger that sanitizes sensitive data from log messages.

    Generated wallets carry raw private keys around the process, so every
    message is scrubbed before it is emitted.
    """

    # Patterns to redact from logs
    SENSITIVE_PATTERNS = [
        (r'0x[a-fA-F0-9]{64}\b', '[PRIVATE_KEY_REDACTED]'),
        (r'\b[a-fA-F0-9]{64}\b', '[PRIVATE_KEY_REDACTED]'),
        (r'password["\']?\s*[:=]\s*["\']?[^"\'\s]+["\']?', 'password=[REDACTED]'),
        (r'private_?key["\']?\s*[:=]\s*["\']?[^"\'\s]+["\']?', 'privateKey=[REDACTED]'),
        (r'api[_-]?key["\']?\s*[:=]\s*["\']?[^"\'\s]+["\']?', 'api_key=[REDACTED]'),
    ]

    def __init__(self, logger: logging.Logger):
        self._logger = logger

    @property
    def name(self) -> str:
        return self._logger.name

    def _sanitize(self, msg: str) -> str:
        """Remove sensitive data from log message."""
        if not isinstance(msg, str):
            msg = str(msg)

        sanitized = msg
        for pattern, replacement in self.SENSITIVE_PATTERNS:
            sanitized = re.sub(pattern, replacement, sanitized, flags=re.IGNORECASE)
        return sanitized

    def debug(self, msg: str, *args, **kwargs):
        self._logger.debug(self._sanitize(msg), *args, **kwargs)

    def info(self, msg: str, *args, **kwargs):
        self._logger.info(self._sanitize(msg), *args, **kwargs)

    def warning(self, msg: str, *args, **kwargs):
        self._logger.warning(self._sanitize(msg), *args, **kwargs)

    def error(self, msg: str, *args, **kwargs):
        self._logger.error(self._sanitize(msg), *args, **kwargs)

    def exception(self, msg: str, *args, **kwargs):
        self._logger.exception(self._sanitize(msg), *args, **kwargs)

    def critical(self, msg: str, *args, **kwargs):
        self._logger.critical(self._sanitize(msg), *args, **kwargs)


def setup_logging(log_level: str = "INFO", log_file: Optional[str] = None) -> SecureLogger:
    """
    Setup logging with Rich console output and an optional log file.

    Calling it again reconfigures the same underlying logger, so the CLI can
    apply the configured level and file after the module-level default.

    Returns a SecureLogger that sanitizes sensitive data.
    """
    base_logger = logging.getLogger(LOGGER_NAME)
    base_logger.setLevel(getattr(logging, log_level.upper()))
    base_logger.propagate = False

    # Remove existing handlers
    for handler in list(base_logger.handlers):
        base_logger.removeHandler(handler)
        handler.close()

    rich_handler = RichHandler(
        console=console,
        show_time=True,
        show_path=False,
        rich_tracebacks=True
    )
    rich_handler.setLevel(getattr(logging, log_level.upper()))
    rich_handler.setFormatter(logging.Formatter("%(message)s"))
    base_logger.addHandler(rich_handler)

    if log_file:
        log_path = os.path.abspath(log_file)
        os.makedirs(os.path.dirname(log_path) or ".", exist_ok=True)

        file_handler = logging.FileHandler(log_path)
        file_handler.setLevel(getattr(logging, log_level.upper()))
        file_handler.setFormatter(logging.Formatter(
            "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S"
        ))
        base_logger.addHandler(file_handler)

    return SecureLogger(base_logger)


# Console-only until the CLI applies the configured log file
logger = setup_logging()


# Formatting utilities

def format_wei(wei_amount: int, decimals: int = 18) -> str:
    """Format a raw integer amount to a human-readable string."""
    if wei_amount == 0:
        return "0"

    value = Decimal(wei_amount) / (Decimal(10) ** decimals)

    if value < Decimal("0.0001"):
        return f"{value:.8f}"
    elif value < 1:
        return f"{value:.6f}"
    elif value < 1000:
        return f"{value:.4f}"
    else:
        return f"{value:,.2f}"


def format_address(address: str, length: int = 6) -> str:
    """Format Ethereum address with ellipsis."""
    if len(address) <= length * 2 + 2:
        return address
    return f"{address[:length + 2]}...{address[-length:]}"


def format_tx_hash(tx_hash: str, length: int = 10) -> str:
    """Format transaction hash with ellipsis."""
    if len(tx_hash) <= length * 2:
        return tx_hash
    return f"{tx_hash[:length]}...{tx_hash[-length + 2:]}"


# Parsing and validation utilities

def parse_amount(raw: Any) -> Decimal:
    """
    Parse an operator-entered amount.

    Commas and whitespace are stripped so "1,000,000" and "1 000 000" both
    parse.

    Raises:
        ValueError: If the value is not a finite, non-negative number
    """
    text = str(raw).replace(",", "").replace(" ", "").strip()
    try:
        value = Decimal(text)
    except InvalidOperation:
        raise ValueError(f"Not a number: {raw!r}")

    if not value.is_finite():
        raise ValueError(f"Not a finite number: {raw!r}")
    if value < 0:
        raise ValueError(f"Amount cannot be negative: {raw!r}")
    return value


def to_base_units(amount: Any, decimals: int = 18) -> int:
    """Convert a human amount (e.g. "1.5") into integer base units."""
    value = parse_amount(amount)
    scaled = value * (Decimal(10) ** decimals)
    if scaled != scaled.to_integral_value():
        raise ValueError(f"{amount} has more than {decimals} decimal places")
    return int(scaled)


def validate_private_key(key: str) -> bool:
    """Validate private key format."""
    if not key:
        return False

    key_clean = key[2:] if key.startswith("0x") else key

    if len(key_clean) != 64:
        return False

    try:
        int(key_clean, 16)
        return True
    except ValueError:
        return False


def normalize_private_key(key: str) -> str:
    """Return the key with a 0x prefix; prompts accept it with or without."""
    key = key.strip()
    return key if key.startswith("0x") else f"0x{key}"


def validate_address(address: Any) -> bool:
    """
    Validate Ethereum address format.

    Mixed-case addresses must carry a valid EIP-55 checksum; all-lowercase or
    all-uppercase hex is accepted.
    """
    if not isinstance(address, str) or not address:
        return False

    try:
        return Web3.is_address(address)
    except ValueError:
        return False


def sanitize_error_message(error: Any) -> str:
    """
    Sanitize error messages to remove sensitive data.

    Args:
        error: Original error or message

    Returns:
        Sanitized error message safe for display
    """
    if not isinstance(error, str):
        error = str(error)

    patterns = [
        (r'0x[a-fA-F0-9]{64}\b', '[PRIVATE_KEY]'),
        (r'https?://[^\s]+', '[URL]'),
        (r'password["\']?\s*[:=]\s*\S+', 'password=[REDACTED]'),
    ]

    sanitized = error
    for pattern, replacement in patterns:
        sanitized = re.sub(pattern, replacement, sanitized, flags=re.IGNORECASE)

    return sanitized
