"""
Configuration Management Module

Holds every endpoint, contract address and gas policy the bundler uses, and
stores the funding wallet key encrypted at rest.
Uses Fernet symmetric encryption with password-derived keys.
"""

import os
import base64
from pathlib import Path
from typing import Dict, Any, Optional
from dataclasses import dataclass, asdict, field

import yaml
from cryptography.fernet import Fernet
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

import logging
logger = logging.getLogger(__name__)


# Environment variables that override file values
ENV_OVERRIDES = {
    "BUNDLER_RPC_URL": "rpc_url",
    "BUNDLER_RELAY_URL": "relay_url",
    "BUNDLER_RELAY_AUTH_KEY": "relay_auth_key",
}


@dataclass
class GasPolicy:
    """
    Fixed gas parameters per transaction class.

    Not derived from network congestion; override through the config file
    when the base fee moves above the cap.
    """
    max_fee_gwei: float = 15.0
    priority_fee_gwei: float = 0.3
    approve_gas: int = 50000
    add_liquidity_gas: int = 200000
    buy_gas: int = 150000
    sell_gas: int = 200000
    transfer_gas: int = 21000

    @property
    def max_fee_wei(self) -> int:
        return int(self.max_fee_gwei * 10**9)

    @property
    def priority_fee_wei(self) -> int:
        return int(self.priority_fee_gwei * 10**9)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "GasPolicy":
        return cls(**{k: v for k, v in (data or {}).items() if k in cls.__dataclass_fields__})


@dataclass
class BundlerConfig:
    """Bundler configuration settings."""

    # Network
    rpc_url: str = "https://rpc.ankr.com/eth"  # Read-state endpoint
    relay_url: str = "https://rpc.beaverbuild.org/"  # Block-builder relay
    chain_id: int = 1

    # Uniswap V2 on Ethereum mainnet
    router_address: str = "0x7a250d5630B4cF539739dF2C5dAcb4c659F2488D"
    weth_address: str = "0xC02aaA39b223FE8D0A0e5C4F27eAD9083C756Cc2"

    gas: GasPolicy = field(default_factory=GasPolicy)

    # Deadlines are taken at construction time
    launch_deadline_seconds: int = 20 * 60
    sell_deadline_seconds: int = 10 * 60

    # Pacing
    signing_delay_seconds: float = 0.1
    poll_interval_seconds: float = 2.0
    monitor_timeout_seconds: float = 300.0
    relay_timeout_seconds: float = 30.0
    read_retries: int = 3

    # Optional key used to sign relay requests (X-Flashbots-Signature)
    relay_auth_key: Optional[str] = None

    # Files
    wallet_file: str = "./generated_wallets.json"
    bundle_log: str = "./bundles.json"

    # Security
    encrypted_funding_key: Optional[str] = None
    salt: Optional[str] = None

    # Operation
    dry_run: bool = False
    log_level: str = "INFO"
    log_file: Optional[str] = "./bundler.log"

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BundlerConfig":
        """Create BundlerConfig from dictionary."""
        # Filter only valid fields
        valid_fields = {k: v for k, v in (data or {}).items() if k in cls.__dataclass_fields__}
        if isinstance(valid_fields.get("gas"), dict):
            valid_fields["gas"] = GasPolicy.from_dict(valid_fields["gas"])
        return cls(**valid_fields)

    def apply_env(self, environ: Optional[Dict[str, str]] = None) -> "BundlerConfig":
        """Apply BUNDLER_* environment overrides in place."""
        environ = os.environ if environ is None else environ
        for env_name, attr in ENV_OVERRIDES.items():
            value = environ.get(env_name)
            if value:
                setattr(self, attr, value)
        return self


class ConfigManager:
    """Manages configuration file with an encrypted funding key."""

    def __init__(self, config_path: Path = Path("./bundler_config.yaml")):
        self.config_path = Path(config_path)
        self._kdf_iterations = 480000  # OWASP recommended minimum

    def _derive_key(self, password: str, salt: bytes) -> bytes:
        """Derive encryption key from password using PBKDF2."""
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=32,
            salt=salt,
            iterations=self._kdf_iterations,
        )
        return base64.urlsafe_b64encode(kdf.derive(password.encode()))

    def _encrypt_private_key(self, private_key: str, password: str, salt: bytes) -> str:
        """Encrypt private key with password."""
        pk_clean = private_key.strip()
        if pk_clean.startswith("0x"):
            pk_clean = pk_clean[2:]

        if len(pk_clean) != 64:
            raise ValueError("Private key must be 64 hex characters")
        try:
            int(pk_clean, 16)
        except ValueError:
            raise ValueError("Private key must be valid hex")

        f = Fernet(self._derive_key(password, salt))
        encrypted = f.encrypt(pk_clean.encode())
        return base64.b64encode(encrypted).decode()

    def _decrypt_private_key(self, encrypted_key: str, password: str, salt: bytes) -> str:
        """Decrypt private key with password."""
        f = Fernet(self._derive_key(password, salt))
        decrypted = f.decrypt(base64.b64decode(encrypted_key.encode()))
        return "0x" + decrypted.decode()

    def exists(self) -> bool:
        return self.config_path.exists()

    def load(self) -> BundlerConfig:
        """Load configuration without touching the encrypted key."""
        if not self.config_path.exists():
            logger.info(f"No config at {self.config_path}, using defaults")
            return BundlerConfig().apply_env()
        return BundlerConfig.from_dict(self.read_raw_config()).apply_env()

    def read_raw_config(self) -> Dict[str, Any]:
        """Read config file as a plain dictionary."""
        if not self.config_path.exists():
            raise FileNotFoundError(f"Config file not found: {self.config_path}")

        with open(self.config_path, 'r') as f:
            return yaml.safe_load(f) or {}

    def store_funding_key(self, config: BundlerConfig, private_key: str, password: str) -> BundlerConfig:
        """Encrypt the funding wallet key into the config and save it."""
        salt = os.urandom(16)
        config.encrypted_funding_key = self._encrypt_private_key(private_key, password, salt)
        config.salt = base64.b64encode(salt).decode()
        self.save(config)
        logger.info("Funding key stored encrypted")
        return config

    def load_funding_key(self, password: str) -> str:
        """Decrypt the stored funding wallet key."""
        config = self.load()
        if not config.encrypted_funding_key or not config.salt:
            raise ValueError("No funding key stored in config")
        salt = base64.b64decode(config.salt)
        return self._decrypt_private_key(config.encrypted_funding_key, password, salt)

    def save(self, config: BundlerConfig):
        """Save configuration to YAML file."""
        self.config_path.parent.mkdir(parents=True, exist_ok=True)

        with open(self.config_path, 'w') as f:
            yaml.safe_dump(config.to_dict(), f, default_flow_style=False, sort_keys=False)

        # Owner read/write only, the file may hold an encrypted key
        os.chmod(self.config_path, 0o600)

        logger.info(f"Configuration saved to {self.config_path}")

    def update_config(self, updates: Dict[str, Any]) -> BundlerConfig:
        """Update configuration values."""
        data = self.read_raw_config() if self.config_path.exists() else {}
        data.update(updates)

        config = BundlerConfig.from_dict(data)
        self.save(config)

        logger.info("Configuration updated")
        return config
