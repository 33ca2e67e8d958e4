"""
AutoPump configuration.

Settings are read from the process environment. A `.env` file next to the
working directory is loaded first with override=False, so variables already
exported by the deployment always win.

Usage:
    from autopump.config import load_config

    config = load_config()
    print(config.claim_threshold_lamports)
"""

import logging
import os
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Dict, Mapping, Optional

import base58
from dotenv import load_dotenv
from solders.pubkey import Pubkey

from autopump.errors import ConfigurationError

logger = logging.getLogger(__name__)

LAMPORTS_PER_SOL = 1_000_000_000
INCINERATOR_ADDRESS = "1nc1nerator11111111111111111111111111111111"
COMMITMENT_LEVELS = ("processed", "confirmed", "finalized")


def sol_to_lamports(value) -> int:
    """Convert a SOL amount (str, int, float or Decimal) to lamports, truncating."""
    return int(Decimal(str(value)) * LAMPORTS_PER_SOL)


def lamports_to_sol(lamports: int) -> float:
    """Convert lamports to SOL for display only."""
    return lamports / LAMPORTS_PER_SOL


@dataclass(frozen=True)
class AutoPumpConfig:
    """Validated runtime configuration."""
    creator_wallet_secret: str
    treasury_address: str
    token_mint: str

    rpc_endpoint: str = "https://api.mainnet-beta.solana.com"
    pump_api_base: str = "https://pumpportal.fun/api"
    token_symbol: str = "AUTOPUMP"

    check_interval_minutes: int = 5
    claim_threshold_lamports: int = 50_000_000
    auto_claim_enabled: bool = True
    enable_manual_claim: bool = True

    treasury_percent: int = 50
    buyback_percent: int = 50
    min_reserve_lamports: int = 10_000_000

    burn_address: str = INCINERATOR_ADDRESS
    slippage_bps: int = 100
    priority_fee_sol: float = 0.0001
    max_retries: int = 3
    commitment: str = "confirmed"
    confirmation_timeout_seconds: float = 60.0

    webhook_url: Optional[str] = None
    database_url: str = "postgresql://localhost/autopump"
    db_pool_size: int = 5

    log_level: str = "INFO"
    log_json: bool = False
    log_dir: str = "logs"

    def __repr__(self) -> str:
        # Never render the wallet secret
        return (
            f"AutoPumpConfig(token_mint={self.token_mint!r}, "
            f"treasury_address={self.treasury_address!r}, "
            f"check_interval_minutes={self.check_interval_minutes}, "
            f"claim_threshold_lamports={self.claim_threshold_lamports}, "
            f"split={self.treasury_percent}/{self.buyback_percent})"
        )

    def to_public_dict(self) -> Dict[str, object]:
        """Settings safe to surface in status output."""
        return {
            "token_mint": self.token_mint,
            "token_symbol": self.token_symbol,
            "treasury_address": self.treasury_address,
            "burn_address": self.burn_address,
            "check_interval_minutes": self.check_interval_minutes,
            "claim_threshold_sol": lamports_to_sol(self.claim_threshold_lamports),
            "auto_claim_enabled": self.auto_claim_enabled,
            "enable_manual_claim": self.enable_manual_claim,
            "treasury_percent": self.treasury_percent,
            "buyback_percent": self.buyback_percent,
            "min_reserve_sol": lamports_to_sol(self.min_reserve_lamports),
            "slippage_bps": self.slippage_bps,
        }


def _required(env: Mapping[str, str], key: str) -> str:
    value = (env.get(key) or "").strip()
    if not value:
        raise ConfigurationError(f"Missing required environment variable: {key}", {"key": key})
    return value


def _optional(env: Mapping[str, str], key: str, default: str) -> str:
    value = env.get(key)
    if value is None or value.strip() == "":
        return default
    return value.strip()


def _as_bool(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


def _as_int(env: Mapping[str, str], key: str, default: str) -> int:
    raw = _optional(env, key, default)
    try:
        return int(raw)
    except ValueError:
        raise ConfigurationError(f"{key} must be an integer, got {raw!r}", {"key": key})


def _as_lamports(env: Mapping[str, str], key: str, default: str) -> int:
    raw = _optional(env, key, default)
    try:
        return sol_to_lamports(raw)
    except (InvalidOperation, ValueError):
        raise ConfigurationError(f"{key} must be a SOL amount, got {raw!r}", {"key": key})


def _validate_pubkey(key: str, value: str) -> str:
    try:
        Pubkey.from_string(value)
    except ValueError:
        raise ConfigurationError(f"Invalid public key for {key}", {"key": key})
    return value


def _validate_wallet_secret(key: str, secret: str) -> str:
    # The secret itself must never appear in the error text
    try:
        decoded = base58.b58decode(secret)
    except ValueError:
        raise ConfigurationError(f"Invalid base58 wallet secret for {key}", {"key": key})
    if len(decoded) != 64:
        raise ConfigurationError(
            f"Invalid wallet secret length for {key}: expected 64 bytes, got {len(decoded)}",
            {"key": key, "length": len(decoded)},
        )
    return secret


def build_config(env: Mapping[str, str]) -> AutoPumpConfig:
    """Validate a mapping of environment variables into an AutoPumpConfig."""
    treasury_percent = _as_int(env, "TREASURY_PERCENT", "50")
    buyback_percent = _as_int(env, "BUYBACK_PERCENT", "50")
    if not 0 <= treasury_percent <= 100 or not 0 <= buyback_percent <= 100:
        raise ConfigurationError("TREASURY_PERCENT and BUYBACK_PERCENT must be between 0 and 100")
    if treasury_percent + buyback_percent != 100:
        raise ConfigurationError(
            f"TREASURY_PERCENT ({treasury_percent}) + BUYBACK_PERCENT ({buyback_percent}) must equal 100"
        )

    check_interval = _as_int(env, "CHECK_INTERVAL_MINUTES", "5")
    if check_interval < 1:
        raise ConfigurationError("CHECK_INTERVAL_MINUTES must be at least 1")

    threshold = _as_lamports(env, "CLAIM_THRESHOLD_SOL", "0.05")
    if threshold <= 0:
        raise ConfigurationError("CLAIM_THRESHOLD_SOL must be greater than 0")

    min_reserve = _as_lamports(env, "MIN_RESERVE_SOL", "0.01")
    if min_reserve < 0:
        raise ConfigurationError("MIN_RESERVE_SOL must not be negative")

    slippage_bps = _as_int(env, "SLIPPAGE_BPS", "100")
    if not 0 <= slippage_bps <= 10000:
        raise ConfigurationError("SLIPPAGE_BPS must be between 0 and 10000 (0-100%)")

    max_retries = _as_int(env, "MAX_RETRIES", "3")
    if max_retries < 1:
        raise ConfigurationError("MAX_RETRIES must be at least 1")

    commitment = _optional(env, "CONFIRMATION_COMMITMENT", "confirmed")
    if commitment not in COMMITMENT_LEVELS:
        raise ConfigurationError(f"CONFIRMATION_COMMITMENT must be one of {COMMITMENT_LEVELS}")

    try:
        priority_fee = float(_optional(env, "PRIORITY_FEE_SOL", "0.0001"))
        confirmation_timeout = float(_optional(env, "CONFIRMATION_TIMEOUT_SECONDS", "60"))
    except ValueError:
        raise ConfigurationError("PRIORITY_FEE_SOL and CONFIRMATION_TIMEOUT_SECONDS must be numbers")

    return AutoPumpConfig(
        creator_wallet_secret=_validate_wallet_secret(
            "CREATOR_WALLET_SECRET", _required(env, "CREATOR_WALLET_SECRET")
        ),
        treasury_address=_validate_pubkey(
            "TREASURY_WALLET_ADDRESS", _required(env, "TREASURY_WALLET_ADDRESS")
        ),
        token_mint=_validate_pubkey("TOKEN_MINT", _required(env, "TOKEN_MINT")),
        rpc_endpoint=_optional(env, "RPC_ENDPOINT", "https://api.mainnet-beta.solana.com"),
        pump_api_base=_optional(env, "PUMP_API_BASE", "https://pumpportal.fun/api"),
        token_symbol=_optional(env, "TOKEN_SYMBOL", "AUTOPUMP"),
        check_interval_minutes=check_interval,
        claim_threshold_lamports=threshold,
        auto_claim_enabled=_as_bool(_optional(env, "AUTO_CLAIM_ENABLED", "true")),
        enable_manual_claim=_as_bool(_optional(env, "ENABLE_MANUAL_CLAIM", "true")),
        treasury_percent=treasury_percent,
        buyback_percent=buyback_percent,
        min_reserve_lamports=min_reserve,
        burn_address=_validate_pubkey("BURN_ADDRESS", _optional(env, "BURN_ADDRESS", INCINERATOR_ADDRESS)),
        slippage_bps=slippage_bps,
        priority_fee_sol=priority_fee,
        max_retries=max_retries,
        commitment=commitment,
        confirmation_timeout_seconds=confirmation_timeout,
        webhook_url=env.get("WEBHOOK_URL") or None,
        database_url=_optional(env, "DATABASE_URL", "postgresql://localhost/autopump"),
        db_pool_size=_as_int(env, "DB_POOL_SIZE", "5"),
        log_level=_optional(env, "LOG_LEVEL", "INFO").upper(),
        log_json=_as_bool(_optional(env, "LOG_JSON", "false")),
        log_dir=_optional(env, "LOG_DIR", "logs"),
    )


def load_config(env_file: Optional[Path] = None) -> AutoPumpConfig:
    """
    Load and validate configuration from the environment.

    Args:
        env_file: Optional path to a .env file (defaults to ./.env)

    Raises:
        ConfigurationError: If a required variable is missing or invalid
    """
    env_path = env_file or Path.cwd() / ".env"
    if env_path.exists():
        load_dotenv(env_path, override=False)
        logger.debug(f"Loaded environment from {env_path}")

    config = build_config(os.environ)
    logger.info(f"Configuration loaded: {config!r}")
    return config
