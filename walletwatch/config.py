"""
Configuration for the wallet monitor.

Built once at startup by Config.from_env(), validated once, and passed by
reference to every component. Config is frozen: nothing mutates it after
startup.
"""

import json
import os
from dataclasses import dataclass, field, replace
from typing import Dict, FrozenSet, Optional, Tuple

from . import settings
from .errors import ConfigurationError
from .utils.units import parse_units


@dataclass(frozen=True)
class TokenThreshold:
    """Minimum transfer amount of a base token that can induce enrollment."""
    token_address: str
    symbol: str
    min_amount: str  # whole units, decimal string
    decimals: int = 18

    @property
    def min_raw(self) -> int:
        return parse_units(self.min_amount, self.decimals)


def _default_thresholds() -> Tuple[TokenThreshold, ...]:
    return tuple(
        TokenThreshold(
            token_address=address.lower(),
            symbol=entry["symbol"],
            min_amount=str(entry["min_amount"]),
            decimals=int(entry.get("decimals", 18)),
        )
        for address, entry in settings.BASE_TOKENS.items()
    )


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None or raw == "":
        return default
    return raw.strip().lower() not in ("0", "false", "no", "off")


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}")


@dataclass(frozen=True)
class Config:
    """All configuration settings."""

    # -------------------------------------------------------------------------
    # Ledger
    # -------------------------------------------------------------------------
    rpc_url: str = settings.RPC_URL
    native_symbol: str = settings.NATIVE_SYMBOL
    native_decimals: int = settings.NATIVE_DECIMALS
    explorer_url: str = settings.EXPLORER_URL

    # -------------------------------------------------------------------------
    # Alert destination
    # -------------------------------------------------------------------------
    destination: str = settings.CHAT_ID
    thread_id: Optional[str] = settings.THREAD_ID or None
    bot_token: str = settings.BOT_TOKEN
    dry_run: bool = False
    alert_timezone: str = settings.ALERT_TIMEZONE
    max_message_length: int = settings.MAX_MESSAGE_LENGTH

    # -------------------------------------------------------------------------
    # Loop cadence (milliseconds / blocks)
    # -------------------------------------------------------------------------
    scan_interval_ms: int = settings.SCAN_INTERVAL_MS
    batch_size: int = settings.BATCH_SIZE
    catch_up_threshold: int = settings.CATCH_UP_THRESHOLD
    catch_up_batch_size: int = settings.CATCH_UP_BATCH_SIZE
    error_cooldown_sec: float = settings.ERROR_COOLDOWN_SEC
    resume_max_gap: int = settings.RESUME_MAX_GAP

    # -------------------------------------------------------------------------
    # Range scanner
    # -------------------------------------------------------------------------
    request_delay_sec: float = settings.REQUEST_DELAY_SEC
    wave_delay_sec: float = settings.WAVE_DELAY_SEC
    max_concurrent_blocks: int = settings.MAX_CONCURRENT_BLOCKS
    max_concurrent_requests: int = settings.MAX_CONCURRENT_REQUESTS
    rpc_timeout_sec: float = settings.RPC_TIMEOUT_SEC
    rpc_max_retries: int = settings.RPC_MAX_RETRIES
    rpc_backoff_sec: float = settings.RPC_BACKOFF_SEC

    # -------------------------------------------------------------------------
    # Filter / enrollment (whole native units as decimal strings)
    # -------------------------------------------------------------------------
    min_value: str = settings.MIN_VALUE
    max_value: str = settings.MAX_VALUE
    native_enroll_min: Optional[str] = settings.NATIVE_ENROLL_MIN or None  # None = min_value
    token_thresholds: Tuple[TokenThreshold, ...] = field(default_factory=_default_thresholds)
    enable_new_wallet_detection: bool = settings.ENABLE_NEW_WALLET_DETECTION

    # -------------------------------------------------------------------------
    # Delivery queue
    # -------------------------------------------------------------------------
    queue_interval_ms: int = settings.QUEUE_INTERVAL_MS
    queue_batch_size: int = settings.QUEUE_BATCH_SIZE
    queue_max_retries: int = settings.QUEUE_MAX_RETRIES
    default_retry_after_sec: float = settings.DEFAULT_RETRY_AFTER_SEC
    queue_capacity: Optional[int] = settings.QUEUE_CAPACITY

    # -------------------------------------------------------------------------
    # Reputation
    # -------------------------------------------------------------------------
    debank_api_key: str = ""
    exchange_wallets: FrozenSet[str] = frozenset()

    # -------------------------------------------------------------------------
    # Storage
    # -------------------------------------------------------------------------
    storage_prefix: str = settings.STORAGE_PREFIX
    db_path: str = settings.DB_PATH

    # -------------------------------------------------------------------------
    # Construction
    # -------------------------------------------------------------------------

    @classmethod
    def from_env(cls, **overrides) -> "Config":
        """
        Build configuration from environment variables.

        Keyword overrides win over the environment (used by the CLI flags).

        Raises:
            ConfigurationError: If a value cannot be parsed
        """
        values = {
            "rpc_url": os.environ.get("RPC_URL", settings.RPC_URL),
            "bot_token": os.environ.get("BOT_TOKEN", settings.BOT_TOKEN),
            "destination": os.environ.get("CHAT_ID", settings.CHAT_ID),
            "thread_id": os.environ.get("THREAD_ID") or None,
            "scan_interval_ms": _env_int("SCAN_INTERVAL", settings.SCAN_INTERVAL_MS),
            "batch_size": _env_int("BATCH_SIZE", settings.BATCH_SIZE),
            "min_value": os.environ.get("MIN_VALUE") or settings.MIN_VALUE,
            "max_value": os.environ.get("MAX_VALUE") or settings.MAX_VALUE,
            "native_enroll_min": os.environ.get("NATIVE_ENROLL_MIN") or None,
            "enable_new_wallet_detection": _env_bool(
                "ENABLE_NEW_WALLET_DETECTION", settings.ENABLE_NEW_WALLET_DETECTION
            ),
            "storage_prefix": os.environ.get("STORAGE_PREFIX")
            or os.environ.get("REDIS_PREFIX")
            or settings.STORAGE_PREFIX,
            "db_path": os.environ.get("DB_PATH") or settings.DB_PATH,
            "debank_api_key": os.environ.get("DEBANK_API_KEY", ""),
            "explorer_url": os.environ.get("EXPLORER_URL") or settings.EXPLORER_URL,
            "alert_timezone": os.environ.get("ALERT_TIMEZONE") or settings.ALERT_TIMEZONE,
        }

        exchange_raw = os.environ.get("EXCHANGE_WALLETS", "")
        values["exchange_wallets"] = frozenset(
            w.strip().lower() for w in exchange_raw.split(",") if w.strip()
        )

        tokens_raw = os.environ.get("BASE_TOKENS_JSON")
        if tokens_raw:
            values["token_thresholds"] = parse_token_thresholds(tokens_raw)

        values.update(overrides)
        return cls(**values)

    def with_overrides(self, **changes) -> "Config":
        """Return a copy with some fields replaced."""
        return replace(self, **changes)

    # -------------------------------------------------------------------------
    # Validation
    # -------------------------------------------------------------------------

    def validate(self) -> "Config":
        """
        Check the configuration once at startup.

        Returns:
            self, for chaining

        Raises:
            ConfigurationError: On the first problem found
        """
        if not self.destination:
            raise ConfigurationError("CHAT_ID (alert destination) is required")
        if not self.dry_run and not self.bot_token:
            raise ConfigurationError("BOT_TOKEN is required (or use --dry-run)")
        if not self.rpc_url:
            raise ConfigurationError("RPC_URL is required")

        for name in (
            "scan_interval_ms", "batch_size", "catch_up_threshold", "catch_up_batch_size",
            "max_concurrent_blocks", "max_concurrent_requests",
            "queue_interval_ms", "queue_batch_size",
        ):
            if getattr(self, name) <= 0:
                raise ConfigurationError(f"{name} must be positive")

        if self.max_concurrent_blocks > settings.MAX_CONCURRENT_BLOCKS:
            raise ConfigurationError(
                f"max_concurrent_blocks must be <= {settings.MAX_CONCURRENT_BLOCKS}"
            )
        if self.queue_max_retries < 0:
            raise ConfigurationError("queue_max_retries must not be negative")
        if self.queue_capacity is not None and self.queue_capacity <= 0:
            raise ConfigurationError("queue_capacity must be positive")

        try:
            min_wei, max_wei = self.min_value_wei, self.max_value_wei
            self.native_enroll_min_wei
        except ValueError as e:
            raise ConfigurationError(f"Invalid native value setting: {e}")
        if min_wei < 0 or min_wei > max_wei:
            raise ConfigurationError(
                f"MIN_VALUE ({self.min_value}) must be between 0 and MAX_VALUE ({self.max_value})"
            )

        for threshold in self.token_thresholds:
            try:
                threshold.min_raw
            except ValueError as e:
                raise ConfigurationError(f"Invalid threshold for {threshold.symbol}: {e}")

        return self

    # -------------------------------------------------------------------------
    # Derived values
    # -------------------------------------------------------------------------

    @property
    def min_value_wei(self) -> int:
        return parse_units(self.min_value, self.native_decimals)

    @property
    def max_value_wei(self) -> int:
        return parse_units(self.max_value, self.native_decimals)

    @property
    def native_enroll_min_wei(self) -> int:
        """Native enrollment minimum; falls back to the MIN_VALUE scan floor."""
        if self.native_enroll_min is None:
            return self.min_value_wei
        return parse_units(self.native_enroll_min, self.native_decimals)

    @property
    def token_minimums(self) -> Dict[str, int]:
        """Token address -> minimum raw amount for enrollment."""
        return {t.token_address: t.min_raw for t in self.token_thresholds}


def parse_token_thresholds(raw: str) -> Tuple[TokenThreshold, ...]:
    """
    Parse BASE_TOKENS_JSON.

    Expected shape:
        {"0x55d3...": {"symbol": "USDT", "min_amount": "1000", "decimals": 18}}

    Raises:
        ConfigurationError: If the JSON is malformed
    """
    try:
        data = json.loads(raw)
        return tuple(
            TokenThreshold(
                token_address=address.lower(),
                symbol=entry.get("symbol", "UNKNOWN"),
                min_amount=str(entry["min_amount"]),
                decimals=int(entry.get("decimals", 18)),
            )
            for address, entry in data.items()
        )
    except (ValueError, KeyError, TypeError, AttributeError) as e:
        raise ConfigurationError(f"BASE_TOKENS_JSON is invalid: {e}")
