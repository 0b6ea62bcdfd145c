"""
Configuration for the Liquidation Watcher

All settings in one place. Values are read once at startup (from the
environment, optionally seeded from a .env file) and never mutated after.
"""

import os
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import List, Mapping, Optional

from dotenv import load_dotenv

from .errors import ConfigError

_PROJECT_ROOT = Path(__file__).parent.parent

OVERFLOW_POLICIES = ("drop", "queue")

# Aave pool values are 18-decimal fixed point
HEALTH_FACTOR_DECIMALS = 18


@dataclass(frozen=True)
class Config:
    """All configuration settings."""

    # -------------------------------------------------------------------------
    # Upstream feeds
    # -------------------------------------------------------------------------
    # Primary first, then fallbacks
    endpoints: List[str] = field(default_factory=list)

    # Monitored lending pool contract
    pool_address: str = ""

    # Subscribe to the pending-transaction firehose (alchemy_pendingTransactions)
    pending_tx_stream: bool = True

    # Reconnect backoff for a dropped WebSocket (seconds)
    reconnect_delay_sec: float = 2.0
    max_reconnect_delay_sec: float = 60.0

    # -------------------------------------------------------------------------
    # Health checks
    # -------------------------------------------------------------------------
    health_threshold: Decimal = Decimal("1.05")
    debounce_window_sec: float = 30.0
    concurrency_cap: int = 4
    query_timeout_sec: float = 10.0

    # What happens to a notification rejected by the concurrency cap:
    # "drop" (shed it) or "queue" (bounded backlog drained as slots free up)
    overflow_policy: str = "drop"
    overflow_queue_size: int = 256

    # 0 = keep every account ever observed
    max_tracked_accounts: int = 0

    # -------------------------------------------------------------------------
    # Full sweep
    # -------------------------------------------------------------------------
    full_sweep_interval_sec: float = 900.0
    known_accounts_file: Optional[Path] = None

    # -------------------------------------------------------------------------
    # Alerts
    # -------------------------------------------------------------------------
    # Telegram allows ~1 msg/sec per chat
    min_alert_interval_sec: float = 1.0
    delivery_timeout_sec: float = 10.0
    telegram_bot_token: Optional[str] = None
    telegram_chat_id: Optional[str] = None
    explorer_tx_url: str = "https://etherscan.io/tx/"

    # Alert-only action path (no liquidation executor)
    test_mode: bool = False

    # -------------------------------------------------------------------------
    # Logging
    # -------------------------------------------------------------------------
    log_level: str = "INFO"
    log_file: str = "logs/watcher.log"

    def __post_init__(self):
        self._validate()

    def _validate(self):
        """Validate configuration."""
        if self.concurrency_cap < 1:
            raise ConfigError(f"concurrency_cap must be >= 1 (got {self.concurrency_cap})")
        if self.debounce_window_sec < 0:
            raise ConfigError("debounce_window_sec must be >= 0")
        if self.full_sweep_interval_sec <= 0:
            raise ConfigError("full_sweep_interval_sec must be > 0")
        if self.min_alert_interval_sec < 0:
            raise ConfigError("min_alert_interval_sec must be >= 0")
        if self.query_timeout_sec <= 0 or self.delivery_timeout_sec <= 0:
            raise ConfigError("timeouts must be > 0")
        if self.overflow_policy not in OVERFLOW_POLICIES:
            raise ConfigError(
                f"overflow_policy must be one of {OVERFLOW_POLICIES} (got {self.overflow_policy!r})"
            )
        if self.overflow_queue_size < 1:
            raise ConfigError("overflow_queue_size must be >= 1")
        if self.max_tracked_accounts < 0:
            raise ConfigError("max_tracked_accounts must be >= 0")
        if self.reconnect_delay_sec <= 0:
            raise ConfigError("reconnect_delay_sec must be > 0")
        if self.max_reconnect_delay_sec < self.reconnect_delay_sec:
            raise ConfigError("max_reconnect_delay_sec must be >= reconnect_delay_sec")

    # -------------------------------------------------------------------------
    # Helper Methods
    # -------------------------------------------------------------------------

    @property
    def telegram_configured(self) -> bool:
        """Whether both Telegram credentials are present."""
        return bool(self.telegram_bot_token and self.telegram_chat_id)

    def require_upstream(self):
        """
        Check the settings needed to actually connect.

        Kept out of _validate so components can be built without endpoints
        (tests, --test-telegram).
        """
        if not self.endpoints:
            raise ConfigError("WSS_URL is required")
        if not self.pool_address:
            raise ConfigError("AAVE_POOL is required")

    @classmethod
    def from_env(
        cls,
        environ: Optional[Mapping[str, str]] = None,
        env_file: Optional[Path] = None,
    ) -> "Config":
        """
        Build the configuration from environment variables.

        Args:
            environ: Mapping to read from (default: os.environ after loading .env)
            env_file: .env file to load (default: <project root>/.env if present)

        Returns:
            Config instance

        Raises:
            ConfigError: If a value cannot be parsed or is out of range
        """
        if environ is None:
            env_path = env_file or _PROJECT_ROOT / ".env"
            if env_path.exists():
                load_dotenv(env_path)
            environ = os.environ

        endpoints = [
            url.strip()
            for url in (environ.get("WSS_URL", ""), environ.get("WSS_URL_SECONDARY", ""))
            if url and url.strip()
        ]

        accounts_file = environ.get("KNOWN_ACCOUNTS_FILE", "").strip()

        return cls(
            endpoints=endpoints,
            pool_address=environ.get("AAVE_POOL", "").strip().lower(),
            pending_tx_stream=_parse_bool(environ.get("PENDING_TX_STREAM"), True),
            reconnect_delay_sec=_parse_float(environ, "RECONNECT_DELAY_SECONDS", 2.0),
            max_reconnect_delay_sec=_parse_float(environ, "MAX_RECONNECT_DELAY_SECONDS", 60.0),
            health_threshold=_parse_decimal(environ, "HEALTH_FACTOR_THRESHOLD", "1.05"),
            debounce_window_sec=_parse_float(environ, "USER_DEBOUNCE_SECONDS", 30.0),
            concurrency_cap=_parse_int(environ, "MAX_CONCURRENT_CHECKS", 4),
            query_timeout_sec=_parse_float(environ, "QUERY_TIMEOUT_SECONDS", 10.0),
            overflow_policy=environ.get("OVERFLOW_POLICY", "drop").strip().lower(),
            overflow_queue_size=_parse_int(environ, "OVERFLOW_QUEUE_SIZE", 256),
            max_tracked_accounts=_parse_int(environ, "MAX_TRACKED_ACCOUNTS", 0),
            full_sweep_interval_sec=_parse_float(environ, "FULL_SCAN_INTERVAL", 900.0),
            known_accounts_file=Path(accounts_file) if accounts_file else None,
            min_alert_interval_sec=_parse_float(environ, "ALERT_MIN_INTERVAL_SECONDS", 1.0),
            delivery_timeout_sec=_parse_float(environ, "DELIVERY_TIMEOUT_SECONDS", 10.0),
            telegram_bot_token=environ.get("TELEGRAM_BOT_TOKEN") or None,
            telegram_chat_id=environ.get("TELEGRAM_CHAT_ID") or None,
            explorer_tx_url=environ.get("EXPLORER_TX_URL", "https://etherscan.io/tx/"),
            test_mode=_parse_bool(environ.get("TEST_MODE"), False),
            log_level=environ.get("LOG_LEVEL", "INFO").upper(),
            log_file=environ.get("LOG_FILE", "logs/watcher.log"),
        )


# =============================================================================
# Parsing helpers
# =============================================================================

def _parse_bool(value: Optional[str], default: bool) -> bool:
    if value is None or value.strip() == "":
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _parse_int(environ: Mapping[str, str], key: str, default: int) -> int:
    raw = environ.get(key)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError as e:
        raise ConfigError(f"{key} must be an integer (got {raw!r})", original_error=e)


def _parse_float(environ: Mapping[str, str], key: str, default: float) -> float:
    raw = environ.get(key)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError as e:
        raise ConfigError(f"{key} must be a number (got {raw!r})", original_error=e)


def _parse_decimal(environ: Mapping[str, str], key: str, default: str) -> Decimal:
    raw = environ.get(key)
    if raw is None or raw.strip() == "":
        return Decimal(default)
    try:
        value = Decimal(raw.strip())
    except InvalidOperation as e:
        raise ConfigError(f"{key} must be a decimal (got {raw!r})", original_error=e)
    if not value.is_finite():
        raise ConfigError(f"{key} must be finite (got {raw!r})")
    return value
