"""Engine configuration.

All knobs are plain frozen dataclasses so tests can build variants cheaply.
`EngineConfig.from_env()` reads `DEX_*` environment variables with the same
defaults the dataclasses carry.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field

from dexengine.constants import (
    BPS_DENOMINATOR,
    DEFAULT_AGGREGATOR_FEE_BPS,
    DEFAULT_LP_FEE_BPS,
    DEFAULT_NATIVE_PREFERENCE_BPS,
    DEFAULT_PROTOCOL_FEE_BPS,
)


@dataclass(frozen=True)
class FeeSchedule:
    """Swap fee legs, each independently configurable.

    Attributes:
        lp_fee_bps: Taken from the input before the constant-product
            computation and left in the reserves for LPs.
        protocol_fee_bps: Taken from the input up front and routed to the
            treasury account as a separate transfer. Never enters reserves.
    """

    lp_fee_bps: int = DEFAULT_LP_FEE_BPS
    protocol_fee_bps: int = DEFAULT_PROTOCOL_FEE_BPS

    def __post_init__(self) -> None:
        for name in ("lp_fee_bps", "protocol_fee_bps"):
            value = getattr(self, name)
            if not 0 <= value < BPS_DENOMINATOR:
                raise ValueError(f"{name} must be in [0, {BPS_DENOMINATOR}), got {value}")
        if self.total_bps >= BPS_DENOMINATOR:
            raise ValueError(f"Total fee must be below {BPS_DENOMINATOR} bps")

    @property
    def total_bps(self) -> int:
        return self.lp_fee_bps + self.protocol_fee_bps


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded exponential backoff for transient settlement failures.

    Delays double from `initial_delay` up to `max_delay` (seconds).
    """

    max_retries: int = 3
    initial_delay: float = 1.0
    max_delay: float = 8.0

    def delay_for(self, attempt: int) -> float:
        """Delay before retry number `attempt` (0-based)."""
        return min(self.initial_delay * (2**attempt), self.max_delay)


@dataclass(frozen=True)
class AggregatorConfig:
    """Quote aggregation parameters."""

    fee_bps: int = DEFAULT_AGGREGATOR_FEE_BPS
    native_preference_bps: int = DEFAULT_NATIVE_PREFERENCE_BPS
    venue_timeout: float = 3.0


@dataclass(frozen=True)
class EngineConfig:
    """Top-level configuration for a running engine.

    Attributes:
        database_url: SQLAlchemy URL. None selects the in-memory store.
        pool_namespace: Factory namespace mixed into deterministic pool ids.
        treasury_account: Recipient of the protocol fee leg.
        operator_account: Account that signs two-phase settlements.
        snapshot_interval: Snapshot bucket width in seconds.
        stuck_after_minutes: Age after which TX1_COMPLETE records count as stuck.
    """

    database_url: str | None = None
    pool_namespace: str = "dexengine"
    treasury_account: str = "treasury"
    operator_account: str = "operator"
    fees: FeeSchedule = field(default_factory=FeeSchedule)
    aggregator: AggregatorConfig = field(default_factory=AggregatorConfig)
    retry: RetryPolicy = field(default_factory=RetryPolicy)
    snapshot_interval: int = 3600
    snapshot_retention_days: int = 30
    stuck_after_minutes: int = 5
    host: str = "0.0.0.0"
    port: int = 8000
    debug: bool = False
    log_json: bool = False

    @classmethod
    def from_env(cls, environ: dict[str, str] | None = None) -> EngineConfig:
        """Build a configuration from `DEX_*` environment variables."""
        env = os.environ if environ is None else environ

        def get_int(name: str, default: int) -> int:
            return int(env.get(name, str(default)))

        def get_float(name: str, default: float) -> float:
            return float(env.get(name, str(default)))

        def get_bool(name: str, default: bool) -> bool:
            raw = env.get(name)
            if raw is None:
                return default
            return raw.lower() in ("true", "1", "yes")

        return cls(
            database_url=env.get("DEX_DATABASE_URL") or None,
            pool_namespace=env.get("DEX_POOL_NAMESPACE", "dexengine"),
            treasury_account=env.get("DEX_TREASURY_ACCOUNT", "treasury"),
            operator_account=env.get("DEX_OPERATOR_ACCOUNT", "operator"),
            fees=FeeSchedule(
                lp_fee_bps=get_int("DEX_LP_FEE_BPS", DEFAULT_LP_FEE_BPS),
                protocol_fee_bps=get_int("DEX_PROTOCOL_FEE_BPS", DEFAULT_PROTOCOL_FEE_BPS),
            ),
            aggregator=AggregatorConfig(
                fee_bps=get_int("DEX_AGGREGATOR_FEE_BPS", DEFAULT_AGGREGATOR_FEE_BPS),
                native_preference_bps=get_int(
                    "DEX_NATIVE_PREFERENCE_BPS", DEFAULT_NATIVE_PREFERENCE_BPS
                ),
                venue_timeout=get_float("DEX_VENUE_TIMEOUT", 3.0),
            ),
            retry=RetryPolicy(
                max_retries=get_int("DEX_TX2_MAX_RETRIES", 3),
                initial_delay=get_float("DEX_TX2_INITIAL_DELAY", 1.0),
                max_delay=get_float("DEX_TX2_MAX_DELAY", 8.0),
            ),
            snapshot_interval=get_int("DEX_SNAPSHOT_INTERVAL", 3600),
            snapshot_retention_days=get_int("DEX_SNAPSHOT_RETENTION_DAYS", 30),
            stuck_after_minutes=get_int("DEX_STUCK_AFTER_MINUTES", 5),
            host=env.get("DEX_HOST", "0.0.0.0"),
            port=get_int("DEX_PORT", 8000),
            debug=get_bool("DEX_DEBUG", False),
            log_json=get_bool("DEX_LOG_JSON", False),
        )


DEFAULT_CONFIG = EngineConfig()
