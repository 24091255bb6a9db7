"""Reserve snapshots and APY estimation."""

from dexengine.analytics.snapshots import (
    ApyEstimate,
    ApyEstimator,
    PriceOracle,
    SnapshotRecorder,
    SnapshotReport,
    StaticPriceOracle,
    bucket_start,
)

__all__ = [
    "ApyEstimate",
    "ApyEstimator",
    "PriceOracle",
    "SnapshotRecorder",
    "SnapshotReport",
    "StaticPriceOracle",
    "bucket_start",
]
