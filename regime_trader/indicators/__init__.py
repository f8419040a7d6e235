"""Indicator engine."""
from regime_trader.indicators.bundle import (
    MIN_CANDLES,
    AtrTrend,
    Candle,
    IndicatorBundle,
    InsufficientDataError,
    candles_to_frame,
    compute_bundle,
    compute_bundles,
)

__all__ = [
    "MIN_CANDLES",
    "AtrTrend",
    "Candle",
    "IndicatorBundle",
    "InsufficientDataError",
    "candles_to_frame",
    "compute_bundle",
    "compute_bundles",
]
