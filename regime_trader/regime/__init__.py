"""Regime classification and strategy selection."""
from regime_trader.regime.classifier import (
    Breakout,
    HistoricalContext,
    RegimeConfig,
    RegimeSnapshot,
    build_historical_context,
    classify,
)
from regime_trader.regime.weights import clamp_weight, update_weights
from regime_trader.regime.selector import Selection, StrategySelector

__all__ = [
    "Breakout",
    "HistoricalContext",
    "RegimeConfig",
    "RegimeSnapshot",
    "build_historical_context",
    "classify",
    "clamp_weight",
    "update_weights",
    "Selection",
    "StrategySelector",
]
