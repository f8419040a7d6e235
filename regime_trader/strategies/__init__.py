"""Signal-generating strategies."""
from typing import Any, Dict, Optional

from regime_trader.strategies.base import (
    Signal,
    SignalType,
    Strategy,
    StrategyKind,
    StrategyRegistry,
)
from regime_trader.strategies.bollinger import BollingerStrategy
from regime_trader.strategies.momentum import MomentumStrategy
from regime_trader.strategies.trend_follow import TrendFollowStrategy
from regime_trader.strategies.turtle import TurtleStrategy


def build_default_registry(params: Optional[Dict[str, Dict[str, Any]]] = None) -> StrategyRegistry:
    """기본 4개 전략 (등록 순서 = 동점 우선순위)"""
    params = params or {}
    registry = StrategyRegistry()
    for cls in (BollingerStrategy, MomentumStrategy, TrendFollowStrategy, TurtleStrategy):
        registry.register(cls(params.get(cls.strategy_id)))
    return registry


__all__ = [
    "Signal",
    "SignalType",
    "Strategy",
    "StrategyKind",
    "StrategyRegistry",
    "BollingerStrategy",
    "MomentumStrategy",
    "TrendFollowStrategy",
    "TurtleStrategy",
    "build_default_registry",
]
