"""
Regime-based Strategy Weights
=============================

레짐 → 전략 유형별 가중치 테이블.

핵심 원칙:
- 기본 25
- MEAN_REVERSION: ranging / 긴 박스권 최대 +50, 아니면 -5
- MOMENTUM: 고변동성 + 변동성 확대 최대 +35
- TREND_FOLLOWING: 강한 추세 최대 +40
- BREAKOUT: 돌파 / 장기 박스권(돌파 전조) 최대 +50
- 모든 가중치 [5, 100] 클램프

Usage:
```python
from regime_trader.regime.weights import update_weights

weights = update_weights(snapshot, registry)
print(weights)  # {'bollinger': 75, 'momentum': 20, ...}
```
"""
from typing import Dict

from regime_trader.regime.classifier import RegimeSnapshot
from regime_trader.strategies.base import StrategyKind, StrategyRegistry


BASE_WEIGHT = 25
MIN_WEIGHT = 5
MAX_WEIGHT = 100


def clamp_weight(value: float) -> int:
    return int(max(MIN_WEIGHT, min(MAX_WEIGHT, round(value))))


def _mean_reversion(s: RegimeSnapshot) -> int:
    adj = 0
    if s.market_type == "ranging":
        adj += 30
        if s.range_length_days > 5:
            adj += 10
        if s.range_length_days > 10:
            adj += 10
    else:
        adj -= 5
    if s.trend == "neutral" and s.volatility == "normal":
        adj += 10
    return adj


def _momentum(s: RegimeSnapshot) -> int:
    if s.volatility != "high":
        return -5
    adj = 20
    if s.volatility_change in ("increasing", "increasing-fast"):
        adj += 15
    return adj


def _trend_following(s: RegimeSnapshot) -> int:
    if s.market_type == "trending" and s.trend_strength > 50:
        adj = 25
        if s.trend_strength > 70:
            adj += 15
        return adj
    adj = -5
    if 30 < s.trend_strength <= 50:
        adj += 10
    return adj


def _breakout(s: RegimeSnapshot) -> int:
    if s.breakout.is_breakout:
        adj = 40
        if s.volatility_change in ("increasing", "increasing-fast"):
            adj += 10
        return adj
    if s.range_length_days > 10:
        return 15
    return -5


KIND_ADJUSTMENTS = {
    StrategyKind.MEAN_REVERSION: _mean_reversion,
    StrategyKind.MOMENTUM: _momentum,
    StrategyKind.TREND_FOLLOWING: _trend_following,
    StrategyKind.BREAKOUT: _breakout,
}


def update_weights(snapshot: RegimeSnapshot, registry: StrategyRegistry) -> Dict[str, int]:
    """
    전략별 가중치 재계산 (등록 순서 유지)

    Returns:
        {strategy_id: weight}
    """
    weights: Dict[str, int] = {}
    for strategy in registry:
        adjust = KIND_ADJUSTMENTS.get(strategy.kind)
        adj = adjust(snapshot) if adjust else 0
        weights[strategy.strategy_id] = clamp_weight(BASE_WEIGHT + adj)
    return weights
