# -*- coding: utf-8 -*-
"""
Strategy Selector
=================

스캔마다 전략 하나 선택.

1단계 - 오버라이드 (우선순위 고정, 첫 매칭 승리):
1. 돌파 감지 → BREAKOUT
2. trending + strength > 75 → TREND_FOLLOWING
3. ranging + range length > 12 → MEAN_REVERSION
4. 고변동성 + increasing-fast → MOMENTUM

2단계 - 가중치 (오버라이드 없을 때):
- update_weights() 최고 가중치, 동점은 등록 순서

성과 게이트: 최소 거래수 이상 + 누적 손익 <= 0 전략은 비활성화, 회복하면 재활성화.
"""
import logging
import threading
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Set, Tuple

from regime_trader.regime.classifier import RegimeSnapshot
from regime_trader.regime.weights import update_weights
from regime_trader.strategies.base import Strategy, StrategyKind, StrategyRegistry

logger = logging.getLogger(__name__)


@dataclass
class Selection:
    """선택 결과"""
    strategy: Strategy
    reason: str
    override: bool
    weights: Dict[str, int] = field(default_factory=dict)

    @property
    def strategy_id(self) -> str:
        return self.strategy.strategy_id


OverrideRule = Tuple[str, StrategyKind, Callable[[RegimeSnapshot], bool]]

OVERRIDE_RULES: List[OverrideRule] = [
    ("Breakout detected", StrategyKind.BREAKOUT,
     lambda s: s.breakout.is_breakout),
    ("Strong trend", StrategyKind.TREND_FOLLOWING,
     lambda s: s.market_type == "trending" and s.trend_strength > 75),
    ("Extended range", StrategyKind.MEAN_REVERSION,
     lambda s: s.market_type == "ranging" and s.range_length_days > 12),
    ("Volatility expansion", StrategyKind.MOMENTUM,
     lambda s: s.volatility == "high" and s.volatility_change == "increasing-fast"),
]


class StrategySelector:
    """오버라이드 → 가중치 2단계 선택기"""

    def __init__(self, registry: StrategyRegistry):
        if len(registry) == 0:
            raise ValueError("StrategySelector requires at least one strategy")
        self.registry = registry
        self.weights: Dict[str, int] = {sid: 25 for sid in registry.ids()}
        self._disabled: Set[str] = set()
        self._lock = threading.Lock()

    # -------------------------------------------------------------------------
    # Enable / disable
    # -------------------------------------------------------------------------

    def disable(self, strategy_id: str) -> None:
        if strategy_id not in self.registry:
            raise KeyError(strategy_id)
        if strategy_id not in self._disabled:
            logger.warning(f"[Selector] Strategy disabled: {strategy_id}")
        self._disabled.add(strategy_id)

    def enable(self, strategy_id: str) -> None:
        if strategy_id not in self.registry:
            raise KeyError(strategy_id)
        if strategy_id in self._disabled:
            logger.info(f"[Selector] Strategy enabled: {strategy_id}")
        self._disabled.discard(strategy_id)

    def is_enabled(self, strategy_id: str) -> bool:
        return strategy_id not in self._disabled

    def apply_performance(self, is_profitable: Callable[[str], bool]) -> None:
        """성과 게이트: 미달 전략 비활성화, 회복한 전략 재활성화"""
        for sid in self.registry.ids():
            if is_profitable(sid):
                self.enable(sid)
            else:
                self.disable(sid)

    # -------------------------------------------------------------------------
    # Selection
    # -------------------------------------------------------------------------

    def _candidates(self) -> List[Strategy]:
        enabled = [s for s in self.registry if self.is_enabled(s.strategy_id)]
        return enabled or list(self.registry)

    def select(self, snapshot: RegimeSnapshot) -> Selection:
        """
        Args:
            snapshot: RegimeSnapshot

        Returns:
            Selection (strategy + reason)
        """
        candidates = self._candidates()
        candidate_ids = {s.strategy_id for s in candidates}

        # self.weights 는 조회용, 선택은 로컬 값으로
        weights = update_weights(snapshot, self.registry)
        with self._lock:
            self.weights = weights

        for reason, kind, matches in OVERRIDE_RULES:
            if not matches(snapshot):
                continue
            targets = [s for s in self.registry.by_kind(kind) if s.strategy_id in candidate_ids]
            if targets:
                logger.info(f"[Selector] Override: {reason} → {targets[0].strategy_id}")
                return Selection(strategy=targets[0], reason=reason, override=True, weights=dict(weights))

        best: Optional[Strategy] = None
        for strategy in candidates:
            if best is None or weights[strategy.strategy_id] > weights[best.strategy_id]:
                best = strategy

        logger.info(f"[Selector] Weighted: {best.strategy_id} weights={weights}")
        return Selection(
            strategy=best,
            reason=f"Highest weight {weights[best.strategy_id]}",
            override=False,
            weights=dict(weights),
        )

    def last_weights(self) -> Dict[str, int]:
        """마지막 가중치 계산 결과 (조회용)"""
        with self._lock:
            return dict(self.weights)
