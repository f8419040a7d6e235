"""
Strategy Interface & Registry
=============================

모든 전략은 generate_signal(candles, symbol) → Signal 하나만 구현.
레지스트리는 등록 순서를 보존 (가중치 동점 시 먼저 등록된 전략 선택).
"""
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional, Sequence

import pandas as pd

logger = logging.getLogger(__name__)


class StrategyKind(Enum):
    """전략 유형 (오버라이드 규칙이 참조)"""
    MEAN_REVERSION = "mean_reversion"
    MOMENTUM = "momentum"
    TREND_FOLLOWING = "trend_following"
    BREAKOUT = "breakout"


class SignalType(Enum):
    BUY = "BUY"
    SELL = "SELL"
    WEAK_BUY = "WEAK_BUY"
    WEAK_SELL = "WEAK_SELL"
    NEUTRAL = "NEUTRAL"

    @property
    def is_entry(self) -> bool:
        return self in (SignalType.BUY, SignalType.SELL)

    @property
    def is_weak(self) -> bool:
        return self in (SignalType.WEAK_BUY, SignalType.WEAK_SELL)

    @property
    def is_long(self) -> bool:
        return self in (SignalType.BUY, SignalType.WEAK_BUY)


@dataclass
class Signal:
    """전략 시그널 (스캔마다 1회 생성, 저장 안함)"""
    signal_type: SignalType
    price: float
    stop_loss: float
    take_profit: float
    allocation_hint: float = 1.0   # 기본 할당 배수
    unmet_conditions: List[str] = field(default_factory=list)
    strategy_id: str = ""
    reason: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            'signal': self.signal_type.value,
            'price': self.price,
            'stop_loss': self.stop_loss,
            'take_profit': self.take_profit,
            'allocation_hint': self.allocation_hint,
            'unmet_conditions': list(self.unmet_conditions),
            'strategy_id': self.strategy_id,
            'reason': self.reason,
        }


class Strategy(ABC):
    """시그널 생성 전략 베이스"""

    strategy_id: str = ""
    kind: StrategyKind
    timeframes: Sequence[str] = ("1h",)  # 선호 순서
    candle_limit: int = 100
    defaults: Dict[str, Any] = {}

    def __init__(self, params: Optional[Dict[str, Any]] = None):
        self.params: Dict[str, Any] = {**self.defaults, **(params or {})}

    @abstractmethod
    def generate_signal(self, candles: pd.DataFrame, symbol: str) -> Signal:
        """캔들 → Signal (strategy_id 태그 포함)"""

    def pick_candles(self, candles_by_tf: Dict[str, Optional[pd.DataFrame]]) -> Optional[pd.DataFrame]:
        """선호 TF 순서대로 사용 가능한 첫 캔들"""
        for tf in self.timeframes:
            df = candles_by_tf.get(tf)
            if df is not None and len(df) > 0:
                return df
        return None

    def neutral(self, price: float, stop_loss: float, take_profit: float, reason: str = "") -> Signal:
        return Signal(
            signal_type=SignalType.NEUTRAL,
            price=price,
            stop_loss=stop_loss,
            take_profit=take_profit,
            allocation_hint=self.params.get("allocation_mult", 1.0),
            strategy_id=self.strategy_id,
            reason=reason,
        )

    def signal(
        self,
        signal_type: SignalType,
        price: float,
        stop_loss: float,
        take_profit: float,
        unmet: Optional[List[str]] = None,
        reason: str = "",
    ) -> Signal:
        return Signal(
            signal_type=signal_type,
            price=price,
            stop_loss=stop_loss,
            take_profit=take_profit,
            allocation_hint=self.params.get("allocation_mult", 1.0),
            unmet_conditions=list(unmet or []),
            strategy_id=self.strategy_id,
            reason=reason,
        )

    def __repr__(self) -> str:
        return f"{type(self).__name__}(id={self.strategy_id!r})"


class StrategyRegistry:
    """등록 순서 보존 레지스트리"""

    def __init__(self):
        self._strategies: Dict[str, Strategy] = {}

    def register(self, strategy: Strategy) -> None:
        if strategy.strategy_id in self._strategies:
            raise ValueError(f"Strategy already registered: {strategy.strategy_id}")
        self._strategies[strategy.strategy_id] = strategy

    def get(self, strategy_id: str) -> Strategy:
        return self._strategies[strategy_id]

    def by_kind(self, kind: StrategyKind) -> List[Strategy]:
        return [s for s in self._strategies.values() if s.kind == kind]

    def ids(self) -> List[str]:
        return list(self._strategies)

    def __iter__(self) -> Iterator[Strategy]:
        return iter(self._strategies.values())

    def __len__(self) -> int:
        return len(self._strategies)

    def __contains__(self, strategy_id: str) -> bool:
        return strategy_id in self._strategies
