"""
Position Models
===============

- Position: 영속 레코드 (라이프사이클 매니저 전용, 저장소는 저장/로드만)
- PositionRuntimeState: 메모리 전용 (최고/최저가, 트레일링, 본절 플래그)
- RuntimeStateCache: 심볼 키 캐시, 재시작 시 현재가로 보수적 재시드
"""
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Direction(Enum):
    LONG = "LONG"
    SHORT = "SHORT"

    @property
    def sign(self) -> int:
        return 1 if self is Direction.LONG else -1

    @property
    def entry_side(self) -> str:
        return "BUY" if self is Direction.LONG else "SELL"

    @property
    def exit_side(self) -> str:
        return "SELL" if self is Direction.LONG else "BUY"

    @classmethod
    def from_sign(cls, value: float) -> "Direction":
        return cls.LONG if value > 0 else cls.SHORT


@dataclass
class Position:
    """포지션 레코드"""
    symbol: str
    entries: int                      # 부호 있는 진입 횟수 (+ LONG, - SHORT)
    entry_prices: List[float]
    quantity: float                   # 기초자산 수량 (양수)
    total_allocation: float           # 증거금 USDT
    stop_loss: float
    take_profit: float
    leverage: int = 1
    strategy_used: str = ""
    scale_step: int = 0               # 스케일인 횟수
    is_active: bool = True
    adopted: bool = False             # 거래소에서 발견 후 편입
    market_conditions: Dict[str, Any] = field(default_factory=dict)
    opened_at: datetime = field(default_factory=utcnow)
    id: Optional[int] = None

    # 종료 정보
    closed_at: Optional[datetime] = None
    closed_price: Optional[float] = None
    exit_reason: Optional[str] = None
    pnl_percent: Optional[float] = None
    pnl_amount: Optional[float] = None
    hold_time_minutes: Optional[float] = None

    @property
    def direction(self) -> Direction:
        return Direction.from_sign(self.entries)

    @property
    def average_entry_price(self) -> float:
        return sum(self.entry_prices) / len(self.entry_prices)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'symbol': self.symbol,
            'direction': self.direction.value,
            'entries': self.entries,
            'entry_prices': list(self.entry_prices),
            'quantity': self.quantity,
            'total_allocation': self.total_allocation,
            'stop_loss': self.stop_loss,
            'take_profit': self.take_profit,
            'leverage': self.leverage,
            'strategy_used': self.strategy_used,
            'scale_step': self.scale_step,
            'is_active': self.is_active,
            'exit_reason': self.exit_reason,
            'pnl_percent': self.pnl_percent,
            'pnl_amount': self.pnl_amount,
        }


@dataclass
class PositionRuntimeState:
    """파생 상태 (저장 안함)"""
    highest_price_seen: float
    lowest_price_seen: float
    trailing_active: bool = False
    trailing_level: Optional[float] = None
    break_even_active: bool = False
    exchange_stop: Optional[float] = None  # 거래소에 걸린 손절가 (모르면 None)

    def observe(self, price: float) -> Tuple[float, float]:
        """
        극값 갱신

        Returns:
            갱신 전 (highest, lowest)
        """
        prev = (self.highest_price_seen, self.lowest_price_seen)
        self.highest_price_seen = max(self.highest_price_seen, price)
        self.lowest_price_seen = min(self.lowest_price_seen, price)
        return prev

    def move_trailing(self, level: float, direction: Direction) -> bool:
        """
        트레일링 레벨 갱신 (LONG은 상승만, SHORT는 하락만)

        Returns:
            실제로 변경되었는지
        """
        if self.trailing_level is None:
            self.trailing_level = level
            return True
        if direction is Direction.LONG and level > self.trailing_level:
            self.trailing_level = level
            return True
        if direction is Direction.SHORT and level < self.trailing_level:
            self.trailing_level = level
            return True
        return False


class RuntimeStateCache:
    """심볼 → PositionRuntimeState"""

    def __init__(self):
        self._states: Dict[str, PositionRuntimeState] = {}
        self._lock = threading.Lock()

    def get(self, symbol: str) -> Optional[PositionRuntimeState]:
        with self._lock:
            return self._states.get(symbol)

    def get_or_seed(self, position: Position, price: float) -> PositionRuntimeState:
        """
        없으면 현재가로 시드. 영속 SL이 이미 평단 이상(LONG)이면 본절 완료로 간주.
        """
        with self._lock:
            state = self._states.get(position.symbol)
            if state is None:
                entry = position.average_entry_price
                if position.direction is Direction.LONG:
                    be_done = position.stop_loss >= entry
                else:
                    be_done = position.stop_loss <= entry
                state = PositionRuntimeState(
                    highest_price_seen=price,
                    lowest_price_seen=price,
                    break_even_active=be_done,
                )
                self._states[position.symbol] = state
            return state

    def discard(self, symbol: str) -> None:
        with self._lock:
            self._states.pop(symbol, None)

    def __contains__(self, symbol: str) -> bool:
        with self._lock:
            return symbol in self._states

    def __len__(self) -> int:
        with self._lock:
            return len(self._states)


def is_tighter(direction: Direction, level: float, reference: Optional[float]) -> bool:
    """level 이 reference 보다 유리한 쪽(LONG은 위, SHORT는 아래)인지"""
    if reference is None:
        return True
    return level > reference if direction is Direction.LONG else level < reference
