"""
Performance Tracker
===================

종료 포지션 → 전략별 / 심볼별 성과 집계.

- 승률, profit factor, 평균 보유시간, 최근 10건
- 최소 거래수 이상 + 누적 손익 <= 0 → 비수익 전략 (선택기에서 비활성화, 회복 시 재활성화)
"""
import logging
import threading
from collections import deque
from dataclasses import dataclass, field
from typing import Deque, Dict, Iterable

from regime_trader.position.models import Position

logger = logging.getLogger(__name__)

RECENT_TRADES = 10


@dataclass
class StrategyStats:
    """전략(또는 심볼)별 통계"""
    trades: int = 0
    wins: int = 0
    losses: int = 0
    gross_profit: float = 0.0
    gross_loss: float = 0.0
    total_pnl: float = 0.0
    total_hold_minutes: float = 0.0
    recent: Deque[float] = field(default_factory=lambda: deque(maxlen=RECENT_TRADES))

    @property
    def win_rate(self) -> float:
        return self.wins / self.trades * 100 if self.trades else 0.0

    @property
    def profit_factor(self) -> float:
        if self.gross_loss == 0:
            return float('inf') if self.gross_profit > 0 else 0.0
        return self.gross_profit / self.gross_loss

    @property
    def avg_hold_minutes(self) -> float:
        return self.total_hold_minutes / self.trades if self.trades else 0.0

    def add(self, pnl: float, hold_minutes: float) -> None:
        self.trades += 1
        self.total_pnl += pnl
        self.total_hold_minutes += hold_minutes
        if pnl > 0:
            self.wins += 1
            self.gross_profit += pnl
        else:
            self.losses += 1
            self.gross_loss += abs(pnl)
        self.recent.append(pnl)

    def to_dict(self) -> dict:
        return {
            'trades': self.trades,
            'win_rate': round(self.win_rate, 2),
            'profit_factor': self.profit_factor,
            'total_pnl': round(self.total_pnl, 4),
            'avg_hold_minutes': round(self.avg_hold_minutes, 1),
            'recent': list(self.recent),
        }


class PerformanceTracker:
    """성과 집계기"""

    def __init__(self, min_trades: int = 10):
        self.min_trades = min_trades
        self.by_strategy: Dict[str, StrategyStats] = {}
        self.by_symbol: Dict[str, StrategyStats] = {}
        self._lock = threading.Lock()

    def record(self, position: Position) -> None:
        """종료된 포지션 기록"""
        if position.is_active or position.pnl_amount is None:
            return
        hold = position.hold_time_minutes or 0.0
        strategy = position.strategy_used or "unknown"
        with self._lock:
            self.by_strategy.setdefault(strategy, StrategyStats()).add(position.pnl_amount, hold)
            self.by_symbol.setdefault(position.symbol, StrategyStats()).add(position.pnl_amount, hold)
        logger.info(f"[Performance] {strategy} {position.symbol} pnl={position.pnl_amount:+.4f}")

    def rebuild(self, closed: Iterable[Position]) -> None:
        """저장된 종료 포지션으로 재구성 (오래된 순)"""
        with self._lock:
            self.by_strategy.clear()
            self.by_symbol.clear()
        for p in sorted(closed, key=lambda p: p.closed_at or p.opened_at):
            self.record(p)

    def is_profitable(self, strategy_id: str) -> bool:
        """최소 거래수 미만이면 판단 보류 (True)"""
        stats = self.by_strategy.get(strategy_id)
        if stats is None or stats.trades < self.min_trades:
            return True
        return stats.total_pnl > 0

    def summary(self) -> Dict[str, dict]:
        with self._lock:
            return {sid: s.to_dict() for sid, s in self.by_strategy.items()}
