# -*- coding: utf-8 -*-
"""
Lifecycle Rules - Exit / Break-even / Trailing / Scale-in
=========================================================

포지션 관리 규칙 (순수 함수, 주문 없음).

청산 우선순위 (첫 매칭 승리):
1. Stop Loss
2. Take Profit
3. Trailing Stop (활성 상태)
4. Max Drawdown (고점 대비)
5. Technical Exit (RSI 다이버전스 / MACD 역행 / ADX 약화 + 수익)

사용법:
```python
from regime_trader.position.rules import LifecycleConfig, check_exit, update_trailing

config = LifecycleConfig(trailing_distance_pct=1.0)
prev_high, prev_low = state.observe(price)

decision = check_exit(position, state, price, bundles, config)
if decision is None:
    event = update_trailing(position, state, price, (prev_high, prev_low), config)
```
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Mapping, Optional, Sequence, Tuple

from regime_trader.indicators.bundle import IndicatorBundle
from regime_trader.indicators.divergence import detect_rsi_divergence
from regime_trader.position.models import Direction, Position, PositionRuntimeState


class ExitReason(Enum):
    """청산 사유"""
    STOP_LOSS = "Stop loss hit"
    TAKE_PROFIT = "Take profit hit"
    TRAILING_STOP = "Trailing stop hit"
    MAX_DRAWDOWN = "Maximum drawdown reached"
    TECHNICAL = "Technical exit signal"
    CLOSED_EXTERNALLY = "Closed externally"
    MANUAL = "Manual close"


@dataclass
class LifecycleConfig:
    """라이프사이클 파라미터 (전부 설정값)"""
    # Break-even
    break_even_pct: float = 1.0

    # Trailing
    trailing_enabled: bool = True
    trailing_activation: float = 0.5       # TP까지 거리의 50%
    trailing_distance_pct: float = 0.5

    # Drawdown
    max_drawdown_pct: float = 2.0

    # Technical exit
    technical_timeframes: Sequence[str] = ("1h", "4h")
    technical_adx_floor: float = 20.0
    technical_min_profit_pct: float = 0.5

    # Scale-in
    max_scale_ins: int = 2
    scale_timeframe: str = "1h"
    scale_band_proximity: float = 0.01
    scale_rsi_oversold: float = 35.0
    scale_rsi_overbought: float = 65.0
    scale_adx_strong: float = 25.0
    scale_strong_multiplier: float = 1.5


@dataclass
class ExitDecision:
    """청산 결정"""
    reason: ExitReason
    exit_price: float
    pnl_pct: float
    message: str = ""

    @property
    def reason_text(self) -> str:
        if self.reason is ExitReason.TECHNICAL and self.message:
            return f"{self.reason.value}: {self.message}"
        return self.reason.value


@dataclass
class ScaleDecision:
    """스케일인 결정"""
    multiplier: float
    reasons: List[str] = field(default_factory=list)


# =============================================================================
# Helpers
# =============================================================================

def calc_pnl_pct(direction: Direction, entry_price: float, price: float) -> float:
    """미실현 손익 % (레버리지 제외)"""
    if entry_price <= 0:
        return 0.0
    return (price - entry_price) / entry_price * 100 * direction.sign


def _touched(direction: Direction, price: float, level: float, adverse: bool) -> bool:
    """adverse=True: 손실 방향 레벨 (SL/트레일링), False: 이익 방향 (TP)"""
    if direction is Direction.LONG:
        return price <= level if adverse else price >= level
    return price >= level if adverse else price <= level


def _drawdown_pct(direction: Direction, state: PositionRuntimeState, price: float) -> float:
    if direction is Direction.LONG:
        peak = state.highest_price_seen
        return (peak - price) / peak * 100 if peak > 0 else 0.0
    trough = state.lowest_price_seen
    return (price - trough) / trough * 100 if trough > 0 else 0.0


# =============================================================================
# Exit
# =============================================================================

def technical_exit(
    position: Position,
    price: float,
    bundles: Mapping[str, Optional[IndicatorBundle]],
    config: LifecycleConfig,
) -> Optional[str]:
    """
    기술적 청산 사유 (없으면 None)
    """
    direction = position.direction

    for tf in config.technical_timeframes:
        b = bundles.get(tf)
        if b is None:
            continue
        div = detect_rsi_divergence(b.closes, b.rsi.history)
        if div is None:
            continue
        if direction is Direction.LONG and div.kind == "bearish":
            return f"RSI bearish divergence on {tf}"
        if direction is Direction.SHORT and div.kind == "bullish":
            return f"RSI bullish divergence on {tf}"

    ref = bundles.get(config.scale_timeframe)
    if ref is None:
        return None

    hist, line = ref.macd.histogram, ref.macd.macd_line
    if direction is Direction.LONG and hist < 0 and line < 0:
        return "MACD turned bearish"
    if direction is Direction.SHORT and hist > 0 and line > 0:
        return "MACD turned bullish"

    pnl = calc_pnl_pct(direction, position.average_entry_price, price)
    if ref.adx.value < config.technical_adx_floor and pnl > config.technical_min_profit_pct:
        return f"Trend weakening (ADX {ref.adx.value:.1f}) with {pnl:.2f}% profit"

    return None


def check_exit(
    position: Position,
    state: PositionRuntimeState,
    price: float,
    bundles: Mapping[str, Optional[IndicatorBundle]],
    config: LifecycleConfig,
) -> Optional[ExitDecision]:
    """
    청산 체크 (state.observe(price) 이후 호출)

    Returns:
        ExitDecision if should exit, else None
    """
    direction = position.direction
    entry = position.average_entry_price

    def decide(reason: ExitReason, exit_price: float, message: str = "") -> ExitDecision:
        return ExitDecision(reason, exit_price, calc_pnl_pct(direction, entry, exit_price), message)

    # 1. Stop Loss
    if _touched(direction, price, position.stop_loss, adverse=True):
        return decide(ExitReason.STOP_LOSS, position.stop_loss)

    # 2. Take Profit
    if _touched(direction, price, position.take_profit, adverse=False):
        return decide(ExitReason.TAKE_PROFIT, position.take_profit)

    # 3. Trailing Stop
    if state.trailing_active and state.trailing_level is not None:
        if _touched(direction, price, state.trailing_level, adverse=True):
            return decide(ExitReason.TRAILING_STOP, state.trailing_level)

    # 4. Max Drawdown
    dd = _drawdown_pct(direction, state, price)
    if dd > config.max_drawdown_pct:
        return decide(ExitReason.MAX_DRAWDOWN, price, f"drawdown {dd:.2f}%")

    # 5. Technical
    message = technical_exit(position, price, bundles, config)
    if message:
        return decide(ExitReason.TECHNICAL, price, message)

    return None


# =============================================================================
# Break-even / Trailing
# =============================================================================

def check_break_even(
    position: Position,
    state: PositionRuntimeState,
    price: float,
    config: LifecycleConfig,
) -> Optional[float]:
    """
    본절 (1회성)

    Returns:
        새 SL (= 평단) or None
    """
    if state.break_even_active:
        return None
    entry = position.average_entry_price
    if calc_pnl_pct(position.direction, entry, price) >= config.break_even_pct:
        return entry
    return None


def update_trailing(
    position: Position,
    state: PositionRuntimeState,
    price: float,
    prev_extremes: Tuple[float, float],
    config: LifecycleConfig,
) -> Optional[str]:
    """
    트레일링 스탑 활성화 / 갱신

    새 극값은 갱신 전 극값(prev_extremes) 기준으로 판단.

    Returns:
        'activated' | 'moved' | None
    """
    if not config.trailing_enabled:
        return None

    direction = position.direction
    entry = position.average_entry_price
    distance = config.trailing_distance_pct / 100

    def level_at(extreme: float) -> float:
        return extreme * (1 - distance) if direction is Direction.LONG else extreme * (1 + distance)

    if not state.trailing_active:
        tp_distance = abs(position.take_profit - entry)
        if tp_distance <= 0:
            return None
        progress = (price - entry) * direction.sign / tp_distance
        if progress >= config.trailing_activation:
            state.trailing_active = True
            state.trailing_level = None
            state.move_trailing(level_at(price), direction)
            return 'activated'
        return None

    prev_high, prev_low = prev_extremes
    new_extreme = price > prev_high if direction is Direction.LONG else price < prev_low
    if new_extreme and state.move_trailing(level_at(price), direction):
        return 'moved'
    return None


# =============================================================================
# Scale-in
# =============================================================================

def check_scale_in(
    position: Position,
    price: float,
    bundle: Optional[IndicatorBundle],
    config: LifecycleConfig,
) -> Optional[ScaleDecision]:
    """
    스케일인 조건

    LONG: 하단밴드 근접 AND (RSI 과매도 OR 강한 +DI 우위)
    SHORT: 대칭. 3개 모두 충족 → 배수 1.5
    """
    if position.scale_step >= config.max_scale_ins or bundle is None:
        return None

    prox = config.scale_band_proximity
    adx_strong = bundle.adx.value > config.scale_adx_strong

    if position.direction is Direction.LONG:
        near_band = price < bundle.band.lower * (1 + prox)
        oscillator = bundle.rsi.value < config.scale_rsi_oversold
        directional = adx_strong and bundle.adx.plus_di > bundle.adx.minus_di
    else:
        near_band = price > bundle.band.upper * (1 - prox)
        oscillator = bundle.rsi.value > config.scale_rsi_overbought
        directional = adx_strong and bundle.adx.minus_di > bundle.adx.plus_di

    if not (near_band and (oscillator or directional)):
        return None

    reasons = ["near band"]
    if oscillator:
        reasons.append("oscillator extreme")
    if directional:
        reasons.append("directional agreement")
    multiplier = config.scale_strong_multiplier if (oscillator and directional) else 1.0
    return ScaleDecision(multiplier=multiplier, reasons=reasons)
