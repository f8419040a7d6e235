"""
Market Regime Classifier
========================

멀티 TF 지표 번들 + 일봉 히스토리 → RegimeSnapshot.

핵심 원칙:
- Volatility: 기준 TF(1h) ATR / 같은 TF 30개 ATR 평균 (>1.5 high, <0.7 low)
- Trend: TF별 5개 서브시그널(BB, RSI, MACD, ADX, Stoch) 투표
  strength = |bull - bear| / total × 100
- Market type: strength + BB width + ADX 기반 trending / ranging / choppy
- Breakout: 최신 일봉 종가 vs 직전 20개 일봉 채널 (현재 캔들 제외)
- Range length: 일간 수익률 |r| < 1.5% 연속 일수
- Volatility change: 7일 ATR 윈도우 3개 비교

Usage:
```python
from regime_trader.regime.classifier import build_historical_context, classify

context = build_historical_context(candles['1h'], daily_df)
snapshot = classify(bundles, context)
print(snapshot.market_type, snapshot.volatility, snapshot.trend_strength)
```
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, Literal, Mapping, Optional, Tuple

import numpy as np
import pandas as pd

from regime_trader.indicators import core
from regime_trader.indicators.bundle import IndicatorBundle

logger = logging.getLogger(__name__)

Level = Literal["low", "normal", "high"]
TrendLabel = Literal["bullish", "bearish", "neutral"]
MarketType = Literal["trending", "ranging", "choppy"]
VolatilityChange = Literal["increasing-fast", "increasing", "stable", "decreasing", "decreasing-fast"]


# =============================================================================
# Configuration
# =============================================================================

@dataclass
class RegimeConfig:
    """레짐 분류 임계값"""
    reference_timeframe: str = "1h"
    baseline_periods: int = 30

    # === Volatility / Volume ===
    high_ratio: float = 1.5
    low_ratio: float = 0.7
    volume_lookback: int = 9

    # === Market type ===
    trending_strength: float = 70.0
    choppy_strength: float = 40.0
    narrow_band_width: float = 0.03   # 3%
    adx_trending: float = 25.0
    adx_ranging: float = 15.0

    # === Daily history ===
    breakout_channel: int = 20
    range_daily_move_pct: float = 1.5
    volatility_window: int = 7
    fast_change_pct: float = 10.0


# =============================================================================
# State
# =============================================================================

@dataclass
class Breakout:
    is_breakout: bool = False
    direction: Literal["up", "down", "none"] = "none"


@dataclass
class HistoricalContext:
    """분류 보조 통계"""
    baseline_atr: Optional[float] = None
    daily: Optional[pd.DataFrame] = None


@dataclass
class RegimeSnapshot:
    """레짐 스냅샷 (심볼별 최신 1개만 유지)"""
    volatility: Level = "normal"
    trend: TrendLabel = "neutral"
    trend_strength: float = 0.0
    volume: Level = "normal"
    market_type: MarketType = "ranging"
    breakout: Breakout = field(default_factory=Breakout)
    range_length_days: int = 0
    volatility_change: VolatilityChange = "stable"

    def to_dict(self) -> dict:
        """Dictionary 변환"""
        return {
            'volatility': self.volatility,
            'trend': self.trend,
            'trend_strength': round(self.trend_strength, 2),
            'volume': self.volume,
            'market_type': self.market_type,
            'breakout': {'is_breakout': self.breakout.is_breakout, 'direction': self.breakout.direction},
            'range_length_days': self.range_length_days,
            'volatility_change': self.volatility_change,
        }


# =============================================================================
# Historical context
# =============================================================================

def build_historical_context(
    reference_candles: Optional[pd.DataFrame],
    daily_candles: Optional[pd.DataFrame],
    config: Optional[RegimeConfig] = None,
) -> HistoricalContext:
    """
    기준 TF 캔들에서 ATR baseline 계산 + 일봉 보관

    Args:
        reference_candles: 기준 TF(1h) 캔들
        daily_candles: 일봉 (breakout/range/volume/vol-change용)
    """
    config = config or RegimeConfig()
    baseline = None
    if reference_candles is not None and len(reference_candles) >= config.baseline_periods:
        atr_series = core.atr(reference_candles, 14).dropna()
        if not atr_series.empty:
            baseline = float(atr_series.iloc[-config.baseline_periods:].mean())
    return HistoricalContext(baseline_atr=baseline, daily=daily_candles)


# =============================================================================
# Core Functions
# =============================================================================

def _ratio_level(ratio: float, high: float, low: float) -> Level:
    if ratio > high:
        return "high"
    if ratio < low:
        return "low"
    return "normal"


def volatility_level(
    bundles: Mapping[str, Optional[IndicatorBundle]],
    context: HistoricalContext,
    config: RegimeConfig,
) -> Level:
    """기준 TF ATR / baseline ATR"""
    ref = bundles.get(config.reference_timeframe)
    if ref is None or not context.baseline_atr:
        return "normal"
    return _ratio_level(ref.atr.value / context.baseline_atr, config.high_ratio, config.low_ratio)


def _bundle_votes(b: IndicatorBundle) -> Tuple[int, int]:
    """
    TF 하나의 5개 서브시그널 → (bullish, bearish)
    """
    bull = bear = 0

    # 1. Band position (역추세)
    if b.band.percent_b > 0.8:
        bear += 1
    elif b.band.percent_b < 0.2:
        bull += 1

    # 2. RSI
    if b.rsi.value > 60:
        bear += 1
    elif b.rsi.value < 40:
        bull += 1

    # 3. MACD (histogram + line 같은 부호)
    if b.macd.histogram > 0 and b.macd.macd_line > 0:
        bull += 1
    elif b.macd.histogram < 0 and b.macd.macd_line < 0:
        bear += 1

    # 4. ADX / DI
    if b.adx.value >= 20:
        if b.adx.plus_di > b.adx.minus_di:
            bull += 1
        elif b.adx.minus_di > b.adx.plus_di:
            bear += 1

    # 5. Stochastic
    k, d = b.stoch.k, b.stoch.d
    if k > 80 and d > 80:
        bear += 1
    elif k < 20 and d < 20:
        bull += 1
    elif b.stoch.prev_k <= b.stoch.prev_d and k > d:
        bull += 1
    elif b.stoch.prev_k >= b.stoch.prev_d and k < d:
        bear += 1

    return bull, bear


def trend_votes(bundles: Mapping[str, Optional[IndicatorBundle]]) -> Tuple[TrendLabel, float]:
    """
    전체 TF 투표 집계

    Returns:
        (trend, strength 0~100)
    """
    bull = bear = total = 0
    for b in bundles.values():
        if b is None:
            continue
        up, down = _bundle_votes(b)
        bull += up
        bear += down
        total += 5

    if total == 0:
        return "neutral", 0.0

    strength = abs(bull - bear) / total * 100
    if bull > bear:
        return "bullish", strength
    if bear > bull:
        return "bearish", strength
    return "neutral", strength


def market_type(
    strength: float,
    volatility: Level,
    reference: Optional[IndicatorBundle],
    config: RegimeConfig,
) -> MarketType:
    """순서대로 첫 매칭"""
    if strength > config.trending_strength and volatility != "low":
        return "trending"
    if volatility == "high" and strength < config.choppy_strength:
        return "choppy"
    if reference is None:
        return "ranging"
    if reference.band.width < config.narrow_band_width and volatility == "low":
        return "ranging"
    if reference.adx.value > config.adx_trending:
        return "trending"
    if reference.adx.value < config.adx_ranging:
        return "ranging"
    return "choppy"


def volume_level(daily: Optional[pd.DataFrame], config: RegimeConfig) -> Level:
    """최신 일봉 거래량 / 직전 9개 평균"""
    if daily is None or len(daily) < config.volume_lookback + 1:
        return "normal"
    volume = daily["volume"].astype(float)
    avg = float(volume.iloc[-(config.volume_lookback + 1):-1].mean())
    if avg <= 0:
        return "normal"
    return _ratio_level(float(volume.iloc[-1]) / avg, config.high_ratio, config.low_ratio)


def detect_breakout(daily: Optional[pd.DataFrame], config: RegimeConfig) -> Breakout:
    """
    최신 종가가 직전 20개 캔들 채널을 돌파했는지 (현재 캔들 제외)
    """
    n = config.breakout_channel
    if daily is None or len(daily) < n + 2:
        return Breakout()

    prior = daily.iloc[-(n + 1):-1]
    highest = float(prior["high"].max())
    lowest = float(prior["low"].min())
    close = float(daily["close"].iloc[-1])
    prev_close = float(daily["close"].iloc[-2])

    if prev_close <= highest < close:
        return Breakout(True, "up")
    if prev_close >= lowest > close:
        return Breakout(True, "down")
    return Breakout()


def range_length_days(daily: Optional[pd.DataFrame], config: RegimeConfig) -> int:
    """일간 |수익률| < 1.5% 연속 일수 (최근부터)"""
    if daily is None or len(daily) < 2:
        return 0
    returns = daily["close"].astype(float).pct_change().dropna().abs() * 100
    count = 0
    for r in reversed(returns.tolist()):
        if r >= config.range_daily_move_pct:
            break
        count += 1
    return count


def volatility_change(daily: Optional[pd.DataFrame], config: RegimeConfig) -> VolatilityChange:
    """
    7일 ATR 윈도우 3개([0:14], [7:21], [14:28]) 연속 비교
    """
    w = config.volatility_window
    need = w * 4
    if daily is None or len(daily) < need:
        return "stable"

    recent = daily.iloc[-need:]
    tr = core.true_range(recent["high"], recent["low"], recent["close"]).to_numpy()
    windows = [tr[0:2 * w], tr[w:3 * w], tr[2 * w:4 * w]]
    atrs = [float(np.nanmean(win[-w:])) for win in windows]
    if atrs[0] <= 0 or atrs[1] <= 0:
        return "stable"

    c1 = (atrs[1] - atrs[0]) / atrs[0] * 100
    c2 = (atrs[2] - atrs[1]) / atrs[1] * 100
    fast = config.fast_change_pct

    if c1 > fast and c2 > fast:
        return "increasing-fast"
    if c1 < -fast and c2 < -fast:
        return "decreasing-fast"
    if c1 > 0 and c2 > 0:
        return "increasing"
    if c1 < 0 and c2 < 0:
        return "decreasing"
    return "stable"


def classify(
    bundles: Mapping[str, Optional[IndicatorBundle]],
    context: HistoricalContext,
    config: Optional[RegimeConfig] = None,
) -> RegimeSnapshot:
    """
    레짐 분류

    Args:
        bundles: TF → IndicatorBundle (사용 불가 TF는 None)
        context: HistoricalContext

    Returns:
        RegimeSnapshot
    """
    config = config or RegimeConfig()

    volatility = volatility_level(bundles, context, config)
    trend, strength = trend_votes(bundles)
    reference = bundles.get(config.reference_timeframe)

    snapshot = RegimeSnapshot(
        volatility=volatility,
        trend=trend,
        trend_strength=strength,
        volume=volume_level(context.daily, config),
        market_type=market_type(strength, volatility, reference, config),
        breakout=detect_breakout(context.daily, config),
        range_length_days=range_length_days(context.daily, config),
        volatility_change=volatility_change(context.daily, config),
    )
    logger.debug(f"[Regime] {snapshot.to_dict()}")
    return snapshot
