# -*- coding: utf-8 -*-
"""
Indicator Bundle - Multi-Timeframe Snapshot
===========================================

타임프레임별 지표 스냅샷 생성.

핵심 원칙:
1. 최소 30개 캔들 (미만이면 InsufficientDataError → 해당 TF만 사용 불가)
2. 매 스캔마다 최근 ~100개 캔들로 재계산, 저장하지 않음
3. 호출 간 상태 없음 (심볼/TF 병렬 계산 안전)

사용법:
```python
from regime_trader.indicators.bundle import compute_bundles

bundles = compute_bundles({'1h': df_1h, '4h': df_4h})
b = bundles['1h']
if b is not None:
    print(b.band.percent_b, b.rsi.value, b.atr.trend)
```
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, List, Mapping, Optional, Sequence

import pandas as pd

from regime_trader.indicators import core

logger = logging.getLogger(__name__)

MIN_CANDLES = 30
OHLCV_COLUMNS = ["open", "high", "low", "close", "volume"]


class InsufficientDataError(ValueError):
    """지표 계산에 필요한 캔들 부족"""

    def __init__(self, timeframe: str, available: int, required: int = MIN_CANDLES):
        self.timeframe = timeframe
        self.available = available
        self.required = required
        super().__init__(f"{timeframe}: {available} candles < {required} required")


@dataclass(frozen=True)
class Candle:
    """OHLCV 캔들 (수신 후 불변)"""
    open_time: datetime
    open: float
    high: float
    low: float
    close: float
    volume: float


def candles_to_frame(candles: Sequence[Candle]) -> pd.DataFrame:
    """Candle 리스트 → DataFrame (index=open_time)"""
    if not candles:
        return pd.DataFrame(columns=OHLCV_COLUMNS)
    df = pd.DataFrame(
        [[c.open, c.high, c.low, c.close, c.volume] for c in candles],
        columns=OHLCV_COLUMNS,
        index=pd.DatetimeIndex([c.open_time for c in candles], name="open_time"),
    )
    return df.astype(float)


class AtrTrend(Enum):
    """ATR 추세"""
    UP = "UP"
    DOWN = "DOWN"
    NEUTRAL = "NEUTRAL"


@dataclass
class BandSnapshot:
    """Bollinger Bands"""
    upper: float
    lower: float
    basis: float
    width: float       # (upper - lower) / basis, 비율
    percent_b: float   # 0 = lower, 1 = upper


@dataclass
class OscillatorSnapshot:
    """RSI (value + 최근 5개)"""
    value: float
    history: List[float] = field(default_factory=list)


@dataclass
class MacdSnapshot:
    macd_line: float
    signal_line: float
    histogram: float


@dataclass
class DirectionalSnapshot:
    """ADX + DI"""
    value: float
    plus_di: float
    minus_di: float


@dataclass
class AtrSnapshot:
    value: float
    trend: AtrTrend
    history: List[float] = field(default_factory=list)  # 최근 30개


@dataclass
class StochasticSnapshot:
    k: float
    d: float
    prev_k: float
    prev_d: float


@dataclass
class IndicatorBundle:
    """타임프레임별 지표 번들"""
    timeframe: str
    close: float
    closes: List[float]  # 최근 5개 종가 (다이버전스용)
    band: BandSnapshot
    rsi: OscillatorSnapshot
    macd: MacdSnapshot
    adx: DirectionalSnapshot
    atr: AtrSnapshot
    stoch: StochasticSnapshot

    def to_dict(self) -> Dict:
        return {
            'timeframe': self.timeframe,
            'close': self.close,
            'bb_width': self.band.width,
            'percent_b': self.band.percent_b,
            'rsi': self.rsi.value,
            'macd_hist': self.macd.histogram,
            'adx': self.adx.value,
            'atr': self.atr.value,
            'atr_trend': self.atr.trend.value,
            'stoch_k': self.stoch.k,
            'stoch_d': self.stoch.d,
        }


def _last(series: pd.Series, n: int) -> List[float]:
    return [float(v) for v in series.dropna().iloc[-n:]]


def _atr_trend(values: pd.Series) -> AtrTrend:
    """현재 ATR vs 최근 7개 평균 (±10%)"""
    recent = values.dropna().iloc[-7:]
    if recent.empty:
        return AtrTrend.NEUTRAL
    current = float(recent.iloc[-1])
    avg = float(recent.mean())
    if current > avg * 1.1:
        return AtrTrend.UP
    if current < avg * 0.9:
        return AtrTrend.DOWN
    return AtrTrend.NEUTRAL


def compute_bundle(candles: pd.DataFrame, timeframe: str) -> IndicatorBundle:
    """
    캔들 → IndicatorBundle

    Args:
        candles: open/high/low/close/volume DataFrame (오래된 순)
        timeframe: '5m', '1h', ...

    Returns:
        IndicatorBundle

    Raises:
        InsufficientDataError: 캔들 < 30
    """
    if candles is None or len(candles) < MIN_CANDLES:
        raise InsufficientDataError(timeframe, 0 if candles is None else len(candles))

    close = candles["close"].astype(float)
    last_close = float(close.iloc[-1])

    upper, basis, lower = core.bollinger(close, 20, 2.0)
    u, b, lo = float(upper.iloc[-1]), float(basis.iloc[-1]), float(lower.iloc[-1])
    width = (u - lo) / b if b else 0.0
    percent_b = (last_close - lo) / (u - lo) if u != lo else 0.5

    rsi_series = core.rsi(close, 14)
    macd_line, signal_line, hist = core.macd(close, 12, 26, 9)
    adx_, plus_di, minus_di = core.directional_index(candles, 14)
    atr_series = core.atr(candles, 14)
    k, d = core.stochastic(candles, 14, 3)

    return IndicatorBundle(
        timeframe=timeframe,
        close=last_close,
        closes=_last(close, 5),
        band=BandSnapshot(upper=u, lower=lo, basis=b, width=width, percent_b=percent_b),
        rsi=OscillatorSnapshot(value=float(rsi_series.iloc[-1]), history=_last(rsi_series, 5)),
        macd=MacdSnapshot(
            macd_line=float(macd_line.iloc[-1]),
            signal_line=float(signal_line.iloc[-1]),
            histogram=float(hist.iloc[-1]),
        ),
        adx=DirectionalSnapshot(
            value=float(adx_.iloc[-1]),
            plus_di=float(plus_di.iloc[-1]),
            minus_di=float(minus_di.iloc[-1]),
        ),
        atr=AtrSnapshot(
            value=float(atr_series.iloc[-1]),
            trend=_atr_trend(atr_series),
            history=_last(atr_series, 30),
        ),
        stoch=StochasticSnapshot(
            k=float(k.iloc[-1]),
            d=float(d.iloc[-1]),
            prev_k=float(k.iloc[-2]),
            prev_d=float(d.iloc[-2]),
        ),
    )


def compute_bundles(candles_by_tf: Mapping[str, Optional[pd.DataFrame]]) -> Dict[str, Optional[IndicatorBundle]]:
    """
    TF별 번들 계산. 데이터 부족 TF는 None (치명적 아님).
    """
    bundles: Dict[str, Optional[IndicatorBundle]] = {}
    for tf, df in candles_by_tf.items():
        try:
            bundles[tf] = compute_bundle(df, tf)
        except InsufficientDataError as e:
            logger.info(f"[Indicators] {tf} unavailable: {e}")
            bundles[tf] = None
    return bundles
