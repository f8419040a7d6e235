"""
Indicator Math
==============

BB, RSI, MACD, ADX(+DI/-DI), ATR, Stochastic, Keltner, Donchian.

- 입력: open/high/low/close/volume DataFrame 또는 close Series (오래된 순)
- 출력: 입력과 같은 index의 Series
- ATR/RSI/ADX 평활은 Wilder (ewm alpha=1/length)
"""
from __future__ import annotations

from typing import Tuple

import numpy as np
import pandas as pd

_EPS = 1e-12


def _wilder(series: pd.Series, length: int) -> pd.Series:
    return series.ewm(alpha=1 / length, adjust=False).mean()


def true_range(high: pd.Series, low: pd.Series, close: pd.Series) -> pd.Series:
    """max(H-L, |H-C₋₁|, |L-C₋₁|), 첫 캔들은 H-L"""
    prev = close.shift(1)
    ranges = pd.concat([high - low, (high - prev).abs(), (low - prev).abs()], axis=1)
    return ranges.max(axis=1)


def atr(df: pd.DataFrame, length: int = 14) -> pd.Series:
    return _wilder(true_range(df["high"], df["low"], df["close"]), length)


def rsi(close: pd.Series, length: int = 14) -> pd.Series:
    change = close.diff()
    gain = _wilder(change.clip(lower=0.0), length)
    loss = _wilder((-change).clip(lower=0.0), length)
    return 100.0 - 100.0 / (1.0 + gain / (loss + _EPS))


def directional_index(df: pd.DataFrame, length: int = 14) -> Tuple[pd.Series, pd.Series, pd.Series]:
    """
    Wilder DMI

    Returns:
        (adx, plus_di, minus_di)
    """
    up = df["high"].diff()
    down = -df["low"].diff()
    plus_dm = pd.Series(np.where((up > down) & (up > 0), up, 0.0), index=df.index)
    minus_dm = pd.Series(np.where((down > up) & (down > 0), down, 0.0), index=df.index)

    smoothed_tr = atr(df, length) + _EPS
    plus_di = 100.0 * _wilder(plus_dm, length) / smoothed_tr
    minus_di = 100.0 * _wilder(minus_dm, length) / smoothed_tr
    dx = 100.0 * (plus_di - minus_di).abs() / (plus_di + minus_di + _EPS)
    return _wilder(dx, length), plus_di, minus_di


def ema(close: pd.Series, span: int) -> pd.Series:
    return close.ewm(span=span, adjust=False).mean()


def sma(close: pd.Series, length: int) -> pd.Series:
    return close.rolling(length, min_periods=length).mean()


def bollinger(close: pd.Series, length: int = 20, mult: float = 2.0) -> Tuple[pd.Series, pd.Series, pd.Series]:
    """
    SMA ± mult × 모집단 표준편차

    Returns:
        (upper, basis, lower)
    """
    basis = sma(close, length)
    offset = mult * close.rolling(length, min_periods=length).std(ddof=0)
    return basis + offset, basis, basis - offset


def macd(
    close: pd.Series,
    fast: int = 12,
    slow: int = 26,
    signal: int = 9,
) -> Tuple[pd.Series, pd.Series, pd.Series]:
    """
    Returns:
        (macd_line, signal_line, histogram)
    """
    line = ema(close, fast) - ema(close, slow)
    trigger = ema(line, signal)
    return line, trigger, line - trigger


def stochastic(df: pd.DataFrame, length: int = 14, smooth_d: int = 3) -> Tuple[pd.Series, pd.Series]:
    """raw %K (평활 없음), %D = SMA(%K, smooth_d)"""
    floor = df["low"].rolling(length, min_periods=length).min()
    ceiling = df["high"].rolling(length, min_periods=length).max()
    k = 100.0 * (df["close"] - floor) / (ceiling - floor + _EPS)
    return k, sma(k, smooth_d)


def keltner(df: pd.DataFrame, length: int = 20, mult: float = 1.5) -> Tuple[pd.Series, pd.Series, pd.Series]:
    """
    EMA ± mult × ATR

    Returns:
        (upper, basis, lower)
    """
    basis = ema(df["close"], length)
    width = mult * atr(df, length)
    return basis + width, basis, basis - width


def donchian(df: pd.DataFrame, length: int = 20, exclude_current: bool = True) -> Tuple[pd.Series, pd.Series]:
    """
    Donchian Channel

    exclude_current=True면 직전 length개 캔들만 사용.

    Returns:
        (upper, lower)
    """
    shift = 1 if exclude_current else 0
    upper = df["high"].shift(shift).rolling(length, min_periods=length).max()
    lower = df["low"].shift(shift).rolling(length, min_periods=length).min()
    return upper, lower
