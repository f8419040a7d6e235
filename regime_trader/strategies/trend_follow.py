"""
Trend Following Strategy
========================

SMA20/SMA50 정배열 + 변동성 보정 RSI + MACD + ADX.

LONG: close > SMA20 > SMA50, RSI < 70 - vol×10, MACD hist > 0, ADX > 25
SHORT: 대칭 (RSI > 30 + vol×10)
vol = |SMA20 - SMA50| / SMA50
SL/TP = ∓2 ATR / ±4 ATR
"""
import logging

import pandas as pd

from regime_trader.indicators import core
from regime_trader.strategies.base import Signal, SignalType, Strategy, StrategyKind

logger = logging.getLogger(__name__)


class TrendFollowStrategy(Strategy):
    strategy_id = "trend_follow"
    kind = StrategyKind.TREND_FOLLOWING
    timeframes = ("4h", "1h")
    candle_limit = 100
    defaults = {
        "fast_sma": 20,
        "slow_sma": 50,
        "adx_min": 25.0,
        "rsi_upper": 70.0,
        "rsi_lower": 30.0,
        "atr_sl_mult": 2.0,
        "atr_tp_mult": 4.0,
        "allocation_mult": 1.0,
    }

    def generate_signal(self, candles: pd.DataFrame, symbol: str) -> Signal:
        p = self.params
        if candles is None or len(candles) < p["slow_sma"]:
            price = float(candles["close"].iloc[-1]) if candles is not None and len(candles) else 0.0
            return self.neutral(price, price * 0.98, price * 1.04, reason="Insufficient candles")

        close = candles["close"].astype(float)
        price = float(close.iloc[-1])
        fast = float(core.sma(close, p["fast_sma"]).iloc[-1])
        slow = float(core.sma(close, p["slow_sma"]).iloc[-1])
        rsi_now = float(core.rsi(close, 14).iloc[-1])
        hist = float(core.macd(close)[2].iloc[-1])
        adx_now = float(core.directional_index(candles, 14)[0].iloc[-1])
        atr_now = float(core.atr(candles, 14).iloc[-1])

        vol = abs(fast - slow) / slow if slow else 0.0
        upper_rsi = p["rsi_upper"] - vol * 10
        lower_rsi = p["rsi_lower"] + vol * 10
        strong = adx_now > p["adx_min"]

        sl_dist = atr_now * p["atr_sl_mult"]
        tp_dist = atr_now * p["atr_tp_mult"]
        reason = f"SMA{p['fast_sma']}={fast:.4f} SMA{p['slow_sma']}={slow:.4f} RSI={rsi_now:.1f} ADX={adx_now:.1f}"

        if price > fast > slow and rsi_now < upper_rsi and hist > 0 and strong:
            return self.signal(SignalType.BUY, price, price - sl_dist, price + tp_dist, reason=reason)
        if price < fast < slow and rsi_now > lower_rsi and hist < 0 and strong:
            return self.signal(SignalType.SELL, price, price + sl_dist, price - tp_dist, reason=reason)

        if fast >= slow:
            return self.neutral(price, price - sl_dist, price + tp_dist, reason=reason)
        return self.neutral(price, price + sl_dist, price - tp_dist, reason=reason)
