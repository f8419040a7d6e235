"""
Turtle Breakout Strategy
========================

일봉 Donchian(20) 돌파 + 거래량 확인.

- Long breakout: 직전 고가 < 채널 상단 <= 현재 고가
- Short breakout: 대칭
- 거래량 > 직전 19개 평균 × 1.5 → BUY/SELL, 아니면 WEAK_* ("Volume confirmation missing")
- SL = low - 2 ATR, TP = high + 6 ATR (숏 대칭)

채널은 직전 캔들로만 계산 (현재 캔들 제외).
"""
import logging

import pandas as pd

from regime_trader.indicators import core
from regime_trader.strategies.base import Signal, SignalType, Strategy, StrategyKind

logger = logging.getLogger(__name__)


class TurtleStrategy(Strategy):
    strategy_id = "turtle"
    kind = StrategyKind.BREAKOUT
    timeframes = ("1d",)
    candle_limit = 50
    defaults = {
        "entry_channel": 20,
        "atr_period": 14,
        "atr_mult": 2.0,
        "profit_mult": 3.0,
        "volume_mult": 1.5,
        "volume_lookback": 19,
        "allocation_mult": 1.0,
    }

    def generate_signal(self, candles: pd.DataFrame, symbol: str) -> Signal:
        p = self.params
        need = max(p["entry_channel"], p["volume_lookback"], p["atr_period"]) + 1
        if candles is None or len(candles) < need:
            price = float(candles["close"].iloc[-1]) if candles is not None and len(candles) else 0.0
            return self.neutral(price, price * 0.98, price * 1.06, reason="Insufficient candles")

        upper, lower = core.donchian(candles, p["entry_channel"], exclude_current=True)
        atr_now = float(core.atr(candles, p["atr_period"]).iloc[-1])

        high = candles["high"].astype(float)
        low = candles["low"].astype(float)
        volume = candles["volume"].astype(float)
        price = float(candles["close"].iloc[-1])
        channel_high = float(upper.iloc[-1])
        channel_low = float(lower.iloc[-1])

        avg_volume = float(volume.iloc[-(p["volume_lookback"] + 1):-1].mean())
        volume_ok = avg_volume > 0 and float(volume.iloc[-1]) > avg_volume * p["volume_mult"]

        stop_dist = atr_now * p["atr_mult"]
        reason = f"channel=[{channel_low:.4f}, {channel_high:.4f}] ATR={atr_now:.4f}"

        long_break = float(high.iloc[-2]) < channel_high <= float(high.iloc[-1])
        short_break = float(low.iloc[-2]) > channel_low >= float(low.iloc[-1])

        if long_break:
            sl = float(low.iloc[-1]) - stop_dist
            tp = float(high.iloc[-1]) + stop_dist * p["profit_mult"]
            if volume_ok:
                return self.signal(SignalType.BUY, price, sl, tp, reason=reason)
            return self.signal(SignalType.WEAK_BUY, price, sl, tp,
                               unmet=["Volume confirmation missing"], reason=reason)
        if short_break:
            sl = float(high.iloc[-1]) + stop_dist
            tp = float(low.iloc[-1]) - stop_dist * p["profit_mult"]
            if volume_ok:
                return self.signal(SignalType.SELL, price, sl, tp, reason=reason)
            return self.signal(SignalType.WEAK_SELL, price, sl, tp,
                               unmet=["Volume confirmation missing"], reason=reason)

        return self.neutral(price, price - stop_dist, price + stop_dist * p["profit_mult"], reason=reason)
