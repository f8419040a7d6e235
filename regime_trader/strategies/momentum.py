"""
Momentum Squeeze Strategy
=========================

BB(20, 2)가 Keltner(20, 1.5 ATR) 안에 있다가 빠져나오는 순간(squeeze release) +
EMA 방향 + 직전 15봉 고점/저점 돌파.

- 3개 모두 → BUY/SELL
- squeeze release 없이 EMA + 돌파만 → WEAK_* ("Squeeze release" 미충족)

EMA 기간 기본 50 (100개 캔들 조회 기준).
"""
import logging

import pandas as pd

from regime_trader.indicators import core
from regime_trader.strategies.base import Signal, SignalType, Strategy, StrategyKind

logger = logging.getLogger(__name__)


class MomentumStrategy(Strategy):
    strategy_id = "momentum"
    kind = StrategyKind.MOMENTUM
    timeframes = ("1h", "15m")
    candle_limit = 100
    defaults = {
        "ema_period": 50,
        "bb_length": 20,
        "bb_mult": 2.0,
        "kc_length": 20,
        "kc_mult": 1.5,
        "squeeze_lookback": 6,
        "level_lookback": 15,
        "atr_sl_mult": 1.5,
        "atr_tp_mult": 3.0,
        "allocation_mult": 1.0,
    }

    def generate_signal(self, candles: pd.DataFrame, symbol: str) -> Signal:
        p = self.params
        need = max(p["ema_period"], p["bb_length"], p["kc_length"]) + p["squeeze_lookback"]
        if candles is None or len(candles) < need:
            price = float(candles["close"].iloc[-1]) if candles is not None and len(candles) else 0.0
            return self.neutral(price, price * 0.985, price * 1.03, reason="Insufficient candles")

        close = candles["close"].astype(float)
        price = float(close.iloc[-1])

        bb_upper, _, bb_lower = core.bollinger(close, p["bb_length"], p["bb_mult"])
        kc_upper, _, kc_lower = core.keltner(candles, p["kc_length"], p["kc_mult"])
        squeeze_on = (bb_lower > kc_lower) & (bb_upper < kc_upper)

        lookback = p["squeeze_lookback"]
        was_on = bool(squeeze_on.iloc[-(lookback + 1):-1].any())
        released = was_on and not bool(squeeze_on.iloc[-1])

        trend_ema = float(core.ema(close, p["ema_period"]).iloc[-1])
        n = p["level_lookback"]
        resistance = float(candles["high"].iloc[-(n + 1):-1].max())
        support = float(candles["low"].iloc[-(n + 1):-1].min())
        atr_now = float(core.atr(candles, 14).iloc[-1])

        sl_dist = atr_now * p["atr_sl_mult"]
        tp_dist = atr_now * p["atr_tp_mult"]
        reason = f"squeeze_released={released} EMA={trend_ema:.4f} R={resistance:.4f} S={support:.4f}"

        if price > trend_ema and price > resistance:
            if released:
                return self.signal(SignalType.BUY, price, price - sl_dist, price + tp_dist, reason=reason)
            return self.signal(SignalType.WEAK_BUY, price, price - sl_dist, price + tp_dist,
                               unmet=["Squeeze release"], reason=reason)
        if price < trend_ema and price < support:
            if released:
                return self.signal(SignalType.SELL, price, price + sl_dist, price - tp_dist, reason=reason)
            return self.signal(SignalType.WEAK_SELL, price, price + sl_dist, price - tp_dist,
                               unmet=["Squeeze release"], reason=reason)

        return self.neutral(price, price - sl_dist, price + tp_dist, reason=reason)
