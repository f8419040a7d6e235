"""
Bollinger Mean-Reversion Strategy
=================================

밴드 이탈 + 과매도/과매수 역추세 진입.

BUY 조건 (5개):
1. 종가 < 하단 밴드
2. Stoch %K < 25
3. ATR 추세 UP
4. RSI < 35
5. ADX > 20

SELL은 대칭. 5개 충족 → BUY/SELL, 4개 → WEAK_* (미충족 조건 포함).
"""
import logging
from typing import List, Tuple

import pandas as pd

from regime_trader.indicators.bundle import AtrTrend, InsufficientDataError, compute_bundle
from regime_trader.strategies.base import Signal, SignalType, Strategy, StrategyKind

logger = logging.getLogger(__name__)


class BollingerStrategy(Strategy):
    strategy_id = "bollinger"
    kind = StrategyKind.MEAN_REVERSION
    timeframes = ("1h",)
    candle_limit = 100
    defaults = {
        "stoch_buy": 25.0,
        "stoch_sell": 75.0,
        "rsi_buy": 35.0,
        "rsi_sell": 65.0,
        "adx_min": 20.0,
        "band_sl_pct": 1.0,
        "atr_sl_mult": 2.0,
        "atr_tp_mult": 3.0,
        "allocation_mult": 1.0,
    }

    def generate_signal(self, candles: pd.DataFrame, symbol: str) -> Signal:
        try:
            b = compute_bundle(candles, self.timeframes[0])
        except InsufficientDataError as e:
            price = float(candles["close"].iloc[-1]) if candles is not None and len(candles) else 0.0
            return self.neutral(price, price * 0.98, price * 1.03, reason=str(e))

        p = self.params
        close = b.close

        buy_checks: List[Tuple[str, bool]] = [
            ("Price below lower band", close < b.band.lower),
            ("Stochastic oversold", b.stoch.k < p["stoch_buy"]),
            ("ATR rising", b.atr.trend == AtrTrend.UP),
            ("RSI oversold", b.rsi.value < p["rsi_buy"]),
            ("ADX above threshold", b.adx.value > p["adx_min"]),
        ]
        sell_checks: List[Tuple[str, bool]] = [
            ("Price above upper band", close > b.band.upper),
            ("Stochastic overbought", b.stoch.k > p["stoch_sell"]),
            ("ATR falling", b.atr.trend == AtrTrend.DOWN),
            ("RSI overbought", b.rsi.value > p["rsi_sell"]),
            ("ADX above threshold", b.adx.value > p["adx_min"]),
        ]
        buy_met = sum(ok for _, ok in buy_checks)
        sell_met = sum(ok for _, ok in sell_checks)

        if buy_met >= 4 and buy_met >= sell_met:
            signal_type = SignalType.BUY if buy_met == 5 else SignalType.WEAK_BUY
            unmet = [name for name, ok in buy_checks if not ok]
        elif sell_met >= 4:
            signal_type = SignalType.SELL if sell_met == 5 else SignalType.WEAK_SELL
            unmet = [name for name, ok in sell_checks if not ok]
        else:
            return self.neutral(
                close,
                close - b.atr.value * p["atr_sl_mult"],
                close + b.atr.value * p["atr_tp_mult"],
                reason=f"buy {buy_met}/5, sell {sell_met}/5",
            )

        stop_loss, take_profit = self._levels(signal_type.is_long, close, b.band.lower, b.band.upper)
        return self.signal(
            signal_type, close, stop_loss, take_profit,
            unmet=unmet,
            reason=f"%B={b.band.percent_b:.2f} RSI={b.rsi.value:.1f} ADX={b.adx.value:.1f}",
        )

    def _levels(self, is_long: bool, close: float, lower: float, upper: float) -> Tuple[float, float]:
        pct = self.params["band_sl_pct"] / 100
        if is_long:
            if close < lower:
                return min(lower, close * (1 - pct)), upper
            return close * (1 - pct), max(upper, close * (1 + pct))
        if close > upper:
            return max(upper, close * (1 + pct)), lower
        return close * (1 + pct), min(lower, close * (1 - pct))
