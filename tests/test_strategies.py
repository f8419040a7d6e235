# -*- coding: utf-8 -*-
"""
Strategy 플러그인 테스트

- Turtle: 채널 돌파 + 거래량 → BUY / WEAK_BUY
- Bollinger: 5개 조건 중 4개 → WEAK (미충족 조건 이름)
- Momentum: squeeze release 없는 돌파 → WEAK_BUY
- 모든 전략: 캔들 부족 → NEUTRAL, SL/TP 방향 불변식
"""
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

import numpy as np
import pytest

from regime_trader.indicators.bundle import AtrTrend
from regime_trader.strategies import (
    BollingerStrategy,
    MomentumStrategy,
    SignalType,
    TrendFollowStrategy,
    TurtleStrategy,
    build_default_registry,
)
import regime_trader.strategies.bollinger as bollinger_module

from conftest import make_bundle, make_frame


def turtle_frame(last_volume: float):
    n = 40
    closes = [100.0] * (n - 1) + [105.0]
    highs = [101.0] * (n - 2) + [100.5, 106.0]
    lows = [99.5] * (n - 1) + [100.0]
    volumes = [100.0] * (n - 1) + [last_volume]
    return make_frame(closes, highs=highs, lows=lows, volumes=volumes, freq="1D")


class TestTurtle:
    def test_breakout_with_volume(self):
        sig = TurtleStrategy().generate_signal(turtle_frame(500.0), "BTCUSDT")
        assert sig.signal_type is SignalType.BUY
        assert sig.strategy_id == "turtle"
        assert sig.stop_loss < 100.0 < 105.0 < 106.0 < sig.take_profit
        # TP 거리 = SL 거리 × 3
        assert (sig.take_profit - 106.0) == pytest.approx((100.0 - sig.stop_loss) * 3)

    def test_breakout_without_volume_is_weak(self):
        sig = TurtleStrategy().generate_signal(turtle_frame(120.0), "BTCUSDT")
        assert sig.signal_type is SignalType.WEAK_BUY
        assert sig.unmet_conditions == ["Volume confirmation missing"]

    def test_no_breakout_when_previous_high_at_channel(self):
        df = turtle_frame(500.0)
        df.iloc[-2, df.columns.get_loc("high")] = 101.0
        sig = TurtleStrategy().generate_signal(df, "BTCUSDT")
        assert sig.signal_type is SignalType.NEUTRAL

    def test_insufficient_candles(self):
        sig = TurtleStrategy().generate_signal(make_frame([100.0] * 20, freq="1D"), "BTCUSDT")
        assert sig.signal_type is SignalType.NEUTRAL
        assert sig.reason == "Insufficient candles"


class TestBollinger:
    """지표 번들 주입으로 조건 검증"""

    def _signal(self, monkeypatch, bundle):
        monkeypatch.setattr(bollinger_module, "compute_bundle", lambda df, tf: bundle)
        return BollingerStrategy().generate_signal(make_frame([100.0] * 40), "BTCUSDT")

    def test_all_conditions_buy(self, monkeypatch):
        b = make_bundle(close=95.0, lower=98.0, upper=102.0, k=10.0, d=12.0,
                        atr_trend=AtrTrend.UP, rsi=30.0, adx=25.0)
        sig = self._signal(monkeypatch, b)
        assert sig.signal_type is SignalType.BUY
        assert sig.unmet_conditions == []
        assert sig.stop_loss == pytest.approx(95.0 * 0.99)
        assert sig.take_profit == pytest.approx(102.0)

    def test_four_conditions_weak(self, monkeypatch):
        b = make_bundle(close=95.0, lower=98.0, upper=102.0, k=10.0, d=12.0,
                        atr_trend=AtrTrend.NEUTRAL, rsi=30.0, adx=25.0)
        sig = self._signal(monkeypatch, b)
        assert sig.signal_type is SignalType.WEAK_BUY
        assert sig.unmet_conditions == ["ATR rising"]

    def test_sell_side(self, monkeypatch):
        b = make_bundle(close=105.0, lower=98.0, upper=102.0, k=90.0, d=85.0,
                        atr_trend=AtrTrend.DOWN, rsi=75.0, adx=25.0)
        sig = self._signal(monkeypatch, b)
        assert sig.signal_type is SignalType.SELL
        assert sig.stop_loss > 105.0 > sig.take_profit

    def test_three_conditions_neutral(self, monkeypatch):
        b = make_bundle(close=95.0, lower=98.0, upper=102.0, k=50.0, atr_trend=AtrTrend.NEUTRAL,
                        rsi=30.0, adx=25.0)
        assert self._signal(monkeypatch, b).signal_type is SignalType.NEUTRAL

    def test_insufficient_candles(self):
        sig = BollingerStrategy().generate_signal(make_frame([100.0] * 10), "BTCUSDT")
        assert sig.signal_type is SignalType.NEUTRAL
        assert sig.strategy_id == "bollinger"


class TestMomentum:
    def test_breakout_without_squeeze_is_weak(self):
        closes = list(np.arange(100.0, 180.0)) + [182.0]
        sig = MomentumStrategy().generate_signal(make_frame(closes, spread=0.2), "BTCUSDT")
        assert sig.signal_type is SignalType.WEAK_BUY
        assert sig.unmet_conditions == ["Squeeze release"]
        assert sig.stop_loss < 182.0 < sig.take_profit

    def test_insufficient_candles(self):
        sig = MomentumStrategy().generate_signal(make_frame([100.0] * 40), "BTCUSDT")
        assert sig.signal_type is SignalType.NEUTRAL


class TestTrendFollow:
    def test_insufficient_candles(self):
        sig = TrendFollowStrategy().generate_signal(make_frame([100.0] * 49), "BTCUSDT")
        assert sig.signal_type is SignalType.NEUTRAL
        assert sig.strategy_id == "trend_follow"

    def test_pick_candles_prefers_first_timeframe(self):
        df_1h = make_frame([100.0] * 60)
        df_4h = make_frame([100.0] * 60, freq="4h")
        s = TrendFollowStrategy()
        assert s.pick_candles({"4h": df_4h, "1h": df_1h}) is df_4h
        assert s.pick_candles({"4h": None, "1h": df_1h}) is df_1h
        assert s.pick_candles({}) is None


class TestSignalInvariants:
    """진입/WEAK 시그널의 SL/TP는 가격 양쪽"""

    def test_levels_on_protective_side(self):
        i = np.arange(160)
        closes = 100 + 5 * np.sin(i / 5.0) + 0.05 * i
        frame = make_frame(closes, highs=closes + 0.8, lows=closes - 0.8,
                           volumes=100 + 50 * np.abs(np.cos(i / 3.0)))
        checked = 0
        for strategy in build_default_registry():
            for end in range(60, 161, 5):
                sig = strategy.generate_signal(frame.iloc[:end], "BTCUSDT")
                assert sig.strategy_id == strategy.strategy_id
                if sig.signal_type is SignalType.NEUTRAL:
                    continue
                checked += 1
                if sig.signal_type.is_long:
                    assert sig.stop_loss < sig.price < sig.take_profit
                else:
                    assert sig.take_profit < sig.price < sig.stop_loss
        print(f"[PASS] {checked} non-neutral signals checked")
