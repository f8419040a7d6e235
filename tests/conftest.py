# -*- coding: utf-8 -*-
"""
공용 테스트 헬퍼 (합성 캔들 / 번들 / 페이퍼 환경)
"""
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

from typing import List, Optional, Sequence

import numpy as np
import pandas as pd
import pytest

from regime_trader.db.position_store import InMemoryPositionStore
from regime_trader.exchange.paper import PaperGateway
from regime_trader.indicators.bundle import (
    AtrSnapshot,
    AtrTrend,
    BandSnapshot,
    DirectionalSnapshot,
    IndicatorBundle,
    MacdSnapshot,
    OscillatorSnapshot,
    StochasticSnapshot,
)
from regime_trader.notify.telegram import AlertService, Notifier
from regime_trader.position.manager import PositionLifecycleManager
from regime_trader.position.rules import LifecycleConfig
from regime_trader.risk.manager import RiskConfig, RiskManager
from regime_trader.strategies.base import Signal, SignalType


def make_frame(
    closes: Sequence[float],
    highs: Optional[Sequence[float]] = None,
    lows: Optional[Sequence[float]] = None,
    volumes: Optional[Sequence[float]] = None,
    freq: str = "1h",
    spread: float = 0.5,
) -> pd.DataFrame:
    """OHLCV DataFrame (open = 직전 종가)"""
    closes = np.asarray(closes, dtype=float)
    n = len(closes)
    highs = np.asarray(highs, dtype=float) if highs is not None else closes + spread
    lows = np.asarray(lows, dtype=float) if lows is not None else closes - spread
    volumes = np.asarray(volumes, dtype=float) if volumes is not None else np.full(n, 100.0)
    opens = np.concatenate([[closes[0]], closes[:-1]])
    index = pd.date_range("2024-01-01", periods=n, freq=freq, tz="UTC", name="open_time")
    return pd.DataFrame(
        {"open": opens, "high": highs, "low": lows, "close": closes, "volume": volumes},
        index=index,
    )


def make_bundle(
    timeframe: str = "1h",
    close: float = 100.0,
    closes: Optional[List[float]] = None,
    upper: float = 102.0,
    lower: float = 98.0,
    basis: float = 100.0,
    width: Optional[float] = None,
    percent_b: float = 0.5,
    rsi: float = 50.0,
    rsi_history: Optional[List[float]] = None,
    macd_line: float = -0.1,
    macd_hist: float = 0.1,
    adx: float = 22.0,
    plus_di: float = 20.0,
    minus_di: float = 20.0,
    atr: float = 1.0,
    atr_trend: AtrTrend = AtrTrend.NEUTRAL,
    k: float = 50.0,
    d: float = 50.0,
    prev_k: float = 50.0,
    prev_d: float = 50.0,
) -> IndicatorBundle:
    """중립 기본값 번들 (필요한 필드만 덮어쓰기)"""
    return IndicatorBundle(
        timeframe=timeframe,
        close=close,
        closes=closes if closes is not None else [close] * 5,
        band=BandSnapshot(
            upper=upper,
            lower=lower,
            basis=basis,
            width=width if width is not None else (upper - lower) / basis,
            percent_b=percent_b,
        ),
        rsi=OscillatorSnapshot(value=rsi, history=rsi_history if rsi_history is not None else [rsi] * 5),
        macd=MacdSnapshot(macd_line=macd_line, signal_line=macd_line - macd_hist, histogram=macd_hist),
        adx=DirectionalSnapshot(value=adx, plus_di=plus_di, minus_di=minus_di),
        atr=AtrSnapshot(value=atr, trend=atr_trend, history=[atr] * 30),
        stoch=StochasticSnapshot(k=k, d=d, prev_k=prev_k, prev_d=prev_d),
    )


def buy_signal(price: float = 100.0, stop_loss: float = 95.0, take_profit: float = 110.0,
               strategy_id: str = "bollinger") -> Signal:
    return Signal(SignalType.BUY, price, stop_loss, take_profit, strategy_id=strategy_id)


class RecordingNotifier(Notifier):
    """전송 메시지 기록"""

    def __init__(self):
        self.messages: List[str] = []

    def send(self, text: str) -> bool:
        self.messages.append(text)
        return True


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def gateway():
    gw = PaperGateway(balance=1000.0, quantity_precision=3, price_precision=2, min_notional=5.0)
    gw.set_price("BTCUSDT", 100.0)
    gw.set_price("ETHUSDT", 50.0)
    return gw


@pytest.fixture
def store():
    return InMemoryPositionStore()


@pytest.fixture
def make_manager(gateway, store, notifier):
    """PositionLifecycleManager 팩토리"""
    def _make(lifecycle: Optional[LifecycleConfig] = None, risk: Optional[RiskConfig] = None, **kwargs):
        return PositionLifecycleManager(
            gateway=gateway,
            store=store,
            risk=RiskManager(risk or RiskConfig(static_allocation=10.0, leverage=10)),
            config=lifecycle or LifecycleConfig(),
            alerts=AlertService(notifier),
            **kwargs,
        )
    return _make
