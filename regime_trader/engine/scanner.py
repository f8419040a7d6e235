"""
Market Scanner
==============

스캔 틱 (심볼 1개 단위):
캔들 → 지표 번들 → 레짐 분류 → 전략 선택 → 시그널 → 진입 / WEAK 버퍼

관리 틱 (심볼 1개 단위):
현재가 + 상위 TF 번들 → PositionLifecycleManager.manage_position
"""
import logging
from typing import Dict, List, Optional

import pandas as pd

from regime_trader.config.loader import EngineConfig
from regime_trader.exchange.base import ExchangeGateway
from regime_trader.indicators.bundle import compute_bundles
from regime_trader.notify.telegram import AlertService
from regime_trader.performance.tracker import PerformanceTracker
from regime_trader.position.manager import MarketSnapshot, PositionLifecycleManager
from regime_trader.regime.classifier import RegimeSnapshot, build_historical_context, classify
from regime_trader.regime.selector import StrategySelector

logger = logging.getLogger(__name__)


class MarketScanner:
    """스캔 / 관리 잡"""

    def __init__(
        self,
        gateway: ExchangeGateway,
        selector: StrategySelector,
        manager: PositionLifecycleManager,
        alerts: AlertService,
        config: EngineConfig,
        tracker: Optional[PerformanceTracker] = None,
    ):
        self.gateway = gateway
        self.selector = selector
        self.manager = manager
        self.alerts = alerts
        self.config = config
        self.tracker = tracker
        self.latest_regimes: Dict[str, RegimeSnapshot] = {}

    def fetch_candles(self, symbol: str, timeframes: List[str], limit: int) -> Dict[str, pd.DataFrame]:
        return {tf: self.gateway.get_candles(symbol, tf, limit) for tf in timeframes}

    # -------------------------------------------------------------------------
    # Scan
    # -------------------------------------------------------------------------

    def scan_symbol(self, symbol: str) -> str:
        """
        Returns:
            처리 결과 요약

        Raises:
            ExchangeTransientError: 캔들/시세 조회 실패 (이번 틱 스킵)
        """
        store = self.manager.store
        if store.get_active(symbol) is not None:
            return "Position active"

        ok, reason = self.manager.risk.can_open_position(store.count_active())
        if not ok:
            return reason

        tf = self.config.timeframes
        candles = self.fetch_candles(symbol, tf.scan, tf.candle_limit)
        daily = self.gateway.get_candles(symbol, tf.daily, tf.daily_limit)

        bundles = compute_bundles(candles)
        regime_cfg = self.config.regime
        context = build_historical_context(candles.get(regime_cfg.reference_timeframe), daily, regime_cfg)
        snapshot = classify(bundles, context, regime_cfg)
        self.latest_regimes[symbol] = snapshot

        selection = self.selector.select(snapshot)
        strategy = selection.strategy
        frames = dict(candles)
        frames[tf.daily] = daily
        df = strategy.pick_candles(frames)
        if df is None:
            return f"No candles for {strategy.strategy_id}"

        signal = strategy.generate_signal(df, symbol)
        signal.strategy_id = strategy.strategy_id
        logger.info(
            f"[{symbol}] {snapshot.market_type}/{snapshot.volatility} → {strategy.strategy_id} "
            f"({selection.reason}) signal={signal.signal_type.value}"
        )

        if signal.signal_type.is_entry:
            conditions = {
                'regime': snapshot.to_dict(),
                'selection_reason': selection.reason,
                'weights': selection.weights,
            }
            result = self.manager.open_position(symbol, signal, market_conditions=conditions)
            return f"{signal.signal_type.value}: {result.reason}"

        if signal.signal_type.is_weak:
            self.alerts.weak_signal(symbol, signal.signal_type.value, strategy.strategy_id, signal.unmet_conditions)
        return signal.signal_type.value

    def after_scan(self) -> None:
        """스캔 틱 종료: WEAK 버퍼 flush + 성과 게이트"""
        self.alerts.flush_weak_signals()
        if self.tracker is not None and self.config.selection.disable_unprofitable:
            self.selector.apply_performance(self.tracker.is_profitable)

    # -------------------------------------------------------------------------
    # Manage
    # -------------------------------------------------------------------------

    def active_symbols(self) -> List[str]:
        return [p.symbol for p in self.manager.store.list_active()]

    def manage_symbol(self, symbol: str) -> str:
        position = self.manager.store.get_active(symbol)
        if position is None:
            return "No position"

        lc = self.manager.config
        timeframes = sorted(set(lc.technical_timeframes) | {lc.scale_timeframe})
        price = self.gateway.get_price(symbol)
        candles = self.fetch_candles(symbol, timeframes, self.config.timeframes.candle_limit)
        bundles = compute_bundles(candles)

        result = self.manager.manage_position(position, MarketSnapshot(price=price, bundles=bundles))
        if result.closed:
            return f"Closed: {result.exit.reason_text}"
        return ", ".join(result.events) or "Held"
