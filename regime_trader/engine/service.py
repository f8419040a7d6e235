"""
Trading Service
===============

시작 시 한 번 조립되는 서비스 객체 (전역 싱글턴 없음).

    config = load_config()
    service = build_service(config)
    service.scheduler.run_forever()
"""
import logging
from dataclasses import dataclass
from typing import Optional

from regime_trader.config.loader import EngineConfig
from regime_trader.db import connection
from regime_trader.db.connection import SqlSettings
from regime_trader.db.position_store import InMemoryPositionStore, PositionStore, SqlPositionStore
from regime_trader.engine.scanner import MarketScanner
from regime_trader.engine.scheduler import SymbolGuard, TickScheduler
from regime_trader.exchange.base import ExchangeGateway
from regime_trader.exchange.ccxt_gateway import CcxtGateway
from regime_trader.exchange.paper import PaperGateway
from regime_trader.notify.telegram import AlertService, LogNotifier, Notifier, TelegramNotifier
from regime_trader.performance.tracker import PerformanceTracker
from regime_trader.position.manager import PositionLifecycleManager
from regime_trader.position.rules import ExitReason
from regime_trader.regime.selector import StrategySelector
from regime_trader.risk.manager import RiskManager
from regime_trader.strategies import build_default_registry

logger = logging.getLogger(__name__)


@dataclass
class TradingService:
    config: EngineConfig
    gateway: ExchangeGateway
    store: PositionStore
    alerts: AlertService
    tracker: PerformanceTracker
    selector: StrategySelector
    manager: PositionLifecycleManager
    scanner: MarketScanner
    scheduler: TickScheduler

    def status(self) -> str:
        active = self.store.list_active()
        lines = [self.manager.risk.format_status(len(active), self.gateway.get_balance())]
        for p in active:
            lines.append(
                f"{p.symbol} {p.direction.value} avg={p.average_entry_price:.6g} "
                f"SL={p.stop_loss:.6g} TP={p.take_profit:.6g} step={p.scale_step} [{p.strategy_used}]"
            )
        for sid, stats in self.tracker.summary().items():
            state = "on" if self.selector.is_enabled(sid) else "off"
            lines.append(f"{sid} ({state}): {stats}")
        return "\n".join(lines)

    def close_symbol(self, symbol: str) -> str:
        """운영자 수동 청산 (관리 틱과 겹치지 않도록 심볼 키 획득)"""
        if not self.scheduler.guard.acquire(symbol):
            return f"{symbol} busy, try again"
        try:
            position = self.store.get_active(symbol)
            if position is None:
                return f"No active position for {symbol}"
            price = self.gateway.get_price(symbol)
            closed = self.manager.close_position(position, price, ExitReason.MANUAL.value)
            return f"Closed {symbol} @ {price:.6g} pnl={closed.pnl_percent:+.2f}%"
        finally:
            self.scheduler.guard.release(symbol)


def _default_gateway(config: EngineConfig) -> ExchangeGateway:
    """ccxt 핸드셰이크 (실패 시 ExchangeAuthError → 시작 실패)"""
    live = CcxtGateway(
        api_key=config.exchange.api_key,
        api_secret=config.exchange.api_secret,
        timeout_ms=config.exchange.timeout_ms,
        testnet=config.exchange.testnet,
    )
    live.connect()
    if config.dry_run:
        logger.info("[Service] Dry run: paper fills on live market data")
        return PaperGateway(market_data=live, min_notional=config.risk.min_notional)
    return live


def _default_store(config: EngineConfig) -> PositionStore:
    """MSSQL 자격증명이 없거나 드라이런이면 메모리 저장소"""
    if config.dry_run or not SqlSettings.from_env().configured:
        logger.info("[Service] Using in-memory position store")
        return InMemoryPositionStore()
    if not connection.ping():
        raise RuntimeError("MSSQL configured but unreachable")
    store = SqlPositionStore()
    store.ensure_schema()
    return store


def _default_notifier(config: EngineConfig) -> Notifier:
    n = config.notify
    if n.telegram_enabled and n.telegram_token and n.telegram_chat_id:
        return TelegramNotifier(n.telegram_token, n.telegram_chat_id)
    return LogNotifier()


def build_service(
    config: EngineConfig,
    gateway: Optional[ExchangeGateway] = None,
    store: Optional[PositionStore] = None,
    notifier: Optional[Notifier] = None,
) -> TradingService:
    """의존성 조립"""
    gateway = gateway or _default_gateway(config)
    store = store or _default_store(config)
    alerts = AlertService(notifier or _default_notifier(config), weak_batch_size=config.notify.weak_signal_batch)

    tracker = PerformanceTracker(min_trades=config.selection.min_trades)
    tracker.rebuild(store.list_closed(limit=500))

    selector = StrategySelector(build_default_registry(config.strategies))
    manager = PositionLifecycleManager(
        gateway=gateway,
        store=store,
        risk=RiskManager(config.risk),
        config=config.lifecycle,
        alerts=alerts,
        tracker=tracker,
        settings=config.manager,
    )
    scanner = MarketScanner(gateway, selector, manager, alerts, config, tracker)
    guard = SymbolGuard()
    scheduler = TickScheduler(
        symbols=lambda: list(config.symbols),
        scan_job=scanner.scan_symbol,
        manage_job=scanner.manage_symbol,
        params=config.scheduler,
        manage_symbols=scanner.active_symbols,
        before_manage=lambda: manager.reconcile(busy=guard.is_busy),
        after_scan=scanner.after_scan,
        alerts=alerts,
        guard=guard,
    )
    return TradingService(config, gateway, store, alerts, tracker, selector, manager, scanner, scheduler)
