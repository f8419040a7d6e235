# -*- coding: utf-8 -*-
"""
Position Lifecycle Manager
==========================

심볼별 상태 머신: NONE → OPEN → (SCALING ↔ OPEN) → CLOSING → CLOSED

핵심 원칙:
1. 진입: BUY/SELL + 심볼에 활성 포지션 없음 + 동시 포지션 한도 미달
2. 리컨실: 매 틱 규칙 평가 전에 거래소 포지션과 로컬 레코드 비교
   - 로컬에만 있음 → "Closed externally"로 종료
   - 거래소에만 있음 → 보수적 SL/TP(1%/2%)로 편입
3. 청산 우선순위: SL → TP → 트레일링 → 최대 드로다운 → 기술적 청산
4. 종료 레코드 확정은 거래소 청산 주문이 실패해도 반드시 수행
5. 본절(1회), 트레일링(단조), 스케일인(최대 횟수)은 OPEN 상태에서만

사용법:
```python
manager = PositionLifecycleManager(gateway, store, RiskManager(), LifecycleConfig(), alerts)

result = manager.open_position("BTCUSDT", signal)
report = manager.reconcile()
outcome = manager.manage_position(position, MarketSnapshot(price=95000.0, bundles=bundles))
```
"""
import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, List, Mapping, Optional, Set, Tuple

from regime_trader.db.position_store import PositionStore
from regime_trader.exchange.base import (
    ExchangeError,
    ExchangeGateway,
    ExchangePosition,
    ExchangeRejectedError,
    ExchangeTransientError,
)
from regime_trader.exchange.precision import round_price
from regime_trader.indicators.bundle import IndicatorBundle
from regime_trader.notify.telegram import AlertService
from regime_trader.performance.tracker import PerformanceTracker
from regime_trader.position.models import (
    Direction,
    Position,
    PositionRuntimeState,
    RuntimeStateCache,
    is_tighter,
    utcnow,
)
from regime_trader.position.rules import (
    ExitDecision,
    ExitReason,
    LifecycleConfig,
    ScaleDecision,
    calc_pnl_pct,
    check_break_even,
    check_exit,
    check_scale_in,
    update_trailing,
)
from regime_trader.risk.manager import InvariantViolation, RiskManager
from regime_trader.strategies.base import Signal

logger = logging.getLogger(__name__)


# =============================================================================
# Settings / Results
# =============================================================================

@dataclass
class ManagerSettings:
    """진입/편입 기본값"""
    stop_loss_pct: float = 1.5          # 시그널 SL이 유효하지 않을 때
    take_profit_pct: float = 3.0
    adopt_stop_loss_pct: float = 1.0    # 외부 포지션 편입
    adopt_take_profit_pct: float = 2.0
    exchange_native_trailing: bool = False
    native_callback_rate: float = 0.5   # %
    leverage_overrides: Dict[str, int] = field(default_factory=dict)


@dataclass
class MarketSnapshot:
    """관리 틱 입력"""
    price: float
    bundles: Mapping[str, Optional[IndicatorBundle]] = field(default_factory=dict)


@dataclass
class EntryResult:
    opened: bool
    reason: str = ""
    position: Optional[Position] = None


@dataclass
class ManageResult:
    symbol: str
    closed: bool = False
    exit: Optional[ExitDecision] = None
    events: List[str] = field(default_factory=list)


@dataclass
class ReconcileReport:
    closed_externally: List[str] = field(default_factory=list)
    adopted: List[str] = field(default_factory=list)
    resized: List[str] = field(default_factory=list)
    deferred: List[str] = field(default_factory=list)
    errors: Dict[str, str] = field(default_factory=dict)

    @property
    def changed(self) -> bool:
        return bool(self.closed_externally or self.adopted or self.resized)


# =============================================================================
# Manager
# =============================================================================

class PositionLifecycleManager:
    """포지션 라이프사이클 관리자"""

    def __init__(
        self,
        gateway: ExchangeGateway,
        store: PositionStore,
        risk: RiskManager,
        config: LifecycleConfig,
        alerts: AlertService,
        tracker: Optional[PerformanceTracker] = None,
        settings: Optional[ManagerSettings] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.gateway = gateway
        self.store = store
        self.risk = risk
        self.config = config
        self.alerts = alerts
        self.tracker = tracker
        self.settings = settings or ManagerSettings()
        self.clock = clock
        self.runtime = RuntimeStateCache()
        self._entry_lock = threading.Lock()
        self._opening: Set[str] = set()

    def leverage_for(self, symbol: str) -> int:
        return self.settings.leverage_overrides.get(symbol, self.risk.config.leverage)

    # -------------------------------------------------------------------------
    # Entry
    # -------------------------------------------------------------------------

    def _resolve_levels(self, direction: Direction, entry: float, signal: Signal) -> Tuple[float, float]:
        """시그널 SL/TP가 체결가 기준 올바른 쪽이면 사용, 아니면 % 기본값"""
        sl, tp = signal.stop_loss, signal.take_profit
        if direction is Direction.LONG:
            if not (0 < sl < entry):
                sl = entry * (1 - self.settings.stop_loss_pct / 100)
            if not tp > entry:
                tp = entry * (1 + self.settings.take_profit_pct / 100)
        else:
            if not sl > entry:
                sl = entry * (1 + self.settings.stop_loss_pct / 100)
            if not (0 < tp < entry):
                tp = entry * (1 - self.settings.take_profit_pct / 100)
        return sl, tp

    def open_position(
        self,
        symbol: str,
        signal: Signal,
        market_conditions: Optional[Dict] = None,
    ) -> EntryResult:
        """
        BUY/SELL 시그널 → 시장가 진입 + SL/TP 주문 + 레코드 생성

        Raises:
            ExchangeTransientError: 시세/주문 일시 장애 (다음 틱 재시도)
            ExchangeRejectedError: 최소 notional 미달 / 주문 거부
        """
        if not signal.signal_type.is_entry:
            return EntryResult(False, f"Not an entry signal: {signal.signal_type.value}")

        # 한도 체크 → 체결 → 레코드 생성 사이에 슬롯 예약
        with self._entry_lock:
            if symbol in self._opening:
                return EntryResult(False, "Entry in progress")
            if self.store.get_active(symbol) is not None:
                return EntryResult(False, "Active position exists")
            ok, reason = self.risk.can_open_position(self.store.count_active() + len(self._opening))
            if not ok:
                logger.info(f"[{symbol}] Entry blocked: {reason}")
                return EntryResult(False, reason)
            self._opening.add(symbol)

        try:
            return self._open(symbol, signal, market_conditions)
        finally:
            with self._entry_lock:
                self._opening.discard(symbol)

    def is_opening(self, symbol: str) -> bool:
        with self._entry_lock:
            return symbol in self._opening

    def _open(self, symbol: str, signal: Signal, market_conditions: Optional[Dict]) -> EntryResult:
        direction = Direction.LONG if signal.signal_type.is_long else Direction.SHORT
        leverage = self.leverage_for(symbol)
        self.gateway.set_leverage(symbol, leverage)

        price = self.gateway.get_price(symbol)
        balance = self.gateway.get_balance() if self.risk.config.calculate_position_size else 0.0
        allocation = self.risk.allocation(balance, signal.allocation_hint)
        try:
            size = self.risk.size_order(
                price, allocation, leverage,
                self.gateway.get_quantity_precision(symbol),
                self.gateway.get_min_notional(symbol),
            )
        except InvariantViolation as e:
            logger.error(f"[{symbol}] Sizing aborted: {e} (signal={signal.to_dict()})")
            return EntryResult(False, str(e))

        fill = self.gateway.place_market_order(symbol, direction.entry_side, size.quantity, direction.value)
        entry_price = fill.price
        stop_loss, take_profit = self._resolve_levels(direction, entry_price, signal)

        position = Position(
            symbol=symbol,
            entries=direction.sign,
            entry_prices=[entry_price],
            quantity=fill.quantity,
            total_allocation=size.allocation,
            stop_loss=stop_loss,
            take_profit=take_profit,
            leverage=leverage,
            strategy_used=signal.strategy_id,
            market_conditions=dict(market_conditions or {}),
            opened_at=self.clock(),
        )
        self.store.create(position)
        state = self.runtime.get_or_seed(position, entry_price)

        if self._place_protective_orders(position, stop_loss):
            state.exchange_stop = stop_loss
        if self.settings.exchange_native_trailing:
            self._place_native_trailing(position)

        logger.info(
            f"[{symbol}] Opened {direction.value} qty={position.quantity} @ {entry_price} "
            f"SL={stop_loss:.6g} TP={take_profit:.6g} strategy={signal.strategy_id}"
        )
        self.alerts.position_opened(symbol, direction.value, entry_price, position.quantity,
                                    stop_loss, take_profit, signal.strategy_id)
        return EntryResult(True, "Opened", position)

    # -------------------------------------------------------------------------
    # Exchange orders
    # -------------------------------------------------------------------------

    def _place_protective_orders(self, position: Position, stop_level: float) -> bool:
        """SL + TP 주문 (실패해도 로컬 레코드로 계속 감시)"""
        symbol = position.symbol
        d = position.direction
        try:
            prec = self.gateway.get_price_precision(symbol)
            self.gateway.place_stop_order(symbol, d.exit_side, position.quantity,
                                          round_price(stop_level, prec), d.value)
            self.gateway.place_take_profit_order(symbol, d.exit_side, position.quantity,
                                                 round_price(position.take_profit, prec), d.value)
        except ExchangeError as e:
            logger.error(f"[{symbol}] Protective orders failed: {e}")
            self.alerts.error(f"{symbol} protective orders", e)
            return False
        return True

    def _place_native_trailing(self, position: Position) -> None:
        symbol = position.symbol
        d = position.direction
        entry = position.average_entry_price
        activation = entry + (position.take_profit - entry) * self.config.trailing_activation
        try:
            prec = self.gateway.get_price_precision(symbol)
            self.gateway.place_trailing_stop_order(
                symbol, d.exit_side, position.quantity, self.settings.native_callback_rate,
                d.value, activation_price=round_price(activation, prec),
            )
        except ExchangeError as e:
            logger.error(f"[{symbol}] Trailing stop order failed: {e}")
            self.alerts.error(f"{symbol} trailing stop order", e)

    def _known_stop(self, position: Position) -> Optional[float]:
        """재시작 후 첫 관측: 거래소 손절가, 조회 실패/없음이면 영속 SL"""
        try:
            stop = self.gateway.get_stop_price(position.symbol)
        except ExchangeError as e:
            logger.warning(f"[{position.symbol}] Stop order lookup failed ({e}); using durable SL")
            stop = None
        return stop if stop is not None else position.stop_loss

    def _replace_stop(self, position: Position, state: PositionRuntimeState, level: float) -> bool:
        """거래소 손절 주문 교체 (현재 걸린 손절보다 유리할 때만)"""
        symbol = position.symbol
        d = position.direction
        if not is_tighter(d, level, state.exchange_stop):
            logger.debug(f"[{symbol}] Stop {level:.6g} not tighter than {state.exchange_stop:.6g}; kept")
            return False
        try:
            self.gateway.cancel_open_orders(symbol, stop_only=True)
            prec = self.gateway.get_price_precision(symbol)
            self.gateway.place_stop_order(symbol, d.exit_side, position.quantity, round_price(level, prec), d.value)
        except ExchangeError as e:
            state.exchange_stop = None
            logger.error(f"[{symbol}] Stop update to {level} failed: {e}")
            self.alerts.error(f"{symbol} stop update", e)
            return False
        state.exchange_stop = level
        return True

    # -------------------------------------------------------------------------
    # Close
    # -------------------------------------------------------------------------

    def _finalize(self, position: Position, exit_price: float, reason: str) -> Position:
        """레코드 확정 + 런타임 상태 폐기"""
        now = self.clock()
        pnl_pct = calc_pnl_pct(position.direction, position.average_entry_price, exit_price)
        position.is_active = False
        position.closed_at = now
        position.closed_price = exit_price
        position.exit_reason = reason
        position.pnl_percent = pnl_pct
        position.pnl_amount = position.total_allocation * position.leverage * pnl_pct / 100
        position.hold_time_minutes = (now - position.opened_at).total_seconds() / 60
        self.store.update(position)
        self.runtime.discard(position.symbol)
        if self.tracker is not None:
            self.tracker.record(position)
        return position

    def close_position(self, position: Position, exit_price: float, reason: str) -> Position:
        """
        주문 취소 → 시장가 청산 → 레코드 확정

        거래소 호출이 실패해도 레코드는 확정한 뒤 예외를 다시 던짐.
        """
        symbol = position.symbol
        d = position.direction
        failure: Optional[Exception] = None
        try:
            self.gateway.cancel_open_orders(symbol)
            self.gateway.place_market_order(symbol, d.exit_side, position.quantity, d.value, reduce_only=True)
        except Exception as e:
            failure = e
            logger.error(f"[{symbol}] Close order failed, finalizing record anyway: {e}")

        self._finalize(position, exit_price, reason)
        logger.info(
            f"[{symbol}] Closed {d.value} @ {exit_price:.6g} reason='{reason}' "
            f"pnl={position.pnl_percent:+.2f}% ({position.pnl_amount:+.4f} USDT)"
        )
        self.alerts.position_closed(symbol, d.value, exit_price, reason, position.pnl_percent,
                                    position.pnl_amount, position.hold_time_minutes)
        if failure is not None:
            raise failure
        return position

    # -------------------------------------------------------------------------
    # Reconciliation
    # -------------------------------------------------------------------------

    def _adopt(self, ex: ExchangePosition) -> Position:
        direction = Direction.from_sign(ex.amount)
        entry = ex.entry_price
        sl_pct = self.settings.adopt_stop_loss_pct / 100
        tp_pct = self.settings.adopt_take_profit_pct / 100
        leverage = self.leverage_for(ex.symbol)
        position = Position(
            symbol=ex.symbol,
            entries=direction.sign,
            entry_prices=[entry],
            quantity=abs(ex.amount),
            total_allocation=abs(ex.amount) * entry / leverage,
            stop_loss=entry * (1 - sl_pct * direction.sign),
            take_profit=entry * (1 + tp_pct * direction.sign),
            leverage=leverage,
            strategy_used="adopted",
            adopted=True,
            opened_at=self.clock(),
        )
        self.store.create(position)
        price = ex.mark_price or entry
        self.runtime.get_or_seed(position, price)
        logger.warning(f"[{ex.symbol}] Adopted external {direction.value} position amount={ex.amount} @ {entry}")
        return position

    def _current_price(self, symbol: str, fallback: float) -> float:
        try:
            return self.gateway.get_price(symbol)
        except ExchangeError as e:
            logger.warning(f"[{symbol}] Price unavailable ({e}); using {fallback}")
            return fallback

    def reconcile(
        self,
        exchange_positions: Optional[List[ExchangePosition]] = None,
        busy: Optional[Callable[[str], bool]] = None,
    ) -> ReconcileReport:
        """
        거래소 포지션 ↔ 로컬 활성 레코드 동기화 (멱등)

        Args:
            exchange_positions: 미지정 시 거래소 조회
            busy: 처리 중인 심볼 판정 (진입/청산 도중인 심볼은 다음 틱으로 미룸)

        Raises:
            ExchangeTransientError: 포지션 조회 실패 (이번 틱 스킵)
        """
        if exchange_positions is None:
            exchange_positions = self.gateway.get_open_positions()
        # 헤지 모드: 심볼당 LONG/SHORT 레그가 따로 존재할 수 있음
        on_exchange: Dict[Tuple[str, Direction], ExchangePosition] = {
            (p.symbol, Direction.from_sign(p.amount)): p for p in exchange_positions if p.amount != 0
        }
        report = ReconcileReport()

        def deferred(symbol: str) -> bool:
            if self.is_opening(symbol) or (busy is not None and busy(symbol)):
                if symbol not in report.deferred:
                    logger.info(f"[{symbol}] Reconcile deferred (in flight)")
                    report.deferred.append(symbol)
                return True
            return False

        for local in self.store.list_active():
            symbol = local.symbol
            if deferred(symbol):
                continue
            try:
                ex = on_exchange.get((symbol, local.direction))
                if ex is None:
                    price = self._current_price(symbol, local.average_entry_price)
                    self._finalize(local, price, ExitReason.CLOSED_EXTERNALLY.value)
                    logger.warning(f"[{symbol}] Local position not on exchange → closed externally @ {price}")
                    self.alerts.position_closed(symbol, local.direction.value, price,
                                                local.exit_reason, local.pnl_percent,
                                                local.pnl_amount, local.hold_time_minutes)
                    report.closed_externally.append(symbol)
                elif abs(abs(ex.amount) - local.quantity) > 1e-12:
                    logger.info(f"[{symbol}] Quantity sync {local.quantity} → {abs(ex.amount)}")
                    local.quantity = abs(ex.amount)
                    self.store.update(local)
                    report.resized.append(symbol)
            except ExchangeTransientError:
                raise
            except Exception as e:
                logger.exception(f"[{symbol}] Reconcile failed")
                report.errors[symbol] = str(e)

        for (symbol, direction), ex in on_exchange.items():
            if deferred(symbol):
                continue
            active = self.store.get_active(symbol)
            if active is not None:
                if active.direction is not direction:
                    # 심볼당 포지션 1개: 반대 레그는 편입하지 않고 보고만
                    logger.error(f"[{symbol}] Untracked {direction.value} leg amount={ex.amount} "
                                 f"alongside active {active.direction.value}")
                    report.errors[symbol] = f"Untracked {direction.value} leg"
                continue
            try:
                self._adopt(ex)
                report.adopted.append(symbol)
            except Exception as e:
                logger.exception(f"[{symbol}] Adoption failed")
                report.errors[symbol] = str(e)

        if report.changed:
            logger.info(
                f"[Reconcile] closed={report.closed_externally} adopted={report.adopted} resized={report.resized}"
            )
        return report

    # -------------------------------------------------------------------------
    # Management
    # -------------------------------------------------------------------------

    def manage_symbol(self, symbol: str, snapshot: MarketSnapshot) -> Optional[ManageResult]:
        position = self.store.get_active(symbol)
        if position is None:
            return None
        return self.manage_position(position, snapshot)

    def manage_position(self, position: Position, snapshot: MarketSnapshot) -> ManageResult:
        """
        한 틱 규칙 평가: 청산 → 본절 → 트레일링 → 스케일인
        """
        symbol = position.symbol
        price = snapshot.price
        result = ManageResult(symbol=symbol)

        seeded = symbol not in self.runtime
        state = self.runtime.get_or_seed(position, price)
        if seeded:
            state.exchange_stop = self._known_stop(position)
        prev_extremes = state.observe(price)

        decision = check_exit(position, state, price, snapshot.bundles, self.config)
        if decision is not None:
            result.closed = True
            result.exit = decision
            result.events.append(decision.reason_text)
            self.close_position(position, decision.exit_price, decision.reason_text)
            return result

        new_stop = check_break_even(position, state, price, self.config)
        if new_stop is not None:
            old = position.stop_loss
            position.stop_loss = new_stop
            try:
                self.store.update(position)
            except Exception:
                # 플래그는 영속 SL이 실제로 바뀐 뒤에만 (다음 틱 재시도)
                position.stop_loss = old
                raise
            state.break_even_active = True
            self._replace_stop(position, state, new_stop)
            logger.info(f"[{symbol}] Break-even: SL {old:.6g} → {new_stop:.6g}")
            self.alerts.stop_updated(symbol, old, new_stop, "break-even")
            result.events.append("break_even")

        event = update_trailing(position, state, price, prev_extremes, self.config)
        if event is not None:
            self._replace_stop(position, state, state.trailing_level)
            if event == 'activated':
                logger.info(f"[{symbol}] Trailing activated at {state.trailing_level:.6g}")
                self.alerts.trailing_activated(symbol, state.trailing_level)
            else:
                logger.info(f"[{symbol}] Trailing moved to {state.trailing_level:.6g}")
            result.events.append(f"trailing_{event}")

        scale = check_scale_in(position, price, snapshot.bundles.get(self.config.scale_timeframe), self.config)
        if scale is not None and self._scale_in(position, state, scale):
            result.events.append("scale_in")

        return result

    def _scale_in(self, position: Position, state: PositionRuntimeState, decision: ScaleDecision) -> bool:
        """추가 진입 (거부 시 포기, 재시도 안함)"""
        symbol = position.symbol
        d = position.direction
        if position.scale_step >= self.config.max_scale_ins:
            return False
        try:
            balance = self.gateway.get_balance() if self.risk.config.calculate_position_size else 0.0
            allocation = self.risk.allocation(balance) * decision.multiplier
            size = self.risk.size_order(
                self.gateway.get_price(symbol), allocation, position.leverage,
                self.gateway.get_quantity_precision(symbol),
                self.gateway.get_min_notional(symbol),
            )
            fill = self.gateway.place_market_order(symbol, d.entry_side, size.quantity, d.value)
        except (ExchangeRejectedError, InvariantViolation) as e:
            logger.error(f"[{symbol}] Scale-in abandoned: {e}")
            self.alerts.error(f"{symbol} scale-in", e)
            return False

        position.entry_prices.append(fill.price)
        position.entries += d.sign
        position.quantity += fill.quantity
        position.total_allocation += size.allocation
        position.scale_step += 1
        self.store.update(position)

        try:
            self.gateway.cancel_open_orders(symbol)
        except ExchangeError as e:
            logger.error(f"[{symbol}] Cancel before order resize failed: {e}")
        stop = state.trailing_level if state.trailing_active and state.trailing_level else position.stop_loss
        if state.exchange_stop is not None and is_tighter(d, state.exchange_stop, stop):
            stop = state.exchange_stop
        state.exchange_stop = stop if self._place_protective_orders(position, stop) else None
        if self.settings.exchange_native_trailing:
            self._place_native_trailing(position)

        logger.info(
            f"[{symbol}] Scale-in #{position.scale_step} x{decision.multiplier} @ {fill.price} "
            f"({', '.join(decision.reasons)})"
        )
        self.alerts.scaled_in(symbol, fill.price, position.scale_step, position.total_allocation)
        return True
