# -*- coding: utf-8 -*-
"""
Position Lifecycle Manager 통합 테스트

PaperGateway + InMemoryPositionStore 로 틱 시퀀스를 재생.
"""
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

import threading

import pytest

from regime_trader.exchange.base import ExchangePosition, ExchangeRejectedError, ExchangeTransientError
from regime_trader.position.manager import ManagerSettings, MarketSnapshot
from regime_trader.position.rules import ExitReason, LifecycleConfig
from regime_trader.risk.manager import RiskConfig
from regime_trader.strategies.base import Signal, SignalType

from conftest import buy_signal, make_bundle


def tick(manager, gateway, symbol, price, bundles=None):
    gateway.set_price(symbol, price)
    return manager.manage_symbol(symbol, MarketSnapshot(price=price, bundles=bundles or {}))


class TestOpenPosition:
    """진입"""

    def test_open_creates_record_and_protective_orders(self, make_manager, gateway, store):
        manager = make_manager()
        result = manager.open_position("BTCUSDT", buy_signal())

        assert result.opened
        active = store.get_active("BTCUSDT")
        assert active is not None
        assert active.quantity == pytest.approx(1.0)       # 10 USDT x10 / 100
        assert active.total_allocation == pytest.approx(10.0)
        assert active.stop_loss == pytest.approx(95.0)
        assert active.take_profit == pytest.approx(110.0)
        assert active.strategy_used == "bollinger"
        types = sorted(o.result.order_type for o in gateway.open_orders("BTCUSDT"))
        assert types == ["STOP_MARKET", "TAKE_PROFIT_MARKET"]
        assert gateway.leverage["BTCUSDT"] == 10

    def test_no_second_position_while_active(self, make_manager, store):
        manager = make_manager()
        assert manager.open_position("BTCUSDT", buy_signal()).opened

        second = manager.open_position("BTCUSDT", buy_signal())
        assert not second.opened
        assert second.reason == "Active position exists"
        assert store.count_active() == 1

    def test_position_cap(self, make_manager, store):
        manager = make_manager(risk=RiskConfig(static_allocation=10.0, leverage=10, max_open_positions=1))
        assert manager.open_position("BTCUSDT", buy_signal()).opened

        eth = manager.open_position("ETHUSDT", buy_signal(price=50.0, stop_loss=48.0, take_profit=55.0))
        assert not eth.opened
        assert "Max open positions (1)" in eth.reason
        assert store.get_active("ETHUSDT") is None

    def test_min_notional_rejected_before_order(self, make_manager, gateway, store):
        manager = make_manager(risk=RiskConfig(static_allocation=0.1, leverage=10))
        with pytest.raises(ExchangeRejectedError):
            manager.open_position("BTCUSDT", buy_signal())
        assert store.count_active() == 0
        assert gateway.orders == []

    def test_wrong_side_levels_fall_back_to_defaults(self, make_manager, store):
        manager = make_manager()
        bad = Signal(SignalType.BUY, 100.0, stop_loss=105.0, take_profit=90.0, strategy_id="momentum")
        assert manager.open_position("BTCUSDT", bad).opened

        p = store.get_active("BTCUSDT")
        assert p.stop_loss == pytest.approx(98.5)   # 1.5%
        assert p.take_profit == pytest.approx(103.0)

    def test_neutral_signal_not_opened(self, make_manager):
        manager = make_manager()
        result = manager.open_position("BTCUSDT", Signal(SignalType.NEUTRAL, 100.0, 98.0, 102.0))
        assert not result.opened


class TestTrailingLifecycle:
    """트레일링 시나리오: 진입 100, TP 110, 활성화 50%, 거리 1%"""

    def test_trailing_activates_moves_and_exits(self, make_manager, gateway, store, notifier):
        manager = make_manager(lifecycle=LifecycleConfig(trailing_distance_pct=1.0))
        manager.open_position("BTCUSDT", buy_signal())

        r1 = tick(manager, gateway, "BTCUSDT", 105.0)
        assert "break_even" in r1.events
        assert "trailing_activated" in r1.events
        state = manager.runtime.get("BTCUSDT")
        assert state.trailing_level == pytest.approx(103.95)
        assert store.get_active("BTCUSDT").stop_loss == pytest.approx(100.0)

        r2 = tick(manager, gateway, "BTCUSDT", 107.0)
        assert r2.events == ["trailing_moved"]
        assert state.trailing_level == pytest.approx(105.93)

        r3 = tick(manager, gateway, "BTCUSDT", 104.0)
        assert r3.closed
        assert r3.exit.reason is ExitReason.TRAILING_STOP
        assert r3.exit.exit_price == pytest.approx(105.93)

        assert store.get_active("BTCUSDT") is None
        closed = store.list_closed()[0]
        assert closed.exit_reason == "Trailing stop hit"
        assert closed.closed_price == pytest.approx(105.93)
        assert closed.pnl_percent == pytest.approx(5.93)
        assert "BTCUSDT" not in manager.runtime
        assert "BTCUSDT" not in gateway.positions
        assert any("Trailing" in m for m in notifier.messages)

    def test_trailing_level_never_moves_backwards(self, make_manager, gateway):
        manager = make_manager(lifecycle=LifecycleConfig(trailing_distance_pct=1.0, max_drawdown_pct=50.0))
        manager.open_position("BTCUSDT", buy_signal())

        levels = []
        for price in [106.0, 108.0, 107.0, 109.0, 108.5, 109.5]:
            result = tick(manager, gateway, "BTCUSDT", price)
            assert not result.closed
            levels.append(manager.runtime.get("BTCUSDT").trailing_level)
        assert levels == sorted(levels)


class TestBreakEven:
    """본절 1회성"""

    def test_break_even_applied_once(self, make_manager, gateway, store, notifier):
        manager = make_manager()
        manager.open_position("BTCUSDT", buy_signal())

        r1 = tick(manager, gateway, "BTCUSDT", 101.0)
        assert r1.events == ["break_even"]
        assert store.get_active("BTCUSDT").stop_loss == pytest.approx(100.0)
        stops = [o for o in gateway.open_orders("BTCUSDT") if o.result.order_type == "STOP_MARKET"]
        assert len(stops) == 1 and stops[0].result.price == pytest.approx(100.0)

        r2 = tick(manager, gateway, "BTCUSDT", 100.5)
        r3 = tick(manager, gateway, "BTCUSDT", 102.0)
        assert "break_even" not in r2.events
        assert "break_even" not in r3.events
        assert sum("break-even" in m for m in notifier.messages) == 1

    def test_restart_seeds_break_even_from_durable_stop(self, make_manager, gateway, store):
        manager = make_manager()
        manager.open_position("BTCUSDT", buy_signal())
        tick(manager, gateway, "BTCUSDT", 101.0)

        restarted = make_manager()
        r = tick(restarted, gateway, "BTCUSDT", 101.5)
        assert "break_even" not in r.events
        assert restarted.runtime.get("BTCUSDT").break_even_active


class TestExits:
    """청산 우선순위 / 실패 처리"""

    def test_stop_loss_exit_uses_level(self, make_manager, gateway, store):
        manager = make_manager()
        manager.open_position("BTCUSDT", buy_signal())

        r = tick(manager, gateway, "BTCUSDT", 94.0)
        assert r.exit.reason is ExitReason.STOP_LOSS
        closed = store.list_closed()[0]
        assert closed.closed_price == pytest.approx(95.0)
        assert closed.pnl_percent == pytest.approx(-5.0)

    def test_take_profit_pnl_amount(self, make_manager, gateway, store):
        manager = make_manager()
        manager.open_position("BTCUSDT", buy_signal())

        r = tick(manager, gateway, "BTCUSDT", 111.0)
        assert r.exit.reason is ExitReason.TAKE_PROFIT
        closed = store.list_closed()[0]
        assert closed.pnl_percent == pytest.approx(10.0)
        assert closed.pnl_amount == pytest.approx(10.0)   # 10 x 10 x 10%
        assert closed.hold_time_minutes >= 0

    def test_technical_exit_on_bearish_macd(self, make_manager, gateway):
        manager = make_manager()
        manager.open_position("BTCUSDT", buy_signal())

        bearish = make_bundle(close=100.2, macd_line=-0.3, macd_hist=-0.1, adx=30.0)
        r = tick(manager, gateway, "BTCUSDT", 100.2, bundles={"1h": bearish})
        assert r.closed
        assert r.exit.reason is ExitReason.TECHNICAL
        assert r.exit.exit_price == pytest.approx(100.2)

    def test_close_failure_still_finalizes(self, make_manager, gateway, store, notifier):
        manager = make_manager()
        manager.open_position("BTCUSDT", buy_signal())
        gateway.fail_on("place_market_order", ExchangeTransientError("boom"), "BTCUSDT")

        with pytest.raises(ExchangeTransientError):
            tick(manager, gateway, "BTCUSDT", 94.0)

        assert store.get_active("BTCUSDT") is None
        closed = store.list_closed()[0]
        assert closed.exit_reason == "Stop loss hit"
        assert any("Closed" in m or "closed" in m for m in notifier.messages)


class TestScaleIn:
    """스케일인"""

    def test_scale_in_capped_and_allocation_grows(self, make_manager, gateway, store):
        manager = make_manager()
        manager.open_position("BTCUSDT", buy_signal())

        dip = make_bundle(close=99.5, lower=100.0, upper=104.0, basis=102.0, rsi=30.0,
                          adx=30.0, plus_di=30.0, minus_di=10.0, macd_line=0.2, macd_hist=0.1)
        allocations = [store.get_active("BTCUSDT").total_allocation]
        events = []
        for _ in range(3):
            r = tick(manager, gateway, "BTCUSDT", 99.5, bundles={"1h": dip})
            assert not r.closed
            events.append("scale_in" in r.events)
            allocations.append(store.get_active("BTCUSDT").total_allocation)

        assert events == [True, True, False]
        p = store.get_active("BTCUSDT")
        assert p.scale_step == 2
        assert len(p.entry_prices) == 3
        assert allocations[1] > allocations[0] and allocations[2] > allocations[1]
        assert allocations[1] - allocations[0] == pytest.approx(15.0)   # 강한 조건 x1.5
        assert p.quantity == pytest.approx(gateway.positions["BTCUSDT"].amount)
        # 증가된 수량으로 보호 주문 재배치
        stops = [o for o in gateway.open_orders("BTCUSDT") if o.result.order_type == "STOP_MARKET"]
        assert len(stops) == 1 and stops[0].result.quantity == pytest.approx(p.quantity)


class TestReconcile:
    """거래소 동기화"""

    def test_external_close_then_idempotent(self, make_manager, gateway, store):
        manager = make_manager()
        manager.open_position("BTCUSDT", buy_signal())
        gateway.positions.clear()

        first = manager.reconcile()
        assert first.closed_externally == ["BTCUSDT"]
        assert store.list_closed()[0].exit_reason == ExitReason.CLOSED_EXTERNALLY.value

        writes = store.write_count
        second = manager.reconcile()
        assert not second.changed
        assert store.write_count == writes

    def test_adopt_unknown_exchange_position(self, make_manager, gateway, store):
        manager = make_manager()
        gateway.positions["ETHUSDT"] = ExchangePosition("ETHUSDT", 2.0, 50.0)

        report = manager.reconcile()
        assert report.adopted == ["ETHUSDT"]
        p = store.get_active("ETHUSDT")
        assert p.adopted and p.strategy_used == "adopted"
        assert p.stop_loss == pytest.approx(49.5)
        assert p.take_profit == pytest.approx(51.0)
        assert p.total_allocation == pytest.approx(2.0 * 50.0 / 10)

        writes = store.write_count
        assert not manager.reconcile().changed
        assert store.write_count == writes

    def test_quantity_resync(self, make_manager, gateway, store):
        manager = make_manager()
        manager.open_position("BTCUSDT", buy_signal())
        gateway.positions["BTCUSDT"].amount = 0.6

        report = manager.reconcile()
        assert report.resized == ["BTCUSDT"]
        assert store.get_active("BTCUSDT").quantity == pytest.approx(0.6)

    def test_direction_mismatch_closes_and_adopts(self, make_manager, gateway, store):
        manager = make_manager()
        manager.open_position("BTCUSDT", buy_signal())
        gateway.positions["BTCUSDT"] = ExchangePosition("BTCUSDT", -1.0, 101.0)

        report = manager.reconcile()
        assert report.closed_externally == ["BTCUSDT"]
        assert report.adopted == ["BTCUSDT"]
        p = store.get_active("BTCUSDT")
        assert p.entries < 0
        assert p.stop_loss == pytest.approx(101.0 * 1.01)

    def test_transient_failure_propagates(self, make_manager, gateway):
        manager = make_manager()
        gateway.fail_on("get_open_positions", ExchangeTransientError("timeout"))
        with pytest.raises(ExchangeTransientError):
            manager.reconcile()

    def test_busy_symbol_deferred(self, make_manager, gateway, store):
        """처리 중인 심볼은 편입/종료하지 않고 다음 틱으로"""
        manager = make_manager()
        manager.open_position("BTCUSDT", buy_signal())
        gateway.positions.clear()
        gateway.positions["ETHUSDT"] = ExchangePosition("ETHUSDT", 2.0, 50.0)

        busy = {"BTCUSDT", "ETHUSDT"}
        report = manager.reconcile(busy=lambda s: s in busy)
        assert sorted(report.deferred) == ["BTCUSDT", "ETHUSDT"]
        assert not report.changed
        assert store.get_active("BTCUSDT") is not None
        assert store.get_active("ETHUSDT") is None

        busy.clear()
        report = manager.reconcile(busy=lambda s: s in busy)
        assert report.closed_externally == ["BTCUSDT"]
        assert report.adopted == ["ETHUSDT"]


class TestConcurrentEntry:
    """병렬 스캔 잡의 동시 진입"""

    def test_cap_holds_across_threads(self, make_manager, gateway, store):
        manager = make_manager(risk=RiskConfig(static_allocation=10.0, leverage=10, max_open_positions=1))
        gateway.delay_on("place_market_order", 0.2)
        signals = {
            "BTCUSDT": buy_signal(),
            "ETHUSDT": buy_signal(price=50.0, stop_loss=48.0, take_profit=55.0),
        }
        results = {}

        def enter(symbol):
            results[symbol] = manager.open_position(symbol, signals[symbol])

        threads = [threading.Thread(target=enter, args=(s,)) for s in signals]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=5.0)

        assert store.count_active() == 1
        assert sum(1 for r in results.values() if r.opened) == 1
        assert not manager.is_opening("BTCUSDT") and not manager.is_opening("ETHUSDT")

    def test_adoption_skipped_while_entry_in_flight(self, make_manager, gateway, store):
        manager = make_manager()
        gateway.positions["BTCUSDT"] = ExchangePosition("BTCUSDT", 1.0, 100.0)
        manager._opening.add("BTCUSDT")

        report = manager.reconcile()
        assert report.deferred == ["BTCUSDT"]
        assert store.get_active("BTCUSDT") is None


class TestStopPersistence:
    """본절 저장 실패 / 재시작 후 거래소 손절 유지"""

    def test_break_even_retried_after_store_failure(self, make_manager, gateway, store, monkeypatch):
        manager = make_manager()
        manager.open_position("BTCUSDT", buy_signal())

        original = store.update
        calls = []

        def flaky_update(position):
            calls.append(position.stop_loss)
            if len(calls) == 1:
                raise RuntimeError("db unavailable")
            return original(position)

        monkeypatch.setattr(store, "update", flaky_update)

        with pytest.raises(RuntimeError):
            tick(manager, gateway, "BTCUSDT", 101.0)
        assert store.get_active("BTCUSDT").stop_loss == pytest.approx(95.0)
        assert not manager.runtime.get("BTCUSDT").break_even_active

        r = tick(manager, gateway, "BTCUSDT", 101.2)
        assert "break_even" in r.events
        assert store.get_active("BTCUSDT").stop_loss == pytest.approx(100.0)
        assert manager.runtime.get("BTCUSDT").break_even_active

    def test_restart_keeps_tighter_exchange_stop(self, make_manager, gateway, store):
        lifecycle = LifecycleConfig(trailing_distance_pct=1.0)
        manager = make_manager(lifecycle=lifecycle)
        manager.open_position("BTCUSDT", buy_signal())
        tick(manager, gateway, "BTCUSDT", 105.0)
        tick(manager, gateway, "BTCUSDT", 107.0)
        assert gateway.get_stop_price("BTCUSDT") == pytest.approx(105.93)

        restarted = make_manager(lifecycle=lifecycle)
        r = tick(restarted, gateway, "BTCUSDT", 106.0)
        assert r.events == ["trailing_activated"]
        assert restarted.runtime.get("BTCUSDT").trailing_level == pytest.approx(104.94)

        stops = [o for o in gateway.open_orders("BTCUSDT") if o.result.order_type == "STOP_MARKET"]
        assert [o.result.price for o in stops] == [pytest.approx(105.93)]
        assert restarted.runtime.get("BTCUSDT").exchange_stop == pytest.approx(105.93)

    def test_restart_moves_stop_once_tighter(self, make_manager, gateway):
        lifecycle = LifecycleConfig(trailing_distance_pct=1.0)
        manager = make_manager(lifecycle=lifecycle)
        manager.open_position("BTCUSDT", buy_signal())
        tick(manager, gateway, "BTCUSDT", 105.0)

        restarted = make_manager(lifecycle=lifecycle)
        tick(restarted, gateway, "BTCUSDT", 105.0)
        r = tick(restarted, gateway, "BTCUSDT", 108.0)
        assert r.events == ["trailing_moved"]
        assert gateway.get_stop_price("BTCUSDT") == pytest.approx(106.92)


class TestNativeTrailing:
    """거래소 자체 트레일링 주문"""

    def test_long_activation_price(self, make_manager, gateway):
        manager = make_manager(settings=ManagerSettings(exchange_native_trailing=True, native_callback_rate=0.8))
        manager.open_position("BTCUSDT", buy_signal())

        trailing = [o for o in gateway.open_orders("BTCUSDT") if o.result.order_type == "TRAILING_STOP_MARKET"]
        assert len(trailing) == 1
        assert trailing[0].result.price == pytest.approx(105.0)   # 100 + (110 - 100) x 50%
        assert trailing[0].result.side == "SELL"
        assert trailing[0].position_side == "LONG"

    def test_short_activation_price(self, make_manager, gateway):
        manager = make_manager(settings=ManagerSettings(exchange_native_trailing=True))
        sell = Signal(SignalType.SELL, 100.0, stop_loss=105.0, take_profit=90.0, strategy_id="momentum")
        manager.open_position("BTCUSDT", sell)

        trailing = [o for o in gateway.open_orders("BTCUSDT") if o.result.order_type == "TRAILING_STOP_MARKET"]
        assert len(trailing) == 1
        assert trailing[0].result.price == pytest.approx(95.0)
        assert trailing[0].result.side == "BUY"

    def test_trailing_order_failure_keeps_position(self, make_manager, gateway, store, notifier):
        manager = make_manager(settings=ManagerSettings(exchange_native_trailing=True))
        gateway.fail_on("place_trailing_stop_order", ExchangeRejectedError("callbackRate out of range"))

        assert manager.open_position("BTCUSDT", buy_signal()).opened
        assert store.get_active("BTCUSDT") is not None
        assert any("trailing stop order" in m for m in notifier.messages)


class TestHedgeLegs:
    """헤지 모드: 같은 심볼의 LONG/SHORT 레그"""

    def test_opposite_leg_does_not_close_local(self, make_manager, gateway, store):
        manager = make_manager()
        manager.open_position("BTCUSDT", buy_signal())
        legs = [
            ExchangePosition("BTCUSDT", 1.0, 100.0),
            ExchangePosition("BTCUSDT", -0.5, 101.0),
        ]

        report = manager.reconcile(legs)
        assert report.closed_externally == []
        assert report.adopted == []
        assert "BTCUSDT" in report.errors
        active = store.get_active("BTCUSDT")
        assert active is not None and active.entries > 0

        writes = store.write_count
        again = manager.reconcile(list(reversed(legs)))
        assert not again.changed
        assert store.write_count == writes

    def test_matching_leg_resized_independently(self, make_manager, gateway, store):
        manager = make_manager()
        manager.open_position("BTCUSDT", buy_signal())

        report = manager.reconcile([
            ExchangePosition("BTCUSDT", -2.0, 101.0),
            ExchangePosition("BTCUSDT", 0.4, 100.0),
        ])
        assert report.resized == ["BTCUSDT"]
        assert store.get_active("BTCUSDT").quantity == pytest.approx(0.4)
