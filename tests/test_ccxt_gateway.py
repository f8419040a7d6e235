# -*- coding: utf-8 -*-
"""
CcxtGateway 테스트 (가짜 ccxt 거래소 객체)

- ccxt 예외 → 게이트웨이 에러 분류 (일시 장애 / 거부 / 인증)
- 거래소 ID ↔ 통합 심볼 매핑
- MIN_NOTIONAL / precision 파싱
- 손절 주문만 취소, 조건부 주문 파라미터
"""
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from typing import Dict, List

import ccxt
import pytest

from regime_trader.exchange.base import (
    ExchangeAuthError,
    ExchangeError,
    ExchangeRejectedError,
    ExchangeTransientError,
)
from regime_trader.exchange.ccxt_gateway import DEFAULT_MIN_NOTIONAL, CcxtGateway

BTC = "BTC/USDT:USDT"
ETH = "ETH/USDT:USDT"


class FakeExchange:
    """binanceusdm 에서 게이트웨이가 쓰는 메서드만"""

    def __init__(self):
        self.markets = {
            BTC: {
                'id': 'BTCUSDT', 'symbol': BTC, 'swap': True,
                'info': {
                    'quantityPrecision': 3,
                    'pricePrecision': 1,
                    'filters': [
                        {'filterType': 'PRICE_FILTER', 'tickSize': '0.10'},
                        {'filterType': 'MIN_NOTIONAL', 'notional': '100'},
                    ],
                },
            },
            ETH: {'id': 'ETHUSDT', 'symbol': ETH, 'swap': True, 'info': {}},
            'BTC/USDT': {'id': 'BTCUSDT_SPOT', 'symbol': 'BTC/USDT', 'swap': False, 'info': {}},
        }
        self.open_orders: List[dict] = []
        self.positions: List[dict] = []
        self.created: List[tuple] = []
        self.cancelled: List[str] = []
        self.cancel_all_calls: List[str] = []
        self.failures: Dict[str, Exception] = {}

    def _maybe_fail(self, method: str) -> None:
        error = self.failures.get(method)
        if error is not None:
            raise error

    def load_markets(self):
        self._maybe_fail('load_markets')
        return self.markets

    def market(self, symbol):
        return self.markets[symbol]

    def fetch_ohlcv(self, symbol, timeframe, limit=None):
        self._maybe_fail('fetch_ohlcv')
        return [
            [1700000000000, 100.0, 101.0, 99.0, 100.5, 10.0],
            [1700003600000, 100.5, 102.0, 100.0, 101.5, 12.0],
        ]

    def fetch_ticker(self, symbol):
        self._maybe_fail('fetch_ticker')
        return {'symbol': symbol, 'last': 100.0 if symbol == BTC else 50.0}

    def fetch_positions(self):
        self._maybe_fail('fetch_positions')
        return self.positions

    def fetch_balance(self):
        return {'free': {'USDT': 250.0}}

    def set_leverage(self, leverage, symbol):
        self._maybe_fail('set_leverage')

    def create_order(self, symbol, order_type, side, amount, price=None, params=None):
        self._maybe_fail('create_order')
        self.created.append((symbol, order_type, side, amount, dict(params or {})))
        if order_type == 'market':
            return {'id': str(len(self.created)), 'filled': amount, 'average': 100.2}
        return {'id': str(len(self.created))}

    def fetch_open_orders(self, symbol):
        return [o for o in self.open_orders if o['symbol'] == symbol]

    def cancel_order(self, order_id, symbol):
        self.cancelled.append(order_id)

    def cancel_all_orders(self, symbol):
        self.cancel_all_calls.append(symbol)


@pytest.fixture
def exchange():
    return FakeExchange()


@pytest.fixture
def gateway(exchange):
    gw = CcxtGateway(exchange=exchange)
    gw.connect()
    return gw


class TestHandshake:
    def test_connect_maps_perpetual_ids(self, gateway):
        assert gateway.get_price("BTCUSDT") == 100.0
        assert gateway.get_price("ETHUSDT") == 50.0

    def test_spot_market_not_mapped(self, gateway):
        with pytest.raises(ExchangeRejectedError):
            gateway.get_price("BTCUSDT_SPOT")

    def test_unknown_symbol_rejected(self, gateway):
        with pytest.raises(ExchangeRejectedError):
            gateway.get_price("DOGEUSDT")

    def test_handshake_failure_is_auth_error(self, exchange):
        exchange.failures['load_markets'] = ccxt.NetworkError("connection refused")
        with pytest.raises(ExchangeAuthError):
            CcxtGateway(exchange=exchange).connect()

    def test_lazy_connect(self, exchange):
        gw = CcxtGateway(exchange=exchange)
        assert gw.get_price("BTCUSDT") == 100.0


class TestErrorMapping:
    """ccxt 예외 분류: 다음 틱 재시도 vs 포기 vs 치명적"""

    @pytest.mark.parametrize("error, expected", [
        (ccxt.NetworkError("reset"), ExchangeTransientError),
        (ccxt.RequestTimeout("timed out"), ExchangeTransientError),
        (ccxt.RateLimitExceeded("429"), ExchangeTransientError),
        (ccxt.InvalidOrder("bad precision"), ExchangeRejectedError),
        (ccxt.InsufficientFunds("margin"), ExchangeRejectedError),
        (ccxt.AuthenticationError("invalid key"), ExchangeAuthError),
        (ccxt.ExchangeError("unknown"), ExchangeError),
    ])
    def test_create_order_errors(self, exchange, gateway, error, expected):
        exchange.failures['create_order'] = error
        with pytest.raises(ExchangeError) as info:
            gateway.place_market_order("BTCUSDT", "BUY", 0.01, "LONG")
        assert type(info.value) is expected
        assert info.value.__cause__ is error

    def test_candle_timeout_is_transient(self, exchange, gateway):
        exchange.failures['fetch_ohlcv'] = ccxt.RequestTimeout("timed out")
        with pytest.raises(ExchangeTransientError):
            gateway.get_candles("BTCUSDT", "1h")

    def test_positions_rate_limit_is_transient(self, exchange, gateway):
        exchange.failures['fetch_positions'] = ccxt.RateLimitExceeded("429")
        with pytest.raises(ExchangeTransientError):
            gateway.get_open_positions()


class TestInstrumentRules:
    def test_min_notional_filter(self, gateway):
        assert gateway.get_min_notional("BTCUSDT") == 100.0

    def test_min_notional_default(self, gateway):
        assert gateway.get_min_notional("ETHUSDT") == DEFAULT_MIN_NOTIONAL

    def test_precision(self, gateway):
        assert gateway.get_quantity_precision("BTCUSDT") == 3
        assert gateway.get_price_precision("BTCUSDT") == 1
        assert gateway.get_quantity_precision("ETHUSDT") == 3
        assert gateway.get_price_precision("ETHUSDT") == 2


class TestAccount:
    def test_open_positions_use_exchange_ids(self, exchange, gateway):
        exchange.positions = [
            {'symbol': BTC, 'entryPrice': 100.0, 'markPrice': 101.0,
             'info': {'positionAmt': '-0.5', 'symbol': 'BTCUSDT'}},
            {'symbol': ETH, 'entryPrice': 0.0, 'info': {'positionAmt': '0'}},
        ]
        positions = gateway.get_open_positions()
        assert len(positions) == 1
        p = positions[0]
        assert p.symbol == "BTCUSDT"
        assert p.amount == -0.5
        assert p.entry_price == 100.0
        assert p.mark_price == 101.0

    def test_balance(self, gateway):
        assert gateway.get_balance() == 250.0

    def test_candles_frame(self, gateway):
        df = gateway.get_candles("BTCUSDT", "1h", limit=2)
        assert list(df.columns) == ['open', 'high', 'low', 'close', 'volume']
        assert df['close'].iloc[-1] == 101.5
        assert str(df.index.tz) == "UTC"


class TestOrders:
    def test_market_order_fill(self, exchange, gateway):
        result = gateway.place_market_order("BTCUSDT", "BUY", 0.01, "LONG")
        symbol, order_type, side, amount, params = exchange.created[-1]
        assert (symbol, order_type, side, amount) == (BTC, 'market', 'buy', 0.01)
        assert params == {'positionSide': 'LONG'}
        assert result.price == 100.2
        assert result.quantity == 0.01

    def test_stop_order_params(self, exchange, gateway):
        result = gateway.place_stop_order("BTCUSDT", "SELL", 0.01, 95.0, "LONG")
        symbol, order_type, side, _, params = exchange.created[-1]
        assert (symbol, order_type, side) == (BTC, 'STOP_MARKET', 'sell')
        assert params == {'positionSide': 'LONG', 'stopPrice': 95.0, 'workingType': 'MARK_PRICE'}
        assert result.order_type == 'STOP_MARKET'
        assert result.price == 95.0

    def test_trailing_order_params(self, exchange, gateway):
        gateway.place_trailing_stop_order("BTCUSDT", "SELL", 0.01, 0.5, "LONG", activation_price=105.0)
        _, order_type, _, _, params = exchange.created[-1]
        assert order_type == 'TRAILING_STOP_MARKET'
        assert params == {'positionSide': 'LONG', 'callbackRate': 0.5, 'activationPrice': 105.0}

    def test_cancel_stop_only(self, exchange, gateway):
        exchange.open_orders = [
            {'id': '11', 'symbol': BTC, 'type': 'stop_market', 'stopPrice': 95.0,
             'info': {'type': 'STOP_MARKET'}},
            {'id': '12', 'symbol': BTC, 'type': 'take_profit_market', 'stopPrice': 110.0,
             'info': {'type': 'TAKE_PROFIT_MARKET'}},
            {'id': '13', 'symbol': ETH, 'type': 'stop_market', 'info': {'type': 'STOP_MARKET'}},
        ]
        gateway.cancel_open_orders("BTCUSDT", stop_only=True)
        assert exchange.cancelled == ['11']
        assert exchange.cancel_all_calls == []

    def test_cancel_all(self, exchange, gateway):
        gateway.cancel_open_orders("ETHUSDT")
        assert exchange.cancel_all_calls == [ETH]

    def test_stop_price_lookup(self, exchange, gateway):
        assert gateway.get_stop_price("BTCUSDT") is None
        exchange.open_orders = [
            {'id': '12', 'symbol': BTC, 'type': 'take_profit_market', 'stopPrice': 110.0,
             'info': {'type': 'TAKE_PROFIT_MARKET'}},
            {'id': '11', 'symbol': BTC, 'type': 'stop_market', 'stopPrice': 103.9,
             'info': {'type': 'STOP_MARKET'}},
        ]
        assert gateway.get_stop_price("BTCUSDT") == 103.9
