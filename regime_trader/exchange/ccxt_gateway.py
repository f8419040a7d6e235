"""
Binance USD-M Futures Gateway (ccxt)
====================================

ccxt.binanceusdm 래퍼.

- 호출별 타임아웃: ccxt 'timeout' 옵션 (ms)
- 시작 핸드셰이크: load_markets() 실패 시 ExchangeAuthError
- 헤지 모드: positionSide LONG/SHORT
- 심볼: 설정은 거래소 ID('BTCUSDT'), ccxt 호출은 통합 심볼('BTC/USDT:USDT')

에러 매핑:
    ccxt.NetworkError (RequestTimeout, RateLimitExceeded 포함) → ExchangeTransientError
    ccxt.InvalidOrder / InsufficientFunds → ExchangeRejectedError
    ccxt.AuthenticationError → ExchangeAuthError
"""
import functools
import logging
from typing import Dict, List, Optional

import ccxt
import pandas as pd

from regime_trader.exchange.base import (
    ExchangeAuthError,
    ExchangeError,
    ExchangeGateway,
    ExchangePosition,
    ExchangeRejectedError,
    ExchangeTransientError,
    OrderResult,
)

logger = logging.getLogger(__name__)

DEFAULT_MIN_NOTIONAL = 5.0


def _translate_errors(func):
    """ccxt 예외 → 게이트웨이 에러 분류"""
    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except ccxt.NetworkError as e:
            raise ExchangeTransientError(f"{func.__name__}: {e}") from e
        except ccxt.AuthenticationError as e:
            raise ExchangeAuthError(f"{func.__name__}: {e}") from e
        except (ccxt.InvalidOrder, ccxt.InsufficientFunds) as e:
            raise ExchangeRejectedError(f"{func.__name__}: {e}") from e
        except ccxt.BaseError as e:
            raise ExchangeError(f"{func.__name__}: {e}") from e
    return wrapper


def _order_type(order: dict) -> str:
    return str(order.get('info', {}).get('type') or order.get('type') or '').upper()


class CcxtGateway(ExchangeGateway):
    """ccxt 기반 Binance 선물 게이트웨이"""

    def __init__(
        self,
        api_key: Optional[str] = None,
        api_secret: Optional[str] = None,
        timeout_ms: int = 10000,
        testnet: bool = False,
        exchange: Optional[ccxt.Exchange] = None,
    ):
        self._exchange = exchange or ccxt.binanceusdm({
            'apiKey': api_key,
            'secret': api_secret,
            'enableRateLimit': True,
            'timeout': timeout_ms,
        })
        if testnet:
            self._exchange.set_sandbox_mode(True)
        self._ids: Dict[str, str] = {}

    # -------------------------------------------------------------------------
    # Handshake
    # -------------------------------------------------------------------------

    def connect(self) -> None:
        """마켓 로드 (실패 시 치명적)"""
        try:
            markets = self._exchange.load_markets()
        except ccxt.BaseError as e:
            raise ExchangeAuthError(f"Exchange handshake failed: {e}") from e
        self._ids = {m['id']: m['symbol'] for m in markets.values() if m.get('swap')}
        logger.info(f"[Ccxt] Loaded {len(self._ids)} perpetual markets")

    def _unified(self, symbol: str) -> str:
        if not self._ids:
            self.connect()
        try:
            return self._ids[symbol]
        except KeyError:
            raise ExchangeRejectedError(f"Unknown symbol: {symbol}") from None

    def _market_info(self, symbol: str) -> dict:
        return self._exchange.market(self._unified(symbol)).get('info', {})

    # -------------------------------------------------------------------------
    # Market data
    # -------------------------------------------------------------------------

    @_translate_errors
    def get_candles(self, symbol: str, timeframe: str, limit: int = 100) -> pd.DataFrame:
        ohlcv = self._exchange.fetch_ohlcv(self._unified(symbol), timeframe, limit=limit)
        df = pd.DataFrame(ohlcv, columns=['open_time', 'open', 'high', 'low', 'close', 'volume'])
        df['open_time'] = pd.to_datetime(df['open_time'], unit='ms', utc=True)
        df.set_index('open_time', inplace=True)
        return df.astype(float)

    @_translate_errors
    def get_price(self, symbol: str) -> float:
        ticker = self._exchange.fetch_ticker(self._unified(symbol))
        return float(ticker['last'])

    # -------------------------------------------------------------------------
    # Account
    # -------------------------------------------------------------------------

    @_translate_errors
    def get_open_positions(self) -> List[ExchangePosition]:
        if not self._ids:
            self.connect()
        by_unified = {v: k for k, v in self._ids.items()}
        positions = []
        for p in self._exchange.fetch_positions():
            amount = float(p.get('info', {}).get('positionAmt') or 0.0)
            if amount == 0:
                continue
            positions.append(ExchangePosition(
                symbol=by_unified.get(p['symbol'], p.get('info', {}).get('symbol', p['symbol'])),
                amount=amount,
                entry_price=float(p.get('entryPrice') or 0.0),
                mark_price=float(p['markPrice']) if p.get('markPrice') else None,
            ))
        return positions

    @_translate_errors
    def get_balance(self) -> float:
        balance = self._exchange.fetch_balance()
        return float(balance.get('free', {}).get('USDT') or 0.0)

    @_translate_errors
    def set_leverage(self, symbol: str, leverage: int) -> None:
        self._exchange.set_leverage(leverage, self._unified(symbol))

    # -------------------------------------------------------------------------
    # Instrument rules
    # -------------------------------------------------------------------------

    def get_quantity_precision(self, symbol: str) -> int:
        return int(self._market_info(symbol).get('quantityPrecision', 3))

    def get_price_precision(self, symbol: str) -> int:
        return int(self._market_info(symbol).get('pricePrecision', 2))

    def get_min_notional(self, symbol: str) -> float:
        for f in self._market_info(symbol).get('filters', []):
            if f.get('filterType') == 'MIN_NOTIONAL':
                return float(f.get('notional') or f.get('minNotional') or DEFAULT_MIN_NOTIONAL)
        return DEFAULT_MIN_NOTIONAL

    # -------------------------------------------------------------------------
    # Orders
    # -------------------------------------------------------------------------

    def _result(self, order: dict, symbol: str, side: str, quantity: float, price: float, order_type: str) -> OrderResult:
        return OrderResult(
            order_id=str(order.get('id', '')),
            symbol=symbol,
            side=side,
            quantity=float(order.get('filled') or quantity),
            price=float(order.get('average') or price),
            order_type=order_type,
        )

    @_translate_errors
    def place_market_order(
        self, symbol: str, side: str, quantity: float, position_side: str, reduce_only: bool = False
    ) -> OrderResult:
        params = {'positionSide': position_side}
        order = self._exchange.create_order(self._unified(symbol), 'market', side.lower(), quantity, None, params)
        logger.info(f"[Ccxt] MARKET {side} {quantity} {symbol} ({position_side})")
        fallback = float(order.get('price') or 0.0) or self.get_price(symbol)
        return self._result(order, symbol, side, quantity, fallback, 'MARKET')

    def _conditional(self, order_type: str, symbol: str, side: str, quantity: float, stop_price: float,
                     position_side: str) -> OrderResult:
        params = {'positionSide': position_side, 'stopPrice': stop_price, 'workingType': 'MARK_PRICE'}
        order = self._exchange.create_order(self._unified(symbol), order_type, side.lower(), quantity, None, params)
        logger.info(f"[Ccxt] {order_type} {side} {symbol} @ {stop_price}")
        return self._result(order, symbol, side, quantity, stop_price, order_type)

    @_translate_errors
    def place_stop_order(self, symbol: str, side: str, quantity: float, stop_price: float,
                         position_side: str) -> OrderResult:
        return self._conditional('STOP_MARKET', symbol, side, quantity, stop_price, position_side)

    @_translate_errors
    def place_take_profit_order(self, symbol: str, side: str, quantity: float, stop_price: float,
                                position_side: str) -> OrderResult:
        return self._conditional('TAKE_PROFIT_MARKET', symbol, side, quantity, stop_price, position_side)

    @_translate_errors
    def place_trailing_stop_order(
        self,
        symbol: str,
        side: str,
        quantity: float,
        callback_rate: float,
        position_side: str,
        activation_price: Optional[float] = None,
    ) -> OrderResult:
        params = {'positionSide': position_side, 'callbackRate': callback_rate}
        if activation_price is not None:
            params['activationPrice'] = activation_price
        order = self._exchange.create_order(
            self._unified(symbol), 'TRAILING_STOP_MARKET', side.lower(), quantity, None, params
        )
        logger.info(f"[Ccxt] TRAILING_STOP_MARKET {side} {symbol} callback={callback_rate}%")
        return self._result(order, symbol, side, quantity, activation_price or 0.0, 'TRAILING_STOP_MARKET')

    @_translate_errors
    def cancel_open_orders(self, symbol: str, stop_only: bool = False) -> None:
        unified = self._unified(symbol)
        if not stop_only:
            self._exchange.cancel_all_orders(unified)
            return
        for order in self._exchange.fetch_open_orders(unified):
            if _order_type(order) == 'STOP_MARKET':
                self._exchange.cancel_order(order['id'], unified)

    @_translate_errors
    def get_stop_price(self, symbol: str) -> Optional[float]:
        for order in self._exchange.fetch_open_orders(self._unified(symbol)):
            if _order_type(order) == 'STOP_MARKET':
                return float(order.get('stopPrice') or order.get('info', {}).get('stopPrice') or 0.0) or None
        return None
