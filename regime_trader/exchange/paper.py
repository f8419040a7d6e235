"""
Paper Gateway
=============

메모리 내 체결 시뮬레이션 (드라이런 + 테스트).

- 시세: market_data 게이트웨이에서 가져오거나 set_price/set_candles로 직접 설정
- 시장가 주문은 현재가로 즉시 체결
- 조건부 주문(SL/TP/트레일링)은 기록만 (체결은 라이프사이클 매니저가 판단)
- 장애 주입: fail_on(), delay_on()
"""
import itertools
import logging
import threading
import time
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

import pandas as pd

from regime_trader.exchange.base import (
    ExchangeGateway,
    ExchangePosition,
    ExchangeRejectedError,
    OrderResult,
)

logger = logging.getLogger(__name__)


@dataclass
class PaperOrder:
    result: OrderResult
    position_side: str
    reduce_only: bool = False
    is_open: bool = True


class PaperGateway(ExchangeGateway):
    """페이퍼 트레이딩 게이트웨이"""

    def __init__(
        self,
        balance: float = 1000.0,
        market_data: Optional[ExchangeGateway] = None,
        quantity_precision: int = 3,
        price_precision: int = 2,
        min_notional: float = 5.0,
    ):
        self.balance = balance
        self.market_data = market_data
        self.quantity_precision = quantity_precision
        self.price_precision = price_precision
        self.min_notional = min_notional
        self.leverage: Dict[str, int] = {}
        self.positions: Dict[str, ExchangePosition] = {}
        self.orders: List[PaperOrder] = []
        self._prices: Dict[str, float] = {}
        self._candles: Dict[Tuple[str, str], pd.DataFrame] = {}
        self._failures: Dict[Tuple[str, Optional[str]], Exception] = {}
        self._delays: Dict[Tuple[str, Optional[str]], float] = {}
        self._ids = itertools.count(1)
        self._lock = threading.Lock()

    # -------------------------------------------------------------------------
    # Test controls
    # -------------------------------------------------------------------------

    def set_price(self, symbol: str, price: float) -> None:
        self._prices[symbol] = price

    def set_candles(self, symbol: str, timeframe: str, candles: pd.DataFrame) -> None:
        self._candles[(symbol, timeframe)] = candles

    def fail_on(self, method: str, error: Exception, symbol: Optional[str] = None) -> None:
        """method 호출 시 error 발생 (symbol=None이면 전체)"""
        self._failures[(method, symbol)] = error

    def delay_on(self, method: str, seconds: float, symbol: Optional[str] = None) -> None:
        self._delays[(method, symbol)] = seconds

    def clear_faults(self) -> None:
        self._failures.clear()
        self._delays.clear()

    def open_orders(self, symbol: str) -> List[PaperOrder]:
        return [o for o in self.orders if o.is_open and o.result.symbol == symbol]

    def _faults(self, method: str, symbol: Optional[str] = None) -> None:
        for key in ((method, symbol), (method, None)):
            delay = self._delays.get(key)
            if delay:
                time.sleep(delay)
                break
        for key in ((method, symbol), (method, None)):
            error = self._failures.get(key)
            if error is not None:
                raise error

    # -------------------------------------------------------------------------
    # Market data
    # -------------------------------------------------------------------------

    def get_candles(self, symbol: str, timeframe: str, limit: int = 100) -> pd.DataFrame:
        self._faults('get_candles', symbol)
        if (symbol, timeframe) in self._candles:
            return self._candles[(symbol, timeframe)].iloc[-limit:]
        if self.market_data is not None:
            return self.market_data.get_candles(symbol, timeframe, limit)
        return pd.DataFrame(columns=['open', 'high', 'low', 'close', 'volume'])

    def get_price(self, symbol: str) -> float:
        self._faults('get_price', symbol)
        if symbol in self._prices:
            return self._prices[symbol]
        if self.market_data is not None:
            return self.market_data.get_price(symbol)
        df = self._candles.get((symbol, '1h'))
        if df is not None and len(df):
            return float(df['close'].iloc[-1])
        raise ExchangeRejectedError(f"No price for {symbol}")

    # -------------------------------------------------------------------------
    # Account
    # -------------------------------------------------------------------------

    def get_open_positions(self) -> List[ExchangePosition]:
        self._faults('get_open_positions')
        with self._lock:
            return [ExchangePosition(p.symbol, p.amount, p.entry_price, p.mark_price)
                    for p in self.positions.values() if p.amount != 0]

    def get_balance(self) -> float:
        return self.balance

    def set_leverage(self, symbol: str, leverage: int) -> None:
        self.leverage[symbol] = leverage

    def get_quantity_precision(self, symbol: str) -> int:
        return self.quantity_precision

    def get_price_precision(self, symbol: str) -> int:
        return self.price_precision

    def get_min_notional(self, symbol: str) -> float:
        return self.min_notional

    # -------------------------------------------------------------------------
    # Orders
    # -------------------------------------------------------------------------

    def _record(self, symbol: str, side: str, quantity: float, price: float, order_type: str,
                position_side: str, reduce_only: bool = False, is_open: bool = True) -> OrderResult:
        result = OrderResult(str(next(self._ids)), symbol, side, quantity, price, order_type)
        self.orders.append(PaperOrder(result, position_side, reduce_only, is_open))
        return result

    def place_market_order(
        self, symbol: str, side: str, quantity: float, position_side: str, reduce_only: bool = False
    ) -> OrderResult:
        self._faults('place_market_order', symbol)
        if quantity <= 0:
            raise ExchangeRejectedError(f"Invalid quantity {quantity}")
        price = self.get_price(symbol)
        signed = quantity if side == 'BUY' else -quantity

        with self._lock:
            current = self.positions.get(symbol)
            if current is None or current.amount == 0:
                self.positions[symbol] = ExchangePosition(symbol, signed, price)
            else:
                new_amount = current.amount + signed
                if reduce_only or (current.amount > 0) != (signed > 0):
                    if abs(new_amount) < 1e-12:
                        del self.positions[symbol]
                    else:
                        current.amount = new_amount
                else:
                    total = abs(current.amount) + quantity
                    current.entry_price = (current.entry_price * abs(current.amount) + price * quantity) / total
                    current.amount = new_amount

        logger.info(f"[Paper] MARKET {side} {quantity} {symbol} @ {price}")
        return self._record(symbol, side, quantity, price, 'MARKET', position_side, reduce_only, is_open=False)

    def place_stop_order(self, symbol: str, side: str, quantity: float, stop_price: float,
                         position_side: str) -> OrderResult:
        self._faults('place_stop_order', symbol)
        return self._record(symbol, side, quantity, stop_price, 'STOP_MARKET', position_side)

    def place_take_profit_order(self, symbol: str, side: str, quantity: float, stop_price: float,
                                position_side: str) -> OrderResult:
        self._faults('place_take_profit_order', symbol)
        return self._record(symbol, side, quantity, stop_price, 'TAKE_PROFIT_MARKET', position_side)

    def place_trailing_stop_order(
        self,
        symbol: str,
        side: str,
        quantity: float,
        callback_rate: float,
        position_side: str,
        activation_price: Optional[float] = None,
    ) -> OrderResult:
        self._faults('place_trailing_stop_order', symbol)
        return self._record(symbol, side, quantity, activation_price or 0.0, 'TRAILING_STOP_MARKET', position_side)

    def cancel_open_orders(self, symbol: str, stop_only: bool = False) -> None:
        self._faults('cancel_open_orders', symbol)
        for order in self.open_orders(symbol):
            if stop_only and order.result.order_type != 'STOP_MARKET':
                continue
            order.is_open = False

    def get_stop_price(self, symbol: str) -> Optional[float]:
        self._faults('get_stop_price', symbol)
        stops = [o.result.price for o in self.open_orders(symbol) if o.result.order_type == 'STOP_MARKET']
        return stops[-1] if stops else None
