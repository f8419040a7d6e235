"""
Exchange Gateway Interface
==========================

캔들 조회 + 주문 실행 추상화.

에러 분류:
- ExchangeTransientError: 네트워크/타임아웃/레이트리밋 → 이번 틱 스킵, 다음 틱 재시도
- ExchangeRejectedError: 잘못된 주문/최소 notional 미달/증거금 부족 → 로그 + 알림, 재시도 안함
- ExchangeAuthError: 시작 시 인증 실패 → 치명적
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import List, Optional

import pandas as pd


class ExchangeError(Exception):
    """거래소 에러 베이스"""


class ExchangeTransientError(ExchangeError):
    """일시적 에러 (재시도 가능)"""


class ExchangeRejectedError(ExchangeError):
    """주문 거부 (재시도 안함)"""


class ExchangeAuthError(ExchangeError):
    """인증/핸드셰이크 실패"""


@dataclass
class ExchangePosition:
    """거래소 보고 포지션"""
    symbol: str
    amount: float        # 부호 있음 (+ LONG, - SHORT)
    entry_price: float
    mark_price: Optional[float] = None


@dataclass
class OrderResult:
    order_id: str
    symbol: str
    side: str
    quantity: float
    price: float         # 평균 체결가 (조건부 주문은 트리거가)
    order_type: str = "MARKET"


class ExchangeGateway(ABC):
    """거래소 협력자"""

    # --- Market data ---
    @abstractmethod
    def get_candles(self, symbol: str, timeframe: str, limit: int = 100) -> pd.DataFrame:
        """OHLCV DataFrame (오래된 순, index=open_time)"""

    @abstractmethod
    def get_price(self, symbol: str) -> float:
        """현재가"""

    # --- Account ---
    @abstractmethod
    def get_open_positions(self) -> List[ExchangePosition]:
        """수량 != 0 포지션"""

    @abstractmethod
    def get_balance(self) -> float:
        """가용 USDT"""

    @abstractmethod
    def set_leverage(self, symbol: str, leverage: int) -> None:
        ...

    # --- Instrument rules ---
    @abstractmethod
    def get_quantity_precision(self, symbol: str) -> int:
        ...

    @abstractmethod
    def get_price_precision(self, symbol: str) -> int:
        ...

    @abstractmethod
    def get_min_notional(self, symbol: str) -> float:
        ...

    # --- Orders ---
    @abstractmethod
    def place_market_order(
        self, symbol: str, side: str, quantity: float, position_side: str, reduce_only: bool = False
    ) -> OrderResult:
        ...

    @abstractmethod
    def place_stop_order(
        self, symbol: str, side: str, quantity: float, stop_price: float, position_side: str
    ) -> OrderResult:
        ...

    @abstractmethod
    def place_take_profit_order(
        self, symbol: str, side: str, quantity: float, stop_price: float, position_side: str
    ) -> OrderResult:
        ...

    @abstractmethod
    def place_trailing_stop_order(
        self,
        symbol: str,
        side: str,
        quantity: float,
        callback_rate: float,
        position_side: str,
        activation_price: Optional[float] = None,
    ) -> OrderResult:
        ...

    @abstractmethod
    def cancel_open_orders(self, symbol: str, stop_only: bool = False) -> None:
        """미체결 주문 취소 (stop_only=True면 손절 주문만)"""

    @abstractmethod
    def get_stop_price(self, symbol: str) -> Optional[float]:
        """걸려 있는 손절(STOP_MARKET) 주문 가격, 없으면 None"""
