# -*- coding: utf-8 -*-
"""
Risk Manager - Allocation & Position Limits
===========================================

리스크 관리 모듈.

핵심 기능:
1. Concurrent Position Limit - 동시 포지션 수 (기본 10)
2. Allocation - 고정 증거금 or 잔고 × risk_per_trade
3. Order Sizing - 수량 = 증거금 × 레버리지 / 가격, 정밀도 내림
4. Min Notional - 최소 주문 금액 미달 시 로컬 거부 (거래소 제출 안함)

사용법:
```python
from regime_trader.risk.manager import RiskManager, RiskConfig

manager = RiskManager(RiskConfig(static_allocation=20.0, leverage=10))

ok, reason = manager.can_open_position(active_count=3)
if not ok:
    print(f"Blocked: {reason}")

allocation = manager.allocation(balance=1000.0, hint=1.0)
size = manager.size_order(price=95000, allocation=allocation, leverage=10,
                          quantity_precision=3, min_notional=5.0)
print(size.quantity, size.notional)
```
"""
import logging
from dataclasses import dataclass
from typing import Tuple

from regime_trader.exchange.base import ExchangeRejectedError
from regime_trader.exchange.precision import round_quantity

logger = logging.getLogger(__name__)


class InvariantViolation(ValueError):
    """계산 결과가 불변식 위반 (음수 수량 등)"""


@dataclass
class RiskConfig:
    """리스크 설정"""
    calculate_position_size: bool = False  # True면 잔고 × risk_per_trade
    static_allocation: float = 10.0        # 고정 증거금 USDT
    risk_per_trade: float = 0.02           # 잔고 대비 비율
    leverage: int = 10
    max_open_positions: int = 10
    min_notional: float = 5.0              # USDT


@dataclass
class OrderSize:
    quantity: float
    notional: float
    allocation: float


class RiskManager:
    """리스크 관리자"""

    def __init__(self, config: RiskConfig = None):
        self.config = config or RiskConfig()

    def can_open_position(self, active_count: int) -> Tuple[bool, str]:
        """
        신규 진입 가능 여부

        Returns:
            (allowed, reason)
        """
        if active_count >= self.config.max_open_positions:
            return False, f"Max open positions ({self.config.max_open_positions}) reached"
        return True, ""

    def allocation(self, balance: float, hint: float = 1.0) -> float:
        """
        진입 증거금 (USDT)

        Args:
            balance: 가용 잔고
            hint: 전략 할당 배수
        """
        if self.config.calculate_position_size:
            base = balance * self.config.risk_per_trade
        else:
            base = self.config.static_allocation
        return base * max(hint, 0.0)

    def size_order(
        self,
        price: float,
        allocation: float,
        leverage: int,
        quantity_precision: int,
        min_notional: float = None,
    ) -> OrderSize:
        """
        주문 수량 계산

        Raises:
            InvariantViolation: 가격/증거금/레버리지 <= 0
            ExchangeRejectedError: 최소 notional 미달
        """
        if price <= 0 or allocation <= 0 or leverage <= 0:
            raise InvariantViolation(
                f"Invalid sizing input: price={price}, allocation={allocation}, leverage={leverage}"
            )

        quantity = round_quantity(allocation * leverage / price, quantity_precision)
        notional = quantity * price
        floor = self.config.min_notional if min_notional is None else max(min_notional, self.config.min_notional)

        if quantity <= 0 or notional < floor:
            raise ExchangeRejectedError(
                f"Order notional {notional:.4f} USDT below minimum {floor} USDT"
            )
        return OrderSize(quantity=quantity, notional=notional, allocation=allocation)

    def format_status(self, active_count: int, balance: float) -> str:
        """상태 포맷팅"""
        mode = "risk-based" if self.config.calculate_position_size else "static"
        lines = [
            "=" * 50,
            "Risk Manager Status",
            "=" * 50,
            f"Balance: ${balance:,.2f}",
            f"Open Positions: {active_count}/{self.config.max_open_positions}",
            f"Allocation: {mode} (${self.allocation(balance):,.2f} x{self.config.leverage})",
            "=" * 50,
        ]
        return "\n".join(lines)
