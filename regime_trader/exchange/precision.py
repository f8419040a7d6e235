"""수량/가격 정밀도 반올림"""
import math


def round_quantity(quantity: float, precision: int) -> float:
    """수량은 내림 (초과 주문 방지)"""
    factor = 10 ** precision
    return math.floor(quantity * factor + 1e-9) / factor


def round_price(price: float, precision: int) -> float:
    return round(price, precision)
