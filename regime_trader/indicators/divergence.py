"""
RSI Divergence
==============

보유 포지션 청산용 다이버전스 체크 (최근 5개 종가/RSI).

- Bearish (롱 청산): 가격 고점 상승 + RSI 고점 하락
- Bullish (숏 청산): 가격 저점 하락 + RSI 저점 상승

[-1] vs [-3] 비교 (한 캔들 건너뛰어 노이즈 완화).
"""
from dataclasses import dataclass
from typing import Optional, Sequence


@dataclass
class DivergenceResult:
    """다이버전스 결과"""
    kind: str            # 'bearish' | 'bullish'
    price_now: float
    price_ref: float
    rsi_now: float
    rsi_ref: float


def detect_rsi_divergence(closes: Sequence[float], rsi_values: Sequence[float]) -> Optional[DivergenceResult]:
    """
    Args:
        closes: 최근 종가 (오래된 순, 3개 이상)
        rsi_values: 같은 길이의 RSI

    Returns:
        DivergenceResult or None
    """
    if len(closes) < 3 or len(rsi_values) < 3:
        return None

    p_now, p_ref = closes[-1], closes[-3]
    r_now, r_ref = rsi_values[-1], rsi_values[-3]

    if p_now > p_ref and r_now < r_ref:
        return DivergenceResult('bearish', p_now, p_ref, r_now, r_ref)
    if p_now < p_ref and r_now > r_ref:
        return DivergenceResult('bullish', p_now, p_ref, r_now, r_ref)
    return None
