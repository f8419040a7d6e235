"""
Timeframe Helpers
=================

캔들 주기 문자열('5m', '1h', '1d') 검증/정렬.

    TimeframeSpec.from_string("4h").minutes          # 240
    parse_timeframes(["4h", "15m", "1h"])            # ['15m', '1h', '4h']
    longest_timeframes(["5m", "15m", "1h", "4h"])    # ['1h', '4h']
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Sequence

_UNIT_MINUTES = {'m': 1, 'h': 60, 'd': 1440, 'w': 10080}

# 거래소(Binance USDⓈ-M)가 제공하는 주기만 허용
SUPPORTED = ('1m', '3m', '5m', '15m', '30m', '1h', '2h', '4h', '6h', '12h', '1d', '1w')

TIMEFRAME_MINUTES: Dict[str, int] = {
    tf: int(tf[:-1]) * _UNIT_MINUTES[tf[-1]] for tf in SUPPORTED
}


@dataclass(frozen=True)
class TimeframeSpec:
    name: str
    minutes: int

    @classmethod
    def from_string(cls, tf: str) -> TimeframeSpec:
        """
        Raises:
            ValueError: 지원하지 않는 주기
        """
        key = tf.strip().lower()
        minutes = TIMEFRAME_MINUTES.get(key)
        if minutes is None:
            raise ValueError(f"Unknown timeframe: '{tf}' (supported: {', '.join(SUPPORTED)})")
        return cls(key, minutes)

    @property
    def bars_per_day(self) -> float:
        return 1440 / self.minutes

    def __str__(self) -> str:
        return self.name


def parse_timeframes(names: Sequence[str]) -> List[str]:
    """검증 + 짧은 순 정렬 (중복 제거)"""
    specs = {spec.name: spec for spec in map(TimeframeSpec.from_string, names)}
    return [s.name for s in sorted(specs.values(), key=lambda s: s.minutes)]


def longest_timeframes(names: Sequence[str], n: int = 2) -> List[str]:
    """가장 긴 n개 (짧은 순)"""
    if n <= 0:
        return []
    return parse_timeframes(names)[-n:]
