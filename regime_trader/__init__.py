"""
Regime Trader - Adaptive Futures Decision Engine
================================================

Core Components:
- indicators/: 멀티 타임프레임 지표 번들 (BB, RSI, MACD, ADX, ATR, Stoch)
- regime/: 레짐 분류 + 전략 가중치 + 전략 선택
- strategies/: 시그널 생성 전략 (bollinger, momentum, trend_follow, turtle)
- position/: 포지션 라이프사이클 (청산/본절/트레일링/스케일인)
- risk/: 포지션 사이징, 동시 포지션 한도, 정밀도
- exchange/: 거래소 게이트웨이 (ccxt, paper)
- db/: 포지션 저장소 (MSSQL, in-memory)
- notify/: 텔레그램 알림
- engine/: 스캐너 + 스케줄러 + 서비스 조립
"""

__version__ = "0.1.0"
