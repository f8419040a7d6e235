"""
Telegram Alerts
===============

운영자 알림 (fire-and-forget). 전송 실패는 로그만, 예외 전파 안함.

- TelegramNotifier: Bot API sendMessage (requests)
- LogNotifier: 토큰 미설정 시 로그로 대체
- AlertService: 이벤트별 메시지 포맷 + WEAK 시그널 버퍼 (5개마다 / 스캔 종료 시 flush)
"""
import logging
import threading
from typing import List, Optional

import requests

logger = logging.getLogger(__name__)


class Notifier:
    def send(self, text: str) -> bool:
        raise NotImplementedError


class TelegramNotifier(Notifier):
    """텔레그램 봇 전송"""

    API_URL = "https://api.telegram.org/bot{token}/sendMessage"

    def __init__(self, token: str, chat_id: str, timeout: float = 10.0, session: Optional[requests.Session] = None):
        self.token = token
        self.chat_id = chat_id
        self.timeout = timeout
        self.session = session or requests.Session()

    def send(self, text: str) -> bool:
        try:
            resp = self.session.post(
                self.API_URL.format(token=self.token),
                json={"chat_id": self.chat_id, "text": text, "parse_mode": "HTML"},
                timeout=self.timeout,
            )
            resp.raise_for_status()
            return True
        except requests.RequestException as e:
            logger.warning(f"[Telegram] send failed: {e}")
            return False


class LogNotifier(Notifier):
    """로그 출력 전용"""

    def send(self, text: str) -> bool:
        logger.info(f"[Alert] {text}")
        return True


class AlertService:
    """이벤트 → 알림 메시지"""

    def __init__(self, notifier: Notifier, weak_batch_size: int = 5):
        self.notifier = notifier
        self.weak_batch_size = weak_batch_size
        self._weak: List[str] = []
        self._lock = threading.Lock()

    def _send(self, text: str) -> None:
        try:
            self.notifier.send(text)
        except Exception:
            logger.exception("[Alert] notifier raised")

    # --- Position events ---

    def position_opened(self, symbol: str, direction: str, price: float, quantity: float,
                        stop_loss: float, take_profit: float, strategy_id: str) -> None:
        self._send(
            f"🟢 <b>{symbol}</b> {direction} opened\n"
            f"Price: {price}\nQty: {quantity}\nSL: {stop_loss}\nTP: {take_profit}\nStrategy: {strategy_id}"
        )

    def position_closed(self, symbol: str, direction: str, exit_price: float, reason: str,
                        pnl_percent: float, pnl_amount: float, hold_minutes: float) -> None:
        icon = "✅" if pnl_percent > 0 else "🔴"
        self._send(
            f"{icon} <b>{symbol}</b> {direction} closed\n"
            f"Exit: {exit_price}\nReason: {reason}\n"
            f"PnL: {pnl_percent:+.2f}% ({pnl_amount:+.2f} USDT)\nHeld: {hold_minutes:.0f}m"
        )

    def trailing_activated(self, symbol: str, level: float) -> None:
        self._send(f"📈 <b>{symbol}</b> trailing stop activated at {level}")

    def stop_updated(self, symbol: str, old: float, new: float, reason: str) -> None:
        self._send(f"🛡 <b>{symbol}</b> stop {old} → {new} ({reason})")

    def scaled_in(self, symbol: str, price: float, step: int, allocation: float) -> None:
        self._send(f"➕ <b>{symbol}</b> scale-in #{step} @ {price} (total {allocation:.2f} USDT)")

    def error(self, context: str, error: BaseException) -> None:
        self._send(f"⚠️ <b>Error</b> {context}: {type(error).__name__}: {error}")

    # --- Weak signals ---

    def weak_signal(self, symbol: str, signal_type: str, strategy_id: str, unmet: List[str]) -> None:
        line = f"{symbol} {signal_type} [{strategy_id}] missing: {', '.join(unmet) or '-'}"
        with self._lock:
            self._weak.append(line)
            full = len(self._weak) >= self.weak_batch_size
        if full:
            self.flush_weak_signals()

    def flush_weak_signals(self) -> int:
        with self._lock:
            lines, self._weak = self._weak, []
        if lines:
            self._send("🔎 Weak signals\n" + "\n".join(lines))
        return len(lines)
