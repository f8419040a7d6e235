# -*- coding: utf-8 -*-
"""
Tick Scheduler
==============

두 개의 독립 주기 트리거 (스캔 / 관리) + 심볼별 직렬화.

핵심 원칙:
1. SymbolGuard: 심볼 키 in-flight 추적, 바쁘면 스킵 (스캔/관리 공유)
2. 심볼 잡 타임아웃: 시작 후 symbol_timeout_sec 초과 시 SKIPPED (잡이 실제로 끝날 때까지 키 유지)
3. 심볼 하나의 실패가 틱/다른 심볼을 멈추지 않음
4. request_stop(): 진행 중 잡 완료 후 루프 종료 (틱 경계 취소)

결과:
    DONE     - 정상 처리
    SKIPPED  - busy / timeout / 일시 장애 → 다음 틱 재시도
    FAILED   - 주문 거부 / 예외 → 로그 + 알림
"""
import logging
import threading
import time
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Optional, Set

from regime_trader.config.loader import SchedulerParams
from regime_trader.exchange.base import ExchangeTransientError
from regime_trader.notify.telegram import AlertService

logger = logging.getLogger(__name__)


class SymbolOutcome(Enum):
    DONE = "done"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass
class SymbolResult:
    symbol: str
    outcome: SymbolOutcome
    detail: str = ""


@dataclass
class TickReport:
    kind: str
    results: List[SymbolResult] = field(default_factory=list)
    duration_sec: float = 0.0

    def by_symbol(self) -> Dict[str, SymbolResult]:
        return {r.symbol: r for r in self.results}

    def count(self, outcome: SymbolOutcome) -> int:
        return sum(1 for r in self.results if r.outcome is outcome)

    def summary(self) -> str:
        return (
            f"{self.kind}: done={self.count(SymbolOutcome.DONE)} "
            f"skipped={self.count(SymbolOutcome.SKIPPED)} failed={self.count(SymbolOutcome.FAILED)} "
            f"({self.duration_sec:.2f}s)"
        )


class SymbolGuard:
    """심볼별 in-flight 키"""

    def __init__(self):
        self._busy: Set[str] = set()
        self._lock = threading.Lock()

    def acquire(self, symbol: str) -> bool:
        with self._lock:
            if symbol in self._busy:
                return False
            self._busy.add(symbol)
            return True

    def release(self, symbol: str) -> None:
        with self._lock:
            self._busy.discard(symbol)

    def is_busy(self, symbol: str) -> bool:
        with self._lock:
            return symbol in self._busy


SymbolJob = Callable[[str], object]


class TickScheduler:
    """스캔 / 관리 틱 스케줄러"""

    def __init__(
        self,
        symbols: Callable[[], List[str]],
        scan_job: SymbolJob,
        manage_job: SymbolJob,
        params: Optional[SchedulerParams] = None,
        manage_symbols: Optional[Callable[[], List[str]]] = None,
        before_manage: Optional[Callable[[], object]] = None,
        after_scan: Optional[Callable[[], object]] = None,
        alerts: Optional[AlertService] = None,
        guard: Optional[SymbolGuard] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.symbols = symbols
        self.scan_job = scan_job
        self.manage_job = manage_job
        self.params = params or SchedulerParams()
        self.manage_symbols = manage_symbols or symbols
        self.before_manage = before_manage
        self.after_scan = after_scan
        self.alerts = alerts
        self.clock = clock
        self.guard = guard or SymbolGuard()
        self.stop_event = threading.Event()
        self._executor = ThreadPoolExecutor(max_workers=self.params.max_workers, thread_name_prefix="symbol")

    # -------------------------------------------------------------------------
    # Tick
    # -------------------------------------------------------------------------

    def _run_job(self, kind: str, job: SymbolJob, symbol: str, started: Dict[str, float]) -> SymbolResult:
        started[symbol] = self.clock()
        try:
            detail = job(symbol)
            return SymbolResult(symbol, SymbolOutcome.DONE, str(detail or ""))
        except ExchangeTransientError as e:
            logger.warning(f"[{kind}] {symbol} skipped (transient): {e}")
            return SymbolResult(symbol, SymbolOutcome.SKIPPED, f"transient: {e}")
        except Exception as e:
            logger.exception(f"[{kind}] {symbol} failed")
            if self.alerts is not None:
                self.alerts.error(f"{kind} {symbol}", e)
            return SymbolResult(symbol, SymbolOutcome.FAILED, f"{type(e).__name__}: {e}")
        finally:
            self.guard.release(symbol)

    def run_tick(self, kind: str, job: SymbolJob, symbols: List[str]) -> TickReport:
        """
        심볼 fan-out 후 결과 수집

        Returns:
            TickReport (입력 심볼마다 결과 1개)
        """
        t0 = self.clock()
        timeout = self.params.symbol_timeout_sec
        results: Dict[str, SymbolResult] = {}
        started: Dict[str, float] = {}
        pending: Dict[Future, str] = {}

        for symbol in symbols:
            if not self.guard.acquire(symbol):
                logger.info(f"[{kind}] {symbol} skipped (busy)")
                results[symbol] = SymbolResult(symbol, SymbolOutcome.SKIPPED, "busy")
                continue
            pending[self._executor.submit(self._run_job, kind, job, symbol, started)] = symbol

        poll = min(0.1, timeout) if timeout > 0 else 0.1
        while pending:
            done, _ = wait(list(pending), timeout=poll, return_when=FIRST_COMPLETED)
            for future in done:
                symbol = pending.pop(future)
                results[symbol] = future.result()
            now = self.clock()
            for future, symbol in list(pending.items()):
                began = started.get(symbol)
                if began is not None and now - began > timeout:
                    logger.warning(f"[{kind}] {symbol} timed out after {timeout}s; skipped this tick")
                    results[symbol] = SymbolResult(symbol, SymbolOutcome.SKIPPED, "timeout")
                    del pending[future]
                elif began is None and now - t0 > timeout * len(symbols) and future.cancel():
                    # 워커가 전부 묶여 시작조차 못한 잡
                    self.guard.release(symbol)
                    logger.warning(f"[{kind}] {symbol} never started; skipped this tick")
                    results[symbol] = SymbolResult(symbol, SymbolOutcome.SKIPPED, "timeout")
                    del pending[future]

        report = TickReport(
            kind=kind,
            results=[results[s] for s in symbols if s in results],
            duration_sec=self.clock() - t0,
        )
        logger.info(f"[Scheduler] {report.summary()}")
        return report

    def run_scan_tick(self) -> TickReport:
        report = self.run_tick("scan", self.scan_job, list(self.symbols()))
        if self.after_scan is not None:
            try:
                self.after_scan()
            except Exception:
                logger.exception("[Scheduler] after_scan hook failed")
        return report

    def run_manage_tick(self) -> TickReport:
        if self.before_manage is not None:
            try:
                self.before_manage()
            except ExchangeTransientError as e:
                logger.warning(f"[Scheduler] reconcile skipped (transient): {e}; manage tick skipped")
                return TickReport(kind="manage")
            except Exception as e:
                logger.exception("[Scheduler] reconcile failed; manage tick skipped")
                if self.alerts is not None:
                    self.alerts.error("reconcile", e)
                return TickReport(kind="manage")
        return self.run_tick("manage", self.manage_job, list(self.manage_symbols()))

    # -------------------------------------------------------------------------
    # Loop
    # -------------------------------------------------------------------------

    def run_forever(self) -> None:
        """stop 요청까지 두 트리거 실행"""
        logger.info(
            f"[Scheduler] start: scan every {self.params.scan_interval_sec}s, "
            f"manage every {self.params.manage_interval_sec}s"
        )
        next_manage = next_scan = self.clock()
        try:
            while not self.stop_event.is_set():
                now = self.clock()
                if now >= next_manage:
                    self.run_manage_tick()
                    next_manage = now + self.params.manage_interval_sec
                if self.stop_event.is_set():
                    break
                if now >= next_scan:
                    self.run_scan_tick()
                    next_scan = now + self.params.scan_interval_sec
                delay = max(0.0, min(next_manage, next_scan) - self.clock())
                self.stop_event.wait(delay)
        finally:
            self.close()
            logger.info("[Scheduler] stopped")

    def request_stop(self, *_args) -> None:
        """graceful stop (시그널 핸들러 호환)"""
        logger.info("[Scheduler] stop requested; finishing in-flight work")
        self.stop_event.set()

    def close(self) -> None:
        self._executor.shutdown(wait=True)
