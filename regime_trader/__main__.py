"""
Regime Trader CLI
=================

사용법:
    python -m regime_trader run              # 스케줄러 실행 (Ctrl+C로 graceful stop)
    python -m regime_trader scan-once        # 스캔 틱 1회
    python -m regime_trader manage-once      # 리컨실 + 관리 틱 1회
    python -m regime_trader status           # 포지션 / 전략 성과
    python -m regime_trader close BTCUSDT    # 수동 청산
    python -m regime_trader run --dry-run    # 페이퍼 체결
"""
import argparse
import logging
import os
import signal
import sys
from pathlib import Path

from regime_trader.config.loader import CONFIG_DIR, load_config
from regime_trader.engine.service import build_service
from regime_trader.exchange.base import ExchangeAuthError

logger = logging.getLogger("regime_trader")


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="regime_trader", description="Adaptive futures decision engine")
    parser.add_argument("command", choices=["run", "scan-once", "manage-once", "status", "close"])
    parser.add_argument("symbol", nargs="?", help="close 대상 심볼")
    parser.add_argument("--config-dir", type=Path, default=CONFIG_DIR)
    parser.add_argument("--log-level", default=None)
    parser.add_argument("--dry-run", action="store_true")
    return parser.parse_args(argv)


def main(argv=None) -> int:
    args = parse_args(argv)
    if args.dry_run:
        os.environ["TRADING_DRY_RUN"] = "true"

    config = load_config(args.config_dir)
    logging.basicConfig(
        level=(args.log_level or config.log_level).upper(),
        format="%(asctime)s %(levelname)-7s %(name)s: %(message)s",
    )
    logging.getLogger("ccxt").setLevel(logging.WARNING)

    try:
        service = build_service(config)
    except (ExchangeAuthError, RuntimeError) as e:
        logger.critical(f"Startup failed: {e}")
        return 1

    if args.command == "status":
        print(service.status())
        return 0
    if args.command == "close":
        if not args.symbol:
            logger.error("close requires a SYMBOL")
            return 2
        print(service.close_symbol(args.symbol.upper()))
        service.scheduler.close()
        return 0
    if args.command == "scan-once":
        print(service.scheduler.run_scan_tick().summary())
        service.scheduler.close()
        return 0
    if args.command == "manage-once":
        print(service.scheduler.run_manage_tick().summary())
        service.scheduler.close()
        return 0

    signal.signal(signal.SIGINT, service.scheduler.request_stop)
    signal.signal(signal.SIGTERM, service.scheduler.request_stop)
    logger.info(f"Starting: symbols={config.symbols} dry_run={config.dry_run}")
    service.scheduler.run_forever()
    return 0


if __name__ == "__main__":
    sys.exit(main())
