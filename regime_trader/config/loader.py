"""
Config Loader
=============

YAML 기반 엔진 설정 로더.

사용법:
    from regime_trader.config import load_config

    config = load_config()
    print(config.symbols)                  # ['BTCUSDT', 'ETHUSDT', ...]
    print(config.risk.leverage)            # 10
    print(config.lifecycle.break_even_pct) # 1.0
    print(config.leverage_for("BTCUSDT"))  # 5 (config/symbols/BTCUSDT.yaml)

환경변수 오버라이드:
    TRADING_LEVERAGE=15              # 레버리지 강제 (심볼별 설정보다 우선)
    TRADING_DRY_RUN=true             # 드라이런 모드 (페이퍼 체결)
    TRADING_SYMBOLS=BTCUSDT,ETHUSDT  # 심볼 유니버스
    BINANCE_API_KEY / BINANCE_API_SECRET
    TELEGRAM_BOT_TOKEN / TELEGRAM_CHAT_ID
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from dotenv import load_dotenv

from regime_trader.position.manager import ManagerSettings
from regime_trader.position.rules import LifecycleConfig
from regime_trader.regime.classifier import RegimeConfig
from regime_trader.risk.manager import RiskConfig
from regime_trader.utils.timeframe import TimeframeSpec, longest_timeframes, parse_timeframes

logger = logging.getLogger(__name__)

CONFIG_DIR = Path(__file__).parent.parent.parent / "config"


@dataclass
class ExchangeParams:
    """거래소 파라미터"""
    name: str = "binanceusdm"
    timeout_ms: int = 10000
    testnet: bool = False
    api_key: Optional[str] = None
    api_secret: Optional[str] = None


@dataclass
class TimeframeParams:
    scan: List[str] = field(default_factory=lambda: ["5m", "15m", "1h", "4h"])
    daily: str = "1d"
    candle_limit: int = 100
    daily_limit: int = 100


@dataclass
class SelectionParams:
    disable_unprofitable: bool = True
    min_trades: int = 10


@dataclass
class SchedulerParams:
    scan_interval_sec: float = 30.0
    manage_interval_sec: float = 60.0
    symbol_timeout_sec: float = 20.0
    max_workers: int = 4


@dataclass
class NotifyParams:
    weak_signal_batch: int = 5
    telegram_enabled: bool = False
    telegram_token: Optional[str] = None
    telegram_chat_id: Optional[str] = None


@dataclass
class EngineConfig:
    """통합 엔진 설정"""
    symbols: List[str] = field(default_factory=list)
    dry_run: bool = False
    log_level: str = "INFO"
    exchange: ExchangeParams = field(default_factory=ExchangeParams)
    timeframes: TimeframeParams = field(default_factory=TimeframeParams)
    risk: RiskConfig = field(default_factory=RiskConfig)
    lifecycle: LifecycleConfig = field(default_factory=LifecycleConfig)
    manager: ManagerSettings = field(default_factory=ManagerSettings)
    regime: RegimeConfig = field(default_factory=RegimeConfig)
    selection: SelectionParams = field(default_factory=SelectionParams)
    scheduler: SchedulerParams = field(default_factory=SchedulerParams)
    notify: NotifyParams = field(default_factory=NotifyParams)
    strategies: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    raw: Dict[str, Any] = field(default_factory=dict)

    def leverage_for(self, symbol: str) -> int:
        return self.manager.leverage_overrides.get(symbol, self.risk.leverage)


def _load_yaml(path: Path) -> Dict[str, Any]:
    if not path.exists():
        return {}
    with open(path, 'r', encoding='utf-8') as f:
        return yaml.safe_load(f) or {}


def _deep_merge(base: Dict, override: Dict) -> Dict:
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def _apply_env_overrides(config: Dict) -> Dict:
    if os.getenv("TRADING_LEVERAGE"):
        config.setdefault("risk", {})
        config["risk"]["leverage"] = int(os.getenv("TRADING_LEVERAGE"))
    if os.getenv("TRADING_DRY_RUN", "").lower() in ("true", "1"):
        config["dry_run"] = True
    if os.getenv("TRADING_SYMBOLS"):
        config["symbols"] = [s.strip().upper() for s in os.getenv("TRADING_SYMBOLS").split(",") if s.strip()]
    return config


def load_raw_config(config_dir: Path = CONFIG_DIR) -> Dict[str, Any]:
    """default.yaml + env"""
    return _apply_env_overrides(_load_yaml(config_dir / "default.yaml"))


def load_symbol_overrides(symbol: str, config_dir: Path = CONFIG_DIR) -> Dict[str, Any]:
    """심볼별 설정 (default + symbol override + env)"""
    base = load_raw_config(config_dir)
    symbol_cfg = _load_yaml(config_dir / "symbols" / f"{symbol}.yaml")
    return _apply_env_overrides(_deep_merge(base, symbol_cfg))


def _lifecycle(raw: Dict[str, Any], scan_timeframes: List[str]) -> LifecycleConfig:
    exits = raw.get("exits", {})
    trailing = raw.get("trailing", {})
    scaling = raw.get("scaling", {})
    return LifecycleConfig(
        break_even_pct=exits.get("break_even_pct", 1.0),
        trailing_enabled=trailing.get("enabled", True),
        trailing_activation=trailing.get("activation_fraction", 0.5),
        trailing_distance_pct=trailing.get("distance_pct", 0.5),
        max_drawdown_pct=exits.get("max_drawdown_pct", 2.0),
        technical_timeframes=tuple(longest_timeframes(scan_timeframes, 2)),
        technical_adx_floor=exits.get("technical_adx_floor", 20.0),
        technical_min_profit_pct=exits.get("technical_min_profit_pct", 0.5),
        max_scale_ins=scaling.get("max_scale_ins", 2),
        scale_timeframe=raw.get("regime", {}).get("reference_timeframe", "1h"),
        scale_band_proximity=scaling.get("band_proximity", 0.01),
        scale_rsi_oversold=scaling.get("rsi_oversold", 35.0),
        scale_rsi_overbought=scaling.get("rsi_overbought", 65.0),
        scale_adx_strong=scaling.get("adx_strong", 25.0),
        scale_strong_multiplier=scaling.get("strong_multiplier", 1.5),
    )


def load_config(config_dir: Path = CONFIG_DIR) -> EngineConfig:
    """
    전체 엔진 설정 로드

    Raises:
        ValueError: 알 수 없는 타임프레임
    """
    load_dotenv(config_dir.parent / ".env")
    raw = load_raw_config(config_dir)

    tf = raw.get("timeframes", {})
    scan = parse_timeframes(tf.get("scan", ["5m", "15m", "1h", "4h"]))
    daily = TimeframeSpec.from_string(tf.get("daily", "1d")).name

    risk = raw.get("risk", {})
    exits = raw.get("exits", {})
    trailing = raw.get("trailing", {})
    adoption = raw.get("adoption", {})
    regime = raw.get("regime", {})
    selection = raw.get("selection", {})
    sched = raw.get("scheduler", {})
    notify = raw.get("notifications", {})
    telegram = notify.get("telegram", {})
    exchange = raw.get("exchange", {})

    symbols: List[str] = []
    leverage_overrides: Dict[str, int] = {}
    default_leverage = risk.get("leverage", 10)
    for symbol in raw.get("symbols", []):
        merged = load_symbol_overrides(symbol, config_dir)
        if not merged.get("enabled", True):
            logger.info(f"[Config] {symbol} disabled")
            continue
        symbols.append(symbol)
        lev = merged.get("risk", {}).get("leverage", default_leverage)
        if lev != default_leverage:
            leverage_overrides[symbol] = int(lev)

    token = os.getenv("TELEGRAM_BOT_TOKEN") or telegram.get("token")
    chat_id = os.getenv("TELEGRAM_CHAT_ID") or telegram.get("chat_id")

    return EngineConfig(
        symbols=symbols,
        dry_run=bool(raw.get("dry_run", False)),
        log_level=str(raw.get("logging", {}).get("level", "INFO")).upper(),
        exchange=ExchangeParams(
            name=exchange.get("name", "binanceusdm"),
            timeout_ms=int(exchange.get("timeout_ms", 10000)),
            testnet=bool(exchange.get("testnet", False)),
            api_key=os.getenv("BINANCE_API_KEY"),
            api_secret=os.getenv("BINANCE_API_SECRET"),
        ),
        timeframes=TimeframeParams(
            scan=scan,
            daily=daily,
            candle_limit=int(tf.get("candle_limit", 100)),
            daily_limit=int(tf.get("daily_limit", 100)),
        ),
        risk=RiskConfig(
            calculate_position_size=bool(risk.get("calculate_position_size", False)),
            static_allocation=float(risk.get("static_allocation", 10.0)),
            risk_per_trade=float(risk.get("risk_per_trade", 0.02)),
            leverage=int(default_leverage),
            max_open_positions=int(risk.get("max_open_positions", 10)),
            min_notional=float(risk.get("min_notional", 5.0)),
        ),
        lifecycle=_lifecycle(raw, scan),
        manager=ManagerSettings(
            stop_loss_pct=exits.get("stop_loss_pct", 1.5),
            take_profit_pct=exits.get("take_profit_pct", 3.0),
            adopt_stop_loss_pct=adoption.get("stop_loss_pct", 1.0),
            adopt_take_profit_pct=adoption.get("take_profit_pct", 2.0),
            exchange_native_trailing=bool(trailing.get("exchange_native", False)),
            native_callback_rate=trailing.get("callback_rate", 0.5),
            leverage_overrides=leverage_overrides,
        ),
        regime=RegimeConfig(
            reference_timeframe=regime.get("reference_timeframe", "1h"),
            high_ratio=regime.get("high_ratio", 1.5),
            low_ratio=regime.get("low_ratio", 0.7),
        ),
        selection=SelectionParams(
            disable_unprofitable=bool(selection.get("disable_unprofitable", True)),
            min_trades=int(selection.get("min_trades", 10)),
        ),
        scheduler=SchedulerParams(
            scan_interval_sec=float(sched.get("scan_interval_sec", 30)),
            manage_interval_sec=float(sched.get("manage_interval_sec", 60)),
            symbol_timeout_sec=float(sched.get("symbol_timeout_sec", 20)),
            max_workers=int(sched.get("max_workers", 4)),
        ),
        notify=NotifyParams(
            weak_signal_batch=int(notify.get("weak_signal_batch", 5)),
            telegram_enabled=bool(telegram.get("enabled", False)) or bool(token and chat_id),
            telegram_token=token,
            telegram_chat_id=chat_id,
        ),
        strategies={k: dict(v or {}) for k, v in (raw.get("strategies") or {}).items()},
        raw=raw,
    )
