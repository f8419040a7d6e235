"""
Config Module
=============

YAML 기반 엔진 설정 관리.
"""

from regime_trader.config.loader import (
    CONFIG_DIR,
    EngineConfig,
    ExchangeParams,
    NotifyParams,
    SchedulerParams,
    SelectionParams,
    TimeframeParams,
    load_config,
    load_raw_config,
    load_symbol_overrides,
)

__all__ = [
    'CONFIG_DIR',
    'EngineConfig',
    'ExchangeParams',
    'NotifyParams',
    'SchedulerParams',
    'SelectionParams',
    'TimeframeParams',
    'load_config',
    'load_raw_config',
    'load_symbol_overrides',
]
