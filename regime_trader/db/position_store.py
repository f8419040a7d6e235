"""
Position Store
==============

포지션 레코드 저장/조회 (심볼 + 활성 플래그 기준).

- InMemoryPositionStore: 테스트/드라이런 (쓰기 횟수 카운트)
- SqlPositionStore: MSSQL (pyodbc), entry_prices / market_conditions는 JSON 텍스트
"""
import copy
import itertools
import json
import logging
import threading
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from regime_trader.db import connection
from regime_trader.position.models import Position

logger = logging.getLogger(__name__)


class PositionStore(ABC):
    """영속 저장소 협력자"""

    @abstractmethod
    def create(self, position: Position) -> Position:
        """저장 후 id 부여"""

    @abstractmethod
    def update(self, position: Position) -> None:
        ...

    @abstractmethod
    def get_active(self, symbol: str) -> Optional[Position]:
        ...

    @abstractmethod
    def list_active(self) -> List[Position]:
        ...

    @abstractmethod
    def list_closed(self, limit: int = 100) -> List[Position]:
        ...

    def count_active(self) -> int:
        return len(self.list_active())


class InMemoryPositionStore(PositionStore):
    """메모리 저장소 (복사본 저장/반환)"""

    def __init__(self):
        self._rows: Dict[int, Position] = {}
        self._ids = itertools.count(1)
        self._lock = threading.Lock()
        self.write_count = 0

    def create(self, position: Position) -> Position:
        with self._lock:
            position.id = next(self._ids)
            self._rows[position.id] = copy.deepcopy(position)
            self.write_count += 1
        return position

    def update(self, position: Position) -> None:
        if position.id is None:
            raise ValueError("Position has no id; create() it first")
        with self._lock:
            self._rows[position.id] = copy.deepcopy(position)
            self.write_count += 1

    def get_active(self, symbol: str) -> Optional[Position]:
        with self._lock:
            for p in self._rows.values():
                if p.symbol == symbol and p.is_active:
                    return copy.deepcopy(p)
        return None

    def list_active(self) -> List[Position]:
        with self._lock:
            return [copy.deepcopy(p) for p in self._rows.values() if p.is_active]

    def list_closed(self, limit: int = 100) -> List[Position]:
        with self._lock:
            closed = [copy.deepcopy(p) for p in self._rows.values() if not p.is_active]
        closed.sort(key=lambda p: p.closed_at or p.opened_at, reverse=True)
        return closed[:limit]


# =============================================================================
# MSSQL
# =============================================================================

SCHEMA_SQL = """
IF OBJECT_ID('dbo.positions', 'U') IS NULL
CREATE TABLE dbo.positions (
    id INT IDENTITY(1,1) PRIMARY KEY,
    symbol NVARCHAR(32) NOT NULL,
    entries INT NOT NULL,
    entry_prices NVARCHAR(MAX) NOT NULL,
    quantity FLOAT NOT NULL,
    total_allocation FLOAT NOT NULL,
    stop_loss FLOAT NOT NULL,
    take_profit FLOAT NOT NULL,
    leverage INT NOT NULL,
    strategy_used NVARCHAR(64) NULL,
    scale_step INT NOT NULL DEFAULT 0,
    is_active BIT NOT NULL DEFAULT 1,
    adopted BIT NOT NULL DEFAULT 0,
    market_conditions NVARCHAR(MAX) NULL,
    opened_at DATETIMEOFFSET NOT NULL,
    closed_at DATETIMEOFFSET NULL,
    closed_price FLOAT NULL,
    exit_reason NVARCHAR(256) NULL,
    pnl_percent FLOAT NULL,
    pnl_amount FLOAT NULL,
    hold_time_minutes FLOAT NULL
)
"""

_COLUMNS = [
    "symbol", "entries", "entry_prices", "quantity", "total_allocation", "stop_loss",
    "take_profit", "leverage", "strategy_used", "scale_step", "is_active", "adopted",
    "market_conditions", "opened_at", "closed_at", "closed_price", "exit_reason",
    "pnl_percent", "pnl_amount", "hold_time_minutes",
]


def _to_params(p: Position) -> tuple:
    return (
        p.symbol, p.entries, json.dumps(p.entry_prices), p.quantity, p.total_allocation,
        p.stop_loss, p.take_profit, p.leverage, p.strategy_used, p.scale_step,
        int(p.is_active), int(p.adopted), json.dumps(p.market_conditions, default=str),
        p.opened_at, p.closed_at, p.closed_price, p.exit_reason, p.pnl_percent,
        p.pnl_amount, p.hold_time_minutes,
    )


def _from_row(row: Dict[str, Any]) -> Position:
    return Position(
        id=row["id"],
        symbol=row["symbol"],
        entries=row["entries"],
        entry_prices=json.loads(row["entry_prices"]),
        quantity=row["quantity"],
        total_allocation=row["total_allocation"],
        stop_loss=row["stop_loss"],
        take_profit=row["take_profit"],
        leverage=row["leverage"],
        strategy_used=row["strategy_used"] or "",
        scale_step=row["scale_step"],
        is_active=bool(row["is_active"]),
        adopted=bool(row["adopted"]),
        market_conditions=json.loads(row["market_conditions"] or "{}"),
        opened_at=row["opened_at"],
        closed_at=row["closed_at"],
        closed_price=row["closed_price"],
        exit_reason=row["exit_reason"],
        pnl_percent=row["pnl_percent"],
        pnl_amount=row["pnl_amount"],
        hold_time_minutes=row["hold_time_minutes"],
    )


class SqlPositionStore(PositionStore):
    """MSSQL 저장소"""

    def ensure_schema(self) -> None:
        connection.execute_non_query(SCHEMA_SQL)

    def create(self, position: Position) -> Position:
        placeholders = ", ".join("?" for _ in _COLUMNS)
        query = (
            f"INSERT INTO dbo.positions ({', '.join(_COLUMNS)}) "
            f"OUTPUT INSERTED.id VALUES ({placeholders})"
        )
        position.id = int(connection.execute_scalar(query, _to_params(position)))
        return position

    def update(self, position: Position) -> None:
        if position.id is None:
            raise ValueError("Position has no id; create() it first")
        assignments = ", ".join(f"{c} = ?" for c in _COLUMNS)
        query = f"UPDATE dbo.positions SET {assignments} WHERE id = ?"
        connection.execute_non_query(query, _to_params(position) + (position.id,))

    def get_active(self, symbol: str) -> Optional[Position]:
        rows = connection.execute_query(
            "SELECT TOP 1 * FROM dbo.positions WHERE symbol = ? AND is_active = 1 ORDER BY id DESC",
            (symbol,),
        )
        return _from_row(rows[0]) if rows else None

    def list_active(self) -> List[Position]:
        rows = connection.execute_query("SELECT * FROM dbo.positions WHERE is_active = 1 ORDER BY id")
        return [_from_row(r) for r in rows]

    def list_closed(self, limit: int = 100) -> List[Position]:
        rows = connection.execute_query(
            "SELECT TOP (?) * FROM dbo.positions WHERE is_active = 0 ORDER BY closed_at DESC",
            (limit,),
        )
        return [_from_row(r) for r in rows]

    def count_active(self) -> int:
        rows = connection.execute_query("SELECT COUNT(*) AS n FROM dbo.positions WHERE is_active = 1")
        return int(rows[0]["n"]) if rows else 0
