"""
MSSQL 연결 (pyodbc)

환경변수:
    MSSQL_SERVER    서버 주소 (기본 localhost,1433)
    MSSQL_DATABASE  데이터베이스 (기본 regime_trader)
    MSSQL_USER / MSSQL_PASSWORD
    MSSQL_DRIVER    ODBC 드라이버 (기본 ODBC Driver 17 for SQL Server)
"""

import logging
import os
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

load_dotenv(Path(__file__).parent.parent.parent / ".env")


@dataclass
class SqlSettings:
    server: str = "localhost,1433"
    database: str = "regime_trader"
    driver: str = "ODBC Driver 17 for SQL Server"
    user: Optional[str] = None
    password: Optional[str] = None

    @classmethod
    def from_env(cls) -> "SqlSettings":
        return cls(
            server=os.getenv("MSSQL_SERVER", cls.server),
            database=os.getenv("MSSQL_DATABASE", cls.database),
            driver=os.getenv("MSSQL_DRIVER", cls.driver),
            user=os.getenv("MSSQL_USER"),
            password=os.getenv("MSSQL_PASSWORD"),
        )

    @property
    def configured(self) -> bool:
        return bool(self.user and self.password)

    def connection_string(self) -> str:
        if not self.configured:
            raise ValueError("MSSQL_USER and MSSQL_PASSWORD environment variables required")
        return (
            f"DRIVER={{{self.driver}}};SERVER={self.server};DATABASE={self.database};"
            f"UID={self.user};PWD={self.password};TrustServerCertificate=yes;"
        )


def get_connection(settings: Optional[SqlSettings] = None):
    import pyodbc

    return pyodbc.connect((settings or SqlSettings.from_env()).connection_string())


@contextmanager
def get_cursor(settings: Optional[SqlSettings] = None) -> Iterator[Any]:
    """커밋/롤백 + 커서/연결 자동 정리"""
    conn = get_connection(settings)
    cursor = conn.cursor()
    try:
        yield cursor
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        cursor.close()
        conn.close()


def execute_query(query: str, params: Optional[tuple] = None) -> List[Dict[str, Any]]:
    """SELECT → dict 리스트"""
    with get_cursor() as cursor:
        cursor.execute(query, params or ())
        columns = [c[0] for c in cursor.description] if cursor.description else []
        return [dict(zip(columns, row)) for row in cursor.fetchall()]


def execute_non_query(query: str, params: Optional[tuple] = None) -> int:
    """INSERT/UPDATE/DDL → 영향받은 행 수"""
    with get_cursor() as cursor:
        cursor.execute(query, params or ())
        return cursor.rowcount


def execute_scalar(query: str, params: Optional[tuple] = None) -> Any:
    """첫 행 첫 컬럼 (OUTPUT INSERTED.id 등)"""
    with get_cursor() as cursor:
        cursor.execute(query, params or ())
        row = cursor.fetchone()
        return row[0] if row else None


def ping() -> bool:
    """SELECT 1 성공 여부"""
    try:
        return execute_scalar("SELECT 1") == 1
    except Exception as e:
        logger.error(f"[DB] connection failed: {e}")
        return False
