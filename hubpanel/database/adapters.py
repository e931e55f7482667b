"""
Driver contract shared by every database engine
"""

import json
import threading
import time
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any, AsyncIterator, Dict, List, Optional, Sequence

from sqlalchemy import create_engine
from sqlalchemy.engine import URL, Engine

from ..utils.logger import get_logger
from ..utils.threads import run_blocking
from .errors import DatabaseConnectionError, InvalidRequestError, NotEditableError, QueryError
from .models import (
    ConnectionInfo,
    DatabaseConfig,
    DatabaseStats,
    FieldInfo,
    QueryResult,
    TableDataOptions,
    TableDataResult,
    TableInfo,
    TableStructure,
)
from .pagination import build_page_query, total_pages
from .quoting import Dialect, POSTGRES

if TYPE_CHECKING:
    from ..config import Settings

USER_PERMISSIONS = ("SELECT", "INSERT", "UPDATE", "DELETE", "CREATE", "ALL PRIVILEGES")


def error_message(exc: BaseException) -> str:
    """Underlying driver message, without SQLAlchemy's wrapping"""
    orig = getattr(exc, "orig", None)
    if orig is not None:
        exc = orig
    message = str(exc).strip()
    return message or exc.__class__.__name__


def filter_permissions(permissions: Sequence[str], allowed: Sequence[str]) -> List[str]:
    """Keep only whitelisted privilege names, normalized to upper case"""
    valid = []
    for perm in permissions or []:
        name = str(perm).strip().upper()
        if name in allowed and name not in valid:
            valid.append(name)
    return valid


class DriverSession:
    """A reserved pooled connection; statements run in order on one session"""

    def __init__(self, adapter: "DatabaseAdapter", connection: Any):
        self._adapter = adapter
        self._connection = connection

    async def query(self, sql: str, params: Optional[Sequence[Any]] = None) -> QueryResult:
        return await self._adapter._run(self._adapter._execute, sql, params, self._connection)


class DatabaseAdapter(ABC):
    """Abstract base class for database drivers

    Every public operation is a coroutine. Blocking DBAPI calls are pushed to
    the event loop's default executor, so one worker can serve many requests.
    """

    dialect: Dialect = POSTGRES
    driver_label = "Database"
    dbapi_error: Any = Exception

    def __init__(self, config: DatabaseConfig, settings: Optional["Settings"] = None):
        self.config = config
        self.engine_kind = config.engine_kind
        self.pool_size = getattr(settings, "pool_size", 10)
        self.connect_timeout = getattr(settings, "connect_timeout", 5)
        self.query_timeout = getattr(settings, "query_timeout", 8)
        self.logger = get_logger(f"hubpanel.driver.{config.name}")
        self._engine: Optional[Engine] = None
        self._engine_lock = threading.Lock()

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} {self.config.name!r} {self.config.host}:{self.config.port}>"

    @property
    def name(self) -> str:
        return self.config.name

    # ------------------------------------------------------------------
    # Pool and execution plumbing
    # ------------------------------------------------------------------

    @abstractmethod
    def _build_url(self) -> URL:
        """SQLAlchemy URL for this engine"""

    @abstractmethod
    def _connect_args(self) -> Dict[str, Any]:
        """DBAPI connect() keyword arguments (timeouts, charset...)"""

    def _field_info(self, description: Sequence[Any]) -> FieldInfo:
        return FieldInfo(name=description[0], type_id=description[1])

    def _get_engine(self) -> Engine:
        with self._engine_lock:
            if self._engine is None:
                self._engine = create_engine(
                    self._build_url(),
                    pool_size=self.pool_size,
                    max_overflow=0,
                    pool_timeout=self.connect_timeout,
                    pool_pre_ping=True,
                    pool_recycle=1800,
                    isolation_level="AUTOCOMMIT",
                    connect_args=self._connect_args(),
                )
                self.logger.info(
                    f"Created {self.driver_label} pool for '{self.name}' "
                    f"({self.config.host}:{self.config.port}, size {self.pool_size})"
                )
            return self._engine

    def _acquire(self) -> Any:
        try:
            return self._get_engine().raw_connection()
        except Exception as e:
            raise DatabaseConnectionError(
                f"{self.driver_label} connection to '{self.name}' failed: {error_message(e)}"
            )

    def _release(self, connection: Any, discard: bool = False) -> None:
        if discard and hasattr(connection, "invalidate"):
            connection.invalidate()
        else:
            connection.close()

    def _execute(self, sql: str, params: Optional[Sequence[Any]] = None,
                 connection: Any = None) -> QueryResult:
        owned = connection is None
        if owned:
            connection = self._acquire()
        try:
            return self._execute_on(connection, sql, params)
        finally:
            if owned:
                self._release(connection)

    def _execute_on(self, connection: Any, sql: str,
                    params: Optional[Sequence[Any]] = None) -> QueryResult:
        cursor = connection.cursor()
        try:
            cursor.execute(sql, None if params is None else tuple(params))
            if cursor.description is None:
                return QueryResult(rows=[], fields=[], rowcount=cursor.rowcount)

            fields = [self._field_info(d) for d in cursor.description]
            names = [f.name for f in fields]
            rows = [
                {name: self._convert_value(value) for name, value in zip(names, row)}
                for row in cursor.fetchall()
            ]
            return QueryResult(rows=rows, fields=fields, rowcount=cursor.rowcount)
        except self.dbapi_error as e:
            self.logger.warning(f"Query failed on '{self.name}': {error_message(e)}")
            raise QueryError(error_message(e))
        finally:
            cursor.close()

    def _convert_value(self, value: Any) -> Any:
        if isinstance(value, memoryview):
            return value.tobytes()
        return value

    async def _run(self, func, *args):
        return await run_blocking(func, *args)

    # ------------------------------------------------------------------
    # Contract
    # ------------------------------------------------------------------

    async def query(self, sql: str, params: Optional[Sequence[Any]] = None) -> QueryResult:
        """Execute one statement; engine errors surface as QueryError"""
        return await self._run(self._execute, sql, params)

    @asynccontextmanager
    async def session(self, discard: bool = False) -> AsyncIterator[DriverSession]:
        """Reserve one pooled connection for a sequence of statements

        With discard=True the connection is closed instead of returned to the
        pool, so session-level settings never leak to other requests.
        """
        connection = await self._run(self._acquire)
        try:
            yield DriverSession(self, connection)
        finally:
            await self._run(self._release, connection, discard)

    async def test_connection(self) -> float:
        """Round-trip latency of SELECT 1 in milliseconds"""
        start = time.perf_counter()
        await self.query("SELECT 1")
        return round((time.perf_counter() - start) * 1000, 2)

    @abstractmethod
    async def list_tables(self, schema: Optional[str] = None) -> List[TableInfo]:
        """List base tables with sizes and planner row estimates"""

    @abstractmethod
    async def get_table_structure(self, schema: Optional[str], table: str) -> TableStructure:
        """Columns, constraints and indexes of a table"""

    @abstractmethod
    def qualified_table(self, schema: Optional[str], table: str) -> str:
        """Quoted, schema-qualified table reference"""

    async def get_table_data(self, schema: Optional[str], table: str,
                             options: Optional[TableDataOptions] = None) -> TableDataResult:
        """One page of rows plus the exact filtered total"""
        options = options or TableDataOptions()
        page_query = build_page_query(self.dialect, self.qualified_table(schema, table), options)

        count = await self.query(page_query.count_sql, page_query.count_params)
        total = int(count.rows[0]["total"]) if count.rows else 0

        data = await self.query(page_query.data_sql, page_query.data_params)

        return TableDataResult(
            rows=data.rows,
            fields=data.fields,
            total=total,
            page=options.page,
            page_size=options.page_size,
            total_pages=total_pages(total, options.page_size),
        )

    @abstractmethod
    async def get_database_stats(self) -> DatabaseStats:
        """Version, size, connection counts and uptime"""

    @abstractmethod
    async def get_active_connections(self) -> List[ConnectionInfo]:
        """Sessions currently connected to the server"""

    @abstractmethod
    async def get_slow_queries(self) -> List[Dict[str, Any]]:
        """Slowest statements; empty when the engine does not record them"""

    @abstractmethod
    async def get_engine_metrics(self) -> Dict[str, Any]:
        """Engine-specific monitoring figures"""

    @abstractmethod
    async def get_primary_key(self, schema: Optional[str], table: str) -> Optional[str]:
        """First primary key column, or None"""

    @abstractmethod
    async def insert_row(self, schema: Optional[str], table: str,
                         data: Dict[str, Any]) -> Dict[str, Any]:
        """Insert a row and return its final state"""

    @abstractmethod
    async def update_row(self, schema: Optional[str], table: str, pk: Optional[str],
                         pk_value: Any, data: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """Update a row by primary key; None when no row matched"""

    @abstractmethod
    async def delete_row(self, schema: Optional[str], table: str, pk: Optional[str],
                         pk_value: Any) -> Optional[Dict[str, Any]]:
        """Delete a row by primary key and return it; None when no row matched"""

    @abstractmethod
    async def list_databases(self) -> List[Dict[str, Any]]:
        """Databases on the server with their sizes"""

    @abstractmethod
    async def create_database(self, name: str, owner: Optional[str] = None) -> None:
        pass

    @abstractmethod
    async def drop_database(self, name: str) -> None:
        pass

    @abstractmethod
    async def list_users(self) -> List[Dict[str, Any]]:
        pass

    @abstractmethod
    async def create_user(self, username: str, password: str,
                          permissions: Sequence[str] = ()) -> List[str]:
        """Create a login user; returns the privileges actually granted"""

    @abstractmethod
    async def drop_user(self, username: str) -> None:
        pass

    async def close(self) -> None:
        """Release the connection pool"""
        with self._engine_lock:
            engine, self._engine = self._engine, None
        if engine is not None:
            await self._run(engine.dispose)
            self.logger.info(f"Closed {self.driver_label} pool for '{self.name}'")

    # ------------------------------------------------------------------
    # Helpers for concrete drivers
    # ------------------------------------------------------------------

    async def _require_primary_key(self, schema: Optional[str], table: str,
                                   pk: Optional[str]) -> str:
        if pk:
            return pk
        discovered = await self.get_primary_key(schema, table)
        if not discovered:
            raise NotEditableError(
                f'Table "{table}" has no primary key; its rows cannot be edited.'
            )
        return discovered

    @staticmethod
    def _require_data(data: Dict[str, Any], action: str) -> List[str]:
        if not data:
            raise InvalidRequestError(f"No data provided for {action}.")
        return list(data.keys())

    @staticmethod
    def _row_params(data: Dict[str, Any], keys: Sequence[str]) -> List[Any]:
        """Values of a row payload ready for binding; objects and arrays become JSON text"""
        return [
            json.dumps(data[k]) if isinstance(data[k], (dict, list)) else data[k]
            for k in keys
        ]
