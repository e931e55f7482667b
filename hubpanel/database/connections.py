"""
Stored database connections kept in the metadata database
"""

import dataclasses
import threading
import time
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import delete, insert, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

from ..utils.logger import get_logger
from ..utils.threads import run_blocking
from .errors import ConflictError, HubPanelError
from .factory import DatabaseFactory
from .metadata import connections_table, metadata
from .models import DatabaseConfig, EngineKind


def row_to_config(row: Dict[str, Any]) -> DatabaseConfig:
    return DatabaseConfig(
        name=row['name'],
        host=row['host'],
        port=int(row['port']),
        user=row['username'],
        password=row['password'],
        database=row['database'],
        engine_kind=EngineKind.parse(row['db_type']),
        source="stored",
    )


def mask_connection(row: Dict[str, Any]) -> Dict[str, Any]:
    """Stored connection as returned to clients, password hidden"""
    data = dict(row)
    data['password'] = "***"
    created_at = data.get('created_at')
    if created_at is not None and hasattr(created_at, "isoformat"):
        data['created_at'] = created_at.isoformat()
    return data


class ConnectionStore:
    """CRUD over the database_connections table

    The table is created on first use. All methods are coroutines; the
    SQLAlchemy work runs in the default executor.
    """

    def __init__(self, engine: Engine, settings=None, factory=DatabaseFactory.create_connector):
        self.engine = engine
        self.settings = settings
        self.factory = factory
        self.logger = get_logger("hubpanel.connections")
        self._table_ready = False
        self._table_lock = threading.Lock()

    def _ensure_table(self) -> None:
        with self._table_lock:
            if not self._table_ready:
                metadata.create_all(self.engine, tables=[connections_table])
                self._table_ready = True

    def _select_all(self) -> List[Dict[str, Any]]:
        self._ensure_table()
        query = select(connections_table).order_by(connections_table.c.name)
        with self.engine.connect() as conn:
            return [dict(row) for row in conn.execute(query).mappings()]

    def _select_one(self, name: str) -> Optional[Dict[str, Any]]:
        self._ensure_table()
        query = select(connections_table).where(connections_table.c.name == name)
        with self.engine.connect() as conn:
            row = conn.execute(query).mappings().first()
        return dict(row) if row is not None else None

    def _insert(self, config: DatabaseConfig) -> Dict[str, Any]:
        self._ensure_table()
        values = {
            'name': config.name,
            'host': config.host,
            'port': config.port,
            'username': config.user,
            'password': config.password,
            'database': config.database,
            'db_type': config.engine_kind.value,
        }
        try:
            with self.engine.begin() as conn:
                conn.execute(insert(connections_table).values(**values))
        except IntegrityError:
            raise ConflictError(f'A connection named "{config.name}" already exists.')

        self.logger.info(f"Stored connection '{config.name}' ({config.host}:{config.port})")
        return self._select_one(config.name)

    def _delete(self, name: str) -> bool:
        self._ensure_table()
        with self.engine.begin() as conn:
            result = conn.execute(delete(connections_table).where(connections_table.c.name == name))
        removed = result.rowcount > 0
        if removed:
            self.logger.info(f"Removed stored connection '{name}'")
        return removed

    async def list_connections(self) -> List[Dict[str, Any]]:
        return await run_blocking(self._select_all)

    async def get_connection(self, name: str) -> Optional[Dict[str, Any]]:
        return await run_blocking(self._select_one, name)

    async def add_connection(self, config: DatabaseConfig) -> Dict[str, Any]:
        """Store a connection; a duplicate name raises ConflictError"""
        return await run_blocking(self._insert, config)

    async def remove_connection(self, name: str) -> bool:
        return await run_blocking(self._delete, name)

    async def list_configs(self) -> List[DatabaseConfig]:
        """Stored connections as configs; used as the registry's dynamic source"""
        return [row_to_config(row) for row in await self.list_connections()]

    async def test_new_connection(self, config: DatabaseConfig) -> Tuple[bool, float, Optional[str]]:
        """Open a throw-away driver and run SELECT 1

        Returns (ok, latency in ms, error message).
        """
        settings = self.settings
        if settings is not None and dataclasses.is_dataclass(settings):
            settings = dataclasses.replace(settings, pool_size=1)

        driver = self.factory(config, settings)
        start = time.perf_counter()
        try:
            latency = await driver.test_connection()
            return True, latency, None
        except HubPanelError as e:
            elapsed = round((time.perf_counter() - start) * 1000, 2)
            return False, elapsed, e.message
        finally:
            await driver.close()
