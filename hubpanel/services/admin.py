"""
Server administration: databases, users, monitoring and stored connections
"""

import asyncio
import re
from dataclasses import asdict
from typing import Any, Dict, List, Mapping, Optional, Sequence

from ..config import next_free_slot, slot_env_vars
from ..database.connections import ConnectionStore, mask_connection
from ..database.errors import (
    ConflictError,
    ConnectionTestError,
    ForbiddenError,
    HubPanelError,
    InvalidRequestError,
    NotFoundError,
)
from ..database.models import DatabaseConfig, EngineKind
from .base import BaseService

IDENTIFIER_NAME = re.compile(r"^[a-zA-Z_][a-zA-Z0-9_]*$")
CONNECTION_NAME = re.compile(r"^[a-zA-Z0-9_]+$")

PROTECTED_DATABASES = ("postgres", "template0", "template1", "hubpanel")

# Activity entries about HubPanel itself use this database name
PANEL_DATABASE = "hubpanel"


def validate_identifier(name: Optional[str], what: str) -> str:
    if not name or not IDENTIFIER_NAME.match(name):
        raise InvalidRequestError(
            f"Invalid {what}. Use only letters, numbers, and underscores. "
            f"Must start with a letter or underscore."
        )
    return name


def parse_connection_payload(body: Mapping[str, Any], require_name: bool = True) -> DatabaseConfig:
    """Validate a connection form and build a stored config from it"""
    required = ['host', 'port', 'username', 'password', 'database', 'db_type']
    if require_name:
        required.insert(0, 'name')
    missing = [key for key in required if not body.get(key)]
    if missing:
        raise InvalidRequestError(f"Missing required fields: {', '.join(required)}")

    name = str(body.get('name') or body['database'])
    if require_name and not CONNECTION_NAME.match(name):
        raise InvalidRequestError(
            "Invalid name. Only alphanumeric characters and underscores are allowed."
        )

    valid_types = [kind.value for kind in EngineKind]
    if body['db_type'] not in valid_types:
        raise InvalidRequestError(f"Invalid db_type. Must be one of: {', '.join(valid_types)}")

    try:
        port = int(body['port'])
    except (TypeError, ValueError):
        port = 0
    if not 1 <= port <= 65535:
        raise InvalidRequestError("Invalid port number. Must be between 1 and 65535.")

    return DatabaseConfig(
        name=name,
        host=str(body['host']),
        port=port,
        user=str(body['username']),
        password=str(body['password']),
        database=str(body['database']),
        engine_kind=EngineKind(body['db_type']),
        source="stored",
    )


class AdminService(BaseService):
    """Operations on whole databases and servers"""

    def __init__(self, registry, activity=None, store: Optional[ConnectionStore] = None,
                 environ: Optional[Mapping[str, str]] = None):
        super().__init__(registry, activity)
        self.store = store
        self.environ = environ

    # ------------------------------------------------------------------
    # Databases
    # ------------------------------------------------------------------

    async def database_overview(self) -> List[Dict[str, Any]]:
        """Status of every configured database; unreachable ones are reported offline"""
        configs = await self.registry.list_configs()
        return list(await asyncio.gather(*(self._overview_entry(c) for c in configs)))

    async def _overview_entry(self, config: DatabaseConfig) -> Dict[str, Any]:
        entry = {
            'name': config.name,
            'host': config.host,
            'port': config.port,
            'type': config.engine_kind.value,
            'source': config.source,
        }
        try:
            driver = await self.registry.resolve(config.name)
            stats = await driver.get_database_stats()
            tables = await driver.list_tables()
        except HubPanelError as e:
            entry.update(size="N/A", tableCount=0, activeConnections=0,
                         status="offline", error=e.message)
            return entry

        entry.update(size=stats.db_size, tableCount=len(tables),
                     activeConnections=stats.active_connections, status="online")
        return entry

    async def create_database(self, host_db: str, new_name: str, owner: Optional[str] = None,
                              user: str = "unknown") -> Dict[str, Any]:
        """Create a database on the server behind `host_db`

        The result suggests the DB_{i}_* variables that would register it.
        """
        if not host_db or not new_name:
            raise InvalidRequestError("Missing required fields: hostDb, newDbName")
        validate_identifier(new_name, "database name")
        if owner:
            validate_identifier(owner, "owner name")

        if await self.registry.find_config(new_name) is not None:
            raise ConflictError(f'Database "{new_name}" already exists in configuration')

        host_config = await self.registry.find_config(host_db)
        if host_config is None:
            raise NotFoundError(f'Host database "{host_db}" not found')

        driver = await self.registry.resolve(host_db)
        await driver.create_database(new_name, owner)

        new_config = DatabaseConfig(
            name=new_name,
            host=host_config.host,
            port=host_config.port,
            user=host_config.user,
            password=host_config.password,
            database=new_name,
            engine_kind=host_config.engine_kind,
        )
        slot = next_free_slot(self.environ)

        await self._log(user, host_db, "CREATE_DATABASE",
                        f'Database "{new_name}" created on {host_config.host}:{host_config.port}',
                        f"CREATE DATABASE {new_name}")

        return {
            'message': f'Database "{new_name}" created successfully',
            'database': new_name,
            'host': host_config.host,
            'port': host_config.port,
            'type': host_config.engine_kind.value,
            'envSlot': slot,
            'envVars': slot_env_vars(slot, new_config) if slot else None,
            'note': (
                "Add the env vars above to make this database accessible in HubPanel."
                if slot else
                "All database slots are in use. Remove one or store it as a connection."
            ),
        }

    async def drop_database(self, host_db: str, db_name: str, user: str = "unknown") -> Dict[str, Any]:
        if not host_db or not db_name:
            raise InvalidRequestError("Missing required fields: hostDb, dbName")
        validate_identifier(db_name, "database name")

        host_config = await self.registry.find_config(host_db)
        protected = set(PROTECTED_DATABASES) | {host_db}
        if host_config is not None:
            protected.add(host_config.database)
        if db_name in protected:
            raise ForbiddenError(f'Cannot drop protected database "{db_name}"')

        driver = await self.registry.resolve(host_db)

        # Pools pointing at the dropped database would hold its connections open
        for config in await self.registry.list_configs():
            if config.database == db_name and config.host == driver.config.host:
                await self.registry.evict(config.name)

        await driver.drop_database(db_name)
        await self._log(user, host_db, "DROP_DATABASE", f'Database "{db_name}" dropped',
                        f"DROP DATABASE {db_name}")
        return {'message': f'Database "{db_name}" dropped successfully'}

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    async def list_users(self, database: str) -> List[Dict[str, Any]]:
        driver = await self.registry.resolve(database)
        return await driver.list_users()

    async def create_user(self, database: str, username: str, password: str,
                          permissions: Sequence[str] = (), user: str = "unknown") -> Dict[str, Any]:
        if not database or not username or not password:
            raise InvalidRequestError("Missing required fields: database, username, password")
        validate_identifier(username, "username")

        driver = await self.registry.resolve(database)
        granted = await driver.create_user(username, password, permissions)

        await self._log(user, database, "CREATE_USER", f'User "{username}" created successfully',
                        f"CREATE USER {username}")
        return {'message': f'User "{username}" created successfully', 'granted': granted}

    async def drop_user(self, database: str, username: str, user: str = "unknown") -> Dict[str, Any]:
        if not database or not username:
            raise InvalidRequestError("Missing required fields: database, username")
        validate_identifier(username, "username")

        driver = await self.registry.resolve(database)
        await driver.drop_user(username)

        await self._log(user, database, "DROP_USER", f'User "{username}" dropped successfully',
                        f"DROP USER {username}")
        return {'message': f'User "{username}" dropped successfully'}

    # ------------------------------------------------------------------
    # Monitoring
    # ------------------------------------------------------------------

    async def monitoring(self, database: str) -> Dict[str, Any]:
        driver = await self.registry.resolve(database)
        connections = await driver.get_active_connections()
        slow_queries = await driver.get_slow_queries()
        metrics = await driver.get_engine_metrics()

        snapshot = {
            'dbType': driver.config.engine_kind.value,
            'activeConnections': [asdict(c) for c in connections],
            'connectionCount': len(connections),
            'slowQueries': slow_queries,
        }
        snapshot.update(metrics)
        return snapshot

    # ------------------------------------------------------------------
    # Stored connections
    # ------------------------------------------------------------------

    def _require_store(self) -> ConnectionStore:
        if self.store is None:
            raise InvalidRequestError(
                "Stored connections are disabled: HUBPANEL_DB_HOST is not set"
            )
        return self.store

    async def list_connections(self) -> List[Dict[str, Any]]:
        store = self._require_store()
        return [mask_connection(row) for row in await store.list_connections()]

    async def test_connection(self, body: Mapping[str, Any]) -> Dict[str, Any]:
        store = self._require_store()
        config = parse_connection_payload(body, require_name=False)
        ok, latency, error = await store.test_new_connection(config)
        result = {'ok': ok, 'latencyMs': latency}
        if error:
            result['error'] = error
        return result

    async def add_connection(self, body: Mapping[str, Any], user: str = "unknown") -> Dict[str, Any]:
        """Test a connection and store it when the test passes"""
        store = self._require_store()
        config = parse_connection_payload(body)

        if any(c.name == config.name for c in self.registry.static_configs):
            raise ConflictError("A connection with this name already exists.")

        ok, latency, error = await store.test_new_connection(config)
        if not ok:
            raise ConnectionTestError(
                "Connection test failed. The connection was not saved.", error, latency
            )

        saved = await store.add_connection(config)
        self.registry.invalidate()

        await self._log(user, PANEL_DATABASE, "ADD_CONNECTION",
                        f'Added connection "{config.name}" ({config.engine_kind.value}) -> '
                        f'{config.host}:{config.port}/{config.database}')

        result = mask_connection(saved)
        result['testLatencyMs'] = latency
        return result

    async def remove_connection(self, name: str, user: str = "unknown") -> Dict[str, Any]:
        if not name:
            raise InvalidRequestError("Missing required field: name")
        store = self._require_store()

        if not await store.remove_connection(name):
            raise NotFoundError(f'Connection "{name}" not found.')

        self.registry.invalidate()
        await self.registry.evict(name)

        await self._log(user, PANEL_DATABASE, "REMOVE_CONNECTION", f'Removed connection "{name}"')
        return {'message': f'Connection "{name}" removed successfully'}

    async def get_logs(self, database: Optional[str] = None, user: Optional[str] = None,
                       operation: Optional[str] = None, limit: int = 50,
                       offset: int = 0) -> List[Dict[str, Any]]:
        return await self.activity.get_logs(database=database, user=user, operation=operation,
                                            limit=limit, offset=offset)
