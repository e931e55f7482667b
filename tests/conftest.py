"""Shared pytest fixtures for HubPanel tests."""

import itertools
from typing import Any, Dict, List, Optional

import pytest

from hubpanel.database.factory import DatabaseFactory
from hubpanel.database.models import DatabaseConfig, EngineKind
from hubpanel.database.mysql import MySQLAdapter
from hubpanel.database.postgres import PostgreSQLAdapter
from hubpanel.database.registry import DriverRegistry
from hubpanel.utils.activity import ActivityLog


class Rule:
    """Scripted response for statements containing `needle`."""

    def __init__(self, needle: str, rows=None, columns=None, types=None,
                 error: Optional[Exception] = None, params=None, once: bool = False,
                 rowcount: int = 0):
        self.needle = needle
        self.rows = rows
        self.columns = columns
        self.types = types or {}
        self.error = error
        self.params = params
        self.once = once
        self.rowcount = rowcount

    def matches(self, sql: str, params) -> bool:
        if self.needle not in sql:
            return False
        return self.params is None or tuple(self.params) == params


class FakeCursor:
    """DBAPI cursor answering from the rules of a FakeDatabase."""

    def __init__(self, connection: "FakeConnection"):
        self.connection = connection
        self.description = None
        self.rowcount = -1
        self._rows: List[tuple] = []
        self.closed = False

    def execute(self, sql: str, params=None):
        database = self.connection.database
        database.executed.append((self.connection.id, sql, params))
        rule = database.match(sql, params)

        self.description = None
        self._rows = []
        if rule is None:
            self.rowcount = 0
            return
        if rule.error is not None:
            raise rule.error
        if rule.rows is None:
            self.rowcount = rule.rowcount
            return

        rows = rule.rows
        columns = rule.columns or (list(rows[0].keys()) if rows else [])
        self.description = [
            (name, rule.types.get(name), None, None, None, None, None) for name in columns
        ]
        self._rows = [tuple(row.get(name) for name in columns) for row in rows]
        self.rowcount = len(self._rows)

    def fetchall(self):
        return list(self._rows)

    def close(self):
        self.closed = True


class FakeConnection:
    """Pooled DBAPI connection stand-in; records how it was released."""

    def __init__(self, database: "FakeDatabase", connection_id: int):
        self.database = database
        self.id = connection_id
        self.closed = False
        self.invalidated = False

    def cursor(self):
        return FakeCursor(self)

    def close(self):
        self.closed = True

    def invalidate(self):
        self.invalidated = True


class FakeDatabase:
    """Scripted engine; the first rule whose needle occurs in the SQL wins."""

    def __init__(self):
        self.rules: List[Rule] = []
        self.executed: List[tuple] = []
        self.connections: List[FakeConnection] = []
        self._ids = itertools.count(1)

    def on(self, needle: str, rows=None, **kwargs) -> Rule:
        rule = Rule(needle, rows=rows, **kwargs)
        self.rules.append(rule)
        return rule

    def match(self, sql: str, params) -> Optional[Rule]:
        for rule in self.rules:
            if rule.matches(sql, params):
                if rule.once:
                    self.rules.remove(rule)
                return rule
        return None

    def connect(self) -> FakeConnection:
        connection = FakeConnection(self, next(self._ids))
        self.connections.append(connection)
        return connection

    def statements(self) -> List[str]:
        return [sql for _, sql, _ in self.executed]

    def find(self, needle: str) -> List[tuple]:
        return [entry for entry in self.executed if needle in entry[1]]


class RecordingActivity(ActivityLog):
    """Activity log that keeps entries in memory."""

    def __init__(self):
        super().__init__()
        self.entries: List[Dict[str, Any]] = []

    async def log_activity(self, user, database, operation, details, sql=None):
        self.entries.append({
            'user': user,
            'database': database,
            'operation': operation,
            'details': details,
            'sql': sql,
        })

    def operations(self) -> List[str]:
        return [entry['operation'] for entry in self.entries]


def build_config(name: str = "shop", engine_kind: EngineKind = EngineKind.POSTGRESQL,
                 **overrides) -> DatabaseConfig:
    values = {
        'name': name,
        'host': "db.local",
        'port': engine_kind.default_port,
        'user': "admin",
        'password': "secret",
        'database': name,
        'engine_kind': engine_kind,
    }
    values.update(overrides)
    return DatabaseConfig(**values)


@pytest.fixture
def make_config():
    """Factory for database configs."""
    return build_config


@pytest.fixture
def fake_db():
    """A scripted fake engine."""
    return FakeDatabase()


@pytest.fixture
def pg_driver(fake_db):
    """PostgreSQL driver whose connections come from the fake engine."""
    driver = PostgreSQLAdapter(build_config("shop"))
    driver._acquire = fake_db.connect
    return driver


@pytest.fixture
def mysql_driver(fake_db):
    """MySQL driver whose connections come from the fake engine."""
    driver = MySQLAdapter(build_config("legacy", EngineKind.MYSQL))
    driver._acquire = fake_db.connect
    return driver


@pytest.fixture
def activity():
    """In-memory activity log."""
    return RecordingActivity()


@pytest.fixture
def registry(fake_db):
    """Registry with a PostgreSQL and a MySQL database backed by the fake engine."""
    def factory(config, settings=None):
        driver = DatabaseFactory.create_connector(config, settings)
        driver._acquire = fake_db.connect
        return driver

    return DriverRegistry(
        [build_config("shop"), build_config("legacy", EngineKind.MYSQL)],
        factory=factory,
    )
