"""
Database drivers, configuration models and the driver registry
"""

from .models import (
    DatabaseConfig,
    EngineKind,
    QueryResult,
    TableDataOptions,
    TableStructure,
)
from .errors import (
    HubPanelError,
    NotConfiguredError,
    DatabaseConnectionError,
    QueryError,
    NotEditableError,
    InvalidRequestError,
    NotFoundError,
    ConflictError,
    ForbiddenError,
    ConnectionTestError,
)
from .adapters import DatabaseAdapter, DriverSession
from .postgres import PostgreSQLAdapter
from .mysql import MySQLAdapter
from .factory import DatabaseFactory
from .registry import DriverRegistry
from .connections import ConnectionStore

__all__ = [
    'DatabaseConfig',
    'EngineKind',
    'QueryResult',
    'TableDataOptions',
    'TableStructure',
    'HubPanelError',
    'NotConfiguredError',
    'DatabaseConnectionError',
    'QueryError',
    'NotEditableError',
    'InvalidRequestError',
    'NotFoundError',
    'ConflictError',
    'ForbiddenError',
    'ConnectionTestError',
    'DatabaseAdapter',
    'DriverSession',
    'PostgreSQLAdapter',
    'MySQLAdapter',
    'DatabaseFactory',
    'DriverRegistry',
    'ConnectionStore',
]
