"""
Data models for database configuration, introspection and query results
"""

import json
from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import List, Dict, Any, Optional

from .errors import InvalidRequestError


class EngineKind(str, Enum):
    """Supported database engines"""
    POSTGRESQL = "postgresql"
    MYSQL = "mysql"
    MARIADB = "mariadb"
    SUPABASE = "supabase"

    @classmethod
    def parse(cls, raw: Optional[str]) -> "EngineKind":
        """Parse an engine name, falling back to PostgreSQL for unknown values"""
        if not raw:
            return cls.POSTGRESQL
        value = raw.strip().lower()
        if value == "postgres":
            return cls.POSTGRESQL
        for kind in cls:
            if kind.value == value:
                return kind
        return cls.POSTGRESQL

    @property
    def is_mysql_family(self) -> bool:
        return self in (EngineKind.MYSQL, EngineKind.MARIADB)

    @property
    def default_port(self) -> int:
        return 3306 if self.is_mysql_family else 5432

    @property
    def label(self) -> str:
        return {
            EngineKind.POSTGRESQL: "PostgreSQL",
            EngineKind.MYSQL: "MySQL",
            EngineKind.MARIADB: "MariaDB",
            EngineKind.SUPABASE: "Supabase",
        }[self]


@dataclass(frozen=True)
class DatabaseConfig:
    """Connection settings for one named database"""
    name: str
    host: str
    port: int
    user: str
    password: str
    database: str
    engine_kind: EngineKind = EngineKind.POSTGRESQL
    source: str = "static"

    def public_dict(self) -> Dict[str, Any]:
        """Config as a dict with the password masked"""
        return {
            'name': self.name,
            'host': self.host,
            'port': self.port,
            'user': self.user,
            'password': "***",
            'database': self.database,
            'type': self.engine_kind.value,
            'source': self.source,
        }


@dataclass
class FieldInfo:
    """A result column: name plus the engine's type id or type name"""
    name: str
    type_id: Optional[int] = None
    type_name: Optional[str] = None


@dataclass
class QueryResult:
    """Rows (as ordered dicts) and field descriptions of one statement"""
    rows: List[Dict[str, Any]]
    fields: List[FieldInfo]
    rowcount: int = -1

    def to_dict(self) -> Dict[str, Any]:
        return {
            'rows': self.rows,
            'rowCount': len(self.rows),
            'fields': [asdict(f) for f in self.fields],
        }


@dataclass
class TableInfo:
    """Size and row estimate of a table"""
    name: str
    size_bytes: int
    size: str
    row_estimate: int


@dataclass
class ColumnInfo:
    """Information about a table column"""
    column_name: str
    data_type: str
    udt_name: Optional[str] = None
    character_maximum_length: Optional[int] = None
    numeric_precision: Optional[int] = None
    numeric_scale: Optional[int] = None
    is_nullable: bool = True
    column_default: Optional[str] = None
    is_identity: bool = False


@dataclass
class ConstraintInfo:
    """A table constraint; constraint_type is one of p, f, u, c, x"""
    constraint_name: str
    constraint_type: str
    columns: List[str]
    referenced_table: Optional[str] = None
    referenced_columns: List[str] = field(default_factory=list)
    definition: Optional[str] = None


@dataclass
class IndexInfo:
    """Information about a table index"""
    index_name: str
    is_unique: bool
    is_primary: bool
    definition: str


@dataclass
class TableStructure:
    """Live snapshot of a table's columns, constraints and indexes"""
    columns: List[ColumnInfo]
    constraints: List[ConstraintInfo]
    indexes: List[IndexInfo]

    @property
    def primary_key_columns(self) -> List[str]:
        for constraint in self.constraints:
            if constraint.constraint_type == "p":
                return list(constraint.columns)
        return []

    @property
    def editable(self) -> bool:
        return bool(self.primary_key_columns)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['primary_key'] = self.primary_key_columns[0] if self.primary_key_columns else None
        data['editable'] = self.editable
        return data


FILTER_OPERATORS = ("=", "!=", ">", "<", ">=", "<=", "LIKE", "ILIKE", "IS NULL", "IS NOT NULL")
NULL_OPERATORS = ("IS NULL", "IS NOT NULL")


@dataclass
class DataFilter:
    """One column predicate of a table data request"""
    column: str
    operator: str
    value: Optional[Any] = None

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "DataFilter":
        if not isinstance(raw, dict):
            raise InvalidRequestError("Each filter must be an object")
        column = raw.get('column')
        operator = str(raw.get('operator', '')).strip().upper()
        if not column or not isinstance(column, str):
            raise InvalidRequestError("Filter is missing a column name")
        if operator not in FILTER_OPERATORS:
            raise InvalidRequestError(f"Unsupported filter operator: {raw.get('operator')!r}")
        return cls(column=column, operator=operator, value=raw.get('value'))

    @property
    def binds_value(self) -> bool:
        return self.operator not in NULL_OPERATORS


def parse_filters(raw: Optional[str]) -> List[DataFilter]:
    """Parse the JSON-encoded filter list of a table data request"""
    if not raw:
        return []
    try:
        decoded = json.loads(raw)
    except ValueError:
        raise InvalidRequestError("Invalid filter JSON")
    if not isinstance(decoded, list):
        raise InvalidRequestError("Filter JSON must be an array")
    return [DataFilter.from_dict(item) for item in decoded]


@dataclass
class TableDataOptions:
    """Pagination, ordering and filtering of a table data request"""
    page: int = 1
    page_size: int = 50
    order_by: Optional[str] = None
    order_dir: str = "ASC"
    filters: List[DataFilter] = field(default_factory=list)


@dataclass
class TableDataResult:
    """One page of table rows plus exact totals"""
    rows: List[Dict[str, Any]]
    fields: List[FieldInfo]
    total: int
    page: int
    page_size: int
    total_pages: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            'rows': self.rows,
            'fields': [asdict(f) for f in self.fields],
            'total': self.total,
            'page': self.page,
            'pageSize': self.page_size,
            'totalPages': self.total_pages,
        }


@dataclass
class DatabaseStats:
    """Server-level statistics of a database"""
    version: str
    current_db: str
    db_size: str
    db_size_bytes: int
    active_connections: int
    max_connections: str
    started_at: Optional[str] = None
    uptime: Optional[str] = None


@dataclass
class ConnectionInfo:
    """One session connected to the server"""
    pid: Any
    user: Optional[str]
    database: Optional[str]
    client_addr: Optional[str]
    application_name: Optional[str]
    state: Optional[str]
    query: Optional[str]
    backend_start: Optional[str]
    query_start: Optional[str]
    query_duration: Optional[str]


@dataclass
class StatementError:
    """A failed statement of an import batch (index is 1-based)"""
    index: int
    message: str

    def __str__(self) -> str:
        return f"Statement {self.index}: {self.message}"


@dataclass
class ImportResult:
    """Outcome of a best-effort SQL import"""
    statements_total: int
    statements_executed: int
    errors: List[StatementError] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.errors

    def to_dict(self) -> Dict[str, Any]:
        return {
            'success': True,
            'statementsTotal': self.statements_total,
            'statementsExecuted': self.statements_executed,
            'errors': [str(e) for e in self.errors],
        }
