"""
MySQL and MariaDB driver
"""

from typing import Any, Dict, List, Optional, Sequence

import pymysql
from pymysql.constants import FIELD_TYPE
from sqlalchemy.engine import URL

from ..utils.formatting import format_bytes, format_uptime, to_int, to_number, to_text
from .adapters import DatabaseAdapter, USER_PERMISSIONS, filter_permissions
from .errors import QueryError
from .models import (
    ColumnInfo,
    ConnectionInfo,
    ConstraintInfo,
    DatabaseStats,
    FieldInfo,
    IndexInfo,
    TableInfo,
    TableStructure,
)
from .quoting import MYSQL, escape_pyformat

CONSTRAINT_TYPE_CODES = {
    "PRIMARY KEY": "p",
    "FOREIGN KEY": "f",
    "UNIQUE": "u",
    "CHECK": "c",
}

FIELD_TYPE_NAMES: Dict[int, str] = {}
for _name, _code in vars(FIELD_TYPE).items():
    # CHAR and INTERVAL are aliases of TINY and ENUM
    if _name.isupper() and isinstance(_code, int):
        FIELD_TYPE_NAMES.setdefault(_code, _name)

LIST_TABLES_SQL = """
    SELECT
        TABLE_NAME AS name,
        COALESCE(DATA_LENGTH, 0) + COALESCE(INDEX_LENGTH, 0) AS size_bytes,
        COALESCE(TABLE_ROWS, 0) AS row_estimate
    FROM information_schema.TABLES
    WHERE TABLE_SCHEMA = %s
        AND TABLE_TYPE = 'BASE TABLE'
    ORDER BY TABLE_NAME
"""

COLUMNS_SQL = """
    SELECT
        COLUMN_NAME AS column_name,
        DATA_TYPE AS data_type,
        COLUMN_TYPE AS udt_name,
        CHARACTER_MAXIMUM_LENGTH AS character_maximum_length,
        NUMERIC_PRECISION AS numeric_precision,
        NUMERIC_SCALE AS numeric_scale,
        IS_NULLABLE AS is_nullable,
        COLUMN_DEFAULT AS column_default,
        EXTRA AS extra
    FROM information_schema.COLUMNS
    WHERE TABLE_SCHEMA = %s AND TABLE_NAME = %s
    ORDER BY ORDINAL_POSITION
"""

CONSTRAINTS_SQL = """
    SELECT
        tc.CONSTRAINT_NAME AS constraint_name,
        tc.CONSTRAINT_TYPE AS constraint_type,
        GROUP_CONCAT(kcu.COLUMN_NAME ORDER BY kcu.ORDINAL_POSITION) AS columns_str,
        MAX(kcu.REFERENCED_TABLE_NAME) AS referenced_table,
        GROUP_CONCAT(kcu.REFERENCED_COLUMN_NAME ORDER BY kcu.ORDINAL_POSITION) AS referenced_columns_str
    FROM information_schema.TABLE_CONSTRAINTS tc
    LEFT JOIN information_schema.KEY_COLUMN_USAGE kcu
        ON kcu.CONSTRAINT_SCHEMA = tc.CONSTRAINT_SCHEMA
        AND kcu.CONSTRAINT_NAME = tc.CONSTRAINT_NAME
        AND kcu.TABLE_NAME = tc.TABLE_NAME
    WHERE tc.TABLE_SCHEMA = %s AND tc.TABLE_NAME = %s
    GROUP BY tc.CONSTRAINT_NAME, tc.CONSTRAINT_TYPE
    ORDER BY tc.CONSTRAINT_NAME
"""

INDEXES_SQL = """
    SELECT
        INDEX_NAME AS index_name,
        NOT NON_UNIQUE AS is_unique,
        INDEX_NAME = 'PRIMARY' AS is_primary,
        GROUP_CONCAT(COLUMN_NAME ORDER BY SEQ_IN_INDEX) AS definition
    FROM information_schema.STATISTICS
    WHERE TABLE_SCHEMA = %s AND TABLE_NAME = %s
    GROUP BY INDEX_NAME, NON_UNIQUE
    ORDER BY INDEX_NAME
"""

PRIMARY_KEY_SQL = """
    SELECT COLUMN_NAME AS column_name
    FROM information_schema.KEY_COLUMN_USAGE
    WHERE TABLE_SCHEMA = %s
        AND TABLE_NAME = %s
        AND CONSTRAINT_NAME = 'PRIMARY'
    ORDER BY ORDINAL_POSITION
    LIMIT 1
"""

DATABASE_SIZE_SQL = """
    SELECT SUM(DATA_LENGTH + INDEX_LENGTH) AS db_size_bytes
    FROM information_schema.TABLES
    WHERE TABLE_SCHEMA = %s
"""

ACTIVE_CONNECTIONS_SQL = """
    SELECT
        ID AS pid,
        USER AS user,
        DB AS `database`,
        HOST AS client_addr,
        COMMAND AS state,
        INFO AS query,
        TIME AS query_duration
    FROM information_schema.PROCESSLIST
    WHERE DB IS NOT NULL
    ORDER BY TIME DESC
"""

SLOW_QUERIES_SQL = """
    SELECT start_time, user_host, query_time, lock_time, rows_sent, rows_examined, db, sql_text
    FROM mysql.slow_log
    ORDER BY start_time DESC
    LIMIT 20
"""

LIST_DATABASES_SQL = """
    SELECT
        s.SCHEMA_NAME AS name,
        SUM(COALESCE(t.DATA_LENGTH, 0) + COALESCE(t.INDEX_LENGTH, 0)) AS size_bytes
    FROM information_schema.SCHEMATA s
    LEFT JOIN information_schema.TABLES t ON t.TABLE_SCHEMA = s.SCHEMA_NAME
    GROUP BY s.SCHEMA_NAME
    ORDER BY s.SCHEMA_NAME
"""

TABLE_FRAGMENTATION_SQL = """
    SELECT TABLE_SCHEMA AS `schema`, TABLE_NAME AS `table`, TABLE_ROWS AS live_rows,
           DATA_FREE AS free_bytes,
           CASE WHEN DATA_LENGTH > 0 THEN ROUND(DATA_FREE / DATA_LENGTH * 100, 2)
           ELSE 0 END AS bloat_ratio
    FROM information_schema.TABLES
    WHERE TABLE_SCHEMA = %s AND TABLE_TYPE = 'BASE TABLE'
    ORDER BY DATA_FREE DESC
    LIMIT 20
"""

LIST_USERS_SQL = """
    SELECT User AS username, Host AS host,
           IF(Super_priv = 'Y', TRUE, FALSE) AS is_superuser,
           IF(Create_priv = 'Y', TRUE, FALSE) AS can_create_db
    FROM mysql.user
    ORDER BY User
"""

STATUS_COUNTERS = (
    "Uptime", "Com_commit", "Com_rollback",
    "Innodb_buffer_pool_reads", "Innodb_buffer_pool_read_requests",
)


def split_group_concat(raw: Optional[str]) -> List[str]:
    """GROUP_CONCAT output back into a list of names"""
    if not raw:
        return []
    return [part for part in str(raw).split(",") if part]


class MySQLAdapter(DatabaseAdapter):
    """MySQL driver; MariaDB servers use it unchanged

    MySQL has no RETURNING clause, so row mutations read the row back with a
    follow-up SELECT.
    """

    dialect = MYSQL
    driver_label = "MySQL"
    dbapi_error = pymysql.Error

    def _build_url(self) -> URL:
        return URL.create(
            "mysql+pymysql",
            username=self.config.user,
            password=self.config.password,
            host=self.config.host,
            port=self.config.port,
            database=self.config.database,
        )

    def _connect_args(self) -> Dict[str, Any]:
        return {
            'connect_timeout': self.connect_timeout,
            'read_timeout': self.query_timeout,
            'write_timeout': self.query_timeout,
            'charset': "utf8mb4",
            'autocommit': True,
        }

    def _field_info(self, description: Sequence[Any]) -> FieldInfo:
        type_code = description[1]
        return FieldInfo(
            name=description[0],
            type_id=type_code,
            type_name=FIELD_TYPE_NAMES.get(type_code),
        )

    def _database(self, schema: Optional[str]) -> str:
        # MySQL has no schemas inside a database
        if not schema or schema == "public":
            return self.config.database
        return schema

    def qualified_table(self, schema: Optional[str], table: str) -> str:
        return self.dialect.qualify(self._database(schema), table)

    def _table_sql(self, schema: Optional[str], table: str) -> str:
        return escape_pyformat(self.qualified_table(schema, table))

    def _ident_sql(self, name: str) -> str:
        return escape_pyformat(self.dialect.quote_ident(name))

    async def list_tables(self, schema: Optional[str] = None) -> List[TableInfo]:
        result = await self.query(LIST_TABLES_SQL, [self._database(schema)])
        tables = []
        for row in result.rows:
            size_bytes = to_int(row['size_bytes'])
            tables.append(TableInfo(
                name=row['name'],
                size_bytes=size_bytes,
                size=format_bytes(size_bytes),
                row_estimate=to_int(row['row_estimate']),
            ))
        return tables

    async def get_table_structure(self, schema: Optional[str], table: str) -> TableStructure:
        params = [self._database(schema), table]

        columns = await self.query(COLUMNS_SQL, params)
        constraints = await self.query(CONSTRAINTS_SQL, params)
        indexes = await self.query(INDEXES_SQL, params)

        return TableStructure(
            columns=[
                ColumnInfo(
                    column_name=row['column_name'],
                    data_type=row['data_type'],
                    udt_name=row['udt_name'],
                    character_maximum_length=row['character_maximum_length'],
                    numeric_precision=row['numeric_precision'],
                    numeric_scale=row['numeric_scale'],
                    is_nullable=row['is_nullable'] == "YES",
                    column_default=row['column_default'],
                    is_identity="auto_increment" in str(row.get('extra') or "").lower(),
                )
                for row in columns.rows
            ],
            constraints=[
                ConstraintInfo(
                    constraint_name=str(row['constraint_name']),
                    constraint_type=CONSTRAINT_TYPE_CODES.get(
                        row['constraint_type'], str(row['constraint_type'])
                    ),
                    columns=split_group_concat(row['columns_str']),
                    referenced_table=row.get('referenced_table'),
                    referenced_columns=split_group_concat(row.get('referenced_columns_str')),
                )
                for row in constraints.rows
            ],
            indexes=[
                IndexInfo(
                    index_name=row['index_name'],
                    is_unique=bool(row['is_unique']),
                    is_primary=bool(row['is_primary']),
                    definition=row['definition'],
                )
                for row in indexes.rows
            ],
        )

    async def get_database_stats(self) -> DatabaseStats:
        version = await self.query("SELECT VERSION() AS version")
        size = await self.query(DATABASE_SIZE_SQL, [self.config.database])
        processes = await self.query("SELECT COUNT(*) AS count FROM information_schema.PROCESSLIST")
        max_connections = await self._variable("SHOW VARIABLES LIKE 'max_connections'")
        uptime = await self._variable("SHOW GLOBAL STATUS LIKE 'Uptime'")

        size_bytes = to_int(size.rows[0]['db_size_bytes']) if size.rows else 0

        return DatabaseStats(
            version=version.rows[0]['version'] if version.rows else "Unknown",
            current_db=self.config.database,
            db_size=format_bytes(size_bytes),
            db_size_bytes=size_bytes,
            active_connections=to_int(processes.rows[0]['count']) if processes.rows else 0,
            max_connections=str(max_connections or "0"),
            uptime=format_uptime(uptime) if uptime else None,
        )

    async def _variable(self, sql: str) -> Optional[str]:
        result = await self.query(sql)
        if not result.rows:
            return None
        row = result.rows[0]
        return row.get('Value', row.get('VALUE'))

    async def get_active_connections(self) -> List[ConnectionInfo]:
        result = await self.query(ACTIVE_CONNECTIONS_SQL)
        return [
            ConnectionInfo(
                pid=row['pid'],
                user=row['user'],
                database=row['database'],
                client_addr=row['client_addr'],
                application_name=None,
                state=row['state'],
                query=row['query'],
                backend_start=None,
                query_start=None,
                query_duration=f"{row['query_duration']}s" if row['query_duration'] is not None else None,
            )
            for row in result.rows
        ]

    async def get_slow_queries(self) -> List[Dict[str, Any]]:
        try:
            result = await self.query(SLOW_QUERIES_SQL)
        except QueryError:
            return []
        return [
            {key: to_text(value) if key in ('start_time', 'query_time', 'lock_time') else value
             for key, value in row.items()}
            for row in result.rows
        ]

    async def get_engine_metrics(self) -> Dict[str, Any]:
        counters = await self._status_counters()
        commits = counters.get('Com_commit', 0)
        rollbacks = counters.get('Com_rollback', 0)
        uptime = counters.get('Uptime', 0)
        reads = counters.get('Innodb_buffer_pool_reads', 0)
        requests = counters.get('Innodb_buffer_pool_read_requests', 0)

        try:
            databases = await self.list_databases()
        except QueryError:
            databases = []
        try:
            fragmentation = (await self.query(TABLE_FRAGMENTATION_SQL, [self.config.database])).rows
        except QueryError:
            fragmentation = []

        return {
            'databaseSizes': databases,
            'cacheHitRatio': {
                'heapRead': reads,
                'heapHit': max(requests - reads, 0),
                'ratio': round((requests - reads) / requests * 100, 2) if requests else 0,
            },
            'transactions': {
                'total': commits + rollbacks,
                'commits': commits,
                'rollbacks': rollbacks,
                'tps': round((commits + rollbacks) / uptime, 2) if uptime else 0,
            },
            'tableBloat': [
                dict(row, bloat_ratio=to_number(row['bloat_ratio'])) for row in fragmentation
            ],
        }

    async def _status_counters(self) -> Dict[str, float]:
        names = ", ".join(self.dialect.quote_string(name) for name in STATUS_COUNTERS)
        try:
            result = await self.query(f"SHOW GLOBAL STATUS WHERE Variable_name IN ({names})")
        except QueryError:
            return {}
        return {row['Variable_name']: to_number(row['Value']) for row in result.rows}

    async def get_primary_key(self, schema: Optional[str], table: str) -> Optional[str]:
        result = await self.query(PRIMARY_KEY_SQL, [self._database(schema), table])
        return str(result.rows[0]['column_name']) if result.rows else None

    def _select_by_key_sql(self, schema: Optional[str], table: str, pk: str) -> str:
        return f"SELECT * FROM {self._table_sql(schema, table)} WHERE {self._ident_sql(pk)} = %s"

    async def insert_row(self, schema: Optional[str], table: str,
                         data: Dict[str, Any]) -> Dict[str, Any]:
        keys = self._require_data(data, "insert")
        columns = ", ".join(self._ident_sql(k) for k in keys)
        placeholders = ", ".join(["%s"] * len(keys))
        sql = f"INSERT INTO {self._table_sql(schema, table)} ({columns}) VALUES ({placeholders})"

        pk = await self.get_primary_key(schema, table)

        # LAST_INSERT_ID() is per session: the read-back must use the same connection
        async with self.session() as session:
            await session.query(sql, self._row_params(data, keys))
            if pk is None:
                return dict(data)

            key_value = data.get(pk)
            if key_value is None:
                last = await session.query("SELECT LAST_INSERT_ID() AS id")
                key_value = last.rows[0]['id'] if last.rows else None
                if not key_value:
                    return dict(data)

            inserted = await session.query(self._select_by_key_sql(schema, table, pk), [key_value])

        return inserted.rows[0] if inserted.rows else dict(data)

    async def update_row(self, schema: Optional[str], table: str, pk: Optional[str],
                         pk_value: Any, data: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        keys = self._require_data(data, "update")
        pk = await self._require_primary_key(schema, table, pk)
        assignments = ", ".join(f"{self._ident_sql(k)} = %s" for k in keys)

        sql = f"UPDATE {self._table_sql(schema, table)} SET {assignments} WHERE {self._ident_sql(pk)} = %s"
        await self.query(sql, self._row_params(data, keys) + [pk_value])

        # The update may have changed the key itself
        new_value = data[pk] if pk in data else pk_value
        result = await self.query(self._select_by_key_sql(schema, table, pk), [new_value])
        return result.rows[0] if result.rows else None

    async def delete_row(self, schema: Optional[str], table: str, pk: Optional[str],
                         pk_value: Any) -> Optional[Dict[str, Any]]:
        pk = await self._require_primary_key(schema, table, pk)

        before = await self.query(self._select_by_key_sql(schema, table, pk), [pk_value])
        if not before.rows:
            return None

        sql = f"DELETE FROM {self._table_sql(schema, table)} WHERE {self._ident_sql(pk)} = %s"
        await self.query(sql, [pk_value])
        return before.rows[0]

    async def list_databases(self) -> List[Dict[str, Any]]:
        result = await self.query(LIST_DATABASES_SQL)
        return [
            {
                'name': row['name'],
                'size_bytes': to_int(row['size_bytes']),
                'size': format_bytes(to_int(row['size_bytes'])),
            }
            for row in result.rows
        ]

    async def create_database(self, name: str, owner: Optional[str] = None) -> None:
        # MySQL databases have no owner
        await self.query(
            f"CREATE DATABASE {self.dialect.quote_ident(name)} "
            f"CHARACTER SET utf8mb4 COLLATE utf8mb4_unicode_ci"
        )
        self.logger.info(f"Created database {name!r} on '{self.name}'")

    async def drop_database(self, name: str) -> None:
        await self.query(f"DROP DATABASE IF EXISTS {self.dialect.quote_ident(name)}")
        self.logger.info(f"Dropped database {name!r} on '{self.name}'")

    async def list_users(self) -> List[Dict[str, Any]]:
        result = await self.query(LIST_USERS_SQL)
        return [
            dict(row, is_superuser=bool(row['is_superuser']), can_create_db=bool(row['can_create_db']))
            for row in result.rows
        ]

    async def create_user(self, username: str, password: str,
                          permissions: Sequence[str] = ()) -> List[str]:
        await self.query("CREATE USER %s@'%%' IDENTIFIED BY %s", [username, password])

        granted = filter_permissions(permissions, USER_PERMISSIONS)
        if granted:
            database = self._ident_sql(self.config.database)
            await self.query(f"GRANT {', '.join(granted)} ON {database}.* TO %s@'%%'", [username])
            await self.query("FLUSH PRIVILEGES")
        return granted

    async def drop_user(self, username: str) -> None:
        await self.query("DROP USER IF EXISTS %s@'%%'", [username])
