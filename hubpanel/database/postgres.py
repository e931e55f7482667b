"""
PostgreSQL and Supabase driver
"""

from typing import Any, Dict, List, Optional, Sequence

import psycopg2
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
from .quoting import POSTGRES, escape_pyformat

DEFAULT_SCHEMA = "public"

PG_USER_PERMISSIONS = USER_PERMISSIONS + ("USAGE",)

LIST_TABLES_SQL = """
    SELECT
        t.tablename AS name,
        pg_total_relation_size(quote_ident(t.schemaname) || '.' || quote_ident(t.tablename)) AS size_bytes,
        COALESCE(s.n_live_tup, 0) AS row_estimate
    FROM pg_catalog.pg_tables t
    LEFT JOIN pg_catalog.pg_stat_user_tables s
        ON s.schemaname = t.schemaname AND s.relname = t.tablename
    WHERE t.schemaname = %s
    ORDER BY t.tablename
"""

COLUMNS_SQL = """
    SELECT
        c.column_name, c.data_type, c.udt_name,
        c.character_maximum_length, c.numeric_precision, c.numeric_scale,
        c.is_nullable, c.column_default, c.is_identity
    FROM information_schema.columns c
    WHERE c.table_schema = %s AND c.table_name = %s
    ORDER BY c.ordinal_position
"""

CONSTRAINTS_SQL = """
    SELECT
        con.conname AS constraint_name,
        con.contype AS constraint_type,
        array_remove(array_agg(att.attname::text ORDER BY u.pos), NULL) AS columns,
        ref.relname AS referenced_table,
        (
            SELECT array_agg(fatt.attname::text ORDER BY fu.pos)
            FROM unnest(con.confkey) WITH ORDINALITY AS fu(attnum, pos)
            JOIN pg_catalog.pg_attribute fatt
                ON fatt.attrelid = con.confrelid AND fatt.attnum = fu.attnum
        ) AS referenced_columns,
        pg_get_constraintdef(con.oid) AS definition
    FROM pg_catalog.pg_constraint con
    JOIN pg_catalog.pg_class rel ON rel.oid = con.conrelid
    JOIN pg_catalog.pg_namespace nsp ON nsp.oid = rel.relnamespace
    LEFT JOIN pg_catalog.pg_class ref ON ref.oid = con.confrelid
    LEFT JOIN LATERAL unnest(con.conkey) WITH ORDINALITY AS u(attnum, pos) ON TRUE
    LEFT JOIN pg_catalog.pg_attribute att
        ON att.attrelid = rel.oid AND att.attnum = u.attnum
    WHERE nsp.nspname = %s AND rel.relname = %s
        AND con.contype IN ('p', 'f', 'u', 'c', 'x')
    GROUP BY con.oid, con.conname, con.contype, ref.relname, con.confrelid, con.confkey
    ORDER BY con.conname
"""

INDEXES_SQL = """
    SELECT
        i.relname AS index_name,
        ix.indisunique AS is_unique,
        ix.indisprimary AS is_primary,
        pg_get_indexdef(ix.indexrelid) AS definition
    FROM pg_catalog.pg_index ix
    JOIN pg_catalog.pg_class i ON i.oid = ix.indexrelid
    JOIN pg_catalog.pg_class t ON t.oid = ix.indrelid
    JOIN pg_catalog.pg_namespace n ON n.oid = t.relnamespace
    WHERE n.nspname = %s AND t.relname = %s
    ORDER BY i.relname
"""

PRIMARY_KEY_SQL = """
    SELECT a.attname AS column_name
    FROM pg_catalog.pg_index i
    JOIN pg_catalog.pg_attribute a ON a.attrelid = i.indrelid AND a.attnum = ANY(i.indkey)
    JOIN pg_catalog.pg_class c ON c.oid = i.indrelid
    JOIN pg_catalog.pg_namespace n ON n.oid = c.relnamespace
    WHERE i.indisprimary AND n.nspname = %s AND c.relname = %s
    ORDER BY array_position(i.indkey, a.attnum)
    LIMIT 1
"""

STATS_SQL = """
    SELECT
        version() AS version,
        current_database() AS current_db,
        pg_database_size(current_database()) AS db_size_bytes,
        (SELECT count(*) FROM pg_stat_activity) AS active_connections,
        (SELECT setting FROM pg_settings WHERE name = 'max_connections') AS max_connections,
        pg_postmaster_start_time() AS started_at,
        EXTRACT(EPOCH FROM (now() - pg_postmaster_start_time())) AS uptime_seconds
"""

ACTIVE_CONNECTIONS_SQL = """
    SELECT
        pid, usename AS user, datname AS database,
        client_addr, application_name, state, query,
        backend_start, query_start,
        now() - query_start AS query_duration
    FROM pg_stat_activity
    WHERE datname IS NOT NULL
    ORDER BY query_start DESC NULLS LAST
"""

SLOW_QUERIES_SQL = """
    SELECT queryid, query, calls, total_exec_time, mean_exec_time,
           min_exec_time, max_exec_time, rows
    FROM pg_stat_statements
    ORDER BY mean_exec_time DESC
    LIMIT 20
"""

# pg_stat_statements before PostgreSQL 13
SLOW_QUERIES_LEGACY_SQL = """
    SELECT queryid, query, calls, total_time AS total_exec_time,
           mean_time AS mean_exec_time, min_time AS min_exec_time,
           max_time AS max_exec_time, rows
    FROM pg_stat_statements
    ORDER BY mean_time DESC
    LIMIT 20
"""

DATABASE_SIZES_SQL = """
    SELECT
        datname AS name,
        CASE WHEN has_database_privilege(datname, 'CONNECT')
             THEN pg_database_size(datname) END AS size_bytes
    FROM pg_database
    WHERE datistemplate = false
    ORDER BY datname
"""

CACHE_HIT_SQL = """
    SELECT sum(heap_blks_read) AS heap_read, sum(heap_blks_hit) AS heap_hit,
           CASE WHEN sum(heap_blks_hit) + sum(heap_blks_read) = 0 THEN 0
           ELSE round(sum(heap_blks_hit)::numeric / (sum(heap_blks_hit) + sum(heap_blks_read)) * 100, 2)
           END AS ratio
    FROM pg_statio_user_tables
"""

TRANSACTIONS_SQL = """
    SELECT xact_commit + xact_rollback AS total_transactions,
           xact_commit AS commits, xact_rollback AS rollbacks,
           CASE WHEN EXTRACT(EPOCH FROM (now() - stats_reset)) > 0
           THEN round(((xact_commit + xact_rollback) / EXTRACT(EPOCH FROM (now() - stats_reset)))::numeric, 2)
           ELSE 0 END AS tps
    FROM pg_stat_database
    WHERE datname = current_database()
"""

TABLE_BLOAT_SQL = """
    SELECT schemaname AS schema, relname AS table, n_live_tup AS live_rows,
           n_dead_tup AS dead_rows,
           CASE WHEN n_live_tup > 0 THEN round((n_dead_tup::numeric / n_live_tup) * 100, 2)
           ELSE 0 END AS bloat_ratio,
           last_vacuum, last_autovacuum, last_analyze, last_autoanalyze
    FROM pg_stat_user_tables
    ORDER BY n_dead_tup DESC
    LIMIT 20
"""

LIST_USERS_SQL = """
    SELECT rolname AS username, rolsuper AS is_superuser,
           rolcreatedb AS can_create_db, rolcreaterole AS can_create_role,
           rolcanlogin AS can_login, rolreplication AS is_replication,
           rolconnlimit AS connection_limit, rolvaliduntil AS valid_until
    FROM pg_roles
    ORDER BY rolname
"""


class PostgreSQLAdapter(DatabaseAdapter):
    """PostgreSQL driver; Supabase projects use it unchanged"""

    dialect = POSTGRES
    driver_label = "PostgreSQL"
    dbapi_error = psycopg2.Error

    def _build_url(self) -> URL:
        return URL.create(
            "postgresql+psycopg2",
            username=self.config.user,
            password=self.config.password,
            host=self.config.host,
            port=self.config.port,
            database=self.config.database,
        )

    def _connect_args(self) -> Dict[str, Any]:
        return {
            'connect_timeout': self.connect_timeout,
            'options': f"-c statement_timeout={int(self.query_timeout * 1000)}",
            'application_name': "hubpanel",
        }

    def _field_info(self, description: Sequence[Any]) -> FieldInfo:
        return FieldInfo(name=description[0], type_id=description[1])

    def _schema(self, schema: Optional[str]) -> str:
        return schema or DEFAULT_SCHEMA

    def qualified_table(self, schema: Optional[str], table: str) -> str:
        return self.dialect.qualify(self._schema(schema), table)

    def _table_sql(self, schema: Optional[str], table: str) -> str:
        return escape_pyformat(self.qualified_table(schema, table))

    def _ident_sql(self, name: str) -> str:
        return escape_pyformat(self.dialect.quote_ident(name))

    async def list_tables(self, schema: Optional[str] = None) -> List[TableInfo]:
        result = await self.query(LIST_TABLES_SQL, [self._schema(schema)])
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
        params = [self._schema(schema), table]

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
                    is_identity=row.get('is_identity') == "YES",
                )
                for row in columns.rows
            ],
            constraints=[
                ConstraintInfo(
                    constraint_name=row['constraint_name'],
                    constraint_type=row['constraint_type'],
                    columns=list(row['columns'] or []),
                    referenced_table=row['referenced_table'],
                    referenced_columns=list(row['referenced_columns'] or []),
                    definition=row['definition'],
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
        result = await self.query(STATS_SQL)
        row = result.rows[0] if result.rows else {}
        size_bytes = to_int(row.get('db_size_bytes'))

        return DatabaseStats(
            version=row.get('version') or "Unknown",
            current_db=row.get('current_db') or self.config.database,
            db_size=format_bytes(size_bytes),
            db_size_bytes=size_bytes,
            active_connections=to_int(row.get('active_connections')),
            max_connections=str(row.get('max_connections') or "0"),
            started_at=to_text(row.get('started_at')),
            uptime=format_uptime(row.get('uptime_seconds')),
        )

    async def get_active_connections(self) -> List[ConnectionInfo]:
        result = await self.query(ACTIVE_CONNECTIONS_SQL)
        return [
            ConnectionInfo(
                pid=row['pid'],
                user=row['user'],
                database=row['database'],
                client_addr=to_text(row['client_addr']),
                application_name=row['application_name'],
                state=row['state'],
                query=row['query'],
                backend_start=to_text(row['backend_start']),
                query_start=to_text(row['query_start']),
                query_duration=to_text(row['query_duration']),
            )
            for row in result.rows
        ]

    async def get_slow_queries(self) -> List[Dict[str, Any]]:
        for sql in (SLOW_QUERIES_SQL, SLOW_QUERIES_LEGACY_SQL):
            try:
                result = await self.query(sql)
            except QueryError:
                continue
            return result.rows
        # pg_stat_statements is not installed
        return []

    async def get_engine_metrics(self) -> Dict[str, Any]:
        sizes = await self._soft_rows(DATABASE_SIZES_SQL)
        cache = await self._soft_rows(CACHE_HIT_SQL)
        transactions = await self._soft_rows(TRANSACTIONS_SQL)
        bloat = await self._soft_rows(TABLE_BLOAT_SQL)

        cache_row = cache[0] if cache else {}
        txn_row = transactions[0] if transactions else {}

        return {
            'databaseSizes': [
                {
                    'name': row['name'],
                    'size_bytes': to_int(row['size_bytes']),
                    'size': format_bytes(row['size_bytes']) if row['size_bytes'] is not None else None,
                }
                for row in sizes
            ],
            'cacheHitRatio': {
                'heapRead': to_number(cache_row.get('heap_read')),
                'heapHit': to_number(cache_row.get('heap_hit')),
                'ratio': to_number(cache_row.get('ratio')),
            },
            'transactions': {
                'total': to_number(txn_row.get('total_transactions')),
                'commits': to_number(txn_row.get('commits')),
                'rollbacks': to_number(txn_row.get('rollbacks')),
                'tps': to_number(txn_row.get('tps')),
            },
            'tableBloat': [
                dict(row, bloat_ratio=to_number(row['bloat_ratio'])) for row in bloat
            ],
        }

    async def _soft_rows(self, sql: str) -> List[Dict[str, Any]]:
        try:
            return (await self.query(sql)).rows
        except QueryError:
            return []

    async def get_primary_key(self, schema: Optional[str], table: str) -> Optional[str]:
        result = await self.query(PRIMARY_KEY_SQL, [self._schema(schema), table])
        return result.rows[0]['column_name'] if result.rows else None

    async def insert_row(self, schema: Optional[str], table: str,
                         data: Dict[str, Any]) -> Dict[str, Any]:
        keys = self._require_data(data, "insert")
        columns = ", ".join(self._ident_sql(k) for k in keys)
        placeholders = ", ".join(["%s"] * len(keys))

        sql = (f"INSERT INTO {self._table_sql(schema, table)} ({columns}) "
               f"VALUES ({placeholders}) RETURNING *")
        result = await self.query(sql, self._row_params(data, keys))
        return result.rows[0] if result.rows else dict(data)

    async def update_row(self, schema: Optional[str], table: str, pk: Optional[str],
                         pk_value: Any, data: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        keys = self._require_data(data, "update")
        pk = await self._require_primary_key(schema, table, pk)
        assignments = ", ".join(f"{self._ident_sql(k)} = %s" for k in keys)

        sql = (f"UPDATE {self._table_sql(schema, table)} SET {assignments} "
               f"WHERE {self._ident_sql(pk)} = %s RETURNING *")
        result = await self.query(sql, self._row_params(data, keys) + [pk_value])
        return result.rows[0] if result.rows else None

    async def delete_row(self, schema: Optional[str], table: str, pk: Optional[str],
                         pk_value: Any) -> Optional[Dict[str, Any]]:
        pk = await self._require_primary_key(schema, table, pk)
        sql = (f"DELETE FROM {self._table_sql(schema, table)} "
               f"WHERE {self._ident_sql(pk)} = %s RETURNING *")
        result = await self.query(sql, [pk_value])
        return result.rows[0] if result.rows else None

    async def list_databases(self) -> List[Dict[str, Any]]:
        result = await self.query(DATABASE_SIZES_SQL)
        return [
            {
                'name': row['name'],
                'size_bytes': row['size_bytes'],
                'size': format_bytes(row['size_bytes']) if row['size_bytes'] is not None else None,
            }
            for row in result.rows
        ]

    async def create_database(self, name: str, owner: Optional[str] = None) -> None:
        sql = f"CREATE DATABASE {self.dialect.quote_ident(name)}"
        if owner:
            sql += f" OWNER {self.dialect.quote_ident(owner)}"
        await self.query(sql)
        self.logger.info(f"Created database {name!r} on '{self.name}'")

    async def drop_database(self, name: str) -> None:
        await self.query(f"DROP DATABASE IF EXISTS {self.dialect.quote_ident(name)}")
        self.logger.info(f"Dropped database {name!r} on '{self.name}'")

    async def list_users(self) -> List[Dict[str, Any]]:
        result = await self.query(LIST_USERS_SQL)
        return [dict(row, valid_until=to_text(row.get('valid_until'))) for row in result.rows]

    async def create_user(self, username: str, password: str,
                          permissions: Sequence[str] = ()) -> List[str]:
        role = self._ident_sql(username)
        await self.query(f"CREATE ROLE {role} WITH LOGIN PASSWORD %s", [password])

        granted = filter_permissions(permissions, PG_USER_PERMISSIONS)
        if granted:
            await self.query(
                f"GRANT {', '.join(granted)} ON ALL TABLES IN SCHEMA public TO "
                f"{self.dialect.quote_ident(username)}"
            )
        return granted

    async def drop_user(self, username: str) -> None:
        exists = await self.query("SELECT 1 AS found FROM pg_roles WHERE rolname = %s", [username])
        if not exists.rows:
            return
        role = self.dialect.quote_ident(username)
        await self.query(f"REVOKE ALL PRIVILEGES ON ALL TABLES IN SCHEMA public FROM {role}")
        await self.query(f"DROP ROLE IF EXISTS {role}")
