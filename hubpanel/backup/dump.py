"""
SQL dump generation through the driver contract
"""

import json
import re
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Dict, List, Optional

from ..database.adapters import DatabaseAdapter
from ..database.errors import QueryError
from ..database.models import ColumnInfo, TableStructure
from ..database.quoting import MYSQL, escape_pyformat
from ..utils.logger import get_logger
from .ordering import SchemaAnalyzer

DUMP_TOOL_NAME = "HubPanel SQL Dump"
DEFAULT_ROW_LIMIT = 50000

SERIAL_TYPES = {
    "smallint": "smallserial",
    "integer": "serial",
    "bigint": "bigserial",
}

LENGTH_TYPES = ("character varying", "character", "bit", "bit varying")

JSON_TYPES = ("json", "jsonb")

NEXTVAL_DEFAULT = re.compile(r"^nextval\(", re.IGNORECASE)

logger = get_logger("hubpanel.dump")


def dump_filename(database: str, now: Optional[datetime] = None) -> str:
    """Download name of a dump, e.g. shop_backup_1760000000000.sql"""
    now = now or datetime.now(timezone.utc)
    return f"{database}_backup_{int(now.timestamp() * 1000)}.sql"


class DumpGenerator:
    """Render a database as a replayable sequence of SQL statements

    Tables are emitted parents first (by foreign key), each as DROP, CREATE,
    then one INSERT per row up to `row_limit` rows.
    """

    def __init__(self, driver: DatabaseAdapter, schema: Optional[str] = None,
                 row_limit: int = DEFAULT_ROW_LIMIT, now: Optional[datetime] = None,
                 analyzer: Optional[SchemaAnalyzer] = None):
        self.driver = driver
        self.dialect = driver.dialect
        self.schema = schema
        self.row_limit = row_limit
        self.now = now or datetime.now(timezone.utc)
        self.analyzer = analyzer or SchemaAnalyzer()
        self.tables_dumped = 0
        self.rows_dumped = 0

    def header(self) -> str:
        config = self.driver.config
        lines = [
            "--",
            f"-- {DUMP_TOOL_NAME}",
            f"-- Database: {config.name} ({config.engine_kind.value})",
            f"-- Generated at: {self.now.isoformat()}",
            "--",
            "",
            "",
        ]
        return "\n".join(lines)

    async def generate(self) -> str:
        """The whole dump as one string"""
        return "".join([chunk async for chunk in self.stream()])

    async def stream(self) -> AsyncIterator[str]:
        """Yield the dump in chunks: header, one chunk per table, footer"""
        tables = await self.driver.list_tables(self.schema)
        structures: Dict[str, TableStructure] = {}
        for table in tables:
            structures[table.name] = await self.driver.get_table_structure(self.schema, table.name)

        order = self.analyzer.insertion_order(structures)
        cycles = self.analyzer.find_circular_references()
        if cycles:
            logger.info(f"Foreign key cycles in '{self.driver.name}': {cycles}")

        yield self.header()
        yield self._preamble()

        for table_name in order:
            yield await self._table_chunk(table_name, structures[table_name])
            self.tables_dumped += 1

        yield self._postamble(order, structures)

        logger.info(
            f"Dumped {self.tables_dumped} tables ({self.rows_dumped} rows) "
            f"from '{self.driver.name}'"
        )

    def _preamble(self) -> str:
        if self.dialect is MYSQL:
            return "SET FOREIGN_KEY_CHECKS = 0;\n\n"
        return "BEGIN;\n\n"

    def _postamble(self, order: List[str], structures: Dict[str, TableStructure]) -> str:
        if self.dialect is MYSQL:
            return "SET FOREIGN_KEY_CHECKS = 1;\n"

        lines = []
        for table_name in order:
            for constraint in structures[table_name].constraints:
                if constraint.constraint_type == "f" and constraint.definition:
                    lines.append(
                        f"ALTER TABLE {self._table_ref(table_name)} ADD CONSTRAINT "
                        f"{self.dialect.quote_ident(constraint.constraint_name)} {constraint.definition};"
                    )
        if lines:
            lines.append("")
        lines.append("COMMIT;")
        lines.append("")
        return "\n".join(lines)

    def _table_ref(self, table_name: str) -> str:
        if self.dialect is MYSQL:
            # MySQL dumps restore into whichever database the importer is connected to
            return self.dialect.quote_ident(table_name)
        return self.driver.qualified_table(self.schema, table_name)

    async def _table_chunk(self, table_name: str, structure: TableStructure) -> str:
        ref = self._table_ref(table_name)
        lines = [f"-- Table: {table_name}"]

        if self.dialect is MYSQL:
            lines.append(f"DROP TABLE IF EXISTS {ref};")
            lines.append(await self._mysql_create_table(table_name, structure) + ";")
        else:
            lines.append(f"DROP TABLE IF EXISTS {ref} CASCADE;")
            lines.append(self._postgres_create_table(ref, structure) + ";")
        lines.append("")

        inserts, truncated = await self._insert_statements(table_name, ref, structure)
        lines.extend(inserts)
        if truncated:
            lines.append(f"-- Rows of {table_name} truncated at {self.row_limit}")

        if self.dialect is not MYSQL:
            lines.extend(self._postgres_sequence_resets(ref, structure))
            lines.extend(self._postgres_indexes(structure))

        lines.append("")
        lines.append("")
        return "\n".join(lines)

    # ------------------------------------------------------------------
    # Rows
    # ------------------------------------------------------------------

    async def _insert_statements(self, table_name: str, ref: str,
                                 structure: TableStructure):
        qualified = self.driver.qualified_table(self.schema, table_name)
        sql = f"SELECT * FROM {escape_pyformat(qualified)}"
        pk_columns = structure.primary_key_columns
        if pk_columns:
            order = ", ".join(escape_pyformat(self.dialect.quote_ident(c)) for c in pk_columns)
            sql += f" ORDER BY {order}"
        sql += " LIMIT %s"

        # One extra row tells whether the cap cut the table short
        result = await self.driver.query(sql, [self.row_limit + 1])
        rows = result.rows[:self.row_limit]
        truncated = len(result.rows) > self.row_limit

        if not rows:
            return [], truncated

        json_columns = {
            c.column_name for c in structure.columns if c.data_type.lower() in JSON_TYPES
        }
        names = [f.name for f in result.fields] or list(rows[0].keys())
        columns = ", ".join(self.dialect.quote_ident(name) for name in names)

        statements = []
        for row in rows:
            values = ", ".join(
                self._literal(row.get(name), name in json_columns) for name in names
            )
            statements.append(f"INSERT INTO {ref} ({columns}) VALUES ({values});")

        self.rows_dumped += len(rows)
        return statements, truncated

    def _literal(self, value: Any, is_json: bool) -> str:
        if is_json and value is not None and not isinstance(value, str):
            return self.dialect.quote_string(json.dumps(value, default=str))
        return self.dialect.quote_literal(value)

    # ------------------------------------------------------------------
    # PostgreSQL DDL
    # ------------------------------------------------------------------

    def _postgres_column_type(self, col: ColumnInfo) -> str:
        data_type = col.data_type
        if data_type == "ARRAY" and col.udt_name:
            return f"{col.udt_name.lstrip('_')}[]"
        if data_type == "USER-DEFINED" and col.udt_name:
            return self.dialect.quote_ident(col.udt_name)
        if data_type in LENGTH_TYPES and col.character_maximum_length:
            return f"{data_type}({col.character_maximum_length})"
        if data_type == "numeric" and col.numeric_precision is not None:
            return f"numeric({col.numeric_precision},{col.numeric_scale or 0})"
        return data_type

    def _postgres_column(self, col: ColumnInfo) -> str:
        name = self.dialect.quote_ident(col.column_name)
        default = col.column_default

        if default and NEXTVAL_DEFAULT.match(default) and col.data_type in SERIAL_TYPES:
            return f"  {name} {SERIAL_TYPES[col.data_type]}" + ("" if col.is_nullable else " NOT NULL")

        line = f"  {name} {self._postgres_column_type(col)}"
        if col.is_identity:
            line += " GENERATED BY DEFAULT AS IDENTITY"
        elif default:
            line += f" DEFAULT {default}"
        if not col.is_nullable:
            line += " NOT NULL"
        return line

    def _postgres_create_table(self, ref: str, structure: TableStructure) -> str:
        definitions = [self._postgres_column(col) for col in structure.columns]

        for constraint in structure.constraints:
            if constraint.constraint_type in ("u", "c", "x") and constraint.definition:
                definitions.append(
                    f"  CONSTRAINT {self.dialect.quote_ident(constraint.constraint_name)} "
                    f"{constraint.definition}"
                )

        pk_columns = structure.primary_key_columns
        if pk_columns:
            cols = ", ".join(self.dialect.quote_ident(c) for c in pk_columns)
            definitions.append(f"  PRIMARY KEY ({cols})")

        return f"CREATE TABLE {ref} (\n" + ",\n".join(definitions) + "\n)"

    def _postgres_sequence_resets(self, ref: str, structure: TableStructure) -> List[str]:
        statements = []
        for col in structure.columns:
            owns_sequence = col.is_identity or (
                col.column_default and NEXTVAL_DEFAULT.match(col.column_default)
            )
            if not owns_sequence:
                continue
            column = self.dialect.quote_ident(col.column_name)
            statements.append(
                f"SELECT setval(pg_get_serial_sequence({self.dialect.quote_string(ref)}, "
                f"{self.dialect.quote_string(col.column_name)}), "
                f"COALESCE(MAX({column}), 1), MAX({column}) IS NOT NULL) FROM {ref};"
            )
        return statements

    def _postgres_indexes(self, structure: TableStructure) -> List[str]:
        constraint_names = {c.constraint_name for c in structure.constraints}
        return [
            f"{index.definition};"
            for index in structure.indexes
            if not index.is_primary and index.index_name not in constraint_names
        ]

    # ------------------------------------------------------------------
    # MySQL DDL
    # ------------------------------------------------------------------

    async def _mysql_create_table(self, table_name: str, structure: TableStructure) -> str:
        qualified = self.driver.qualified_table(self.schema, table_name)
        try:
            result = await self.driver.query(f"SHOW CREATE TABLE {qualified}")
        except QueryError as e:
            logger.warning(f"SHOW CREATE TABLE failed for {table_name}, rebuilding from metadata: {e}")
            return self._mysql_create_from_metadata(table_name, structure)

        if result.rows and result.rows[0].get("Create Table"):
            return result.rows[0]["Create Table"]
        return self._mysql_create_from_metadata(table_name, structure)

    def _mysql_default(self, default: str) -> str:
        upper = default.upper()
        if upper.startswith("CURRENT_TIMESTAMP") or upper == "NULL" or upper.startswith("("):
            return default
        try:
            float(default)
            return default
        except ValueError:
            return self.dialect.quote_string(default)

    def _mysql_create_from_metadata(self, table_name: str, structure: TableStructure) -> str:
        q = self.dialect.quote_ident
        definitions = []
        for col in structure.columns:
            line = f"  {q(col.column_name)} {col.udt_name or col.data_type}"
            if not col.is_nullable:
                line += " NOT NULL"
            if col.column_default is not None:
                line += f" DEFAULT {self._mysql_default(col.column_default)}"
            if col.is_identity:
                line += " AUTO_INCREMENT"
            definitions.append(line)

        pk_columns = structure.primary_key_columns
        if pk_columns:
            definitions.append(f"  PRIMARY KEY ({', '.join(q(c) for c in pk_columns)})")

        for constraint in structure.constraints:
            cols = ", ".join(q(c) for c in constraint.columns)
            if constraint.constraint_type == "u":
                definitions.append(f"  UNIQUE KEY {q(constraint.constraint_name)} ({cols})")
            elif constraint.constraint_type == "f" and constraint.referenced_table:
                ref_cols = ", ".join(q(c) for c in constraint.referenced_columns)
                definitions.append(
                    f"  CONSTRAINT {q(constraint.constraint_name)} FOREIGN KEY ({cols}) "
                    f"REFERENCES {q(constraint.referenced_table)} ({ref_cols})"
                )

        return f"CREATE TABLE {q(table_name)} (\n" + ",\n".join(definitions) + "\n)"
