"""
Engine-specific quoting of SQL identifiers and literal values
"""

import json
import math
from datetime import date, datetime, time, timedelta
from decimal import Decimal
from typing import Any


class Dialect:
    """Quoting rules of one SQL dialect"""

    name = "generic"
    identifier_quote = '"'
    backslash_escapes = False
    supports_returning = False

    def quote_ident(self, name: str) -> str:
        """Wrap an identifier in quotes, doubling embedded quote characters"""
        q = self.identifier_quote
        return f"{q}{str(name).replace(q, q + q)}{q}"

    def unquote_ident(self, quoted: str) -> str:
        """Inverse of quote_ident; unquoted input is returned unchanged"""
        q = self.identifier_quote
        if len(quoted) >= 2 and quoted[0] == q and quoted[-1] == q:
            return quoted[1:-1].replace(q + q, q)
        return quoted

    def qualify(self, *parts: str) -> str:
        return ".".join(self.quote_ident(p) for p in parts if p)

    def quote_string(self, value: str) -> str:
        return "'" + value.replace("'", "''") + "'"

    def quote_literal(self, value: Any) -> str:
        """Render a Python value as a SQL literal"""
        if value is None:
            return "NULL"
        if isinstance(value, bool):
            return "TRUE" if value else "FALSE"
        if isinstance(value, int):
            return str(value)
        if isinstance(value, float):
            if math.isnan(value) or math.isinf(value):
                return self.quote_string(self._non_finite(value))
            return repr(value)
        if isinstance(value, Decimal):
            if not value.is_finite():
                return self.quote_string("NaN" if value.is_nan() else str(value))
            return str(value)
        if isinstance(value, datetime):
            return self.quote_string(self._format_datetime(value))
        if isinstance(value, date):
            return self.quote_string(value.isoformat())
        if isinstance(value, time):
            return self.quote_string(value.isoformat())
        if isinstance(value, timedelta):
            return self.quote_string(self._format_timedelta(value))
        if isinstance(value, (bytes, bytearray, memoryview)):
            return self._quote_bytes(bytes(value))
        if isinstance(value, dict):
            return self.quote_string(json.dumps(value, default=str))
        if isinstance(value, (list, tuple)):
            return self._quote_sequence(value)
        return self.quote_string(str(value))

    def comparison_operator(self, operator: str) -> str:
        return operator

    def _non_finite(self, value: float) -> str:
        if math.isnan(value):
            return "NaN"
        return "Infinity" if value > 0 else "-Infinity"

    def _format_datetime(self, value: datetime) -> str:
        return value.isoformat()

    def _format_timedelta(self, value: timedelta) -> str:
        return f"{value.total_seconds()} seconds"

    def _quote_bytes(self, value: bytes) -> str:
        return self.quote_string(value.hex())

    def _quote_sequence(self, value) -> str:
        return self.quote_string(json.dumps(list(value), default=str))


class PostgresDialect(Dialect):
    """PostgreSQL / Supabase: double-quoted identifiers, standard strings"""

    name = "postgresql"
    identifier_quote = '"'
    supports_returning = True

    def _format_timedelta(self, value: timedelta) -> str:
        return f"{value.days} days {value.seconds} seconds {value.microseconds} microseconds"

    def _quote_bytes(self, value: bytes) -> str:
        return "'\\x" + value.hex() + "'"

    def _quote_sequence(self, value) -> str:
        return self.quote_string(self._array_literal(value))

    def _array_literal(self, value) -> str:
        items = []
        for item in value:
            if item is None:
                items.append("NULL")
            elif isinstance(item, (list, tuple)):
                items.append(self._array_literal(item))
            elif isinstance(item, bool):
                items.append("t" if item else "f")
            elif isinstance(item, (int, float, Decimal)):
                items.append(str(item))
            else:
                text = item.isoformat() if isinstance(item, (date, time)) else str(item)
                text = text.replace("\\", "\\\\").replace('"', '\\"')
                items.append(f'"{text}"')
        return "{" + ",".join(items) + "}"


class MySQLDialect(Dialect):
    """MySQL / MariaDB: backtick identifiers, backslash-escaping strings"""

    name = "mysql"
    identifier_quote = "`"
    backslash_escapes = True

    def quote_string(self, value: str) -> str:
        return "'" + value.replace("\\", "\\\\").replace("'", "''") + "'"

    def comparison_operator(self, operator: str) -> str:
        # LIKE is already case-insensitive under the default collations
        if operator == "ILIKE":
            return "LIKE"
        return operator

    def _format_datetime(self, value: datetime) -> str:
        return value.replace(tzinfo=None).isoformat(sep=" ")

    def _format_timedelta(self, value: timedelta) -> str:
        sign = "-" if value < timedelta(0) else ""
        value = abs(value)
        hours, remainder = divmod(value.days * 86400 + value.seconds, 3600)
        minutes, seconds = divmod(remainder, 60)
        text = f"{sign}{hours:02d}:{minutes:02d}:{seconds:02d}"
        if value.microseconds:
            text += f".{value.microseconds:06d}"
        return text

    def _quote_bytes(self, value: bytes) -> str:
        return "X'" + value.hex() + "'"


POSTGRES = PostgresDialect()
MYSQL = MySQLDialect()


def escape_pyformat(fragment: str) -> str:
    """Double % so a fragment survives %s parameter interpolation"""
    return fragment.replace("%", "%%")


def quote_ident(name: str, dialect: Dialect = POSTGRES) -> str:
    return dialect.quote_ident(name)


def quote_literal(value: Any, dialect: Dialect = POSTGRES) -> str:
    return dialect.quote_literal(value)
