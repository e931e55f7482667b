"""Tests for identifier and literal quoting."""

from datetime import datetime, timedelta
from decimal import Decimal

from hubpanel.database.quoting import MYSQL, POSTGRES, escape_pyformat, quote_ident, quote_literal


class TestIdentifiers:
    """Test identifier quoting per dialect."""

    def test_postgres_doubles_embedded_quotes(self):
        assert POSTGRES.quote_ident('we"ird') == '"we""ird"'

    def test_mysql_uses_backticks(self):
        assert MYSQL.quote_ident("order") == "`order`"
        assert MYSQL.quote_ident("a`b") == "`a``b`"

    def test_unquote_inverts_quote(self):
        for name in ["users", 'we"ird', "with space", "semi;colon"]:
            assert POSTGRES.unquote_ident(POSTGRES.quote_ident(name)) == name
            assert MYSQL.unquote_ident(MYSQL.quote_ident(name)) == name

    def test_qualify_skips_empty_parts(self):
        assert POSTGRES.qualify("public", "users") == '"public"."users"'
        assert MYSQL.qualify("", "users") == "`users`"

    def test_module_helpers_default_to_postgres(self):
        assert quote_ident("users") == '"users"'
        assert quote_ident("users", MYSQL) == "`users`"


class TestLiterals:
    """Test value rendering for dumps."""

    def test_scalars(self):
        assert quote_literal(None) == "NULL"
        assert quote_literal(True) == "TRUE"
        assert quote_literal(False) == "FALSE"
        assert quote_literal(42) == "42"
        assert quote_literal(1.5) == "1.5"
        assert quote_literal(Decimal("10.50")) == "10.50"

    def test_strings_double_single_quotes(self):
        assert POSTGRES.quote_literal("O'Reilly") == "'O''Reilly'"

    def test_mysql_escapes_backslashes(self):
        assert MYSQL.quote_literal("a\\b") == "'a\\\\b'"
        assert POSTGRES.quote_literal("a\\b") == "'a\\b'"

    def test_non_finite_floats_are_quoted(self):
        assert POSTGRES.quote_literal(float("nan")) == "'NaN'"
        assert POSTGRES.quote_literal(float("-inf")) == "'-Infinity'"

    def test_bytes(self):
        assert POSTGRES.quote_literal(b"\x01\xff") == "'\\x01ff'"
        assert MYSQL.quote_literal(b"\x01\xff") == "X'01ff'"

    def test_datetimes(self):
        value = datetime(2024, 1, 2, 3, 4, 5)
        assert POSTGRES.quote_literal(value) == "'2024-01-02T03:04:05'"
        assert MYSQL.quote_literal(value) == "'2024-01-02 03:04:05'"

    def test_intervals(self):
        assert MYSQL.quote_literal(timedelta(hours=1, minutes=2, seconds=3)) == "'01:02:03'"
        assert POSTGRES.quote_literal(timedelta(days=1, seconds=5)) == "'1 days 5 seconds 0 microseconds'"

    def test_json_and_arrays(self):
        assert POSTGRES.quote_literal({"a": 1}) == "'{\"a\": 1}'"
        assert POSTGRES.quote_literal([1, 2, None]) == "'{1,2,NULL}'"
        assert POSTGRES.quote_literal(["x y", True]) == "'{\"x y\",t}'"
        assert MYSQL.quote_literal([1, 2]) == "'[1, 2]'"


class TestMisc:
    """Test helpers used when building parameterized SQL."""

    def test_escape_pyformat(self):
        assert escape_pyformat('"disc%"') == '"disc%%"'

    def test_ilike_maps_to_like_on_mysql(self):
        assert MYSQL.comparison_operator("ILIKE") == "LIKE"
        assert POSTGRES.comparison_operator("ILIKE") == "ILIKE"
