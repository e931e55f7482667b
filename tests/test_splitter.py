"""Tests for the SQL statement splitter."""

import types

from hubpanel.backup.splitter import split_statements


def split(sql, **kwargs):
    return list(split_statements(sql, **kwargs))


class TestBasicSplitting:
    """Test statement boundaries in plain SQL."""

    def test_splits_on_semicolons(self):
        assert split("SELECT 1; SELECT 2;") == ["SELECT 1", "SELECT 2"]

    def test_last_statement_needs_no_semicolon(self):
        assert split("SELECT 1;\nSELECT 2") == ["SELECT 1", "SELECT 2"]

    def test_empty_statements_are_skipped(self):
        assert split(";;  ;\n") == []
        assert split("") == []

    def test_is_lazy(self):
        statements = split_statements("SELECT 1; SELECT 2")
        assert isinstance(statements, types.GeneratorType)
        assert next(statements) == "SELECT 1"


class TestQuoting:
    """Test that quoted semicolons never end a statement."""

    def test_semicolon_in_string(self):
        assert split("INSERT INTO t VALUES ('a;b'); SELECT 1") == [
            "INSERT INTO t VALUES ('a;b')",
            "SELECT 1",
        ]

    def test_doubled_quote_stays_in_string(self):
        assert split("SELECT 'it''s; fine'; SELECT 2") == ["SELECT 'it''s; fine'", "SELECT 2"]

    def test_semicolon_in_quoted_identifier(self):
        assert split('SELECT "a;b" FROM t; SELECT 1') == ['SELECT "a;b" FROM t', "SELECT 1"]

    def test_semicolon_in_backticks(self):
        assert split("SELECT `a;b` FROM t; SELECT 1") == ["SELECT `a;b` FROM t", "SELECT 1"]

    def test_escape_string_literal(self):
        assert split("SELECT E'a\\';b'; SELECT 2") == ["SELECT E'a\\';b'", "SELECT 2"]

    def test_mysql_backslash_escapes(self):
        sql = "INSERT INTO t VALUES ('it\\'s; ok'); SELECT 1"
        assert split(sql, backslash_escapes=True) == [
            "INSERT INTO t VALUES ('it\\'s; ok')",
            "SELECT 1",
        ]

    def test_unterminated_string_swallows_the_rest(self):
        assert split("SELECT 'abc; SELECT 1") == ["SELECT 'abc; SELECT 1"]


class TestDollarQuoting:
    """Test PostgreSQL dollar-quoted bodies."""

    def test_function_body(self):
        sql = (
            "CREATE FUNCTION f() RETURNS int AS $$ BEGIN RETURN 1; END; $$ LANGUAGE plpgsql;\n"
            "SELECT f();"
        )
        statements = split(sql)
        assert len(statements) == 2
        assert "RETURN 1; END;" in statements[0]
        assert statements[0].endswith("LANGUAGE plpgsql")
        assert statements[1] == "SELECT f()"

    def test_string_inside_body_keeps_its_semicolon(self):
        sql = "CREATE FUNCTION f() RETURNS void AS $$ BEGIN SELECT 'a;b'; END; $$ LANGUAGE plpgsql; SELECT 1;"
        assert split(sql) == [
            "CREATE FUNCTION f() RETURNS void AS $$ BEGIN SELECT 'a;b'; END; $$ LANGUAGE plpgsql",
            "SELECT 1",
        ]

    def test_tagged_body_may_contain_plain_dollars(self):
        sql = "DO $body$ BEGIN PERFORM '$$;'; END $body$; SELECT 1"
        assert split(sql) == ["DO $body$ BEGIN PERFORM '$$;'; END $body$", "SELECT 1"]

    def test_positional_parameter_is_not_a_tag(self):
        assert split("PREPARE p AS SELECT $1; EXECUTE p(1)") == [
            "PREPARE p AS SELECT $1",
            "EXECUTE p(1)",
        ]

    def test_dollar_inside_identifier_is_not_a_tag(self):
        assert split("SELECT a$b$c FROM t; SELECT 2") == ["SELECT a$b$c FROM t", "SELECT 2"]


class TestComments:
    """Test comment handling."""

    def test_line_comments_are_dropped(self):
        sql = "-- header; comment\nSELECT 1; -- trailing; note\nSELECT 2;"
        assert split(sql) == ["SELECT 1", "SELECT 2"]

    def test_comment_only_input_yields_nothing(self):
        assert split("-- nothing here\n") == []
        assert split("/* note */;") == []
        assert split("SELECT 1; /* trailing */") == ["SELECT 1"]

    def test_block_comments_are_kept(self):
        assert split("/* a; b */ SELECT 1; SELECT 2") == ["/* a; b */ SELECT 1", "SELECT 2"]

    def test_mysql_directive_is_a_statement(self):
        assert split("/*!40101 SET NAMES utf8 */; SELECT 1") == [
            "/*!40101 SET NAMES utf8 */",
            "SELECT 1",
        ]

    def test_hash_comments_only_in_mysql_mode(self):
        assert split("# note; x\nSELECT 1", backslash_escapes=True) == ["SELECT 1"]
        assert split("SELECT 5 # 3; SELECT 1") == ["SELECT 5 # 3", "SELECT 1"]

    def test_hash_comments_can_be_forced(self):
        assert split("# note\nSELECT 1", hash_comments=True) == ["SELECT 1"]
