"""Tests for best-effort SQL import."""

import psycopg2
import pytest

from hubpanel.backup.importer import import_sql, validate_import_filename
from hubpanel.database.errors import InvalidRequestError


class TestFilenameValidation:
    """Test the upload filename check."""

    def test_accepts_sql_files(self):
        assert validate_import_filename("dump.sql") == "dump.sql"
        assert validate_import_filename("DUMP.SQL") == "DUMP.SQL"

    @pytest.mark.parametrize("filename", ["dump.txt", "dump.sql.gz", "dump"])
    def test_rejects_other_extensions(self, filename):
        with pytest.raises(InvalidRequestError, match="Only .sql files are accepted"):
            validate_import_filename(filename)

    def test_missing_file(self):
        with pytest.raises(InvalidRequestError, match="Missing required field: file"):
            validate_import_filename("")


class TestImport:
    """Test statement-by-statement execution."""

    @pytest.mark.asyncio
    async def test_failures_do_not_stop_the_import(self, pg_driver, fake_db):
        fake_db.on("broken", error=psycopg2.ProgrammingError('syntax error at or near "broken"'))

        result = await import_sql(pg_driver, "CREATE TABLE a (id int);\nbroken;\nINSERT INTO a VALUES (1);")

        assert result.statements_total == 3
        assert result.statements_executed == 2
        assert not result.success
        assert [str(e) for e in result.errors] == ['Statement 2: syntax error at or near "broken"']
        assert result.to_dict() == {
            'success': True,
            'statementsTotal': 3,
            'statementsExecuted': 2,
            'errors': ['Statement 2: syntax error at or near "broken"'],
        }

    @pytest.mark.asyncio
    async def test_statements_share_one_discarded_connection(self, pg_driver, fake_db):
        await import_sql(pg_driver, "SET search_path TO app; SELECT 1; SELECT 2;")

        assert len(fake_db.connections) == 1
        assert fake_db.connections[0].invalidated
        assert fake_db.statements() == ["SET search_path TO app", "SELECT 1", "SELECT 2"]

    @pytest.mark.asyncio
    async def test_statements_are_sent_without_parameters(self, pg_driver, fake_db):
        await import_sql(pg_driver, "INSERT INTO t VALUES ('100%');")

        assert fake_db.executed[0][1:] == ("INSERT INTO t VALUES ('100%')", None)

    @pytest.mark.asyncio
    async def test_comment_only_file_is_rejected(self, pg_driver, fake_db):
        with pytest.raises(InvalidRequestError, match="No SQL statements found"):
            await import_sql(pg_driver, "-- nothing here\n\n-- still nothing\n")

        assert fake_db.connections == []

    @pytest.mark.asyncio
    async def test_mysql_backslash_escapes(self, mysql_driver, fake_db):
        await import_sql(mysql_driver, "INSERT INTO t VALUES ('it\\'s; fine');\n# note\nSELECT 1;")

        assert fake_db.statements() == ["INSERT INTO t VALUES ('it\\'s; fine')", "SELECT 1"]
