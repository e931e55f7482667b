"""Tests for the HTTP layer."""

from decimal import Decimal

import psycopg2
import pytest
import uvicorn
from fastapi.testclient import TestClient

from hubpanel import server
from hubpanel.config import Settings
from hubpanel.database.errors import DatabaseConnectionError
from hubpanel.database.factory import DatabaseFactory
from hubpanel.database.registry import DriverRegistry
from hubpanel.server import STATUS_BY_CATEGORY, create_app


@pytest.fixture
def client(registry, activity):
    app = create_app(settings=Settings(), registry=registry, activity=activity, environ={})
    with TestClient(app) as client:
        yield client


class TestStatus:
    """Test the status endpoint and error mapping."""

    def test_status(self, client):
        response = client.get("/status")

        assert response.status_code == 200
        body = response.json()
        assert body['status'] == "running"
        assert body['databases'] == 2
        assert body['storedConnections'] is False
        assert body['executions']['total_executions'] == 0

    def test_unknown_database(self, client):
        response = client.get("/tables", params={"db": "nope"})

        assert response.status_code == 404
        assert response.json() == {'error': 'Database "nope" is not configured.', 'category': "not_configured"}

    def test_missing_parameter(self, client):
        response = client.get("/tables")
        assert response.status_code == 400
        assert response.json()['category'] == "invalid_request"

    def test_unreachable_database(self, make_config, activity):
        def refuse():
            raise DatabaseConnectionError("PostgreSQL connection to 'shop' failed: refused")

        def factory(config, settings=None):
            driver = DatabaseFactory.create_connector(config, settings)
            driver._acquire = refuse
            return driver

        registry = DriverRegistry([make_config("shop")], factory=factory)
        app = create_app(settings=Settings(), registry=registry, activity=activity, environ={})
        with TestClient(app) as client:
            response = client.get("/tables", params={"db": "shop"})

        assert response.status_code == 503
        assert response.json() == {
            'error': "PostgreSQL connection to 'shop' failed: refused",
            'category': "connection",
        }

    def test_status_table(self):
        assert STATUS_BY_CATEGORY['not_editable'] == 422
        assert STATUS_BY_CATEGORY['forbidden'] == 403

    def test_app_is_built_when_the_server_starts(self, monkeypatch):
        calls = []
        monkeypatch.setattr(uvicorn, "run", lambda target, **kwargs: calls.append((target, kwargs)))

        server.run()

        assert not hasattr(server, "app")
        target, kwargs = calls[0]
        assert target == "hubpanel.server:create_app"
        assert kwargs['factory'] is True


class TestTables:
    """Test table browsing and editing routes."""

    def test_list_tables(self, client, fake_db):
        fake_db.on("pg_catalog.pg_tables", [{"name": "users", "size_bytes": 16384, "row_estimate": 3}])

        response = client.get("/tables", params={"db": "shop"})

        assert response.status_code == 200
        assert response.json() == [{"name": "users", "size_bytes": 16384, "size": "16 kB", "row_estimate": 3}]

    def test_structure(self, client, fake_db):
        fake_db.on("information_schema.columns", [{
            "column_name": "id", "data_type": "integer", "udt_name": "int4",
            "character_maximum_length": None, "numeric_precision": 32, "numeric_scale": 0,
            "is_nullable": "NO", "column_default": None, "is_identity": "YES",
        }])
        fake_db.on("pg_get_constraintdef", [{
            "constraint_name": "users_pkey", "constraint_type": "p", "columns": ["id"],
            "referenced_table": None, "referenced_columns": None, "definition": "PRIMARY KEY (id)",
        }])

        response = client.get("/tables", params={"db": "shop", "table": "users"})

        body = response.json()
        assert body['primary_key'] == "id"
        assert body['editable'] is True
        assert body['columns'][0]['is_identity'] is True

    def test_table_data(self, client, fake_db):
        fake_db.on("SELECT COUNT(*)", [{"total": 3}])
        fake_db.on("SELECT * FROM", [{"id": 2}])

        response = client.get("/tables/data", params={
            "db": "shop", "table": "users", "page": "2", "pageSize": "1",
            "filter": '[{"column": "id", "operator": ">", "value": 0}]',
        })

        assert response.status_code == 200
        body = response.json()
        assert body['rows'] == [{"id": 2}]
        assert (body['total'], body['page'], body['pageSize'], body['totalPages']) == (3, 2, 1, 3)

    def test_bad_filter(self, client):
        response = client.get("/tables/data", params={"db": "shop", "table": "users", "filter": "{oops"})
        assert response.status_code == 400

    def test_insert_row(self, client, fake_db, activity):
        fake_db.on("INSERT INTO", [{"id": 9, "name": "Ann"}])

        response = client.post("/tables/data", json={
            "database": "shop", "table": "users", "schema": "sales", "data": {"name": "Ann"},
        }, headers={"X-User": "ann@example.com"})

        assert response.status_code == 201
        assert response.json() == {"row": {"id": 9, "name": "Ann"}}
        assert fake_db.executed[0][1].startswith('INSERT INTO "sales"."users"')
        assert activity.entries[0]['user'] == "ann@example.com"

    def test_update_without_primary_key(self, client, fake_db):
        fake_db.on("WHERE i.indisprimary", [])

        response = client.put("/tables/data", json={
            "database": "shop", "table": "events", "pkValue": 1, "data": {"kind": "x"},
        })

        assert response.status_code == 422
        assert response.json()['category'] == "not_editable"

    def test_delete_missing_row(self, client, fake_db):
        fake_db.on("DELETE FROM", [])

        response = client.request("DELETE", "/tables/data", json={
            "database": "shop", "table": "users", "primaryKey": "id", "pkValue": 404,
        })

        assert response.status_code == 404

    def test_delete_requires_key_value(self, client):
        response = client.request("DELETE", "/tables/data", json={"database": "shop", "table": "users"})
        assert response.status_code == 400


class TestQuery:
    """Test ad-hoc queries."""

    def test_engine_values_are_json_safe(self, client, fake_db):
        fake_db.on("FROM products", [{"price": Decimal("9.99"), "blob": b"\x01\xff"}])

        response = client.post("/query", json={"database": "shop", "sql": "SELECT * FROM products"})

        assert response.status_code == 200
        body = response.json()
        assert body['rows'] == [{"price": "9.99", "blob": "01ff"}]
        assert body['rowCount'] == 1
        assert [f['name'] for f in body['fields']] == ["price", "blob"]

    def test_engine_error(self, client, fake_db):
        fake_db.on("FROM nope", error=psycopg2.ProgrammingError('relation "nope" does not exist'))

        response = client.post("/query", json={"database": "shop", "sql": "SELECT * FROM nope"})

        assert response.status_code == 400
        assert response.json()['error'] == 'relation "nope" does not exist'
        assert "duration" in response.json()


class TestBackupAndImport:
    """Test dump download and upload."""

    def test_backup_download(self, client, fake_db):
        fake_db.on("pg_catalog.pg_tables", [])

        response = client.post("/backup", json={"database": "shop"})

        assert response.status_code == 200
        assert response.headers['content-type'] == "application/sql"
        disposition = response.headers['content-disposition']
        assert disposition.startswith('attachment; filename="shop_backup_')
        assert disposition.endswith('.sql"')
        assert "-- HubPanel SQL Dump" in response.text

    def test_backup_requires_database(self, client):
        assert client.post("/backup", json={}).status_code == 400

    def test_import(self, client, fake_db):
        fake_db.on("bad", error=psycopg2.ProgrammingError("syntax error"))

        response = client.post(
            "/import",
            data={"database": "shop"},
            files={"file": ("dump.sql", b"SELECT 1;\nbad;\nSELECT 2;", "application/sql")},
        )

        assert response.status_code == 200
        assert response.json() == {
            'success': True,
            'statementsTotal': 3,
            'statementsExecuted': 2,
            'errors': ["Statement 2: syntax error"],
        }

    def test_import_rejects_other_files(self, client, fake_db):
        response = client.post(
            "/import",
            data={"database": "shop"},
            files={"file": ("dump.txt", b"SELECT 1;", "text/plain")},
        )

        assert response.status_code == 400
        assert response.json()['error'] == "Only .sql files are accepted"
        assert fake_db.executed == []

    def test_import_requires_file(self, client):
        response = client.post("/import", data={"database": "shop"})
        assert response.status_code == 400


class TestAdministration:
    """Test database, user and connection routes."""

    def test_drop_protected_database(self, client):
        response = client.request("DELETE", "/databases/manage", json={"hostDb": "shop", "dbName": "postgres"})
        assert response.status_code == 403

    def test_create_existing_database(self, client):
        response = client.post("/databases/manage", json={"hostDb": "shop", "newDbName": "legacy"})
        assert response.status_code == 409

    def test_create_database(self, client, fake_db):
        response = client.post("/databases/manage", json={"hostDb": "shop", "newDbName": "analytics"})

        assert response.status_code == 201
        assert response.json()['envSlot'] == 1
        assert fake_db.statements() == ['CREATE DATABASE "analytics"']

    def test_create_user(self, client, fake_db):
        response = client.post("/users", json={
            "database": "legacy", "username": "bob", "password": "pw", "permissions": ["select"],
        })

        assert response.status_code == 201
        assert response.json()['granted'] == ["SELECT"]

    def test_connections_need_a_store(self, client):
        response = client.get("/connections")
        assert response.status_code == 400

    def test_logs(self, client):
        assert client.get("/logs").json() == []
