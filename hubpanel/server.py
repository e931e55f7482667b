"""
HTTP entry points of HubPanel
"""

import os
import time
from contextlib import asynccontextmanager
from datetime import timedelta
from decimal import Decimal
from typing import Any, Dict, List, Optional

import uvicorn
from fastapi import FastAPI, File, Form, Request, UploadFile
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel, Field

from . import __version__
from .config import Settings, load_static_configs
from .database.connections import ConnectionStore
from .database.errors import HubPanelError, InvalidRequestError
from .database.metadata import create_metadata_engine
from .database.registry import DriverRegistry
from .services import AdminService, BackupService, QueryExecutor, TableService
from .utils.activity import ActivityLog
from .utils.logger import get_logger
from .utils.notification import NotificationManager

logger = get_logger("hubpanel.server")

STATUS_BY_CATEGORY = {
    "not_configured": 404,
    "connection": 503,
    "query": 400,
    "invalid_request": 400,
    "not_editable": 422,
    "not_found": 404,
    "conflict": 409,
    "forbidden": 403,
    "connection_test": 422,
}

JSON_ENCODERS = {
    bytes: lambda value: value.hex(),
    memoryview: lambda value: value.tobytes().hex(),
    Decimal: str,
    timedelta: str,
}


def to_json(data: Any) -> Any:
    """Engine values (bytes, Decimal, intervals) rendered JSON-safe"""
    return jsonable_encoder(data, custom_encoder=JSON_ENCODERS)


def json_response(data: Any, status_code: int = 200) -> JSONResponse:
    return JSONResponse(content=to_json(data), status_code=status_code)


def acting_user(request: Request) -> str:
    return request.headers.get("X-User") or "unknown"


def require(value: Any, message: str) -> Any:
    if value is None or value == "":
        raise InvalidRequestError(message)
    return value


# Request Models
class QueryRequest(BaseModel):
    database: Optional[str] = None
    sql: Optional[str] = None


class BackupRequest(BaseModel):
    database: Optional[str] = None


class RowRequest(BaseModel):
    database: Optional[str] = None
    table: Optional[str] = None
    schema_name: Optional[str] = Field(None, alias="schema")
    primaryKey: Optional[str] = None
    pkValue: Optional[Any] = None
    data: Optional[Dict[str, Any]] = None

    model_config = {"populate_by_name": True}


class CreateDatabaseRequest(BaseModel):
    hostDb: Optional[str] = None
    newDbName: Optional[str] = None
    owner: Optional[str] = None


class DropDatabaseRequest(BaseModel):
    hostDb: Optional[str] = None
    dbName: Optional[str] = None


class CreateUserRequest(BaseModel):
    database: Optional[str] = None
    username: Optional[str] = None
    password: Optional[str] = None
    permissions: List[str] = []


class DropUserRequest(BaseModel):
    database: Optional[str] = None
    username: Optional[str] = None


class ConnectionRequest(BaseModel):
    name: Optional[str] = None
    host: Optional[str] = None
    port: Optional[Any] = None
    username: Optional[str] = None
    password: Optional[str] = None
    database: Optional[str] = None
    db_type: Optional[str] = None


class RemoveConnectionRequest(BaseModel):
    name: Optional[str] = None


def create_app(settings: Optional[Settings] = None,
               registry: Optional[DriverRegistry] = None,
               store: Optional[ConnectionStore] = None,
               activity: Optional[ActivityLog] = None,
               environ=None) -> FastAPI:
    """Build the FastAPI app; anything not passed in is built from the environment"""
    settings = settings or Settings.from_env(environ)

    metadata_engine = None
    if settings.metadata_url and (store is None or activity is None):
        metadata_engine = create_metadata_engine(settings.metadata_url)

    if store is None and metadata_engine is not None:
        store = ConnectionStore(metadata_engine, settings)
    if activity is None:
        activity = ActivityLog(metadata_engine, NotificationManager.from_settings(settings))
    if registry is None:
        registry = DriverRegistry(
            load_static_configs(environ),
            connection_source=store.list_configs if store is not None else None,
            settings=settings,
        )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(f"HubPanel {__version__} started with {len(registry.static_configs)} static database(s)")
        yield
        await registry.close_all()
        if metadata_engine is not None:
            metadata_engine.dispose()

    app = FastAPI(title="HubPanel", version=__version__, lifespan=lifespan)
    app.state.settings = settings
    app.state.registry = registry
    app.state.started_at = time.time()
    app.state.tables = TableService(registry, activity, max_page_size=settings.max_page_size)
    app.state.executor = QueryExecutor(registry, activity)
    app.state.backups = BackupService(registry, activity, row_limit=settings.dump_row_limit)
    app.state.admin = AdminService(registry, activity, store=store, environ=environ)

    @app.exception_handler(HubPanelError)
    async def hubpanel_error_handler(request: Request, exc: HubPanelError):
        status_code = STATUS_BY_CATEGORY.get(exc.category, 500)
        if status_code >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
        return json_response(exc.to_dict(), status_code)

    @app.get("/status")
    async def status():
        """Get system status"""
        configs = await registry.list_configs()
        return {
            "status": "running",
            "version": __version__,
            "databases": len(configs),
            "storedConnections": store is not None,
            "executions": app.state.executor.get_execution_stats(),
            "uptime": round(time.time() - app.state.started_at, 2),
        }

    @app.get("/databases")
    async def databases():
        return json_response(await app.state.admin.database_overview())

    @app.post("/databases/manage")
    async def create_database(req: CreateDatabaseRequest, request: Request):
        result = await app.state.admin.create_database(
            req.hostDb, req.newDbName, req.owner, user=acting_user(request)
        )
        return json_response(result, 201)

    @app.delete("/databases/manage")
    async def drop_database(req: DropDatabaseRequest, request: Request):
        return await app.state.admin.drop_database(req.hostDb, req.dbName, user=acting_user(request))

    @app.get("/tables")
    async def tables(db: Optional[str] = None, schema: Optional[str] = None,
                     table: Optional[str] = None):
        """List tables, or the structure of one table"""
        require(db, "Missing required query parameter: db")
        if table:
            structure = await app.state.tables.get_structure(db, table, schema)
            return json_response(structure.to_dict())
        return json_response(await app.state.tables.list_tables(db, schema))

    @app.get("/tables/data")
    async def table_data(db: Optional[str] = None, table: Optional[str] = None,
                         schema: Optional[str] = None, page: Optional[str] = None,
                         pageSize: Optional[str] = None, orderBy: Optional[str] = None,
                         orderDir: Optional[str] = None, filter: Optional[str] = None):
        if not db or not table:
            raise InvalidRequestError("Missing required query parameters: db, table")
        options = app.state.tables.build_options(page, pageSize, orderBy, orderDir, filter)
        result = await app.state.tables.get_data(db, table, schema, options)
        return json_response(result.to_dict())

    @app.post("/tables/data")
    async def insert_row(req: RowRequest, request: Request):
        if not req.database or not req.table or not req.data:
            raise InvalidRequestError("Missing required fields: database, table, data")
        row = await app.state.tables.insert_row(
            req.database, req.table, req.data, req.schema_name, user=acting_user(request)
        )
        return json_response({"row": row}, 201)

    @app.put("/tables/data")
    async def update_row(req: RowRequest, request: Request):
        if not req.database or not req.table or req.pkValue is None or not req.data:
            raise InvalidRequestError("Missing required fields: database, table, pkValue, data")
        row = await app.state.tables.update_row(
            req.database, req.table, req.pkValue, req.data,
            primary_key=req.primaryKey, schema=req.schema_name, user=acting_user(request),
        )
        return json_response({"row": row})

    @app.delete("/tables/data")
    async def delete_row(req: RowRequest, request: Request):
        if not req.database or not req.table or req.pkValue is None:
            raise InvalidRequestError("Missing required fields: database, table, pkValue")
        row = await app.state.tables.delete_row(
            req.database, req.table, req.pkValue,
            primary_key=req.primaryKey, schema=req.schema_name, user=acting_user(request),
        )
        return json_response({"row": row})

    @app.post("/query")
    async def query(req: QueryRequest, request: Request):
        """Run one ad-hoc statement"""
        outcome = await app.state.executor.execute_query(req.database, req.sql, user=acting_user(request))
        return json_response(outcome.to_dict(), 200 if outcome.success else 400)

    @app.post("/backup")
    async def backup(req: BackupRequest, request: Request):
        """Download a SQL dump of a database"""
        require(req.database, "Missing required field: database")
        filename, dump = await app.state.backups.create_backup(req.database, user=acting_user(request))
        return Response(
            content=dump,
            media_type="application/sql",
            headers={"Content-Disposition": f'attachment; filename="{filename}"'},
        )

    @app.post("/import")
    async def import_sql(request: Request, database: Optional[str] = Form(None),
                         file: Optional[UploadFile] = File(None)):
        """Replay an uploaded .sql file statement by statement"""
        require(database, "Missing required field: database")
        if file is None:
            raise InvalidRequestError("Missing required field: file")
        content = await file.read()
        result = await app.state.backups.import_file(
            database, file.filename or "", content, user=acting_user(request)
        )
        return json_response(result.to_dict())

    @app.get("/monitoring")
    async def monitoring(db: Optional[str] = None):
        require(db, "Missing required query parameter: db")
        return json_response(await app.state.admin.monitoring(db))

    @app.get("/users")
    async def users(db: Optional[str] = None):
        require(db, "Missing required query parameter: db")
        return json_response(await app.state.admin.list_users(db))

    @app.post("/users")
    async def create_user(req: CreateUserRequest, request: Request):
        result = await app.state.admin.create_user(
            req.database, req.username, req.password, req.permissions, user=acting_user(request)
        )
        return json_response(result, 201)

    @app.delete("/users")
    async def drop_user(req: DropUserRequest, request: Request):
        return await app.state.admin.drop_user(req.database, req.username, user=acting_user(request))

    @app.get("/connections")
    async def connections():
        return json_response(await app.state.admin.list_connections())

    @app.post("/connections")
    async def add_connection(req: ConnectionRequest, request: Request):
        saved = await app.state.admin.add_connection(req.model_dump(), user=acting_user(request))
        return json_response(saved, 201)

    @app.delete("/connections")
    async def remove_connection(req: RemoveConnectionRequest, request: Request):
        return await app.state.admin.remove_connection(req.name, user=acting_user(request))

    @app.post("/connections/test")
    async def test_connection(req: ConnectionRequest):
        return json_response(await app.state.admin.test_connection(req.model_dump()))

    @app.get("/logs")
    async def logs(database: Optional[str] = None, user: Optional[str] = None,
                   operation: Optional[str] = None, limit: int = 50, offset: int = 0):
        return json_response(await app.state.admin.get_logs(database, user, operation, limit, offset))

    return app


def run():
    """Run the HubPanel server; the app and its settings are built by uvicorn on startup"""
    uvicorn.run("hubpanel.server:create_app", factory=True,
                host="0.0.0.0", port=int(os.getenv("PORT", 8080)))


if __name__ == "__main__":
    run()
