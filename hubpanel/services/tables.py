"""
Table browsing and row editing
"""

from typing import Any, Dict, List, Optional

from ..database.errors import InvalidRequestError, NotFoundError
from ..database.models import TableDataOptions, TableDataResult, TableInfo, TableStructure, parse_filters
from .base import BaseService

DEFAULT_SCHEMA = "public"
DEFAULT_PAGE_SIZE = 50


def _positive_int(raw: Any, default: int, name: str) -> int:
    if raw is None or raw == "":
        return default
    try:
        value = int(raw)
    except (TypeError, ValueError):
        raise InvalidRequestError(f"{name} must be an integer")
    return max(value, 1)


class TableService(BaseService):
    """List tables, page through rows and edit them by primary key"""

    def __init__(self, registry, activity=None, max_page_size: int = 1000):
        super().__init__(registry, activity)
        self.max_page_size = max_page_size

    async def list_tables(self, database: str, schema: Optional[str] = None) -> List[TableInfo]:
        driver = await self.registry.resolve(database)
        return await driver.list_tables(schema or DEFAULT_SCHEMA)

    async def get_structure(self, database: str, table: str,
                            schema: Optional[str] = None) -> TableStructure:
        driver = await self.registry.resolve(database)
        return await driver.get_table_structure(schema or DEFAULT_SCHEMA, table)

    def build_options(self, page: Any = None, page_size: Any = None, order_by: Optional[str] = None,
                      order_dir: Optional[str] = None, filter_json: Optional[str] = None) -> TableDataOptions:
        """Clamp paging input and parse the filter JSON"""
        return TableDataOptions(
            page=_positive_int(page, 1, "page"),
            page_size=min(_positive_int(page_size, DEFAULT_PAGE_SIZE, "pageSize"), self.max_page_size),
            order_by=order_by or None,
            order_dir="DESC" if str(order_dir or "").upper() == "DESC" else "ASC",
            filters=parse_filters(filter_json),
        )

    async def get_data(self, database: str, table: str, schema: Optional[str] = None,
                       options: Optional[TableDataOptions] = None) -> TableDataResult:
        driver = await self.registry.resolve(database)
        return await driver.get_table_data(schema or DEFAULT_SCHEMA, table, options or TableDataOptions())

    async def insert_row(self, database: str, table: str, data: Dict[str, Any],
                         schema: Optional[str] = None, user: str = "unknown") -> Dict[str, Any]:
        schema = schema or DEFAULT_SCHEMA
        self._require_payload(data)
        driver = await self.registry.resolve(database)
        row = await driver.insert_row(schema, table, data)
        await self._log(user, database, "INSERT", f"Row inserted into {schema}.{table}",
                        f"INSERT INTO {schema}.{table}")
        return row

    async def update_row(self, database: str, table: str, pk_value: Any, data: Dict[str, Any],
                         primary_key: Optional[str] = None, schema: Optional[str] = None,
                         user: str = "unknown") -> Dict[str, Any]:
        schema = schema or DEFAULT_SCHEMA
        self._require_payload(data)
        driver = await self.registry.resolve(database)
        row = await driver.update_row(schema, table, primary_key, pk_value, data)
        if row is None:
            raise NotFoundError("Row not found or not updated")
        await self._log(user, database, "UPDATE", f"Row updated in {schema}.{table}",
                        f"UPDATE {schema}.{table} WHERE {primary_key or 'pk'} = {pk_value}")
        return row

    async def delete_row(self, database: str, table: str, pk_value: Any,
                         primary_key: Optional[str] = None, schema: Optional[str] = None,
                         user: str = "unknown") -> Dict[str, Any]:
        schema = schema or DEFAULT_SCHEMA
        driver = await self.registry.resolve(database)
        row = await driver.delete_row(schema, table, primary_key, pk_value)
        if row is None:
            raise NotFoundError("Row not found or not deleted")
        await self._log(user, database, "DELETE", f"Row deleted from {schema}.{table}",
                        f"DELETE FROM {schema}.{table} WHERE {primary_key or 'pk'} = {pk_value}")
        return row

    @staticmethod
    def _require_payload(data: Any) -> None:
        if not isinstance(data, dict) or not data:
            raise InvalidRequestError("Row data must be a non-empty object")
