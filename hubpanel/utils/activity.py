"""
Activity log of user operations
"""

import asyncio
import threading
from typing import Any, Dict, List, Optional

from sqlalchemy import insert, select
from sqlalchemy.engine import Engine

from ..database.metadata import activity_table, metadata
from .logger import get_logger
from .notification import NotificationManager
from .threads import run_blocking

MAX_LOG_LIMIT = 1000


class ActivityLog:
    """Record who did what to which database

    Entries always go to the Python logger; they are also stored in the
    hubpanel_logs table when a metadata engine is configured. Recording an
    entry never raises.
    """

    def __init__(self, engine: Optional[Engine] = None,
                 notifier: Optional[NotificationManager] = None):
        self.engine = engine
        self.notifier = notifier
        self.logger = get_logger("hubpanel.activity")
        self._table_ready = False
        self._table_lock = threading.Lock()

    def _ensure_table(self) -> None:
        with self._table_lock:
            if not self._table_ready:
                metadata.create_all(self.engine, tables=[activity_table])
                self._table_ready = True

    def _insert(self, entry: Dict[str, Any]) -> None:
        self._ensure_table()
        with self.engine.begin() as conn:
            conn.execute(insert(activity_table).values(**entry))

    def _select(self, database: Optional[str], user: Optional[str], operation: Optional[str],
                limit: int, offset: int) -> List[Dict[str, Any]]:
        self._ensure_table()
        query = select(activity_table)
        if database:
            query = query.where(activity_table.c.database_name == database)
        if user:
            query = query.where(activity_table.c.user_email == user)
        if operation:
            query = query.where(activity_table.c.operation == operation)
        query = query.order_by(activity_table.c.timestamp.desc(), activity_table.c.id.desc())
        query = query.limit(limit).offset(offset)

        with self.engine.connect() as conn:
            rows = [dict(row) for row in conn.execute(query).mappings()]

        for row in rows:
            if row.get('timestamp') is not None:
                row['timestamp'] = row['timestamp'].isoformat()
        return rows

    async def log_activity(self, user: str, database: str, operation: str,
                           details: str, sql: Optional[str] = None) -> None:
        """Record one operation; failures to store it are logged only"""
        entry = {
            'user_email': user or "unknown",
            'database_name': database,
            'operation': operation,
            'details': details,
            'sql_query': sql,
        }
        self.logger.info(f"[{operation}] {database} by {entry['user_email']}: {details}")

        if self.engine is not None:
            try:
                await run_blocking(self._insert, entry)
            except Exception as e:
                self.logger.error(f"Failed to write activity log entry: {e}")

        if self.notifier is not None and self.notifier.should_notify(operation, details):
            # Delivery happens in the background; the request does not wait for it
            loop = asyncio.get_running_loop()
            future = loop.run_in_executor(None, self.notifier.notify_activity, entry)
            future.add_done_callback(self._log_notification_failure)

    def _log_notification_failure(self, future) -> None:
        if not future.cancelled() and future.exception() is not None:
            self.logger.error(f"Activity notification failed: {future.exception()}")

    async def get_logs(self, database: Optional[str] = None, user: Optional[str] = None,
                       operation: Optional[str] = None, limit: int = 100,
                       offset: int = 0) -> List[Dict[str, Any]]:
        """Newest entries first; empty when no storage is configured"""
        if self.engine is None:
            return []
        limit = max(1, min(int(limit), MAX_LOG_LIMIT))
        offset = max(0, int(offset))
        return await run_blocking(self._select, database, user, operation, limit, offset)
