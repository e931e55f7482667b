"""
Shared plumbing of the HubPanel services
"""

from typing import Optional

from ..database.registry import DriverRegistry
from ..utils.activity import ActivityLog
from ..utils.logger import get_logger


class BaseService:
    """Registry access plus activity logging"""

    def __init__(self, registry: DriverRegistry, activity: Optional[ActivityLog] = None):
        self.registry = registry
        self.activity = activity or ActivityLog()
        self.logger = get_logger(f"hubpanel.{self.__class__.__name__}")

    async def _log(self, user: str, database: str, operation: str, details: str,
                   sql: Optional[str] = None) -> None:
        await self.activity.log_activity(user, database, operation, details, sql)
