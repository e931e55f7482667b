"""
Services behind the HubPanel HTTP entry points
"""

from .admin import AdminService
from .backup import BackupService
from .base import BaseService
from .execution import ExecutionOutcome, QueryExecutor
from .tables import TableService

__all__ = [
    'AdminService',
    'BackupService',
    'BaseService',
    'ExecutionOutcome',
    'QueryExecutor',
    'TableService',
]
