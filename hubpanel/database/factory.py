"""
Database factory for creating the driver of a configured database
"""

from typing import TYPE_CHECKING, List, Optional

from .adapters import DatabaseAdapter
from .models import DatabaseConfig, EngineKind
from .mysql import MySQLAdapter
from .postgres import PostgreSQLAdapter

if TYPE_CHECKING:
    from ..config import Settings


class DatabaseFactory:
    """Factory class to create appropriate database connector"""

    @staticmethod
    def create_connector(config: DatabaseConfig,
                         settings: Optional["Settings"] = None) -> DatabaseAdapter:
        """Create database adapter based on engine kind"""
        if config.engine_kind.is_mysql_family:
            return MySQLAdapter(config, settings)
        # Supabase is PostgreSQL behind a hosted endpoint
        return PostgreSQLAdapter(config, settings)

    @staticmethod
    def get_supported_types() -> List[str]:
        """Get list of supported database types"""
        return [kind.value for kind in EngineKind]

    @staticmethod
    def get_required_config() -> List[str]:
        """Get required configuration keys; port and database have defaults"""
        return ['name', 'host', 'user', 'password']
